"""Onboarding Control configuration — loaded from environment variables."""

import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv(Path(__file__).resolve().parent.parent / ".env")

# Root of the repo
REPO_ROOT = Path(__file__).resolve().parent.parent

# Supabase
SUPABASE_URL = os.environ.get("SUPABASE_URL", "")
SUPABASE_SERVICE_KEY = os.environ.get("SUPABASE_SERVICE_KEY", "")

# Resend (email sending)
RESEND_API_KEY = os.environ.get("RESEND_API_KEY", "")
RESEND_FROM_EMAIL = os.environ.get("RESEND_FROM_EMAIL", "onboarding@resend.dev")
RESEND_FROM_NAME = os.environ.get("RESEND_FROM_NAME", "Onboarding")

# Whop membership webhooks (HMAC-SHA256 of the raw body)
WHOP_WEBHOOK_SECRET = os.environ.get("WHOP_WEBHOOK_SECRET", "")
WHOP_DEV_MODE = os.environ.get("WHOP_DEV_MODE", "").lower() in ("1", "true", "yes")

# Bearer secret for internal endpoints (test enrollments)
WEBHOOK_SECRET = os.environ.get("WEBHOOK_SECRET", "")

# Dashboard user used when a request carries no x-user-id header
DEFAULT_USER_ID = os.environ.get("DEFAULT_USER_ID", "dev_user")

# Server
HOST = os.environ.get("HOST", "0.0.0.0")
PORT = int(os.environ.get("PORT", "8000"))
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

# Sequence runner
SCHEDULER_INTERVAL_MINUTES = int(os.environ.get("SCHEDULER_INTERVAL_MINUTES", "5"))
RETRY_BASE_SECONDS = int(os.environ.get("RETRY_BASE_SECONDS", "60"))
RETRY_MAX_SECONDS = int(os.environ.get("RETRY_MAX_SECONDS", str(6 * 3600)))
RECORD_RETRY_ATTEMPTS = int(os.environ.get("RECORD_RETRY_ATTEMPTS", "3"))
