"""Webhooks — Whop membership events start and stop onboarding runs."""

import hashlib
import hmac
import json
import logging
import re
import time
from collections import defaultdict

from fastapi import APIRouter, Header, HTTPException, Request

from onboarding_control import config
from onboarding_control import supabase_client as db

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks")

# Basic email validation
_EMAIL_RE = re.compile(r"^[^@\s]{1,64}@[^@\s]{1,255}$")

# In-memory rate limiter: {ip: [timestamp, ...]}
_rate_buckets: dict[str, list[float]] = defaultdict(list)
_RATE_LIMIT = 60       # max requests per window
_RATE_WINDOW = 60      # window in seconds

_ENROLL_ACTIONS = {"membership.created", "membership.went_valid"}


def _check_rate_limit(request: Request) -> None:
    """Raise 429 if IP exceeds rate limit. Simple sliding window."""
    ip = request.client.host if request.client else "unknown"
    now = time.monotonic()
    bucket = _rate_buckets[ip]
    # Prune old entries
    cutoff = now - _RATE_WINDOW
    _rate_buckets[ip] = bucket = [t for t in bucket if t > cutoff]
    if len(bucket) >= _RATE_LIMIT:
        raise HTTPException(status_code=429, detail="Rate limit exceeded")
    bucket.append(now)


def sign_payload(raw_body: bytes, secret: str) -> str:
    """Hex HMAC-SHA256 of a webhook body."""
    return hmac.new(secret.encode(), raw_body, hashlib.sha256).hexdigest()


def verify_signature(raw_body: bytes, signature: str, secret: str) -> bool:
    """Check an ``x-whop-signature`` header, with or without a ``sha256=`` prefix."""
    if not signature:
        return False
    if signature.startswith("sha256="):
        signature = signature[len("sha256="):]
    return hmac.compare_digest(sign_payload(raw_body, secret), signature)


def _extract_member(data: dict) -> tuple[str, str]:
    """Pull (user_id, email) out of a Whop membership payload."""
    user = data.get("user") or {}
    if isinstance(user, str):
        user_id = user
        email = data.get("email", "")
    else:
        user_id = user.get("id") or data.get("user_id", "")
        email = data.get("email") or user.get("email", "")
    return str(user_id or ""), (email or "").strip().lower()


@router.post("/whop")
async def whop_webhook(
    request: Request,
    x_whop_signature: str = Header(""),
):
    _check_rate_limit(request)
    raw_body = await request.body()

    if config.WHOP_WEBHOOK_SECRET and not config.WHOP_DEV_MODE:
        if not verify_signature(raw_body, x_whop_signature, config.WHOP_WEBHOOK_SECRET):
            logger.warning("Rejected Whop webhook with invalid signature")
            raise HTTPException(status_code=401, detail="Invalid signature")

    try:
        body = json.loads(raw_body or b"{}")
    except json.JSONDecodeError:
        raise HTTPException(status_code=400, detail="Body must be JSON")

    action = body.get("action", "")
    data = body.get("data") or {}
    logger.info("Webhook received: %s", action)

    if action in _ENROLL_ACTIONS:
        return _handle_membership_valid(request, action, data)
    if action == "membership.went_invalid":
        return _handle_membership_ended(request, data)
    if action == "payment.succeeded":
        db.log_action("payment_succeeded", "payment", str(data.get("id", "")),
                      f"Payment of {data.get('final_amount', data.get('amount', '?'))} "
                      f"from {data.get('user_id', '')}")
        return {"status": "recorded", "action": action}

    return {"status": "ignored", "action": action}


def _handle_membership_valid(request: Request, action: str, data: dict) -> dict:
    user_id, email = _extract_member(data)
    if not user_id or not _EMAIL_RE.match(email):
        raise HTTPException(status_code=400, detail="Membership payload needs user id and email")

    db.upsert_member(user_id, email)
    results = request.app.state.trigger.emit(user_id, email)
    enrolled = [r["id"] for r in results if r]

    db.log_action(
        "membership_enrollment", "member", user_id,
        f"{action}: {email}, runs started: {', '.join(enrolled) or 'none'}",
    )
    return {"status": "ok", "action": action, "enrolled": enrolled}


def _handle_membership_ended(request: Request, data: dict) -> dict:
    user_id, _ = _extract_member(data)
    if not user_id:
        raise HTTPException(status_code=400, detail="Membership payload needs user id")

    aborted = request.app.state.runner.abort(user_id)
    db.update_member(user_id, {"status": "inactive"})
    db.log_action("membership_ended", "member", user_id, f"Aborted {aborted} run(s)")
    return {"status": "ok", "action": "membership.went_invalid", "aborted": aborted}
