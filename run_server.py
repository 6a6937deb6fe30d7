#!/usr/bin/env python3
"""Onboarding Control — sequence engine and dashboard API.

Launch: python3 run_server.py
Serves at http://0.0.0.0:8000 (or PORT env var)
"""

import logging
import os

import uvicorn

from onboarding_control.config import HOST, LOG_LEVEL, PORT


def main():
    logging.basicConfig(
        level=LOG_LEVEL.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logger = logging.getLogger("onboarding_control")

    if not os.environ.get("SUPABASE_URL"):
        logger.warning("SUPABASE_URL not set. Set SUPABASE_URL and SUPABASE_SERVICE_KEY; "
                       "continuing anyway for local development")
    if not os.environ.get("RESEND_API_KEY"):
        logger.warning("RESEND_API_KEY not set. Sends will be retried until it is configured")

    from onboarding_control.app import create_app
    app = create_app()
    logger.info("Starting server on http://%s:%d", HOST, PORT)
    uvicorn.run(app, host=HOST, port=PORT, log_level=LOG_LEVEL.lower())


if __name__ == "__main__":
    main()
