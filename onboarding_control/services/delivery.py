"""Delivery adapter — sends sequence emails via Resend."""

import logging

import resend
from resend.exceptions import MissingRequiredFieldsError, ResendError, ValidationError

from onboarding_control.config import RESEND_API_KEY, RESEND_FROM_EMAIL, RESEND_FROM_NAME
from onboarding_control.errors import (
    DeliveryFailure,
    PermanentDeliveryFailure,
    TransientDeliveryFailure,
)

logger = logging.getLogger(__name__)

# Auth failures are operator-fixable config, so they wait rather than skip the step
_TRANSIENT_CLIENT_CODES = {401, 403, 408, 409, 429}


def classify_error(error: Exception) -> DeliveryFailure:
    """Map a Resend SDK or transport error to a transient or permanent failure."""
    if isinstance(error, (ValidationError, MissingRequiredFieldsError)):
        return PermanentDeliveryFailure(str(error), error)
    if isinstance(error, ResendError):
        try:
            code = int(getattr(error, "code", 0) or 0)
        except (TypeError, ValueError):
            code = 0
        if 400 <= code < 500 and code not in _TRANSIENT_CLIENT_CODES:
            return PermanentDeliveryFailure(str(error), error)
        return TransientDeliveryFailure(str(error), error)
    # Network errors, timeouts, unexpected payloads
    return TransientDeliveryFailure(str(error) or type(error).__name__, error)


def render_html(body: str) -> str:
    """Plain-text body to minimal HTML (line breaks only)."""
    return body.replace("\n", "<br>")


class ResendDelivery:
    """Sends one message per call and returns the Resend email id."""

    def __init__(self, api_key: str = RESEND_API_KEY, from_email: str = RESEND_FROM_EMAIL,
                 from_name: str = RESEND_FROM_NAME):
        self.api_key = api_key
        self.sender = f"{from_name} <{from_email}>"

    def send(self, address: str, subject: str, body: str) -> dict:
        if not self.api_key:
            raise TransientDeliveryFailure("RESEND_API_KEY not set, cannot send")
        if not address or "@" not in address:
            raise PermanentDeliveryFailure(f"Invalid recipient address: {address!r}")

        resend.api_key = self.api_key
        try:
            result = resend.Emails.send({
                "from": self.sender,
                "to": [address],
                "subject": subject,
                "html": render_html(body),
            })
        except Exception as e:
            failure = classify_error(e)
            logger.warning("Resend send to %s failed (%s): %s",
                           address, "permanent" if failure.permanent else "transient", e)
            raise failure from e

        delivery_id = (result or {}).get("id", "")
        if not delivery_id:
            raise TransientDeliveryFailure(f"Resend returned no email id: {result!r}")
        return {"delivery_id": delivery_id}
