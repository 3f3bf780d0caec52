"""
Verification of signed identity-provider webhooks (svix scheme).
"""

import base64
import binascii
import hashlib
import hmac
import time

SECRET_PREFIX = "whsec_"
SIGNATURE_VERSION = "v1"
TIMESTAMP_TOLERANCE_SECONDS = 5 * 60


class WebhookVerificationError(Exception):
    """Raised when a webhook signature or timestamp is not acceptable."""


def _secret_bytes(secret: str) -> bytes:
    if secret.startswith(SECRET_PREFIX):
        secret = secret[len(SECRET_PREFIX):]
    try:
        return base64.b64decode(secret)
    except (binascii.Error, ValueError) as e:
        raise WebhookVerificationError("Webhook secret is not valid base64") from e


def sign_payload(secret: str, message_id: str, timestamp: str, body: bytes | str) -> str:
    """Compute the ``v1,<base64>`` signature for a message."""
    if isinstance(body, bytes):
        body = body.decode("utf-8")
    signed = f"{message_id}.{timestamp}.{body}".encode("utf-8")
    digest = hmac.new(_secret_bytes(secret), signed, hashlib.sha256).digest()
    return f"{SIGNATURE_VERSION},{base64.b64encode(digest).decode('ascii')}"


def verify_webhook(
    secret: str,
    message_id: str,
    timestamp: str,
    signature_header: str,
    body: bytes | str,
    now: float | None = None,
) -> None:
    """Check a webhook's timestamp and signatures.

    The ``svix-signature`` header may carry several space-separated
    ``version,signature`` pairs; any matching ``v1`` signature is accepted.

    Raises:
        WebhookVerificationError: If the timestamp is malformed or outside the
            tolerance window, or no signature matches.
    """
    try:
        sent_at = int(timestamp)
    except ValueError as e:
        raise WebhookVerificationError("Invalid signature timestamp") from e

    now = time.time() if now is None else now
    if abs(now - sent_at) > TIMESTAMP_TOLERANCE_SECONDS:
        raise WebhookVerificationError("Message timestamp outside tolerance")

    expected = sign_payload(secret, message_id, timestamp, body).split(",", 1)[1]
    for candidate in signature_header.split():
        version, _, signature = candidate.partition(",")
        if version == SIGNATURE_VERSION and hmac.compare_digest(signature, expected):
            return
    raise WebhookVerificationError("No matching signature found")
