"""
Webhook signature helpers.

Inbound provider webhooks (payments, identity sync) are signed with
HMAC-SHA256 over the raw body using a shared secret.
"""

import hashlib
import hmac


def sign_payload(payload: bytes, secret: str) -> str:
    """Hex HMAC-SHA256 signature of `payload`."""
    return hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()


def verify_webhook_signature(payload: bytes, signature: str, secret: str) -> bool:
    """
    Constant-time check of a webhook signature.

    Args:
        payload: Raw request body exactly as received
        signature: Hex digest from the signature header
        secret: Shared signing secret

    Returns:
        True if the signature matches
    """
    if not signature:
        return False
    return hmac.compare_digest(sign_payload(payload, secret), signature.strip().lower())
