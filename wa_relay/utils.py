"""
Utility functions for the relay.
"""

import hashlib
import hmac
import logging
import time
from typing import Optional

logger = logging.getLogger(__name__)

SIGNATURE_PREFIX = "sha256="


def now_ms() -> int:
    """Current wall-clock time in milliseconds since epoch."""
    return int(time.time() * 1000)


def mask_identifier(value: Optional[str]) -> Optional[str]:
    """Hide all but the last four characters of an identifier."""
    if not value:
        return None
    return "***" + value[-4:]


def verify_hub_signature(body: bytes, signature: Optional[str], secret: str) -> bool:
    """
    Verify the provider's X-Hub-Signature-256 header.

    Args:
        body: Raw request body bytes
        signature: Header value, "sha256=<hex HMAC-SHA256>"
        secret: App secret shared with the provider

    Returns:
        True if signature is valid, False otherwise
    """
    if not signature or not signature.startswith(SIGNATURE_PREFIX):
        logger.info("Webhook signature missing or malformed")
        return False

    expected_signature = hmac.new(
        secret.encode("utf-8"),
        body,
        hashlib.sha256
    ).hexdigest()

    # Use constant-time comparison to prevent timing attacks
    is_valid = hmac.compare_digest(expected_signature, signature[len(SIGNATURE_PREFIX):])
    logger.info(f"Webhook signature verification: {'valid' if is_valid else 'invalid'}")

    return is_valid
