"""Webhook security utilities.

Provides payload serialization and HMAC signature generation/verification.

Signature scheme: the ``X-Webhook-Signature`` header carries the lowercase
hex HMAC-SHA256 of the raw request body, keyed with the webhook secret, with
no prefix. Receivers verify with ``HMAC_SHA256(secret, raw_body) == header``.
The header is omitted when the webhook has no secret.
"""

import hashlib
import hmac
import json
from collections.abc import Mapping
from typing import Any

import structlog

logger = structlog.get_logger(__name__)

SIGNATURE_HEADER = "X-Webhook-Signature"


def serialize_payload(payload: Mapping[str, Any]) -> bytes:
    """Serialize a payload to the exact bytes that are sent and signed.

    Args:
        payload: JSON-ready payload.

    Returns:
        Compact UTF-8 JSON.

    Raises:
        ValueError: If the payload holds NaN or infinity, which JSON cannot carry.
    """
    return json.dumps(
        payload, separators=(",", ":"), ensure_ascii=False, allow_nan=False
    ).encode("utf-8")


def generate_signature(body: bytes | str, secret: str) -> str:
    """Generate the HMAC-SHA256 signature of a request body.

    Args:
        body: Raw request body (str is encoded as UTF-8).
        secret: Webhook secret key.

    Returns:
        Lowercase hex digest.
    """
    if isinstance(body, str):
        body = body.encode("utf-8")

    signature = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()

    logger.debug("webhook_signature_generated", payload_length=len(body))

    return signature


def verify_signature(body: bytes | str, signature: str, secret: str) -> bool:
    """Verify the HMAC-SHA256 signature of a raw request body.

    Args:
        body: Raw request body as received.
        signature: Claimed signature from the header.
        secret: Webhook secret key.

    Returns:
        True if the signature is valid.
    """
    expected = generate_signature(body, secret)

    # Constant-time comparison
    is_valid = hmac.compare_digest(signature.strip().lower(), expected)

    if not is_valid:
        logger.warning("webhook_signature_invalid")

    return is_valid


def create_signature_headers(body: bytes, secret: str | None) -> dict[str, str]:
    """Create the signature header for a delivery.

    Args:
        body: Serialized request body.
        secret: Webhook secret, or None for unsigned webhooks.

    Returns:
        Header mapping (empty when there is no secret).
    """
    if not secret:
        return {}
    return {SIGNATURE_HEADER: generate_signature(body, secret)}


def verify_from_headers(
    body: bytes | str,
    headers: Mapping[str, str],
    secret: str,
) -> bool:
    """Verify a webhook signature taken from request headers.

    Header lookup is case-insensitive.

    Args:
        body: Raw request body.
        headers: Request headers.
        secret: Webhook secret key.

    Returns:
        True if signature is valid.

    Raises:
        ValueError: If the signature header is missing.
    """
    lowered = {name.lower(): value for name, value in headers.items()}
    signature = lowered.get(SIGNATURE_HEADER.lower())

    if not signature:
        raise ValueError(f"Missing {SIGNATURE_HEADER} header")

    return verify_signature(body, signature, secret)
