"""
Webhook Signature Verification

Utilities for verifying HMAC SHA256 signatures from Terra webhooks.
Ensures webhook payloads are authentic and haven't been tampered with.

Terra sends a ``terra-signature`` header of the form ``t=<unix-seconds>,v1=<hex>``.
The signed message is the timestamp joined to the raw request body. Terra's
documentation says the two are separated by ``.``, while observed requests are
signed without a separator, so both forms are accepted.
"""

import hashlib
import hmac
from typing import Dict, Optional, Tuple, Union

from aws_lambda_powertools import Logger

logger = Logger(child=True)

SIGNATURE_HEADERS = ("terra-signature", "x-terra-signature")
SIGNATURE_SEPARATORS = (".", "")

BodyType = Union[str, bytes]


def _to_bytes(value: BodyType) -> bytes:
    return value.encode("utf-8") if isinstance(value, str) else value


def parse_signature_header(signature_header: Optional[str]) -> Tuple[Optional[str], Optional[str]]:
    """
    Split a ``t=<timestamp>,v1=<hex>`` header into its parts.

    Args:
        signature_header: Raw header value

    Returns:
        (timestamp, signature) tuple; either element is None when absent
    """
    timestamp = None
    signature = None

    for part in (signature_header or "").split(","):
        key, sep, value = part.strip().partition("=")
        if not sep:
            continue
        if key == "t":
            timestamp = value
        elif key == "v1":
            signature = value

    return timestamp or None, signature or None


def compute_signature(raw_body: BodyType, timestamp: str, secret: str, separator: str = ".") -> str:
    """
    Compute the hex HMAC SHA256 signature Terra would send for a body.

    Args:
        raw_body: Exact request body
        timestamp: Timestamp from the ``t=`` part of the header
        secret: Shared signing secret
        separator: Joiner between timestamp and body ("." or "")

    Returns:
        Hex-encoded digest
    """
    message = _to_bytes(timestamp) + _to_bytes(separator) + _to_bytes(raw_body)
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def verify_webhook_signature(
    raw_body: BodyType, signature_header: Optional[str], secret: Optional[str], provider: str = "terra"
) -> bool:
    """
    Verify HMAC SHA256 signature from a Terra webhook.

    Never raises: a malformed header, a missing secret or a digest mismatch
    all return False.

    Args:
        raw_body: Exact request body as received (str or bytes)
        signature_header: Value of the terra-signature header
        secret: Shared webhook secret configured in Terra
        provider: Provider name used in diagnostics only

    Returns:
        True if signature is valid, False otherwise

    Example:
        >>> header = "t=1700000000,v1=" + compute_signature(body, "1700000000", secret)
        >>> verify_webhook_signature(body, header, secret)
        True
    """
    if not secret:
        logger.error("Webhook signing secret not configured", extra={"provider": provider})
        return False

    timestamp, received = parse_signature_header(signature_header)
    if not timestamp or not received:
        logger.warning("Invalid signature header format", extra={"provider": provider})
        return False

    body_bytes = _to_bytes(raw_body)

    for separator in SIGNATURE_SEPARATORS:
        expected = compute_signature(body_bytes, timestamp, secret, separator)
        # Use constant-time comparison to prevent timing attacks
        if hmac.compare_digest(expected.encode("ascii"), received.encode("ascii", "replace")):
            logger.debug(
                "Signature verified",
                extra={"provider": provider, "format": "timestamp.body" if separator else "timestamp+body"},
            )
            return True

    logger.warning(
        "Signature mismatch with both formats",
        extra={
            "provider": provider,
            "timestamp": timestamp,
            "received_length": len(received),
            "expected_length": hashlib.sha256().digest_size * 2,
            "body_length": len(body_bytes),
        },
    )
    return False


def extract_signature(headers: Optional[Dict[str, str]]) -> str:
    """
    Extract webhook signature from request headers.

    Handles case-insensitive header lookups for API Gateway events.

    Args:
        headers: Request headers dictionary

    Returns:
        Signature string or empty string if not found
    """
    lowered = {key.lower(): value for key, value in (headers or {}).items()}

    for name in SIGNATURE_HEADERS:
        signature = lowered.get(name)
        if signature:
            return signature

    return ""
