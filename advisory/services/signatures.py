"""
HMAC helpers for Razorpay checkout signatures and Digio webhooks.

Both vendors sign with HMAC-SHA256 and send the hex digest. Comparisons always
check length first and then compare the full digest in constant time.
"""
import hashlib
import hmac
from typing import Optional, Union

WEBHOOK_SIGNATURE_HEADER = "x-digio-signature-256"

_SIGNATURE_PREFIXES = ("sha256=", "v1=", "v1,")


def _to_bytes(value: Union[str, bytes]) -> bytes:
    if isinstance(value, bytes):
        return value
    return value.encode("utf-8")


def constant_time_equals(expected: Union[str, bytes], supplied: Union[str, bytes]) -> bool:
    """
    True only if both values are byte-for-byte equal.

    A length mismatch returns False before any content is compared.
    """
    expected_bytes = _to_bytes(expected)
    supplied_bytes = _to_bytes(supplied)
    if len(expected_bytes) != len(supplied_bytes):
        return False
    return hmac.compare_digest(expected_bytes, supplied_bytes)


def compute_payment_signature(order_id: str, payment_id: str, key_secret: str) -> str:
    """Razorpay checkout signature: hex HMAC-SHA256 of "order_id|payment_id"."""
    message = f"{order_id}|{payment_id}".encode("utf-8")
    return hmac.new(key_secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def verify_payment_signature(order_id: str, payment_id: str, signature: str, key_secret: str) -> bool:
    if not key_secret or not signature:
        return False
    expected = compute_payment_signature(order_id, payment_id, key_secret)
    return constant_time_equals(expected, signature.strip())


def compute_webhook_signature(raw_body: bytes, secret: str) -> str:
    """Digio webhook signature: hex HMAC-SHA256 over the raw request body."""
    return hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).hexdigest()


def _normalize_signature_header(value: str) -> str:
    raw = value.strip()
    for prefix in _SIGNATURE_PREFIXES:
        if raw.lower().startswith(prefix):
            return raw[len(prefix):].strip()
    return raw


def verify_webhook_signature(raw_body: bytes, signature_header: Optional[str], secret: str) -> bool:
    """
    Check a webhook signature against the exact bytes received.

    The body must not be re-serialized first: key order and whitespace would change
    the digest.
    """
    if not secret or not signature_header:
        return False
    supplied = _normalize_signature_header(signature_header)
    if not supplied:
        return False
    expected = compute_webhook_signature(raw_body, secret)
    return constant_time_equals(expected, supplied.lower())
