"""
Module: signer.py
Description: HMAC signing of outbound webhook payloads.

Merchants verify a webhook by recomputing HMAC-SHA256 over the raw
request body with their webhook secret and comparing it to the
X-<Product>-Signature header.
"""

import hashlib
import hmac
import json
from typing import Any, Dict, Optional


def serialize_payload(payload: Dict[str, Any]) -> bytes:
    """
    Serialize a payload to the exact bytes that are signed and sent.

    Compact separators and UTF-8 output keep the body byte-identical to a
    JSON.stringify() of the same object.
    """
    return json.dumps(payload, separators=(',', ':'), ensure_ascii=False).encode('utf-8')


def sign(payload: bytes, secret: Optional[str]) -> str:
    """
    Compute the hex HMAC-SHA256 signature of a payload.

    An absent or empty secret signs with an empty key, which still yields
    a deterministic signature.

    Args:
        payload: Serialized request body
        secret: Merchant webhook secret

    Returns:
        Lowercase hex digest
    """
    if not isinstance(payload, (bytes, bytearray)):
        raise ValueError("payload must be bytes")

    key = (secret or "").encode('utf-8')
    return hmac.new(key, bytes(payload), hashlib.sha256).hexdigest()


def verify(payload: bytes, secret: Optional[str], signature: str) -> bool:
    """Check a signature in constant time."""
    return hmac.compare_digest(sign(payload, secret), signature or "")
