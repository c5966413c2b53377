"""Bearer token validation for the inbound webhook."""

from __future__ import annotations

import hmac
from typing import Mapping, Optional

# Checked before the standard Authorization header.
VENDOR_AUTH_HEADER = "X-Ezail-Authorization"
AUTH_HEADER = "Authorization"


def pick_auth_header(headers: Mapping[str, str]) -> Optional[str]:
    """Return the vendor header if present, otherwise Authorization."""
    vendor = headers.get(VENDOR_AUTH_HEADER)
    if vendor is not None:
        return vendor
    return headers.get(AUTH_HEADER)


def validate_bearer_token(header: Optional[str], expected_token: str) -> bool:
    """Check a ``Bearer <token>`` header against the configured token.

    The comparison runs over the encoded bytes with ``hmac.compare_digest``
    so matching prefixes do not return earlier than full mismatches.
    """
    if not header or not expected_token:
        return False
    parts = header.split(" ")
    if len(parts) != 2 or parts[0].lower() != "bearer":
        return False

    expected = expected_token.encode("utf-8")
    provided = parts[1].encode("utf-8")
    if len(expected) != len(provided):
        return False
    return hmac.compare_digest(expected, provided)
