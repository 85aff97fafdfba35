"""Correlation identifiers for requests."""

import re
import secrets
from typing import Optional

REQUEST_ID_HEADER = "X-Request-ID"
REQUEST_ID_BYTES = 16

_VALID_REQUEST_ID = re.compile(r"[A-Za-z0-9_-]{1,64}")


def is_valid_request_id(value: Optional[str]) -> bool:
    return bool(value) and _VALID_REQUEST_ID.fullmatch(value) is not None


def generate_request_id() -> str:
    """Return a random 32 character hexadecimal id."""
    return secrets.token_hex(REQUEST_ID_BYTES)


def resolve_request_id(client_value: Optional[str]) -> str:
    """Echo a well-formed client supplied id, or generate a new one."""
    if is_valid_request_id(client_value):
        return client_value
    return generate_request_id()
