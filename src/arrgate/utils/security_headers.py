"""Defensive response headers for the arrgate."""

from typing import Dict

from werkzeug.datastructures import Headers

SECURITY_HEADERS: Dict[str, str] = {
    # Prevent MIME type sniffing
    "X-Content-Type-Options": "nosniff",
    # Prevent framing (clickjacking)
    "X-Frame-Options": "DENY",
    # Enable XSS filter in older browsers
    "X-XSS-Protection": "1; mode=block",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    # Responses may carry library data and must not be cached
    "Cache-Control": "no-store, no-cache, must-revalidate, private",
}


def apply_security_headers(headers: Headers) -> None:
    """Set the security headers, replacing values sent by an upstream."""
    for name, value in SECURITY_HEADERS.items():
        headers[name] = value
