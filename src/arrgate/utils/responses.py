"""Plain-text responses produced by the gateway itself."""

from flask import Response


def error_response(status_code: int, message: str, headers: dict = None) -> Response:
    return Response(
        message + "\n",
        status=status_code,
        headers=headers,
        mimetype="text/plain",
    )
