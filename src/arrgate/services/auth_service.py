"""Authentication strategies for inbound requests."""

import hmac
from dataclasses import dataclass
from typing import Dict

from werkzeug.wrappers import Request

from arrgate.config.models import AuthConfig, AuthMode
from arrgate.utils.logger import get_logger

logger = get_logger(__name__)

API_KEY_HEADER = "X-Api-Key"
API_KEY_QUERY_PARAM = "apikey"
BASIC_REALM = "Restricted"


class AuthenticationError(Exception):
    """Raised when an authentication strategy cannot be built."""


@dataclass(frozen=True)
class AuthResult:
    """Outcome of a verification. Truthy when the request may proceed."""
    allowed: bool
    reason: str = ""

    def __bool__(self) -> bool:
        return self.allowed


ALLOWED = AuthResult(allowed=True)


def constant_time_equals(presented: str, expected: str) -> bool:
    """Compare two secrets without leaking where they differ."""
    return hmac.compare_digest(presented.encode("utf-8"), expected.encode("utf-8"))


class Authenticator:
    """Base class of the authentication strategies."""

    mode: AuthMode

    def verify(self, request: Request) -> AuthResult:
        raise NotImplementedError

    def challenge_headers(self) -> Dict[str, str]:
        """Headers to send along with a 401 response."""
        return {}


class APIKeyAuthenticator(Authenticator):
    """Shared API key, taken from a header or, discouraged, the query string."""

    mode = AuthMode.API_KEY

    def __init__(self, api_key: str):
        self._api_key = api_key

    def verify(self, request: Request) -> AuthResult:
        key = request.headers.get(API_KEY_HEADER, "")
        if not key:
            key = request.args.get(API_KEY_QUERY_PARAM, "")
            if key:
                logger.warning(
                    "API key provided via query parameter (less secure): %s from %s",
                    request.path, request.remote_addr,
                )

        # An empty key never matches, even if the configured one is empty too
        if not key:
            return AuthResult(allowed=False, reason="no key provided")
        if not constant_time_equals(key, self._api_key):
            return AuthResult(allowed=False, reason="invalid key")
        return ALLOWED


class BasicAuthenticator(Authenticator):
    """HTTP Basic credentials."""

    mode = AuthMode.BASIC

    def __init__(self, user: str, password: str):
        self._user = user
        self._password = password

    def verify(self, request: Request) -> AuthResult:
        auth = request.authorization
        if auth is None or auth.type != "basic":
            return AuthResult(allowed=False, reason="missing or malformed credentials")
        # Both comparisons always run so timing does not reveal which failed
        user_ok = constant_time_equals(auth.username or "", self._user)
        password_ok = constant_time_equals(auth.password or "", self._password)
        if not (user_ok and password_ok):
            return AuthResult(allowed=False, reason="invalid credentials")
        return ALLOWED

    def challenge_headers(self) -> Dict[str, str]:
        return {"WWW-Authenticate": f'Basic realm="{BASIC_REALM}"'}


class MutualTLSAuthenticator(Authenticator):
    """Client certificates are verified during the TLS handshake.

    By the time a request reaches the application the peer has already been
    authenticated by the listener, so nothing is left to check here.
    """

    mode = AuthMode.MTLS

    def verify(self, request: Request) -> AuthResult:
        return ALLOWED


def build_authenticator(config: AuthConfig) -> Authenticator:
    """Build the strategy selected by the configuration.

    Raises:
        AuthenticationError: If the authentication mode is unsupported.
    """
    if config.mode == AuthMode.API_KEY:
        return APIKeyAuthenticator(config.api_key)
    elif config.mode == AuthMode.BASIC:
        return BasicAuthenticator(config.basic_auth.user, config.basic_auth.password)
    elif config.mode == AuthMode.MTLS:
        return MutualTLSAuthenticator()
    else:
        raise AuthenticationError(f"Unsupported authentication mode: {config.mode}")
