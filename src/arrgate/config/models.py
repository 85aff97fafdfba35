"""Configuration models for the arrgate."""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import FrozenSet, List, Optional, Tuple
from urllib.parse import SplitResult


class AuthMode(Enum):
    """Mode of inbound authentication."""
    MTLS = "mtls"
    BASIC = "basic"
    API_KEY = "apikey"

    def __str__(self):
        return self.value


@dataclass(frozen=True)
class WhitelistRule:
    """A single authorization entry of a service whitelist.

    `methods` is None when the rule allows every method.
    """

    source: str
    pattern: re.Pattern
    methods: Optional[FrozenSet[str]] = None

    def matches_path(self, path: str) -> bool:
        return self.pattern.search(path) is not None

    def allows_method(self, method: str) -> bool:
        return self.methods is None or method in self.methods


@dataclass(frozen=True)
class ServiceConfig:
    """Configuration for one protected backend service."""

    name: str
    url: str
    parsed_url: SplitResult
    api_key: str = field(repr=False)
    whitelist: Tuple[str, ...] = ()
    rules: Tuple[WhitelistRule, ...] = ()

    def is_whitelisted(self, method: str, path: str) -> bool:
        """Check whether `method` on `path` is authorized.

        The first rule whose pattern matches the path decides: it allows the
        request if it has no method restriction or lists the method, and
        denies it otherwise. Later rules are not consulted.
        """
        for rule in self.rules:
            if rule.matches_path(path):
                return rule.allows_method(method)
        return False


@dataclass(frozen=True)
class BasicAuthConfig:
    """Credentials accepted in basic auth mode."""

    user: str = ""
    password: str = field(default="", repr=False)


@dataclass(frozen=True)
class AuthConfig:
    """Configuration for inbound authentication."""

    mode: AuthMode = AuthMode.API_KEY
    basic_auth: BasicAuthConfig = field(default_factory=BasicAuthConfig)
    api_key: str = field(default="", repr=False)


@dataclass(frozen=True)
class TLSConfig:
    """Key material of the inbound listener."""

    cert: str = ""
    key: str = ""
    ca_cert: str = ""

    @property
    def enabled(self) -> bool:
        return bool(self.cert and self.key)


@dataclass(frozen=True)
class ServerConfig:
    """HTTP server settings."""

    host: str = "0.0.0.0"
    port: int = 8443
    read_timeout: float = 30.0  # Seconds
    write_timeout: float = 30.0
    idle_timeout: float = 120.0
    max_body_size: int = 10 * 1024 * 1024  # Bytes
    tls_min_version: str = "1.2"
    log_level: str = "info"
    shutdown_grace_period: float = 30.0


@dataclass(frozen=True)
class UpstreamConfig:
    """Outbound transport settings."""

    connect_timeout: float = 30.0
    read_timeout: float = 30.0
    pool_connections: int = 10
    pool_maxsize: int = 100


@dataclass(frozen=True)
class GatewayConfig:
    """Main configuration for the gateway."""

    sonarr: Optional[ServiceConfig]
    radarr: Optional[ServiceConfig]
    auth: AuthConfig
    tls: TLSConfig = field(default_factory=TLSConfig)
    server: ServerConfig = field(default_factory=ServerConfig)
    upstream: UpstreamConfig = field(default_factory=UpstreamConfig)

    def configured_services(self) -> List[ServiceConfig]:
        return [s for s in (self.sonarr, self.radarr) if s is not None]
