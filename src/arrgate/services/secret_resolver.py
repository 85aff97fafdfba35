"""Resolution of secrets stored in AWS Systems Manager Parameter Store."""

import os

import boto3
from cachetools import TTLCache, cachedmethod

from arrgate.utils.logger import get_logger

logger = get_logger(__name__)

SSM_PREFIX = "ssm:"


class SecretResolutionError(Exception):
    """Raised when a secret reference cannot be resolved."""


class SecretResolver:
    """Turns `ssm:<parameter>` references into secret values.

    Plain values are returned unchanged, so configuration may hold either
    literal secrets or references to Parameter Store.
    """

    def __init__(self, region: str = None, ssm_client=None):
        """Initialize the secret resolver.

        Args:
            region: AWS region of the Parameter Store.
            ssm_client: Pre-built SSM client, created lazily when omitted.
        """
        self._region = region or os.environ.get("AWS_REGION") or os.environ.get(
            "AWS_DEFAULT_REGION", "eu-west-1"
        )
        self._ssm_client = ssm_client
        # Config is loaded once at startup; the cache only deduplicates
        # references to the same parameter within one load.
        self._cache = TTLCache(maxsize=100, ttl=600)

    @staticmethod
    def is_reference(value: str) -> bool:
        return isinstance(value, str) and value.startswith(SSM_PREFIX)

    def resolve(self, value: str) -> str:
        """Resolve a configured secret value.

        Args:
            value: Literal secret or `ssm:<parameter-name>` reference.

        Returns:
            str: The secret value.

        Raises:
            SecretResolutionError: If the referenced parameter cannot be
            retrieved.
        """
        if not self.is_reference(value):
            return value
        parameter_name = value[len(SSM_PREFIX):]
        if not parameter_name:
            raise SecretResolutionError("Empty SSM parameter reference")
        return self.get_parameter(parameter_name)

    @cachedmethod(cache=lambda self: self._cache)
    def get_parameter(self, parameter_name: str) -> str:
        """Retrieve a parameter value from AWS Parameter Store.

        Args:
            parameter_name: Parameter name to retrieve.

        Returns:
            str: Parameter value.

        Raises:
            SecretResolutionError: If parameter retrieval fails.
        """
        try:
            response = self._client().get_parameter(
                Name=parameter_name, WithDecryption=True
            )
            value = response["Parameter"]["Value"]
        except Exception as e:
            logger.error(
                "Failed to retrieve parameter '%s': %s",
                parameter_name,
                str(e)
            )
            raise SecretResolutionError(
                f"Failed to retrieve parameter '{parameter_name}'"
            ) from e
        logger.info("Resolved secret from parameter: %s", parameter_name)
        return value

    def _client(self):
        if self._ssm_client is None:
            self._ssm_client = boto3.client("ssm", region_name=self._region)
        return self._ssm_client

    def clear_cache(self) -> None:
        """Clear the parameter cache."""
        self._cache.clear()

    def get_cached_parameter_count(self) -> int:
        return self._cache.currsize
