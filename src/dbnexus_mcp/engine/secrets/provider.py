"""Credential providers.

A SecretProvider resolves a connection profile's credential_id to a password.
The server ships with EnvVarSecretProvider, which reads DBNEXUS_SECRET_*
environment variables; storage of the secrets themselves is left to the host.

Example:
    >>> os.environ["DBNEXUS_SECRET_WAREHOUSE"] = "s3cret"
    >>> provider = EnvVarSecretProvider()
    >>> await provider.get_secret("warehouse")
    's3cret'
"""

import os
import re
from abc import ABC, abstractmethod

from .exceptions import SecretNotFoundError

_NON_ENV_CHARS = re.compile(r"[^A-Za-z0-9_]")


class SecretProvider(ABC):
    """Abstract base class for credential providers.

    All methods are async to support both local and remote secret sources.
    """

    @abstractmethod
    async def get_secret(self, key: str) -> str:
        """Retrieve a secret value by key.

        Args:
            key: The credential id to resolve (e.g., "warehouse")

        Returns:
            The secret value as a string

        Raises:
            SecretNotFoundError: If the secret key does not exist
        """

    @abstractmethod
    async def list_secret_keys(self) -> list[str]:
        """List all available secret keys."""


class EnvVarSecretProvider(SecretProvider):
    """Secret provider that reads from environment variables.

    Environment Variable Format:
        DBNEXUS_SECRET_{KEY_UPPER} = secret_value

    Characters that cannot appear in an environment variable name are mapped
    to underscores, so credential id "prod-db" reads DBNEXUS_SECRET_PROD_DB.

    Attributes:
        prefix: Environment variable prefix (default: "DBNEXUS_SECRET_")
    """

    def __init__(self, prefix: str = "DBNEXUS_SECRET_") -> None:
        self.prefix = prefix

    def _get_env_var_name(self, key: str) -> str:
        """Convert secret key to environment variable name."""
        return f"{self.prefix}{_NON_ENV_CHARS.sub('_', key).upper()}"

    async def get_secret(self, key: str) -> str:
        """Retrieve a secret from environment variables.

        Raises:
            SecretNotFoundError: If the environment variable does not exist
        """
        env_var_name = self._get_env_var_name(key)
        value = os.environ.get(env_var_name)

        if value is None:
            raise SecretNotFoundError(
                key=key,
                provider_hint=f"Set environment variable: {env_var_name}=<secret_value>",
            )

        return value

    async def list_secret_keys(self) -> list[str]:
        """List secret keys (lowercased, prefix removed) present in the environment."""
        return [
            name[len(self.prefix) :].lower() for name in os.environ if name.startswith(self.prefix)
        ]
