"""Credential resolution for stored connection profiles.

Core Components:
    - SecretProvider: Abstract base class for secret sources
    - EnvVarSecretProvider: Environment variable-based secrets (DBNEXUS_SECRET_*)
    - Custom exceptions: SecretError, SecretNotFoundError
"""

from .exceptions import SecretError, SecretNotFoundError
from .provider import EnvVarSecretProvider, SecretProvider

__all__ = [
    # Exceptions
    "SecretError",
    "SecretNotFoundError",
    # Providers
    "SecretProvider",
    "EnvVarSecretProvider",
]
