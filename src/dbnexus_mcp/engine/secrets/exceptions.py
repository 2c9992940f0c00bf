"""Exceptions raised while resolving connection credentials.

Exception Hierarchy:
    SecretError (base, a connection error)
    └── SecretNotFoundError (missing credential, also a NotFoundError)

Example:
    >>> try:
    ...     password = await provider.get_secret("warehouse")
    ... except SecretNotFoundError as e:
    ...     print(f"Secret {e.key} not found. Try: {e.provider_hint}")
"""

from __future__ import annotations

from ..exceptions import ErrorKind, NotFoundError, SqlConnectionError


class SecretError(SqlConnectionError):
    """Base exception for credential resolution errors."""


class SecretNotFoundError(SecretError, NotFoundError):
    """Exception raised when a requested secret is not found.

    Attributes:
        key: The secret key that was not found
        provider_hint: Optional hint about where to configure the secret
    """

    kind = ErrorKind.NOT_FOUND

    def __init__(self, key: str, provider_hint: str | None = None) -> None:
        """Initialize SecretNotFoundError.

        Args:
            key: The secret key that was not found
            provider_hint: Optional hint about where to configure the secret
        """
        self.key = key
        self.provider_hint = provider_hint

        message = f"Secret '{key}' not found"
        if provider_hint:
            message += f". {provider_hint}"

        super().__init__(message)
