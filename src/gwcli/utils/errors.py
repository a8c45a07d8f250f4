"""Custom exceptions for gwcli.

This module provides structured error handling with specific exception types
for the authorization flows and the secret store. All exceptions inherit from
GwcliError.
"""
from typing import Any, Optional


class GwcliError(Exception):
    """Base exception for all gwcli errors.

    Attributes:
        message: Human-readable error description.
        account: Optional account email related to the error.
    """

    def __init__(self, message: str, account: Optional[str] = None) -> None:
        self.message = message
        self.account = account
        super().__init__(self.format_message())

    def format_message(self) -> str:
        """Format the error message, optionally including the account."""
        if self.account:
            return f"{self.message} (account: {self.account})"
        return self.message


# --- Authorization -----------------------------------------------------------


class AuthError(GwcliError):
    """Raised when an authorization attempt fails."""
    pass


class MissingCredentialsError(AuthError):
    """Raised when no OAuth client credentials are configured."""
    pass


class EmptyScopesError(AuthError):
    """Raised when a flow is started without any scopes."""

    def __init__(self) -> None:
        super().__init__("missing scopes")


class UnknownServiceError(AuthError, ValueError):
    """Raised for a service identifier outside the known set."""

    def __init__(self, service: str, expected: list[str]) -> None:
        self.service = service
        self.expected = expected
        super().__init__(
            f"unknown service {service!r} (expected {'|'.join(expected)})"
        )


class StateMismatchError(AuthError):
    """Raised when a callback carries a state other than the issued one.

    This is treated as a possible forgery attempt and is never retried.
    """

    def __init__(self) -> None:
        super().__init__("state mismatch - possible CSRF attack")


class MissingCodeError(AuthError):
    """Raised when a callback has neither an authorization code nor an error."""

    def __init__(self, message: str = "missing authorization code") -> None:
        super().__init__(message)


class InvalidRedirectURLError(AuthError):
    """Raised when a pasted redirect URL cannot be parsed."""

    def __init__(self, value: str) -> None:
        self.value = value
        super().__init__(f"not a redirect URL: {value!r}")


class TokenExchangeError(AuthError):
    """Raised when the token endpoint rejects the authorization code.

    Attributes:
        response: The provider's error payload or description, when available.
    """

    def __init__(self, message: str, response: Any = None) -> None:
        self.response = response
        super().__init__(message)


class NoRefreshTokenError(AuthError):
    """Raised when the provider answers without a refresh token.

    Providers omit the refresh token on repeat consents; retrying with a
    forced consent prompt fixes it.
    """

    def __init__(self) -> None:
        super().__init__("no refresh token received; try again with --force-consent")


class AuthorizationTimeoutError(AuthError, TimeoutError):
    """Raised when no callback arrives before the flow deadline."""

    def __init__(self, timeout: float) -> None:
        self.timeout = timeout
        super().__init__(f"authorization timed out after {timeout:g}s")


class AuthorizationCancelledError(AuthError):
    """Raised when the user denies access or interrupts the flow."""
    pass


class InputReadError(AuthError):
    """Raised when the manual flow cannot read a redirect URL from stdin."""
    pass


class ListenerError(AuthError):
    """Raised when the local callback listener fails to start or serve."""
    pass


# --- Secret store ------------------------------------------------------------


class SecretStoreError(GwcliError):
    """Raised when a secret store operation fails."""
    pass


class NotFoundError(SecretStoreError, KeyError):
    """Raised when no record exists for the requested key."""

    def __init__(self, key: str) -> None:
        self.key = key
        super().__init__(f"secret not found: {key}")

    def __str__(self) -> str:
        return self.message


class BackendUnavailableError(SecretStoreError):
    """Raised when the native credential manager cannot be used."""
    pass


class InvalidBackendError(SecretStoreError, ValueError):
    """Raised for a keyring backend name outside auto|keychain|file."""

    def __init__(self, value: str) -> None:
        self.value = value
        super().__init__(
            f"invalid keyring backend {value!r} (expected auto|keychain|file)"
        )
