"""
Exception hierarchy for withdrawflow.

All library-specific exceptions inherit from WithdrawFlowError for easy catching.
Business failures reported by collaborators never escape the machines; they are
classified and turned into actions. These exceptions cover misuse (operating a
disposed machine, bad configuration) and the typed errors collaborators raise.
"""

from __future__ import annotations

from typing import Any


class WithdrawFlowError(Exception):
    """
    Base exception for all withdrawflow errors.

    Example:
        >>> try:
        ...     machine.send(action)
        ... except WithdrawFlowError as e:
        ...     print(f"withdrawflow error: {e}")
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class ConfigurationError(WithdrawFlowError):
    """
    Configuration is missing or invalid.

    Raised when:
    - Required collaborator callables are not provided
    - Configuration values fail validation
    """

    pass


class ValidationError(WithdrawFlowError):
    """
    Input validation error.

    Raised when:
    - A collaborator payload is malformed
    - A workflow message cannot be parsed
    """

    pass


class MachineDisposedError(WithdrawFlowError):
    """Raised when a disposed machine is read, sent to, or subscribed to."""

    def __init__(self, message: str = "Machine has been disposed") -> None:
        super().__init__(message)


class ApiError(WithdrawFlowError):
    """
    Typed error raised by a backend collaborator.

    Carries the wire error code so the client can classify it.

    Example:
        >>> raise ApiError(
        ...     "Two-factor code required",
        ...     error_code="WITHDRAWAL_2FA_REQUIRED_TOTP",
        ...     status_code=400,
        ... )
    """

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        status_code: int | None = None,
        result: Any = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.error_code = error_code
        self.status_code = status_code
        self.result = result

    def __str__(self) -> str:
        if self.error_code:
            return f"[{self.error_code}] {self.message}"
        return self.message

    def is_server_error(self) -> bool:
        """Check if this is a server-side error."""
        return self.status_code is not None and 500 <= self.status_code < 600


class NetworkError(WithdrawFlowError):
    """
    Transport failure talking to a collaborator.

    Raised when:
    - HTTP request fails (timeout, connection error)
    - The message channel drops
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        url: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.status_code = status_code
        self.url = url

    def is_rate_limited(self) -> bool:
        """Check if this is a rate limit error."""
        return self.status_code == 429


class OAuthError(WithdrawFlowError):
    """
    Exchange authorization failed.

    `fatal` distinguishes a broken connection (re-authorize from scratch) from
    a failure the user can simply retry.
    """

    def __init__(
        self,
        message: str,
        exchange: str | None = None,
        fatal: bool = False,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.exchange = exchange
        self.fatal = fatal


class QuoteError(WithdrawFlowError):
    """A quotation could not be obtained or has expired."""

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.error_code = error_code


class WithdrawalError(WithdrawFlowError):
    """
    Withdrawal execution failed.

    Stored on withdraw:* error snapshots so views can render the reason.
    """

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        quote_id: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.error_code = error_code
        self.quote_id = quote_id
