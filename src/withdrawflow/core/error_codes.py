"""
Backend error codes and their classification.

Collaborators report failures in several shapes (typed ApiError, plain dicts,
httpx status errors whose JSON body carries the code, serialized workflow
errors). This module pulls the wire code out of any of them and maps it,
through one table, onto the closed set of withdrawal error kinds the flow
machine understands. Codes outside the table classify as UNKNOWN and end in
withdraw:fatal.
"""

from __future__ import annotations

import asyncio
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any

import httpx

from withdrawflow.core.exceptions import ApiError, NetworkError, QuoteError


class ErrorCode(str, Enum):
    """Error codes used by the API (sync) and workflow messages (async)."""

    # Generic
    GENERIC_NOT_FOUND = "GENERIC_NOT_FOUND"
    GENERIC_UNAUTHORIZED = "GENERIC_UNAUTHORIZED"
    GENERIC_INTERNAL_SERVER_ERROR = "GENERIC_INTERNAL_SERVER_ERROR"
    GENERIC_VALIDATION_ERROR = "GENERIC_VALIDATION_ERROR"
    GENERIC_INVALID_REQUEST = "GENERIC_INVALID_REQUEST"

    # API keys
    APIKEY_INSUFFICIENT_PERMISSIONS = "APIKEY_INSUFFICIENT_PERMISSIONS"

    # Wallet
    WALLET_NOT_FOUND = "WALLET_NOT_FOUND"
    WALLET_INVALID_CREDENTIALS = "WALLET_INVALID_CREDENTIALS"

    # Quote
    QUOTE_NOT_FOUND = "QUOTE_NOT_FOUND"
    QUOTE_EXPIRED = "QUOTE_EXPIRED"

    # Withdrawal - balance
    WITHDRAWAL_INSUFFICIENT_BALANCE = "WITHDRAWAL_INSUFFICIENT_BALANCE"
    WITHDRAWAL_INSUFFICIENT_BALANCE_FOR_FEE = "WITHDRAWAL_INSUFFICIENT_BALANCE_FOR_FEE"

    # Withdrawal - address
    WITHDRAWAL_INVALID_ADDRESS = "WITHDRAWAL_INVALID_ADDRESS"
    WITHDRAWAL_NETWORK_NOT_SUPPORTED = "WITHDRAWAL_NETWORK_NOT_SUPPORTED"
    WITHDRAWAL_TOO_MANY_ADDRESSES = "WITHDRAWAL_TOO_MANY_ADDRESSES"

    # Withdrawal - amount
    WITHDRAWAL_AMOUNT_BELOW_MINIMUM = "WITHDRAWAL_AMOUNT_BELOW_MINIMUM"
    WITHDRAWAL_AMOUNT_ABOVE_MAXIMUM = "WITHDRAWAL_AMOUNT_ABOVE_MAXIMUM"

    # Withdrawal - asset / provider
    WITHDRAWAL_ASSET_NOT_SUPPORTED = "WITHDRAWAL_ASSET_NOT_SUPPORTED"
    WITHDRAWAL_PROVIDER_ERROR = "WITHDRAWAL_PROVIDER_ERROR"

    # Withdrawal - 2FA
    WITHDRAWAL_2FA_REQUIRED_TOTP = "WITHDRAWAL_2FA_REQUIRED_TOTP"
    WITHDRAWAL_2FA_REQUIRED_SMS = "WITHDRAWAL_2FA_REQUIRED_SMS"
    WITHDRAWAL_2FA_REQUIRED_YUBIKEY = "WITHDRAWAL_2FA_REQUIRED_YUBIKEY"
    WITHDRAWAL_2FA_REQUIRED_PASSPHRASE = "WITHDRAWAL_2FA_REQUIRED_PASSPHRASE"
    WITHDRAWAL_2FA_INVALID = "WITHDRAWAL_2FA_INVALID"
    WITHDRAWAL_2FA_METHOD_NOT_SUPPORTED = "WITHDRAWAL_2FA_METHOD_NOT_SUPPORTED"

    # Withdrawal - verification
    WITHDRAWAL_KYC_REQUIRED = "WITHDRAWAL_KYC_REQUIRED"
    WITHDRAWAL_EMAIL_UNVERIFIED = "WITHDRAWAL_EMAIL_UNVERIFIED"

    # Withdrawal - rate limiting
    WITHDRAWAL_RATE_LIMIT_EXCEEDED = "WITHDRAWAL_RATE_LIMIT_EXCEEDED"

    # OAuth
    OAUTH_AUTHORIZATION_FAILED = "OAUTH_AUTHORIZATION_FAILED"
    OAUTH_TOKEN_EXCHANGE_FAILED = "OAUTH_TOKEN_EXCHANGE_FAILED"
    OAUTH_INVALID_STATE = "OAUTH_INVALID_STATE"
    OAUTH_INSUFFICIENT_SCOPE = "OAUTH_INSUFFICIENT_SCOPE"

    @classmethod
    def parse(cls, value: Any) -> ErrorCode | None:
        """Return the member for a wire string, None if it is not a known code."""
        if isinstance(value, cls):
            return value
        if not isinstance(value, str):
            return None
        try:
            return cls(value)
        except ValueError:
            return None


class ErrorCategory(str, Enum):
    """How the flow reacts to an error."""

    RECOVERABLE = "recoverable"  # Same step may be retried
    FATAL = "fatal"  # New flow / new connection required
    CHALLENGE = "challenge"  # Extra user input required
    TERMINAL_BUSINESS = "terminal_business"  # Cannot proceed with this quote/account


class WithdrawalErrorKind(str, Enum):
    """Closed set of withdrawal failures the flow machine can react to."""

    REQUIRES_2FA = "requires_2fa"
    REQUIRES_SMS = "requires_sms"
    REQUIRES_KYC = "requires_kyc"
    INVALID_2FA = "invalid_2fa"
    TWO_FA_METHOD_NOT_SUPPORTED = "2fa_method_not_supported"
    INSUFFICIENT_BALANCE = "insufficient_balance"
    QUOTE_EXPIRED = "quote_expired"
    INVALID_ADDRESS = "invalid_address"
    AMOUNT_BELOW_MINIMUM = "amount_below_minimum"
    AMOUNT_ABOVE_MAXIMUM = "amount_above_maximum"
    NETWORK_NOT_SUPPORTED = "network_not_supported"
    TRANSIENT = "transient"
    UNKNOWN = "unknown"

    @property
    def category(self) -> ErrorCategory:
        return _KIND_CATEGORIES[self]


# Wire code -> withdrawal error kind. Anything missing here is UNKNOWN.
WITHDRAWAL_ERROR_KINDS: dict[ErrorCode, WithdrawalErrorKind] = {
    ErrorCode.WITHDRAWAL_2FA_REQUIRED_TOTP: WithdrawalErrorKind.REQUIRES_2FA,
    ErrorCode.WITHDRAWAL_2FA_REQUIRED_SMS: WithdrawalErrorKind.REQUIRES_SMS,
    ErrorCode.WITHDRAWAL_KYC_REQUIRED: WithdrawalErrorKind.REQUIRES_KYC,
    ErrorCode.WITHDRAWAL_2FA_INVALID: WithdrawalErrorKind.INVALID_2FA,
    ErrorCode.WITHDRAWAL_2FA_METHOD_NOT_SUPPORTED: WithdrawalErrorKind.TWO_FA_METHOD_NOT_SUPPORTED,
    ErrorCode.WITHDRAWAL_INSUFFICIENT_BALANCE: WithdrawalErrorKind.INSUFFICIENT_BALANCE,
    ErrorCode.WITHDRAWAL_INSUFFICIENT_BALANCE_FOR_FEE: WithdrawalErrorKind.INSUFFICIENT_BALANCE,
    ErrorCode.QUOTE_EXPIRED: WithdrawalErrorKind.QUOTE_EXPIRED,
    ErrorCode.WITHDRAWAL_INVALID_ADDRESS: WithdrawalErrorKind.INVALID_ADDRESS,
    ErrorCode.WITHDRAWAL_AMOUNT_BELOW_MINIMUM: WithdrawalErrorKind.AMOUNT_BELOW_MINIMUM,
    ErrorCode.WITHDRAWAL_AMOUNT_ABOVE_MAXIMUM: WithdrawalErrorKind.AMOUNT_ABOVE_MAXIMUM,
    ErrorCode.WITHDRAWAL_NETWORK_NOT_SUPPORTED: WithdrawalErrorKind.NETWORK_NOT_SUPPORTED,
    ErrorCode.WITHDRAWAL_RATE_LIMIT_EXCEEDED: WithdrawalErrorKind.TRANSIENT,
}

_KIND_CATEGORIES: dict[WithdrawalErrorKind, ErrorCategory] = {
    WithdrawalErrorKind.REQUIRES_2FA: ErrorCategory.CHALLENGE,
    WithdrawalErrorKind.REQUIRES_SMS: ErrorCategory.CHALLENGE,
    WithdrawalErrorKind.REQUIRES_KYC: ErrorCategory.CHALLENGE,
    WithdrawalErrorKind.INVALID_2FA: ErrorCategory.CHALLENGE,
    WithdrawalErrorKind.TWO_FA_METHOD_NOT_SUPPORTED: ErrorCategory.FATAL,
    WithdrawalErrorKind.INSUFFICIENT_BALANCE: ErrorCategory.TERMINAL_BUSINESS,
    WithdrawalErrorKind.QUOTE_EXPIRED: ErrorCategory.RECOVERABLE,
    WithdrawalErrorKind.INVALID_ADDRESS: ErrorCategory.FATAL,
    WithdrawalErrorKind.AMOUNT_BELOW_MINIMUM: ErrorCategory.FATAL,
    WithdrawalErrorKind.AMOUNT_ABOVE_MAXIMUM: ErrorCategory.FATAL,
    WithdrawalErrorKind.NETWORK_NOT_SUPPORTED: ErrorCategory.FATAL,
    WithdrawalErrorKind.TRANSIENT: ErrorCategory.RECOVERABLE,
    WithdrawalErrorKind.UNKNOWN: ErrorCategory.FATAL,
}

# Human-readable messages for fatal kinds that carry no useful server text
FATAL_KIND_MESSAGES: dict[WithdrawalErrorKind, str] = {
    WithdrawalErrorKind.INVALID_ADDRESS: "Invalid destination address",
    WithdrawalErrorKind.AMOUNT_BELOW_MINIMUM: "Amount below minimum",
    WithdrawalErrorKind.AMOUNT_ABOVE_MAXIMUM: "Amount above maximum",
    WithdrawalErrorKind.NETWORK_NOT_SUPPORTED: "Network not supported",
}

QUOTATION_ERROR_MESSAGES: dict[ErrorCode, str] = {
    ErrorCode.WITHDRAWAL_INSUFFICIENT_BALANCE: "Insufficient balance",
    ErrorCode.WITHDRAWAL_INSUFFICIENT_BALANCE_FOR_FEE: "Insufficient balance",
    ErrorCode.WITHDRAWAL_AMOUNT_BELOW_MINIMUM: "Amount below minimum",
    ErrorCode.WITHDRAWAL_AMOUNT_ABOVE_MAXIMUM: "Amount above maximum",
    ErrorCode.WITHDRAWAL_INVALID_ADDRESS: "Invalid destination address",
    ErrorCode.WITHDRAWAL_NETWORK_NOT_SUPPORTED: "Network not supported",
}

# OAuth codes meaning the connection itself is broken
FATAL_OAUTH_CODES = frozenset(
    {
        ErrorCode.OAUTH_TOKEN_EXCHANGE_FAILED,
        ErrorCode.OAUTH_INSUFFICIENT_SCOPE,
    }
)

_CODE_FIELDS = ("errorCode", "type", "code")


@dataclass(frozen=True)
class ErrorTypeInfo:
    """Known code (validated) plus whatever raw type string was present."""

    known_code: ErrorCode | None
    raw_type: str | None


def _response_body(error: httpx.HTTPStatusError) -> Any:
    try:
        return error.response.json()
    except ValueError:
        return None


def _as_mapping(error: Any) -> Mapping[str, Any] | None:
    """Project the error onto the dict shape the extractors read."""
    if isinstance(error, Mapping):
        return error
    if isinstance(error, httpx.HTTPStatusError):
        body = _response_body(error)
        return body if isinstance(body, Mapping) else None
    return None


def _raw_code(data: Mapping[str, Any]) -> Any:
    for name in _CODE_FIELDS:
        value = data.get(name)
        if isinstance(value, str) and value:
            return value
    nested = data.get("error")
    if isinstance(nested, Mapping):
        return _raw_code(nested)
    response = data.get("response")
    if isinstance(response, Mapping) and isinstance(response.get("data"), Mapping):
        return _raw_code(response["data"])
    return None


def extract_error_code(error: Any) -> ErrorCode | None:
    """
    Extract a known error code from any supported error shape.

    Checks, in order: ApiError.error_code, the `errorCode`, `type` and `code`
    fields, a nested `error` object, and a nested `response.data` body (also
    the JSON body of an httpx.HTTPStatusError).

    Returns:
        The ErrorCode, or None when no known code is present
    """
    if error is None:
        return None

    if isinstance(error, ApiError):
        return ErrorCode.parse(error.error_code)

    data = _as_mapping(error)
    if data is not None:
        for name in _CODE_FIELDS:
            code = ErrorCode.parse(data.get(name))
            if code is not None:
                return code
        nested = data.get("error")
        if isinstance(nested, Mapping):
            return extract_error_code(nested)
        response = data.get("response")
        if isinstance(response, Mapping) and isinstance(response.get("data"), Mapping):
            return extract_error_code(response["data"])
        return None

    for attr in ("error_code", "code"):
        code = ErrorCode.parse(getattr(error, attr, None))
        if code is not None:
            return code
    return None


def extract_error_type_info(error: Any) -> ErrorTypeInfo:
    """Return the known code and the raw type string, even if unknown."""
    known = extract_error_code(error)
    if known is not None:
        return ErrorTypeInfo(known_code=known, raw_type=known.value)

    if isinstance(error, ApiError):
        return ErrorTypeInfo(known_code=None, raw_type=error.error_code or None)

    data = _as_mapping(error)
    if data is None:
        return ErrorTypeInfo(known_code=None, raw_type=None)
    return ErrorTypeInfo(known_code=None, raw_type=_raw_code(data))


def extract_error_result(error: Any) -> Any:
    """Extract the `result` payload attached to an error, if any."""
    if error is None:
        return None
    if isinstance(error, ApiError):
        return error.result

    data = _as_mapping(error)
    if data is None:
        return getattr(error, "result", None)

    if "result" in data:
        return data["result"]
    response = data.get("response")
    if isinstance(response, Mapping) and isinstance(response.get("data"), Mapping):
        result = response["data"].get("result")
        if result:
            return result
    original = data.get("originalError")
    if isinstance(original, Mapping) and "result" in original:
        return original["result"]
    return None


def error_message(error: Any, default: str) -> str:
    """Best human-readable message for an error in any shape."""
    if isinstance(error, BaseException):
        message = getattr(error, "message", None) or str(error)
        return message or default

    data = _as_mapping(error)
    if data is not None:
        for name in ("error", "message"):
            value = data.get(name)
            if isinstance(value, str) and value:
                return value
    if isinstance(error, str) and error:
        return error
    return default


def as_exception(error: Any, default: str) -> Exception:
    """Return error itself if it is an exception, else wrap its message."""
    if isinstance(error, Exception):
        return error
    return Exception(error_message(error, default))


def is_transport_error(error: Any) -> bool:
    """True for failures that never reached the backend's business logic."""
    return isinstance(error, (httpx.TransportError, NetworkError, asyncio.TimeoutError))


def classify_withdrawal_error(error: Any) -> WithdrawalErrorKind:
    """Map a withdrawal execution error onto its kind."""
    code = extract_error_code(error)
    if code is not None:
        return WITHDRAWAL_ERROR_KINDS.get(code, WithdrawalErrorKind.UNKNOWN)
    if is_transport_error(error):
        return WithdrawalErrorKind.TRANSIENT
    return WithdrawalErrorKind.UNKNOWN


def is_recoverable_error(error: Any) -> bool:
    """Check if the user can continue the same withdrawal after this error."""
    return classify_withdrawal_error(error).category in (
        ErrorCategory.RECOVERABLE,
        ErrorCategory.CHALLENGE,
        ErrorCategory.TERMINAL_BUSINESS,
    )


def is_fatal_error(error: Any) -> bool:
    return not is_recoverable_error(error)


def quotation_error(error: Any) -> QuoteError:
    """Translate a quotation failure into a QuoteError with a fixed message."""
    code = extract_error_code(error)
    message = QUOTATION_ERROR_MESSAGES.get(code) if code is not None else None
    if message is None:
        message = error_message(error, "Failed to get quote")
    return QuoteError(message, error_code=code.value if code is not None else None)


def is_fatal_oauth_error(error: Any) -> bool:
    """True when the OAuth failure requires authorizing from scratch."""
    return extract_error_code(error) in FATAL_OAUTH_CODES


def error_status_code(error: Any) -> int | None:
    """HTTP status attached to an error, if any shape carries one."""
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code
    status = getattr(error, "status_code", None)
    if isinstance(status, int):
        return status
    if isinstance(error, Mapping):
        for name in ("status", "statusCode"):
            value = error.get(name)
            if isinstance(value, int):
                return value
    return None


def is_wallet_not_found_error(error: Any) -> bool:
    return (
        extract_error_code(error) == ErrorCode.WALLET_NOT_FOUND
        or error_status_code(error) == 404
    )
