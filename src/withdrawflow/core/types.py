"""
Type definitions for withdrawflow.

This module contains the state enums and the value objects carried in machine
contexts. Amounts stay as the strings the backend sent; financial checks are
authoritative server-side.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class FlowStateType(str, Enum):
    """States of the top-level flow machine."""

    IDLE = "idle"

    EXCHANGES_LOADING = "exchanges:loading"
    EXCHANGES_READY = "exchanges:ready"
    EXCHANGES_ERROR = "exchanges:error"

    OAUTH_WAITING = "oauth:waiting"
    OAUTH_PROCESSING = "oauth:processing"
    OAUTH_COMPLETED = "oauth:completed"
    OAUTH_ERROR = "oauth:error"
    OAUTH_FATAL = "oauth:fatal"
    OAUTH_WINDOW_CLOSED_BY_USER = "oauth:window_closed_by_user"

    WALLET_LOADING = "wallet:loading"
    WALLET_READY = "wallet:ready"
    WALLET_ERROR = "wallet:error"

    QUOTE_REQUESTING = "quote:requesting"
    QUOTE_READY = "quote:ready"
    QUOTE_ERROR = "quote:error"
    QUOTE_EXPIRED = "quote:expired"

    WITHDRAW_PROCESSING = "withdraw:processing"
    WITHDRAW_RETRYING = "withdraw:retrying"
    WITHDRAW_ERROR_2FA = "withdraw:error2FA"
    WITHDRAW_ERROR_SMS = "withdraw:errorSMS"
    WITHDRAW_ERROR_KYC = "withdraw:errorKYC"
    WITHDRAW_ERROR_BALANCE = "withdraw:errorBalance"
    WITHDRAW_ERROR_2FA_INVALID = "withdraw:error2FAInvalid"
    WITHDRAW_BLOCKED = "withdraw:blocked"
    WITHDRAW_COMPLETED = "withdraw:completed"
    WITHDRAW_FATAL = "withdraw:fatal"

    FLOW_CANCELLED = "flow:cancelled"

    def is_withdrawal(self) -> bool:
        return self.value.startswith("withdraw:")

    def is_terminal(self) -> bool:
        return self in FLOW_TERMINAL_STATES


FLOW_TERMINAL_STATES = frozenset(
    {
        FlowStateType.WITHDRAW_COMPLETED,
        FlowStateType.WITHDRAW_BLOCKED,
        FlowStateType.WITHDRAW_FATAL,
        FlowStateType.FLOW_CANCELLED,
    }
)


class WithdrawalStateType(str, Enum):
    """States of the nested withdrawal machine."""

    IDLE = "idle"
    PROCESSING = "processing"
    WAITING_FOR_2FA = "waitingFor2FA"
    WAITING_FOR_SMS = "waitingForSMS"
    WAITING_FOR_KYC = "waitingForKYC"
    RETRYING = "retrying"
    COMPLETED = "completed"
    BLOCKED = "blocked"
    FAILED = "failed"

    def is_terminal(self) -> bool:
        return self in (
            WithdrawalStateType.COMPLETED,
            WithdrawalStateType.BLOCKED,
            WithdrawalStateType.FAILED,
        )


class RequiredAction(str, Enum):
    """Extra user input a challenge state is waiting for."""

    TWO_FACTOR = "2fa"
    SMS = "sms"
    KYC = "kyc"


class OAuthErrorType(str, Enum):
    """Whether an OAuth failure can be retried in place."""

    RECOVERABLE = "recoverable"  # Retrying the same authorization step may work
    FATAL = "fatal"  # Connection is broken, authorize from scratch


class PreviewStatus(str, Enum):
    """Status of a wallet preview."""

    LOADING = "loading"
    READY = "ready"
    ERROR_INVALID_CREDENTIALS = "error_invalid_credentials"
    ERROR_NOT_FOUND = "error_not_found"
    ERROR_UNKNOWN = "error_unknown"


class WorkflowType(str, Enum):
    """Workflow kinds delivered over the message channel."""

    WITHDRAW_FUNDS = "withdraw"
    OAUTH2_FLOW = "oauth2"
    CONNECT_EXCHANGE = "connect"


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


def parse_epoch_ms(value: str | int | float | datetime) -> int:
    """
    Normalize a timestamp to epoch milliseconds.

    Accepts epoch milliseconds, ISO-8601 strings (with or without a trailing
    "Z") and datetime objects.
    """
    if isinstance(value, bool):
        raise ValueError(f"Invalid timestamp: {value!r}")
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, datetime):
        return int(value.timestamp() * 1000)
    if isinstance(value, str):
        stripped = value.strip()
        if stripped.isdigit():
            return int(stripped)
        parsed = datetime.fromisoformat(stripped.replace("Z", "+00:00"))
        return int(parsed.timestamp() * 1000)
    raise ValueError(f"Invalid timestamp: {value!r}")


def _optional_str(value: Any) -> str | None:
    return None if value is None else str(value)


@dataclass(frozen=True)
class WalletNetwork:
    """A network an asset can be withdrawn on."""

    id: str
    name: str
    display_name: str
    min_withdrawal: str
    asset_name: str
    max_withdrawal: str | None = None
    address_regex: str | None = None
    chain_id: str | None = None
    token_address: str | None = None
    contract_address: str | None = None
    contract_address_verified: bool = True

    @classmethod
    def from_api_response(cls, data: dict[str, Any]) -> WalletNetwork:
        verified = data.get("contractAddressVerified")
        return cls(
            id=data["id"],
            name=data["name"],
            display_name=data.get("displayName", data["name"]),
            min_withdrawal=str(data.get("minWithdrawal", "0")),
            asset_name=data.get("assetName", ""),
            max_withdrawal=_optional_str(data.get("maxWithdrawal")),
            address_regex=data.get("addressRegex"),
            chain_id=_optional_str(data.get("chainId")),
            token_address=data.get("tokenAddress"),
            contract_address=data.get("contractAddress"),
            contract_address_verified=True if verified is None else bool(verified),
        )


@dataclass(frozen=True)
class WalletBalance:
    """Withdrawable balance of one asset."""

    asset: str
    balance: str
    networks: tuple[WalletNetwork, ...] = ()
    balance_in_fiat: str | None = None
    extra: dict[str, Any] | None = None

    @classmethod
    def from_api_response(cls, data: dict[str, Any]) -> WalletBalance:
        amount = data.get("amount", data.get("balance"))
        fiat = data.get("amountInFiat", data.get("balanceInFiat"))
        return cls(
            asset=data["asset"],
            balance=str(amount),
            networks=tuple(
                WalletNetwork.from_api_response(n) for n in data.get("networks") or []
            ),
            # 0 is a meaningful fiat amount
            balance_in_fiat=_optional_str(fiat),
            extra=data.get("extra"),
        )


def balances_from_response(response: Any) -> list[WalletBalance]:
    """
    Parse a withdrawable-balance response.

    Raises:
        ValueError: If the response carries no `balances` list
    """
    balances = response.get("balances") if isinstance(response, dict) else None
    if not isinstance(balances, list):
        raise ValueError("No balance data returned")
    return [WalletBalance.from_api_response(b) for b in balances]


@dataclass(frozen=True)
class QuoteRequest:
    """What the user asked a quote for, kept verbatim for refreshes."""

    asset: str
    amount: str
    destination_address: str
    network: str | None = None
    tag: str | None = None
    include_fee: bool | None = None

    def to_api_params(self, default_include_fee: bool = True) -> dict[str, Any]:
        params: dict[str, Any] = {
            "asset": self.asset,
            "amount": self.amount,
            "address": self.destination_address,
            "includeFee": default_include_fee if self.include_fee is None else self.include_fee,
        }
        if self.network is not None:
            params["network"] = self.network
        if self.tag is not None:
            params["tag"] = self.tag
        return params


@dataclass(frozen=True)
class Quote:
    """
    A time-boxed price/fee offer for a withdrawal.

    Immutable once received. `expires_at` is epoch milliseconds.
    """

    id: str
    asset: str
    amount: str
    estimated_fee: str
    estimated_total: str
    expires_at: int
    amount_with_fee_in_fiat: str | None = None
    amount_no_fee_in_fiat: str | None = None
    estimated_fee_in_fiat: str | None = None
    additional_info: dict[str, Any] | None = None

    @classmethod
    def from_api_response(cls, data: dict[str, Any]) -> Quote:
        return cls(
            id=data["id"],
            asset=data["asset"],
            amount=str(data.get("amountNoFee", data.get("amount"))),
            estimated_fee=str(data["estimatedFee"]),
            estimated_total=str(data["estimatedTotal"]),
            expires_at=parse_epoch_ms(data["expiresAt"]),
            amount_with_fee_in_fiat=_optional_str(data.get("amountWithFeeInFiat")),
            amount_no_fee_in_fiat=_optional_str(data.get("amountNoFeeInFiat")),
            estimated_fee_in_fiat=_optional_str(data.get("estimatedFeeInFiat")),
            additional_info=data.get("additionalInfo"),
        )

    def expires_in_ms(self, now: int | None = None) -> int:
        """Milliseconds until expiry (negative once expired)."""
        return self.expires_at - (now_ms() if now is None else now)

    def is_expired(self, now: int | None = None) -> bool:
        return self.expires_in_ms(now) <= 0


@dataclass(frozen=True)
class WithdrawalInfo:
    """Outcome of a completed withdrawal."""

    id: str
    status: str
    transaction_id: str | None = None


@dataclass(frozen=True)
class ErrorDetails:
    """Extra data attached to a flow error."""

    valid_2fa_methods: tuple[str, ...] | None = None


@dataclass(frozen=True)
class PopupOptions:
    """Geometry hints for the OAuth popup."""

    title: str | None = None
    width: int | None = None
    height: int | None = None
    left: int | None = None
    top: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {k: v for k, v in self.__dict__.items() if v is not None}


@dataclass
class WalletPreview:
    """Preview state of one wallet (see WalletPreviewManager)."""

    wallet_id: str
    exchange: str
    status: PreviewStatus
    last_updated: int
    balances: list[WalletBalance] = field(default_factory=list)
    error: Exception | None = None
