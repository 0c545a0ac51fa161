"""
Action vocabularies for the flow and withdrawal machines.

Each action is a frozen dataclass whose class-level `type` is the key used in
the transition tables. SUBMIT_2FA and SUBMIT_SMS belong to both vocabularies:
the flow machine forwards them unchanged to its nested withdrawal machine.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, ClassVar

from withdrawflow.core.types import Quote, WalletBalance
from withdrawflow.machines.base import Action

# --- Withdrawal machine -----------------------------------------------------


@dataclass(frozen=True)
class Execute(Action):
    type: ClassVar[str] = "EXECUTE"
    quote_id: str
    wallet_id: str


@dataclass(frozen=True)
class Requires2FA(Action):
    type: ClassVar[str] = "REQUIRES_2FA"


@dataclass(frozen=True)
class RequiresSMS(Action):
    type: ClassVar[str] = "REQUIRES_SMS"


@dataclass(frozen=True)
class RequiresKYC(Action):
    type: ClassVar[str] = "REQUIRES_KYC"


@dataclass(frozen=True)
class Submit2FA(Action):
    type: ClassVar[str] = "SUBMIT_2FA"
    code: str


@dataclass(frozen=True)
class SubmitSMS(Action):
    type: ClassVar[str] = "SUBMIT_SMS"
    code: str


@dataclass(frozen=True)
class Success(Action):
    type: ClassVar[str] = "SUCCESS"
    transaction_id: str | None = None


@dataclass(frozen=True)
class Fail(Action):
    type: ClassVar[str] = "FAIL"
    error: Exception


@dataclass(frozen=True)
class Retry(Action):
    type: ClassVar[str] = "RETRY"


@dataclass(frozen=True)
class Blocked(Action):
    type: ClassVar[str] = "BLOCKED"
    reason: str


# --- Flow machine: exchanges / OAuth / wallet ---------------------------------


@dataclass(frozen=True)
class LoadExchanges(Action):
    type: ClassVar[str] = "LOAD_EXCHANGES"


@dataclass(frozen=True)
class ExchangesLoaded(Action):
    type: ClassVar[str] = "EXCHANGES_LOADED"
    exchanges: list[Any]


@dataclass(frozen=True)
class ExchangesFailed(Action):
    type: ClassVar[str] = "EXCHANGES_FAILED"
    error: Exception


@dataclass(frozen=True)
class StartOAuth(Action):
    type: ClassVar[str] = "START_OAUTH"
    exchange: str
    wallet_id: str
    idem: str


@dataclass(frozen=True)
class OAuthWindowOpened(Action):
    type: ClassVar[str] = "OAUTH_WINDOW_OPENED"


@dataclass(frozen=True)
class OAuthCompleted(Action):
    type: ClassVar[str] = "OAUTH_COMPLETED"
    wallet_id: str | None = None
    exchange: str | None = None


@dataclass(frozen=True)
class OAuthFailed(Action):
    type: ClassVar[str] = "OAUTH_FAILED"
    error: Exception


@dataclass(frozen=True)
class OAuthFatal(Action):
    type: ClassVar[str] = "OAUTH_FATAL"
    error: Exception


@dataclass(frozen=True)
class OAuthWindowClosedByUser(Action):
    type: ClassVar[str] = "OAUTH_WINDOW_CLOSED_BY_USER"
    error: Exception


@dataclass(frozen=True)
class LoadWallet(Action):
    type: ClassVar[str] = "LOAD_WALLET"


@dataclass(frozen=True)
class WalletLoaded(Action):
    type: ClassVar[str] = "WALLET_LOADED"
    balances: list[WalletBalance]


@dataclass(frozen=True)
class WalletFailed(Action):
    type: ClassVar[str] = "WALLET_FAILED"
    error: Exception


# --- Flow machine: quotes -----------------------------------------------------


@dataclass(frozen=True)
class RequestQuote(Action):
    type: ClassVar[str] = "REQUEST_QUOTE"
    asset: str
    amount: str
    destination_address: str
    network: str | None = None
    tag: str | None = None
    include_fee: bool | None = None


@dataclass(frozen=True)
class QuoteReceived(Action):
    type: ClassVar[str] = "QUOTE_RECEIVED"
    quote: Quote


@dataclass(frozen=True)
class QuoteFailed(Action):
    type: ClassVar[str] = "QUOTE_FAILED"
    error: Exception


@dataclass(frozen=True)
class QuoteExpired(Action):
    type: ClassVar[str] = "QUOTE_EXPIRED"


# --- Flow machine: withdrawal -------------------------------------------------


@dataclass(frozen=True)
class StartWithdrawal(Action):
    type: ClassVar[str] = "START_WITHDRAWAL"
    quote_id: str


@dataclass(frozen=True)
class WithdrawalRequires2FA(Action):
    type: ClassVar[str] = "WITHDRAWAL_REQUIRES_2FA"


@dataclass(frozen=True)
class WithdrawalRequiresSMS(Action):
    type: ClassVar[str] = "WITHDRAWAL_REQUIRES_SMS"


@dataclass(frozen=True)
class WithdrawalRequiresKYC(Action):
    type: ClassVar[str] = "WITHDRAWAL_REQUIRES_KYC"


@dataclass(frozen=True)
class Withdrawal2FAInvalid(Action):
    type: ClassVar[str] = "WITHDRAWAL_2FA_INVALID"


@dataclass(frozen=True)
class Withdrawal2FAMethodNotSupported(Action):
    type: ClassVar[str] = "WITHDRAWAL_2FA_METHOD_NOT_SUPPORTED"
    valid_2fa_methods: tuple[str, ...] | None = None


@dataclass(frozen=True)
class WithdrawalInsufficientBalance(Action):
    type: ClassVar[str] = "WITHDRAWAL_INSUFFICIENT_BALANCE"


@dataclass(frozen=True)
class WithdrawalProgress(Action):
    type: ClassVar[str] = "WITHDRAWAL_PROGRESS"
    step: str


@dataclass(frozen=True)
class WithdrawalSuccess(Action):
    type: ClassVar[str] = "WITHDRAWAL_SUCCESS"
    transaction_id: str | None = None


@dataclass(frozen=True)
class WithdrawalCompleted(Action):
    type: ClassVar[str] = "WITHDRAWAL_COMPLETED"
    transaction_id: str | None = None


@dataclass(frozen=True)
class WithdrawalFailed(Action):
    type: ClassVar[str] = "WITHDRAWAL_FAILED"
    error: Exception


@dataclass(frozen=True)
class WithdrawalBlocked(Action):
    type: ClassVar[str] = "WITHDRAWAL_BLOCKED"
    reason: str


@dataclass(frozen=True)
class WithdrawalFatal(Action):
    type: ClassVar[str] = "WITHDRAWAL_FATAL"
    error: Exception


@dataclass(frozen=True)
class RetryWithdrawal(Action):
    type: ClassVar[str] = "RETRY_WITHDRAWAL"


@dataclass(frozen=True)
class CancelFlow(Action):
    type: ClassVar[str] = "CANCEL_FLOW"
