"""
Flow machine.

Sequences exchange discovery, OAuth, wallet loading, quote negotiation and
withdrawal for one withdrawal journey. On START_WITHDRAWAL it creates and
exclusively owns a WithdrawalMachine; the withdrawal vocabulary is forwarded
to that machine and its resulting state is projected onto `withdraw:*`.

Rules worth knowing:

- CANCEL_FLOW is accepted from every non-terminal state.
- `withdraw:completed`, `withdraw:blocked`, `withdraw:fatal` and
  `flow:cancelled` are terminal; start over with a new machine.
- QUOTE_EXPIRED has no effect once a withdrawal has started.
- OAuth outcomes are first-wins: after one lands, the others are ignored.
- WITHDRAWAL_BLOCKED is projected in the same send() call that delivers it.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass, replace
from typing import Any

from withdrawflow.core.config import DEFAULT_AUTO_REFRESH_QUOTATION, DEFAULT_MAX_RETRY_ATTEMPTS
from withdrawflow.core.error_codes import ErrorCode
from withdrawflow.core.exceptions import QuoteError, WithdrawalError
from withdrawflow.core.types import (
    FLOW_TERMINAL_STATES,
    ErrorDetails,
    FlowStateType,
    OAuthErrorType,
    Quote,
    QuoteRequest,
    WalletBalance,
    WithdrawalInfo,
    WithdrawalStateType,
)
from withdrawflow.idempotency import IdGenerator, generate_idempotency_key
from withdrawflow.machines import actions as a
from withdrawflow.machines.base import Action, Listener, Machine, Snapshot, Transition, Unsubscribe
from withdrawflow.machines.withdrawal import WithdrawalMachine, WithdrawalSnapshot

State = FlowStateType
W = WithdrawalStateType

# Nested machine state -> flow state
WITHDRAWAL_PROJECTION: dict[WithdrawalStateType, FlowStateType] = {
    W.PROCESSING: State.WITHDRAW_PROCESSING,
    W.WAITING_FOR_2FA: State.WITHDRAW_ERROR_2FA,
    W.WAITING_FOR_SMS: State.WITHDRAW_ERROR_SMS,
    W.WAITING_FOR_KYC: State.WITHDRAW_ERROR_KYC,
    W.RETRYING: State.WITHDRAW_RETRYING,
    W.COMPLETED: State.WITHDRAW_COMPLETED,
    W.BLOCKED: State.WITHDRAW_BLOCKED,
    W.FAILED: State.WITHDRAW_FATAL,
}

_CHALLENGE_ERRORS: dict[FlowStateType, tuple[str, ErrorCode]] = {
    State.WITHDRAW_ERROR_2FA: (
        "Two-factor authentication code required",
        ErrorCode.WITHDRAWAL_2FA_REQUIRED_TOTP,
    ),
    State.WITHDRAW_ERROR_SMS: ("SMS code required", ErrorCode.WITHDRAWAL_2FA_REQUIRED_SMS),
    State.WITHDRAW_ERROR_KYC: (
        "Identity verification (KYC) required",
        ErrorCode.WITHDRAWAL_KYC_REQUIRED,
    ),
}

# Withdrawal states in which the flow still talks to the nested machine
ACTIVE_WITHDRAWAL_STATES = frozenset(
    {
        State.WITHDRAW_PROCESSING,
        State.WITHDRAW_RETRYING,
        State.WITHDRAW_ERROR_2FA,
        State.WITHDRAW_ERROR_SMS,
        State.WITHDRAW_ERROR_KYC,
        State.WITHDRAW_ERROR_BALANCE,
        State.WITHDRAW_ERROR_2FA_INVALID,
    }
)


@dataclass(frozen=True)
class FlowContext:
    """Data carried by the flow machine."""

    org_id: str
    project_id: str
    exchange: str | None = None
    wallet_id: str | None = None
    idempotency_key: str | None = None
    topic_name: str | None = None
    exchanges: list[Any] | None = None
    wallet_balances: list[WalletBalance] | None = None
    quote: Quote | None = None
    last_quote_request: QuoteRequest | None = None
    withdrawal: WithdrawalInfo | None = None
    withdrawal_step: str | None = None
    error_details: ErrorDetails | None = None
    oauth_error_type: OAuthErrorType | None = None
    invalid_2fa_attempts: int = 0
    retry_attempts: int = 0
    max_retry_attempts: int = DEFAULT_MAX_RETRY_ATTEMPTS
    auto_refresh_quotation: bool = DEFAULT_AUTO_REFRESH_QUOTATION


FlowSnapshot = Snapshot[FlowStateType, FlowContext]


def transition_to(
    state: FlowStateType,
    context: FlowContext,
    error: Exception | None = None,
    **updates: Any,
) -> FlowSnapshot:
    """Build the next snapshot, applying context updates if given."""
    if updates:
        context = replace(context, **updates)
    return Snapshot(state, context, error)


def two_factor_methods_message(methods: Iterable[str] | None) -> str:
    """Describe the 2FA methods the exchange accepts."""
    methods = list(methods or [])
    if not methods:
        return "Please make sure your Exchange account has 2FA enabled."
    if len(methods) == 1:
        return f"{methods[0]} is the only supported two-factor authentication method."
    if len(methods) == 2:
        return (
            f"{methods[0]} and {methods[1]} are the only supported "
            "two-factor authentication methods."
        )
    return (
        f"{', '.join(methods[:-1])}, and {methods[-1]} are the only supported "
        "two-factor authentication methods."
    )


class FlowMachine(Machine[FlowStateType, FlowContext]):
    """
    Top-level machine for one withdrawal journey.

    Example:
        >>> flow = FlowMachine(org_id="org-1", project_id="proj-1")
        >>> flow.send(StartOAuth(exchange="coinbase", wallet_id="w1", idem="idem1"))
        True
        >>> flow.get_state().state
        <FlowStateType.OAUTH_WAITING: 'oauth:waiting'>
    """

    def __init__(
        self,
        org_id: str,
        project_id: str,
        max_retry_attempts: int = DEFAULT_MAX_RETRY_ATTEMPTS,
        auto_refresh_quotation: bool = DEFAULT_AUTO_REFRESH_QUOTATION,
        make_key: IdGenerator = generate_idempotency_key,
    ) -> None:
        """
        Initialize an idle flow machine.

        Args:
            org_id: Organization the journey belongs to
            project_id: Project the journey belongs to
            max_retry_attempts: Retry budget handed to the withdrawal machine
            auto_refresh_quotation: Whether the client refreshes expired quotes
            make_key: Idempotency key generator for withdrawal attempts
        """
        self._make_key = make_key
        self._withdrawal: WithdrawalMachine | None = None
        self._cancel_hooks: list[Callable[[], None]] = []
        initial = Snapshot(
            State.IDLE,
            FlowContext(
                org_id=org_id,
                project_id=project_id,
                max_retry_attempts=max_retry_attempts,
                auto_refresh_quotation=auto_refresh_quotation,
            ),
        )
        super().__init__(initial, self._build_transitions(), name="flow")

    # --- Nested machine access (read-only for callers) -------------------------

    @property
    def has_withdrawal(self) -> bool:
        return self._withdrawal is not None

    def get_withdrawal_state(self) -> WithdrawalSnapshot | None:
        """Snapshot of the nested withdrawal machine, None before START_WITHDRAWAL."""
        self._assert_not_disposed()
        if self._withdrawal is None:
            return None
        return self._withdrawal.get_state()

    def subscribe_withdrawal(self, listener: Listener) -> Unsubscribe:
        """Observe the nested withdrawal machine. Returns a no-op if there is none."""
        self._assert_not_disposed()
        if self._withdrawal is None:
            return lambda: None
        return self._withdrawal.subscribe(listener)

    def on_cancel(self, hook: Callable[[], None]) -> Unsubscribe:
        """
        Register a callback run once when the flow enters `flow:cancelled`.

        Used by the client to close the OAuth popup and drop subscriptions.
        """
        self._assert_not_disposed()
        self._cancel_hooks.append(hook)

        def remove() -> None:
            if hook in self._cancel_hooks:
                self._cancel_hooks.remove(hook)

        return remove

    # --- Transition table -------------------------------------------------------

    def _build_transitions(self) -> dict[tuple[FlowStateType, str], Transition]:
        table: dict[tuple[FlowStateType, str], Transition] = {}

        def on(states: FlowStateType | Iterable[FlowStateType], action: type[Action], handler: Transition) -> None:
            if isinstance(states, FlowStateType):
                states = (states,)
            for state in states:
                table[(state, action.type)] = handler

        # Exchanges (optional step before OAuth)
        on((State.IDLE, State.EXCHANGES_ERROR), a.LoadExchanges, self._load_exchanges)
        on(State.EXCHANGES_LOADING, a.ExchangesLoaded, self._exchanges_loaded)
        on(State.EXCHANGES_LOADING, a.ExchangesFailed, self._exchanges_failed)

        # OAuth
        on(
            (
                State.IDLE,
                State.EXCHANGES_READY,
                State.OAUTH_ERROR,
                State.OAUTH_WINDOW_CLOSED_BY_USER,
            ),
            a.StartOAuth,
            self._start_oauth,
        )
        on(State.OAUTH_WAITING, a.OAuthWindowOpened, self._oauth_window_opened)
        # The completion message may overtake the popup-opened notification
        oauth_pending = (State.OAUTH_WAITING, State.OAUTH_PROCESSING)
        on(oauth_pending, a.OAuthCompleted, self._oauth_completed)
        on(oauth_pending, a.OAuthFailed, self._oauth_failed)
        on(oauth_pending, a.OAuthFatal, self._oauth_fatal)
        on(State.OAUTH_PROCESSING, a.OAuthWindowClosedByUser, self._oauth_window_closed)

        # Wallet
        on((State.OAUTH_COMPLETED, State.WALLET_ERROR), a.LoadWallet, self._load_wallet)
        on(State.WALLET_LOADING, a.WalletLoaded, self._wallet_loaded)
        on(State.WALLET_LOADING, a.WalletFailed, self._wallet_failed)

        # Quotes
        on(
            (
                State.WALLET_READY,
                State.QUOTE_REQUESTING,
                State.QUOTE_READY,
                State.QUOTE_ERROR,
                State.QUOTE_EXPIRED,
            ),
            a.RequestQuote,
            self._request_quote,
        )
        on(State.QUOTE_REQUESTING, a.QuoteReceived, self._quote_received)
        on(State.QUOTE_REQUESTING, a.QuoteFailed, self._quote_failed)
        # Only from quote:ready; in withdraw:* the backend is authoritative
        on(State.QUOTE_READY, a.QuoteExpired, self._quote_expired)

        # Withdrawal
        on(State.QUOTE_READY, a.StartWithdrawal, self._start_withdrawal)
        on(State.WITHDRAW_PROCESSING, a.WithdrawalRequires2FA, self._forward_as(a.Requires2FA()))
        on(State.WITHDRAW_PROCESSING, a.WithdrawalRequiresSMS, self._forward_as(a.RequiresSMS()))
        on(State.WITHDRAW_PROCESSING, a.WithdrawalRequiresKYC, self._forward_as(a.RequiresKYC()))
        on(
            (State.WITHDRAW_PROCESSING, State.WITHDRAW_ERROR_2FA),
            a.Withdrawal2FAInvalid,
            self._two_factor_invalid,
        )
        on(
            (State.WITHDRAW_ERROR_2FA, State.WITHDRAW_ERROR_2FA_INVALID),
            a.Submit2FA,
            self._submit_2fa,
        )
        on(State.WITHDRAW_ERROR_SMS, a.SubmitSMS, self._submit_sms)
        on(State.WITHDRAW_PROCESSING, a.WithdrawalInsufficientBalance, self._insufficient_balance)
        on(State.WITHDRAW_PROCESSING, a.WithdrawalProgress, self._withdrawal_progress)
        on(State.WITHDRAW_PROCESSING, a.WithdrawalSuccess, self._withdrawal_completed)
        on(State.WITHDRAW_PROCESSING, a.WithdrawalCompleted, self._withdrawal_completed)
        on(State.WITHDRAW_PROCESSING, a.WithdrawalFailed, self._withdrawal_failed)
        on(State.WITHDRAW_RETRYING, a.RetryWithdrawal, self._forward_as(a.Retry()))
        on(State.WITHDRAW_PROCESSING, a.WithdrawalBlocked, self._withdrawal_blocked)
        on(ACTIVE_WITHDRAWAL_STATES, a.WithdrawalFatal, self._withdrawal_fatal)
        on(
            ACTIVE_WITHDRAWAL_STATES,
            a.Withdrawal2FAMethodNotSupported,
            self._two_factor_method_not_supported,
        )

        # Cancellation from every non-terminal state
        on(
            (s for s in FlowStateType if s not in FLOW_TERMINAL_STATES),
            a.CancelFlow,
            self._cancel,
        )
        return table

    # --- Exchanges --------------------------------------------------------------

    def _load_exchanges(self, snapshot: FlowSnapshot, action: a.LoadExchanges) -> FlowSnapshot:
        return transition_to(State.EXCHANGES_LOADING, snapshot.context)

    def _exchanges_loaded(self, snapshot: FlowSnapshot, action: a.ExchangesLoaded) -> FlowSnapshot:
        return transition_to(State.EXCHANGES_READY, snapshot.context, exchanges=action.exchanges)

    def _exchanges_failed(self, snapshot: FlowSnapshot, action: a.ExchangesFailed) -> FlowSnapshot:
        return transition_to(State.EXCHANGES_ERROR, snapshot.context, action.error)

    # --- OAuth ------------------------------------------------------------------

    def _start_oauth(self, snapshot: FlowSnapshot, action: a.StartOAuth) -> FlowSnapshot:
        # Subscription topic and OAuth idempotency token identify the same attempt
        return transition_to(
            State.OAUTH_WAITING,
            snapshot.context,
            exchange=action.exchange,
            wallet_id=action.wallet_id or snapshot.context.wallet_id,
            idempotency_key=action.idem,
            topic_name=action.idem,
            oauth_error_type=None,
        )

    def _oauth_window_opened(self, snapshot: FlowSnapshot, action: a.OAuthWindowOpened) -> FlowSnapshot:
        return transition_to(State.OAUTH_PROCESSING, snapshot.context)

    def _oauth_completed(self, snapshot: FlowSnapshot, action: a.OAuthCompleted) -> FlowSnapshot:
        context = snapshot.context
        return transition_to(
            State.OAUTH_COMPLETED,
            context,
            wallet_id=action.wallet_id or context.wallet_id,
            exchange=action.exchange or context.exchange,
        )

    def _oauth_failed(self, snapshot: FlowSnapshot, action: a.OAuthFailed) -> FlowSnapshot:
        return transition_to(
            State.OAUTH_ERROR,
            snapshot.context,
            action.error,
            oauth_error_type=OAuthErrorType.RECOVERABLE,
        )

    def _oauth_fatal(self, snapshot: FlowSnapshot, action: a.OAuthFatal) -> FlowSnapshot:
        return transition_to(
            State.OAUTH_FATAL,
            snapshot.context,
            action.error,
            oauth_error_type=OAuthErrorType.FATAL,
        )

    def _oauth_window_closed(
        self, snapshot: FlowSnapshot, action: a.OAuthWindowClosedByUser
    ) -> FlowSnapshot:
        return transition_to(State.OAUTH_WINDOW_CLOSED_BY_USER, snapshot.context, action.error)

    # --- Wallet -----------------------------------------------------------------

    def _load_wallet(self, snapshot: FlowSnapshot, action: a.LoadWallet) -> FlowSnapshot:
        return transition_to(State.WALLET_LOADING, snapshot.context)

    def _wallet_loaded(self, snapshot: FlowSnapshot, action: a.WalletLoaded) -> FlowSnapshot:
        return transition_to(State.WALLET_READY, snapshot.context, wallet_balances=action.balances)

    def _wallet_failed(self, snapshot: FlowSnapshot, action: a.WalletFailed) -> FlowSnapshot:
        return transition_to(State.WALLET_ERROR, snapshot.context, action.error)

    # --- Quotes -----------------------------------------------------------------

    def _request_quote(self, snapshot: FlowSnapshot, action: a.RequestQuote) -> FlowSnapshot:
        request = QuoteRequest(
            asset=action.asset,
            amount=action.amount,
            destination_address=action.destination_address,
            network=action.network,
            tag=action.tag,
            include_fee=action.include_fee,
        )
        updates: dict[str, Any] = {"last_quote_request": request}
        if snapshot.state == State.QUOTE_EXPIRED:
            # An expired quote must not be shown as the last valid one
            updates["quote"] = None
        return transition_to(State.QUOTE_REQUESTING, snapshot.context, **updates)

    def _quote_received(self, snapshot: FlowSnapshot, action: a.QuoteReceived) -> FlowSnapshot:
        self._logger.debug(
            f"Quote {action.quote.id} received, expires at {action.quote.expires_at}"
        )
        return transition_to(State.QUOTE_READY, snapshot.context, quote=action.quote)

    def _quote_failed(self, snapshot: FlowSnapshot, action: a.QuoteFailed) -> FlowSnapshot:
        return transition_to(State.QUOTE_ERROR, snapshot.context, action.error)

    def _quote_expired(self, snapshot: FlowSnapshot, action: a.QuoteExpired) -> FlowSnapshot:
        return transition_to(
            State.QUOTE_EXPIRED,
            snapshot.context,
            QuoteError("Quote has expired", error_code=ErrorCode.QUOTE_EXPIRED.value),
        )

    # --- Withdrawal -------------------------------------------------------------

    def _start_withdrawal(self, snapshot: FlowSnapshot, action: a.StartWithdrawal) -> FlowSnapshot | None:
        context = snapshot.context
        if not context.wallet_id:
            return None
        if self._withdrawal is not None:
            self._withdrawal.dispose()
        self._withdrawal = WithdrawalMachine(
            quote_id=action.quote_id,
            wallet_id=context.wallet_id,
            max_retries=context.max_retry_attempts,
            make_key=self._make_key,
        )
        self._withdrawal.send(a.Execute(quote_id=action.quote_id, wallet_id=context.wallet_id))
        self._logger.info(f"Withdrawal started for quote {action.quote_id}")
        return transition_to(State.WITHDRAW_PROCESSING, context)

    def _forward_as(self, child_action: Action) -> Transition:
        """Transition that forwards a fixed action to the nested machine."""

        def transition(snapshot: FlowSnapshot, action: Action) -> FlowSnapshot | None:
            return self._forward(snapshot, child_action)

        return transition

    def _forward(self, snapshot: FlowSnapshot, child_action: Action, **updates: Any) -> FlowSnapshot | None:
        """
        Send an action to the nested machine and project its new state.

        Returns None (flow unchanged) if the nested machine ignored the action.
        """
        child = self._withdrawal
        if child is None or child.is_disposed:
            return None
        if not child.send(child_action):
            return None
        context = replace(snapshot.context, **updates) if updates else snapshot.context
        return self._project(context, child.get_state())

    def _project(self, context: FlowContext, child: WithdrawalSnapshot) -> FlowSnapshot:
        target = WITHDRAWAL_PROJECTION[child.state]

        if target in _CHALLENGE_ERRORS:
            message, code = _CHALLENGE_ERRORS[target]
            required = [r.value for r in child.context.required_actions or ()]
            error = WithdrawalError(
                message,
                error_code=code.value,
                quote_id=child.context.quote_id,
                details={"required_actions": required},
            )
            return transition_to(target, context, error)

        if target == State.WITHDRAW_RETRYING:
            return transition_to(
                target, context, child.error, retry_attempts=context.retry_attempts + 1
            )

        if target == State.WITHDRAW_COMPLETED:
            info = WithdrawalInfo(
                id=child.context.idempotency_key,
                status="completed",
                transaction_id=child.context.transaction_id,
            )
            self._logger.info(f"Withdrawal completed (transaction: {info.transaction_id})")
            return transition_to(target, context, withdrawal=info)

        if target == State.WITHDRAW_FATAL:
            error = child.error or WithdrawalError("Withdrawal failed")
            self._logger.warning(f"Withdrawal failed after {child.context.retry_count} retries: {error}")
            return transition_to(target, context, error)

        return transition_to(target, context, child.error)

    def _two_factor_invalid(self, snapshot: FlowSnapshot, action: a.Withdrawal2FAInvalid) -> FlowSnapshot | None:
        child = self._withdrawal
        if child is None:
            return None
        # Same attempt: the nested machine waits for a new code under the same key
        child.send(a.Requires2FA())
        if child.get_state().state != W.WAITING_FOR_2FA:
            return None
        context = snapshot.context
        return transition_to(
            State.WITHDRAW_ERROR_2FA_INVALID,
            context,
            WithdrawalError(
                "Invalid 2FA code",
                error_code=ErrorCode.WITHDRAWAL_2FA_INVALID.value,
                quote_id=child.get_state().context.quote_id,
            ),
            invalid_2fa_attempts=context.invalid_2fa_attempts + 1,
        )

    def _submit_2fa(self, snapshot: FlowSnapshot, action: a.Submit2FA) -> FlowSnapshot | None:
        return self._forward(snapshot, a.Submit2FA(code=action.code))

    def _submit_sms(self, snapshot: FlowSnapshot, action: a.SubmitSMS) -> FlowSnapshot | None:
        return self._forward(snapshot, a.SubmitSMS(code=action.code))

    def _insufficient_balance(
        self, snapshot: FlowSnapshot, action: a.WithdrawalInsufficientBalance
    ) -> FlowSnapshot:
        return transition_to(
            State.WITHDRAW_ERROR_BALANCE,
            snapshot.context,
            WithdrawalError(
                "Insufficient balance",
                error_code=ErrorCode.WITHDRAWAL_INSUFFICIENT_BALANCE.value,
            ),
        )

    def _withdrawal_progress(self, snapshot: FlowSnapshot, action: a.WithdrawalProgress) -> FlowSnapshot:
        return transition_to(snapshot.state, snapshot.context, withdrawal_step=action.step)

    def _withdrawal_completed(self, snapshot: FlowSnapshot, action: Action) -> FlowSnapshot | None:
        transaction_id = getattr(action, "transaction_id", None)
        return self._forward(snapshot, a.Success(transaction_id=transaction_id))

    def _withdrawal_failed(self, snapshot: FlowSnapshot, action: a.WithdrawalFailed) -> FlowSnapshot | None:
        return self._forward(snapshot, a.Fail(error=action.error))

    def _withdrawal_blocked(self, snapshot: FlowSnapshot, action: a.WithdrawalBlocked) -> FlowSnapshot | None:
        self._logger.warning(f"Withdrawal blocked: {action.reason}")
        return self._forward(snapshot, a.Blocked(reason=action.reason))

    def _withdrawal_fatal(self, snapshot: FlowSnapshot, action: a.WithdrawalFatal) -> FlowSnapshot:
        self._logger.error(f"Withdrawal fatal error: {action.error}")
        return transition_to(State.WITHDRAW_FATAL, snapshot.context, action.error)

    def _two_factor_method_not_supported(
        self, snapshot: FlowSnapshot, action: a.Withdrawal2FAMethodNotSupported
    ) -> FlowSnapshot:
        methods = action.valid_2fa_methods
        return transition_to(
            State.WITHDRAW_FATAL,
            snapshot.context,
            WithdrawalError(
                two_factor_methods_message(methods),
                error_code=ErrorCode.WITHDRAWAL_2FA_METHOD_NOT_SUPPORTED.value,
            ),
            error_details=ErrorDetails(valid_2fa_methods=tuple(methods) if methods else None),
        )

    # --- Cancellation / disposal -----------------------------------------------

    def _cancel(self, snapshot: FlowSnapshot, action: a.CancelFlow) -> FlowSnapshot:
        return transition_to(State.FLOW_CANCELLED, snapshot.context)

    def _after_transition(self, previous: FlowSnapshot, current: FlowSnapshot, action: Action) -> None:
        if current.state != State.FLOW_CANCELLED:
            return
        self._logger.info(f"Flow cancelled from state {previous.state.value}")
        self._release_withdrawal()
        hooks, self._cancel_hooks = self._cancel_hooks, []
        for hook in hooks:
            try:
                hook()
            except Exception:
                self._logger.exception("Error in cancel hook")

    def _release_withdrawal(self) -> None:
        if self._withdrawal is not None:
            self._withdrawal.dispose()
            self._withdrawal = None

    def _on_dispose(self) -> None:
        self._release_withdrawal()
        self._cancel_hooks.clear()


def create_flow_machine(
    org_id: str,
    project_id: str,
    max_retry_attempts: int | None = None,
    auto_refresh_quotation: bool | None = None,
    make_key: IdGenerator = generate_idempotency_key,
) -> FlowMachine:
    """Create an idle flow machine, falling back to the default options."""
    return FlowMachine(
        org_id=org_id,
        project_id=project_id,
        max_retry_attempts=(
            DEFAULT_MAX_RETRY_ATTEMPTS if max_retry_attempts is None else max_retry_attempts
        ),
        auto_refresh_quotation=(
            DEFAULT_AUTO_REFRESH_QUOTATION
            if auto_refresh_quotation is None
            else auto_refresh_quotation
        ),
        make_key=make_key,
    )
