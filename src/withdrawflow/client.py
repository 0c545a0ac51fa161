"""FlowClient - orchestrates one withdrawal journey over async collaborators."""

from __future__ import annotations

import asyncio
import inspect
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from typing import Any

from withdrawflow.core.config import Config
from withdrawflow.core.error_codes import (
    FATAL_KIND_MESSAGES,
    WithdrawalErrorKind,
    as_exception,
    classify_withdrawal_error,
    extract_error_code,
    extract_error_result,
    is_fatal_oauth_error,
    is_wallet_not_found_error,
    quotation_error,
)
from withdrawflow.core.exceptions import (
    ConfigurationError,
    OAuthError,
    QuoteError,
    ValidationError,
    WithdrawalError,
)
from withdrawflow.core.logging import ensure_logging, get_logger
from withdrawflow.core.types import (
    FlowStateType,
    PopupOptions,
    Quote,
    QuoteRequest,
    WalletBalance,
    balances_from_response,
)
from withdrawflow.idempotency import IdGenerator, generate_idempotency_key
from withdrawflow.machines import actions as a
from withdrawflow.machines.base import Action, Listener, Unsubscribe
from withdrawflow.machines.flow import FlowMachine, FlowSnapshot
from withdrawflow.messaging import (
    InMemoryMessageChannel,
    MessageChannel,
    MessageHandlers,
    Subscription,
    WorkflowMessage,
)
from withdrawflow.preview import INVALID_API_CREDENTIALS, WalletCallbacks
from withdrawflow.resilience import execute_with_retry

State = FlowStateType

ListExchanges = Callable[[str | None], Awaitable[Any]]
FetchWithdrawableBalance = Callable[[str], Awaitable[Any]]
RequestQuotation = Callable[[str, dict[str, Any]], Awaitable[Any]]
ExecuteWithdrawal = Callable[[str, str, str, dict[str, Any]], Awaitable[Any]]
GetWallet = Callable[[str], Awaitable[Any]]
PingWallet = Callable[[str], Awaitable[Any]]
# (exchange, params, on_window_close) -> close function, possibly awaitable
OpenOAuthWindow = Callable[[str, dict[str, Any], Callable[[], None]], Any]

_CHALLENGE_ACTIONS: dict[WithdrawalErrorKind, type[Action]] = {
    WithdrawalErrorKind.REQUIRES_2FA: a.WithdrawalRequires2FA,
    WithdrawalErrorKind.REQUIRES_SMS: a.WithdrawalRequiresSMS,
    WithdrawalErrorKind.REQUIRES_KYC: a.WithdrawalRequiresKYC,
    WithdrawalErrorKind.INVALID_2FA: a.Withdrawal2FAInvalid,
    WithdrawalErrorKind.INSUFFICIENT_BALANCE: a.WithdrawalInsufficientBalance,
}


@dataclass
class FlowClientOptions:
    """
    Collaborators and settings for a FlowClient.

    The REST calls, the OAuth popup and the message transport are supplied by
    the caller; FlowClient only sequences them.
    """

    org_id: str
    project_id: str
    fetch_withdrawable_balance: FetchWithdrawableBalance
    request_quotation: RequestQuotation
    execute_withdrawal: ExecuteWithdrawal
    open_oauth_window: OpenOAuthWindow | None = None
    list_exchanges: ListExchanges | None = None
    get_wallet: GetWallet | None = None
    ping_wallet: PingWallet | None = None
    channel: MessageChannel | None = None
    make_id: IdGenerator | None = None
    on_wallet_connected: Callable[[str, str], Any] | None = None
    config: Config | None = None


@dataclass(frozen=True)
class FlowHandle:
    """What starting or resuming a flow hands back to the caller."""

    machine: FlowMachine
    close_oauth_window: Callable[[], Any] | None = None


async def _maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


def _valid_2fa_methods(result: Any) -> tuple[str, ...] | None:
    if not isinstance(result, Mapping):
        return None
    methods = result.get("valid2FAMethods")
    if not isinstance(methods, list):
        return None
    return tuple(str(m) for m in methods)


def withdrawal_error_action(error: Any) -> Action:
    """Translate a withdrawal execution error into the flow action it implies."""
    kind = classify_withdrawal_error(error)

    challenge = _CHALLENGE_ACTIONS.get(kind)
    if challenge is not None:
        return challenge()

    if kind == WithdrawalErrorKind.TWO_FA_METHOD_NOT_SUPPORTED:
        return a.Withdrawal2FAMethodNotSupported(
            valid_2fa_methods=_valid_2fa_methods(extract_error_result(error))
        )

    if kind == WithdrawalErrorKind.TRANSIENT:
        return a.WithdrawalFailed(error=as_exception(error, "Withdrawal failed"))

    code = extract_error_code(error)
    error_code = code.value if code is not None else None

    if kind == WithdrawalErrorKind.QUOTE_EXPIRED:
        # QUOTE_EXPIRED is ignored in withdraw:*, a backend expiry ends the withdrawal
        return a.WithdrawalFatal(error=QuoteError("Quote has expired", error_code=error_code))

    if kind in FATAL_KIND_MESSAGES:
        return a.WithdrawalFatal(
            error=WithdrawalError(FATAL_KIND_MESSAGES[kind], error_code=error_code)
        )

    return a.WithdrawalFatal(error=as_exception(error, "Failed to execute withdrawal"))


class FlowClient:
    """
    Drives one withdrawal journey at a time.

    Owns the flow machine, the message subscription, the OAuth popup close
    function and the quote expiry timer. Starting a new flow disposes the
    previous one.

    Example:
        >>> client = FlowClient(FlowClientOptions(org_id="org", project_id="proj", ...))
        >>> handle = await client.start_withdrawal_flow("coinbase", "wallet-1")
        >>> # ... OAuth completes, wallet loads ...
        >>> quote = await client.request_quote(QuoteRequest("BTC", "0.01", "bc1q..."))
        >>> await client.execute_withdrawal(quote.id)
    """

    def __init__(self, options: FlowClientOptions) -> None:
        """
        Initialize the client.

        Args:
            options: Collaborators, identifiers and optional Config
        """
        config = options.config or Config(org_id=options.org_id, project_id=options.project_id)

        ensure_logging(level=config.log_level)
        self._logger = get_logger("client")

        self._options = options
        self._config = config
        self._channel: MessageChannel = options.channel or InMemoryMessageChannel()
        self._make_id: IdGenerator = options.make_id or generate_idempotency_key

        self._machine: FlowMachine | None = None
        self._subscription: Subscription | None = None
        self._close_oauth_window: Callable[[], Any] | None = None
        self._quote_timer: asyncio.TimerHandle | None = None
        self._tasks: set[asyncio.Task[Any]] = set()

    @property
    def config(self) -> Config:
        return self._config

    @property
    def channel(self) -> MessageChannel:
        return self._channel

    @property
    def machine(self) -> FlowMachine | None:
        return self._machine

    # --- Machine lifecycle ------------------------------------------------------

    def _new_machine(self) -> FlowMachine:
        self.dispose()
        machine = FlowMachine(
            org_id=self._options.org_id,
            project_id=self._options.project_id,
            max_retry_attempts=self._config.max_retry_attempts,
            auto_refresh_quotation=self._config.auto_refresh_quotation,
            make_key=self._make_id,
        )
        machine.on_cancel(self._close_popup)
        self._machine = machine
        machine.subscribe(lambda snapshot: self._on_flow_state(machine, snapshot))
        return machine

    def _on_flow_state(self, machine: FlowMachine, snapshot: FlowSnapshot) -> None:
        # Nothing more arrives on the topic once the journey ends
        if snapshot.state.is_terminal() and self._is_live(machine):
            self._release_subscription()

    def _is_live(self, machine: FlowMachine) -> bool:
        return machine is self._machine and not machine.is_disposed

    def _send(self, machine: FlowMachine, action: Action) -> bool:
        """Send unless the flow was cancelled or replaced while we awaited."""
        if not self._is_live(machine):
            self._logger.debug(f"Dropping {action.type}: flow is no longer active")
            return False
        return machine.send(action)

    async def _read(self, func: Callable[..., Awaitable[Any]], *args: Any) -> Any:
        if self._config.retry_transient_reads:
            return await execute_with_retry(func, *args)
        return await func(*args)

    async def _listen(self, machine: FlowMachine, topic: str, handlers: MessageHandlers) -> bool:
        """Subscribe `topic` for `machine`. False if the flow ended while we awaited."""
        await self._drop_subscription()
        if not self._is_live(machine):
            return False
        subscription = await self._channel.subscribe(topic, handlers)
        if not self._is_live(machine):
            await self._channel.unsubscribe(subscription.topic_name)
            return False
        self._subscription = subscription
        return True

    async def _drop_subscription(self) -> None:
        if self._subscription is not None:
            topic = self._subscription.topic_name
            self._subscription = None
            await self._channel.unsubscribe(topic)

    def _release_subscription(self) -> None:
        if self._subscription is not None:
            topic = self._subscription.topic_name
            self._subscription = None
            self._spawn(self._channel.unsubscribe(topic))

    def _close_popup(self) -> None:
        close, self._close_oauth_window = self._close_oauth_window, None
        self._call_close(close)

    def _call_close(self, close: Callable[[], Any] | None) -> None:
        if close is None:
            return
        result = close()
        if inspect.isawaitable(result):
            self._spawn(result)

    def _spawn(self, awaitable: Awaitable[Any]) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._logger.warning("No running event loop, skipping async cleanup")
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            return
        task = asyncio.ensure_future(awaitable, loop=loop)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    # --- Exchanges --------------------------------------------------------------

    async def load_exchanges(self, status: str | None = None) -> list[Any]:
        """
        Load the exchanges a user can connect.

        Raises:
            ConfigurationError: If no list_exchanges collaborator was given
            ValidationError: If the collaborator returned something other than a list
        """
        if self._options.list_exchanges is None:
            raise ConfigurationError("list_exchanges collaborator is not configured")
        machine = self._machine
        if machine is None or machine.is_disposed:
            machine = self._new_machine()
        self._send(machine, a.LoadExchanges())

        try:
            exchanges = await self._read(self._options.list_exchanges, status)
        except Exception as e:
            self._logger.warning(f"Failed to load exchanges: {e}")
            self._send(machine, a.ExchangesFailed(error=e))
            raise

        if not isinstance(exchanges, list):
            error = ValidationError("Failed to load exchanges")
            self._send(machine, a.ExchangesFailed(error=error))
            raise error

        self._send(machine, a.ExchangesLoaded(exchanges=exchanges))
        return exchanges

    # --- OAuth ------------------------------------------------------------------

    async def start_withdrawal_flow(
        self,
        exchange: str,
        wallet_id: str,
        popup_options: PopupOptions | None = None,
    ) -> FlowHandle:
        """
        Start a new journey by authorizing the exchange in a popup.

        If the wallet is already connected, resumes instead.
        """
        if self._options.get_wallet is not None:
            try:
                wallet = await self._options.get_wallet(wallet_id)
            except Exception as e:
                self._logger.warning(f"Error checking wallet existence: {e}")
                wallet = None
            if isinstance(wallet, Mapping) and wallet.get("exchange"):
                self._logger.info(f"Wallet {wallet_id} already connected, resuming flow")
                return await self.resume_withdrawal_flow(wallet["exchange"], wallet_id)

        if self._options.open_oauth_window is None:
            raise ConfigurationError("open_oauth_window collaborator is not configured")

        machine = self._new_machine()
        idem = self._make_id()
        machine.send(a.StartOAuth(exchange=exchange, wallet_id=wallet_id, idem=idem))

        listening = await self._listen(
            machine,
            idem,
            MessageHandlers(
                on_oauth2_complete=self._on_oauth_complete,
                on_error=self._on_oauth_error,
            ),
        )
        if not listening:
            self._logger.info(f"Flow ended before the OAuth window opened (topic: {idem})")
            return FlowHandle(machine=machine)

        def on_window_close() -> None:
            if self._is_live(machine) and machine.get_state().state == State.OAUTH_PROCESSING:
                self._send(
                    machine,
                    a.OAuthWindowClosedByUser(
                        error=OAuthError("OAuth window closed by user", exchange=exchange)
                    ),
                )

        params: dict[str, Any] = {"wallet_id": wallet_id, "idem": idem}
        popup = popup_options or PopupOptions(
            width=self._config.popup_width, height=self._config.popup_height
        )
        params["popup"] = popup.to_dict()

        try:
            close = await _maybe_await(
                self._options.open_oauth_window(exchange, params, on_window_close)
            )
        except Exception as e:
            self._logger.error(f"Failed to open OAuth window: {e}")
            self._send(
                machine,
                a.OAuthFailed(error=OAuthError(f"Failed to open OAuth window: {e}", exchange=exchange)),
            )
            raise

        if not self._is_live(machine):
            self._logger.info("Flow ended while the OAuth window was opening, closing it")
            self._call_close(close)
            return FlowHandle(machine=machine)

        self._close_oauth_window = close
        self._send(machine, a.OAuthWindowOpened())
        self._logger.info(f"OAuth started for {exchange} (topic: {idem})")
        return FlowHandle(machine=machine, close_oauth_window=close)

    async def _on_oauth_complete(self, message: WorkflowMessage) -> None:
        machine = self._machine
        if machine is None or not message.wallet_id:
            return
        if not self._send(
            machine, a.OAuthCompleted(wallet_id=message.wallet_id, exchange=message.exchange)
        ):
            return
        await self._drop_subscription()
        await self._wallet_connected(message.wallet_id, message.exchange or "")
        await self._load_wallet(machine, message.wallet_id)

    def _on_oauth_error(self, error: Exception) -> None:
        machine = self._machine
        if machine is None:
            return
        exc = as_exception(error, "OAuth authentication failed")
        if is_fatal_oauth_error(error):
            self._logger.error(f"OAuth failed fatally: {exc}")
            self._send(machine, a.OAuthFatal(error=exc))
        else:
            self._logger.warning(f"OAuth failed: {exc}")
            self._send(machine, a.OAuthFailed(error=exc))

    async def _wallet_connected(self, wallet_id: str, exchange: str) -> None:
        if self._options.on_wallet_connected is not None:
            await _maybe_await(self._options.on_wallet_connected(wallet_id, exchange))

    def _walk_to_oauth_completed(self, machine: FlowMachine, exchange: str, wallet_id: str) -> None:
        machine.send(a.StartOAuth(exchange=exchange, wallet_id=wallet_id, idem=self._make_id()))
        machine.send(a.OAuthWindowOpened())
        machine.send(a.OAuthCompleted(wallet_id=wallet_id, exchange=exchange))

    async def resume_withdrawal_flow(self, exchange: str, wallet_id: str) -> FlowHandle:
        """Resume for an already-connected wallet: skip the popup and load balances."""
        machine = self._new_machine()
        self._walk_to_oauth_completed(machine, exchange, wallet_id)
        await self._wallet_connected(wallet_id, exchange)
        await self._load_wallet(machine, wallet_id)
        return FlowHandle(machine=machine)

    async def silent_resume_withdrawal_flow(
        self,
        wallet_id: str,
        exchange: str,
        preloaded_balances: list[WalletBalance] | None = None,
        callbacks: WalletCallbacks | None = None,
    ) -> FlowHandle:
        """
        Jump straight to wallet:ready for a wallet that was already previewed.

        Uses `preloaded_balances` when given; otherwise pings the wallet and
        fetches its balances first.

        Raises:
            ValidationError: If the wallet's API credentials are invalid
            Exception: Whatever the ping or balance collaborator raised
        """
        callbacks = callbacks or WalletCallbacks()
        machine = self._new_machine()

        balances = preloaded_balances
        if balances is None:
            try:
                if self._options.ping_wallet is not None:
                    ping = await self._read(self._options.ping_wallet, wallet_id)
                    if isinstance(ping, Mapping) and ping.get("status") == INVALID_API_CREDENTIALS:
                        if callbacks.on_wallet_invalid_api_credentials:
                            callbacks.on_wallet_invalid_api_credentials(wallet_id)
                        raise ValidationError("Invalid API credentials", {"wallet_id": wallet_id})
                response = await self._read(self._options.fetch_withdrawable_balance, wallet_id)
            except Exception as e:
                if is_wallet_not_found_error(e) and callbacks.on_wallet_not_found:
                    callbacks.on_wallet_not_found(wallet_id)
                raise
            balances = balances_from_response(response)
            if callbacks.on_wallet_balance:
                callbacks.on_wallet_balance(wallet_id, balances)

        if not self._is_live(machine):
            return FlowHandle(machine=machine)
        self._walk_to_oauth_completed(machine, exchange, wallet_id)
        machine.send(a.LoadWallet())
        machine.send(a.WalletLoaded(balances=list(balances)))
        return FlowHandle(machine=machine)

    # --- Wallet -----------------------------------------------------------------

    async def _load_wallet(self, machine: FlowMachine, wallet_id: str) -> None:
        if not self._send(machine, a.LoadWallet()):
            return
        try:
            response = await self._read(self._options.fetch_withdrawable_balance, wallet_id)
            balances = balances_from_response(response)
        except Exception as e:
            self._logger.warning(f"Failed to load wallet {wallet_id}: {e}")
            self._send(machine, a.WalletFailed(error=as_exception(e, "Failed to load wallet")))
            return
        self._send(machine, a.WalletLoaded(balances=balances))

    # --- Quotes -----------------------------------------------------------------

    async def request_quote(self, request: QuoteRequest) -> Quote | None:
        """
        Request a quote for the connected wallet.

        Responses to superseded requests are dropped. On success a one-shot
        timer is armed at the quote's expiry.

        Returns:
            The quote, or None if the request was ignored, failed or superseded
        """
        machine = self._machine
        if machine is None or machine.is_disposed:
            return None
        wallet_id = machine.get_state().context.wallet_id
        if not wallet_id:
            return None

        sent = machine.send(
            a.RequestQuote(
                asset=request.asset,
                amount=request.amount,
                destination_address=request.destination_address,
                network=request.network,
                tag=request.tag,
                include_fee=request.include_fee,
            )
        )
        if not sent:
            return None
        self._cancel_quote_timer()
        pending = machine.get_state().context.last_quote_request

        try:
            raw = await self._options.request_quotation(
                wallet_id, request.to_api_params(self._config.include_fee)
            )
        except Exception as e:
            if self._is_current_request(machine, pending):
                self._send(machine, a.QuoteFailed(error=quotation_error(e)))
            return None

        if not self._is_current_request(machine, pending):
            self._logger.debug("Dropping quote for a superseded request")
            return None

        if not raw:
            self._send(machine, a.QuoteFailed(error=QuoteError("No quote returned from backend")))
            return None
        try:
            quote = Quote.from_api_response(raw)
        except (KeyError, TypeError, ValueError) as e:
            self._send(machine, a.QuoteFailed(error=QuoteError(f"Invalid quote returned: {e}")))
            return None

        if not self._send(machine, a.QuoteReceived(quote=quote)):
            return None
        self._arm_quote_timer(machine, quote)
        return quote

    def _is_current_request(self, machine: FlowMachine, pending: QuoteRequest | None) -> bool:
        if not self._is_live(machine):
            return False
        snapshot = machine.get_state()
        return (
            snapshot.state == State.QUOTE_REQUESTING
            and snapshot.context.last_quote_request is pending
        )

    def _arm_quote_timer(self, machine: FlowMachine, quote: Quote) -> None:
        self._cancel_quote_timer()
        # An already-expired quote expires on the next loop iteration
        delay = max(quote.expires_in_ms(), 0) / 1000
        loop = asyncio.get_running_loop()
        self._quote_timer = loop.call_later(delay, self._on_quote_expired, machine, quote.id)

    def _cancel_quote_timer(self) -> None:
        if self._quote_timer is not None:
            self._quote_timer.cancel()
            self._quote_timer = None

    def _on_quote_expired(self, machine: FlowMachine, quote_id: str) -> None:
        self._quote_timer = None
        if not self._is_live(machine):
            return
        snapshot = machine.get_state()
        quote = snapshot.context.quote
        if snapshot.state != State.QUOTE_READY or quote is None or quote.id != quote_id:
            return

        last_request = snapshot.context.last_quote_request
        if snapshot.context.auto_refresh_quotation and last_request is not None:
            self._logger.info(f"Quote {quote_id} expired, refreshing")
            self._spawn(self.request_quote(last_request))
        else:
            self._logger.info(f"Quote {quote_id} expired")
            machine.send(a.QuoteExpired())

    # --- Withdrawal -------------------------------------------------------------

    async def execute_withdrawal(self, quote_id: str) -> Any:
        """
        Execute the withdrawal for the current quote.

        Returns:
            The collaborator's response, or None if the flow was not ready or
            execution failed (the failure is reflected in the flow state)
        """
        machine = self._machine
        if machine is None or machine.is_disposed:
            return None
        snapshot = machine.get_state()
        if snapshot.state != State.QUOTE_READY or not snapshot.context.wallet_id:
            return None
        if not machine.send(a.StartWithdrawal(quote_id=quote_id)):
            return None
        self._cancel_quote_timer()

        listening = await self._listen(
            machine,
            quote_id,
            MessageHandlers(
                on_withdraw_complete=self._on_withdraw_complete,
                on_step=self._on_withdraw_step,
                on_error=self._on_withdraw_error,
            ),
        )
        if not listening:
            return None
        return await self._run_withdrawal(machine, {})

    async def submit_2fa(self, code: str) -> Any:
        """Resubmit the withdrawal with a 2FA code, under the same idempotency key."""
        machine = self._machine
        if machine is None or machine.is_disposed:
            return None
        if machine.get_state().state not in (State.WITHDRAW_ERROR_2FA, State.WITHDRAW_ERROR_2FA_INVALID):
            return None
        if not machine.send(a.Submit2FA(code=code)):
            return None
        return await self._run_withdrawal(machine, {"twofa": code})

    async def submit_sms(self, code: str) -> Any:
        """Resubmit the withdrawal with an SMS code, under the same idempotency key."""
        machine = self._machine
        if machine is None or machine.is_disposed:
            return None
        if machine.get_state().state != State.WITHDRAW_ERROR_SMS:
            return None
        if not machine.send(a.SubmitSMS(code=code)):
            return None
        return await self._run_withdrawal(machine, {"smsCode": code})

    async def retry_withdrawal(self) -> Any:
        """Retry after a transient failure. The withdrawal machine issues a new key."""
        machine = self._machine
        if machine is None or machine.is_disposed:
            return None
        if machine.get_state().state != State.WITHDRAW_RETRYING:
            return None
        if not machine.send(a.RetryWithdrawal()):
            return None
        return await self._run_withdrawal(machine, {})

    async def _run_withdrawal(self, machine: FlowMachine, params: dict[str, Any]) -> Any:
        if not self._is_live(machine):
            return None
        child = machine.get_withdrawal_state()
        if child is None:
            return None
        context = child.context
        self._logger.debug(
            f"Executing withdrawal for quote {context.quote_id} (idempotency key: {context.idempotency_key})"
        )
        try:
            return await self._options.execute_withdrawal(
                context.wallet_id, context.idempotency_key, context.quote_id, params
            )
        except Exception as e:
            self._logger.warning(f"Withdrawal execution failed: {e}")
            self._handle_withdrawal_error(machine, e)
            return None

    def _handle_withdrawal_error(self, machine: FlowMachine, error: Any) -> None:
        action = withdrawal_error_action(error)
        if isinstance(action, a.WithdrawalFatal):
            self._logger.error(f"Unhandled withdrawal error: {error}")
        self._send(machine, action)

    def _on_withdraw_complete(self, message: WorkflowMessage) -> None:
        machine = self._machine
        if machine is None:
            return
        transaction_id = message.transaction_id or message.wallet_id or "completed"
        self._send(machine, a.WithdrawalSuccess(transaction_id=transaction_id))
        # No-op once WITHDRAWAL_SUCCESS landed
        self._send(machine, a.WithdrawalCompleted(transaction_id=transaction_id))

    def _on_withdraw_step(self, message: WorkflowMessage) -> None:
        machine = self._machine
        if machine is None or message.step is None:
            return
        self._send(machine, a.WithdrawalProgress(step=message.step))

    def _on_withdraw_error(self, error: Exception) -> None:
        machine = self._machine
        if machine is None:
            return
        self._handle_withdrawal_error(machine, error)

    # --- Observation / teardown ---------------------------------------------------

    def get_state(self) -> FlowSnapshot | None:
        if self._machine is None or self._machine.is_disposed:
            return None
        return self._machine.get_state()

    def subscribe(self, listener: Listener) -> Unsubscribe:
        if self._machine is None or self._machine.is_disposed:
            return lambda: None
        return self._machine.subscribe(listener)

    def cancel(self) -> None:
        """Cancel the journey: enter flow:cancelled, close the popup, release everything."""
        if self._machine is not None and not self._machine.is_disposed:
            self._machine.send(a.CancelFlow())
        self.dispose()

    def dispose(self) -> None:
        """Release the timer, subscription, popup and machine. Safe to call repeatedly."""
        self._cancel_quote_timer()
        self._release_subscription()
        self._close_popup()
        if self._machine is not None:
            self._machine.dispose()
            self._machine = None
