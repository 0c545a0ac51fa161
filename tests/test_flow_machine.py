"""
Unit tests for the flow machine.

Covers each phase of the journey (exchanges, OAuth, wallet, quote, withdrawal),
the projection of the nested withdrawal machine and cancellation.
"""

from unittest.mock import MagicMock

import pytest

from withdrawflow.core.exceptions import MachineDisposedError, OAuthError, QuoteError, WithdrawalError
from withdrawflow.core.types import (
    FlowStateType as S,
    OAuthErrorType,
    Quote,
    WalletBalance,
    WithdrawalStateType as W,
)
from withdrawflow.machines import actions as a
from withdrawflow.machines.flow import FlowMachine, create_flow_machine, two_factor_methods_message


def _quote(quote_id: str = "quote-1") -> Quote:
    return Quote(
        id=quote_id,
        asset="BTC",
        amount="0.01",
        estimated_fee="0.0001",
        estimated_total="0.0101",
        expires_at=9_999_999_999_999,
    )


def _request(amount: str = "0.01") -> a.RequestQuote:
    return a.RequestQuote(asset="BTC", amount=amount, destination_address="bc1q")


@pytest.fixture
def flow(make_id) -> FlowMachine:
    machine = create_flow_machine("org-1", "proj-1", max_retry_attempts=1, make_key=make_id)
    yield machine
    machine.dispose()


def _to_wallet_ready(flow: FlowMachine) -> FlowMachine:
    flow.send(a.StartOAuth(exchange="coinbase", wallet_id="wallet-1", idem="idem-1"))
    flow.send(a.OAuthWindowOpened())
    flow.send(a.OAuthCompleted(wallet_id="wallet-1", exchange="coinbase"))
    flow.send(a.LoadWallet())
    flow.send(a.WalletLoaded(balances=[WalletBalance(asset="BTC", balance="1")]))
    return flow


def _to_quote_ready(flow: FlowMachine) -> FlowMachine:
    _to_wallet_ready(flow)
    flow.send(_request())
    flow.send(a.QuoteReceived(quote=_quote()))
    return flow


def _to_processing(flow: FlowMachine) -> FlowMachine:
    _to_quote_ready(flow)
    flow.send(a.StartWithdrawal(quote_id="quote-1"))
    return flow


class TestCreate:
    def test_defaults(self) -> None:
        machine = create_flow_machine("org-1", "proj-1")
        context = machine.get_state().context

        assert machine.get_state().state == S.IDLE
        assert context.org_id == "org-1"
        assert context.max_retry_attempts == 3
        assert context.auto_refresh_quotation is True
        assert machine.get_withdrawal_state() is None


class TestExchanges:
    def test_load_and_ready(self, flow: FlowMachine) -> None:
        flow.send(a.LoadExchanges())
        flow.send(a.ExchangesLoaded(exchanges=[{"id": "coinbase"}]))

        assert flow.get_state().state == S.EXCHANGES_READY
        assert flow.get_state().context.exchanges == [{"id": "coinbase"}]

    def test_failure_can_be_retried(self, flow: FlowMachine) -> None:
        error = RuntimeError("down")
        flow.send(a.LoadExchanges())
        flow.send(a.ExchangesFailed(error=error))

        assert flow.get_state().state == S.EXCHANGES_ERROR
        assert flow.get_state().error is error
        assert flow.send(a.LoadExchanges()) is True

    def test_oauth_from_exchanges_ready(self, flow: FlowMachine) -> None:
        flow.send(a.LoadExchanges())
        flow.send(a.ExchangesLoaded(exchanges=[]))

        assert flow.send(a.StartOAuth(exchange="kraken", wallet_id="w", idem="i")) is True


class TestOAuth:
    def test_start_sets_topic_and_key(self, flow: FlowMachine) -> None:
        flow.send(a.StartOAuth(exchange="coinbase", wallet_id="wallet-1", idem="idem-1"))
        context = flow.get_state().context

        assert flow.get_state().state == S.OAUTH_WAITING
        assert context.idempotency_key == "idem-1"
        assert context.topic_name == "idem-1"
        assert context.exchange == "coinbase"
        assert context.wallet_id == "wallet-1"

    def test_completed(self, flow: FlowMachine) -> None:
        flow.send(a.StartOAuth(exchange="coinbase", wallet_id="wallet-1", idem="idem-1"))
        flow.send(a.OAuthWindowOpened())
        flow.send(a.OAuthCompleted(wallet_id="wallet-2", exchange="coinbase"))

        assert flow.get_state().state == S.OAUTH_COMPLETED
        assert flow.get_state().context.wallet_id == "wallet-2"

    def test_completion_before_window_opened(self, flow: FlowMachine) -> None:
        flow.send(a.StartOAuth(exchange="coinbase", wallet_id="wallet-1", idem="idem-1"))

        assert flow.send(a.OAuthCompleted(wallet_id="wallet-1")) is True
        assert flow.get_state().state == S.OAUTH_COMPLETED
        # The late popup notification is ignored
        assert flow.send(a.OAuthWindowOpened()) is False

    def test_first_outcome_wins(self, flow: FlowMachine) -> None:
        flow.send(a.StartOAuth(exchange="coinbase", wallet_id="wallet-1", idem="idem-1"))
        flow.send(a.OAuthWindowOpened())
        flow.send(a.OAuthCompleted(wallet_id="wallet-1"))

        assert flow.send(a.OAuthFailed(error=OAuthError("late"))) is False
        assert flow.send(a.OAuthFatal(error=OAuthError("late"))) is False
        assert flow.get_state().state == S.OAUTH_COMPLETED

    def test_failed_is_recoverable(self, flow: FlowMachine) -> None:
        error = OAuthError("denied")
        flow.send(a.StartOAuth(exchange="coinbase", wallet_id="wallet-1", idem="idem-1"))
        flow.send(a.OAuthWindowOpened())
        flow.send(a.OAuthFailed(error=error))

        assert flow.get_state().state == S.OAUTH_ERROR
        assert flow.get_state().error is error
        assert flow.get_state().context.oauth_error_type == OAuthErrorType.RECOVERABLE

        assert flow.send(a.StartOAuth(exchange="coinbase", wallet_id="wallet-1", idem="idem-2")) is True
        assert flow.get_state().context.oauth_error_type is None
        assert flow.get_state().context.topic_name == "idem-2"

    def test_fatal(self, flow: FlowMachine) -> None:
        flow.send(a.StartOAuth(exchange="coinbase", wallet_id="wallet-1", idem="idem-1"))
        flow.send(a.OAuthWindowOpened())
        flow.send(a.OAuthFatal(error=OAuthError("scope", fatal=True)))

        assert flow.get_state().state == S.OAUTH_FATAL
        assert flow.get_state().context.oauth_error_type == OAuthErrorType.FATAL
        assert flow.send(a.StartOAuth(exchange="coinbase", wallet_id="w", idem="i")) is False

    def test_window_closed_only_while_processing(self, flow: FlowMachine) -> None:
        closed = a.OAuthWindowClosedByUser(error=OAuthError("closed"))
        flow.send(a.StartOAuth(exchange="coinbase", wallet_id="wallet-1", idem="idem-1"))

        assert flow.send(closed) is False

        flow.send(a.OAuthWindowOpened())
        assert flow.send(closed) is True
        assert flow.get_state().state == S.OAUTH_WINDOW_CLOSED_BY_USER
        assert flow.send(a.StartOAuth(exchange="coinbase", wallet_id="w", idem="i2")) is True


class TestWallet:
    def test_loaded(self, flow: FlowMachine) -> None:
        _to_wallet_ready(flow)

        assert flow.get_state().state == S.WALLET_READY
        assert flow.get_state().context.wallet_balances[0].asset == "BTC"

    def test_failed_then_reload(self, flow: FlowMachine) -> None:
        flow.send(a.StartOAuth(exchange="coinbase", wallet_id="wallet-1", idem="idem-1"))
        flow.send(a.OAuthCompleted(wallet_id="wallet-1"))
        flow.send(a.LoadWallet())
        flow.send(a.WalletFailed(error=RuntimeError("no balances")))

        assert flow.get_state().state == S.WALLET_ERROR
        assert flow.send(a.LoadWallet()) is True
        assert flow.get_state().state == S.WALLET_LOADING


class TestQuotes:
    def test_request_records_last_request(self, flow: FlowMachine) -> None:
        _to_wallet_ready(flow)

        flow.send(
            a.RequestQuote(
                asset="XRP",
                amount="10",
                destination_address="r1",
                network="ripple",
                tag="7",
                include_fee=False,
            )
        )
        request = flow.get_state().context.last_quote_request

        assert flow.get_state().state == S.QUOTE_REQUESTING
        assert request.asset == "XRP"
        assert request.tag == "7"
        assert request.include_fee is False

    def test_received(self, flow: FlowMachine) -> None:
        _to_quote_ready(flow)

        assert flow.get_state().state == S.QUOTE_READY
        assert flow.get_state().context.quote.id == "quote-1"

    def test_superseding_request_while_requesting(self, flow: FlowMachine) -> None:
        _to_wallet_ready(flow)
        flow.send(_request("1"))
        first = flow.get_state().context.last_quote_request

        assert flow.send(_request("2")) is True
        assert flow.get_state().context.last_quote_request is not first
        assert flow.get_state().context.last_quote_request.amount == "2"

    def test_failed(self, flow: FlowMachine) -> None:
        _to_wallet_ready(flow)
        flow.send(_request())
        flow.send(a.QuoteFailed(error=QuoteError("Insufficient balance")))

        assert flow.get_state().state == S.QUOTE_ERROR
        assert flow.send(_request()) is True

    def test_expired(self, flow: FlowMachine) -> None:
        _to_quote_ready(flow)

        flow.send(a.QuoteExpired())
        snapshot = flow.get_state()

        assert snapshot.state == S.QUOTE_EXPIRED
        assert isinstance(snapshot.error, QuoteError)
        assert snapshot.error.error_code == "QUOTE_EXPIRED"
        # The stale quote stays visible until a new request is made
        assert snapshot.context.quote is not None

    def test_request_after_expiry_clears_quote(self, flow: FlowMachine) -> None:
        _to_quote_ready(flow)
        flow.send(a.QuoteExpired())

        flow.send(_request())

        assert flow.get_state().state == S.QUOTE_REQUESTING
        assert flow.get_state().context.quote is None

    def test_request_from_quote_ready_keeps_quote(self, flow: FlowMachine) -> None:
        _to_quote_ready(flow)

        flow.send(_request("0.02"))

        assert flow.get_state().context.quote.id == "quote-1"

    @pytest.mark.parametrize(
        "steps, expected",
        [
            ((), S.WITHDRAW_PROCESSING),
            ((a.WithdrawalFailed(error=RuntimeError("timeout")),), S.WITHDRAW_RETRYING),
            ((a.WithdrawalRequires2FA(),), S.WITHDRAW_ERROR_2FA),
            ((a.WithdrawalRequiresSMS(),), S.WITHDRAW_ERROR_SMS),
            ((a.WithdrawalRequiresKYC(),), S.WITHDRAW_ERROR_KYC),
            ((a.WithdrawalInsufficientBalance(),), S.WITHDRAW_ERROR_BALANCE),
            (
                (a.WithdrawalRequires2FA(), a.Submit2FA(code="000000"), a.Withdrawal2FAInvalid()),
                S.WITHDRAW_ERROR_2FA_INVALID,
            ),
            ((a.WithdrawalSuccess(transaction_id="tx-1"),), S.WITHDRAW_COMPLETED),
            ((a.WithdrawalBlocked(reason="Compliance hold"),), S.WITHDRAW_BLOCKED),
            ((a.WithdrawalFatal(error=RuntimeError("boom")),), S.WITHDRAW_FATAL),
        ],
    )
    def test_expiry_ignored_during_withdrawal(self, flow: FlowMachine, steps, expected) -> None:
        _to_processing(flow)
        for step in steps:
            flow.send(step)
        before = flow.get_state()
        assert before.state == expected
        listener = MagicMock()
        flow.subscribe(listener)
        listener.reset_mock()

        assert flow.send(a.QuoteExpired()) is False
        assert flow.get_state() is before
        listener.assert_not_called()

    def test_quote_before_wallet_ignored(self, flow: FlowMachine) -> None:
        assert flow.send(_request()) is False


class TestWithdrawal:
    def test_start_creates_nested_machine(self, flow: FlowMachine) -> None:
        _to_processing(flow)
        child = flow.get_withdrawal_state()

        assert flow.get_state().state == S.WITHDRAW_PROCESSING
        assert child.state == W.PROCESSING
        assert child.context.quote_id == "quote-1"
        assert child.context.wallet_id == "wallet-1"
        assert child.context.idempotency_key == "id-1"
        assert child.context.max_retries == 1

    def test_start_requires_wallet(self, make_id) -> None:
        flow = FlowMachine("org-1", "proj-1", make_key=make_id)
        flow.send(a.StartOAuth(exchange="coinbase", wallet_id="", idem="idem-1"))
        flow.send(a.OAuthCompleted())
        flow.send(a.LoadWallet())
        flow.send(a.WalletLoaded(balances=[]))
        flow.send(_request())
        flow.send(a.QuoteReceived(quote=_quote()))

        assert flow.send(a.StartWithdrawal(quote_id="quote-1")) is False
        assert flow.get_state().state == S.QUOTE_READY
        assert flow.has_withdrawal is False

    def test_success(self, flow: FlowMachine) -> None:
        _to_processing(flow)

        flow.send(a.WithdrawalSuccess(transaction_id="tx-1"))
        snapshot = flow.get_state()

        assert snapshot.state == S.WITHDRAW_COMPLETED
        assert snapshot.context.withdrawal.transaction_id == "tx-1"
        assert snapshot.context.withdrawal.status == "completed"
        assert snapshot.context.withdrawal.id == "id-1"
        assert flow.get_withdrawal_state().state == W.COMPLETED

    def test_completed_after_success_is_ignored(self, flow: FlowMachine) -> None:
        _to_processing(flow)
        flow.send(a.WithdrawalSuccess(transaction_id="tx-1"))

        assert flow.send(a.WithdrawalCompleted(transaction_id="tx-2")) is False
        assert flow.get_state().context.withdrawal.transaction_id == "tx-1"

    def test_progress_keeps_state(self, flow: FlowMachine) -> None:
        _to_processing(flow)

        flow.send(a.WithdrawalProgress(step="signing"))

        assert flow.get_state().state == S.WITHDRAW_PROCESSING
        assert flow.get_state().context.withdrawal_step == "signing"

    def test_2fa_challenge_and_submit(self, flow: FlowMachine) -> None:
        _to_processing(flow)

        flow.send(a.WithdrawalRequires2FA())
        snapshot = flow.get_state()
        assert snapshot.state == S.WITHDRAW_ERROR_2FA
        assert isinstance(snapshot.error, WithdrawalError)
        assert snapshot.error.error_code == "WITHDRAWAL_2FA_REQUIRED_TOTP"
        assert snapshot.error.details["required_actions"] == ["2fa"]

        flow.send(a.Submit2FA(code="123456"))
        assert flow.get_state().state == S.WITHDRAW_PROCESSING
        assert flow.get_withdrawal_state().context.two_factor_code == "123456"
        assert flow.get_withdrawal_state().context.idempotency_key == "id-1"

    def test_invalid_2fa_counts_attempts(self, flow: FlowMachine) -> None:
        _to_processing(flow)
        flow.send(a.WithdrawalRequires2FA())
        flow.send(a.Submit2FA(code="000000"))

        flow.send(a.Withdrawal2FAInvalid())
        snapshot = flow.get_state()

        assert snapshot.state == S.WITHDRAW_ERROR_2FA_INVALID
        assert snapshot.context.invalid_2fa_attempts == 1
        assert snapshot.error.error_code == "WITHDRAWAL_2FA_INVALID"
        assert flow.get_withdrawal_state().state == W.WAITING_FOR_2FA

        flow.send(a.Submit2FA(code="111111"))
        flow.send(a.Withdrawal2FAInvalid())
        assert flow.get_state().context.invalid_2fa_attempts == 2

    def test_sms_challenge(self, flow: FlowMachine) -> None:
        _to_processing(flow)

        flow.send(a.WithdrawalRequiresSMS())
        assert flow.get_state().state == S.WITHDRAW_ERROR_SMS
        assert flow.send(a.Submit2FA(code="1")) is False

        flow.send(a.SubmitSMS(code="4321"))
        assert flow.get_state().state == S.WITHDRAW_PROCESSING

    def test_kyc_challenge(self, flow: FlowMachine) -> None:
        _to_processing(flow)

        flow.send(a.WithdrawalRequiresKYC())

        assert flow.get_state().state == S.WITHDRAW_ERROR_KYC
        assert flow.get_state().error.error_code == "WITHDRAWAL_KYC_REQUIRED"

    def test_insufficient_balance(self, flow: FlowMachine) -> None:
        _to_processing(flow)

        flow.send(a.WithdrawalInsufficientBalance())

        assert flow.get_state().state == S.WITHDRAW_ERROR_BALANCE
        assert flow.get_state().error.error_code == "WITHDRAWAL_INSUFFICIENT_BALANCE"

    def test_transient_failure_retries_then_fatal(self, flow: FlowMachine) -> None:
        _to_processing(flow)

        flow.send(a.WithdrawalFailed(error=RuntimeError("timeout")))
        assert flow.get_state().state == S.WITHDRAW_RETRYING
        assert flow.get_state().context.retry_attempts == 1

        flow.send(a.RetryWithdrawal())
        assert flow.get_state().state == S.WITHDRAW_PROCESSING
        assert flow.get_withdrawal_state().context.idempotency_key == "id-2"

        final = RuntimeError("still down")
        flow.send(a.WithdrawalFailed(error=final))
        assert flow.get_state().state == S.WITHDRAW_FATAL
        assert flow.get_state().error is final

    def test_blocked(self, flow: FlowMachine) -> None:
        _to_processing(flow)

        flow.send(a.WithdrawalBlocked(reason="Compliance hold"))

        assert flow.get_state().state == S.WITHDRAW_BLOCKED
        assert flow.get_state().error.message == "Compliance hold"
        assert flow.get_withdrawal_state().state == W.BLOCKED

    def test_fatal_from_challenge_state(self, flow: FlowMachine) -> None:
        _to_processing(flow)
        flow.send(a.WithdrawalRequires2FA())
        error = WithdrawalError("Invalid destination address")

        flow.send(a.WithdrawalFatal(error=error))

        assert flow.get_state().state == S.WITHDRAW_FATAL
        assert flow.get_state().error is error

    def test_method_not_supported(self, flow: FlowMachine) -> None:
        _to_processing(flow)

        flow.send(a.Withdrawal2FAMethodNotSupported(valid_2fa_methods=("TOTP", "SMS")))
        snapshot = flow.get_state()

        assert snapshot.state == S.WITHDRAW_FATAL
        assert snapshot.error.error_code == "WITHDRAWAL_2FA_METHOD_NOT_SUPPORTED"
        assert "TOTP and SMS" in snapshot.error.message
        assert snapshot.context.error_details.valid_2fa_methods == ("TOTP", "SMS")

    @pytest.mark.parametrize(
        "finish",
        [
            a.WithdrawalSuccess(transaction_id="tx"),
            a.WithdrawalBlocked(reason="no"),
            a.WithdrawalFatal(error=RuntimeError("x")),
        ],
    )
    def test_terminal_states_absorb(self, flow: FlowMachine, finish) -> None:
        _to_processing(flow)
        flow.send(finish)
        state = flow.get_state().state

        for action in (
            a.CancelFlow(),
            a.RetryWithdrawal(),
            a.WithdrawalFailed(error=RuntimeError("x")),
            a.StartWithdrawal(quote_id="quote-1"),
            _request(),
        ):
            assert flow.send(action) is False
        assert flow.get_state().state == state


class TestTwoFactorMethodsMessage:
    @pytest.mark.parametrize(
        "methods, expected",
        [
            (None, "Please make sure your Exchange account has 2FA enabled."),
            (["TOTP"], "TOTP is the only supported two-factor authentication method."),
            (["TOTP", "SMS"], "TOTP and SMS are the only supported two-factor authentication methods."),
            (
                ["TOTP", "SMS", "YUBIKEY"],
                "TOTP, SMS, and YUBIKEY are the only supported two-factor authentication methods.",
            ),
        ],
    )
    def test_messages(self, methods, expected: str) -> None:
        assert two_factor_methods_message(methods) == expected


class TestCancel:
    @pytest.mark.parametrize(
        "setup, state",
        [
            ([], S.IDLE),
            ([a.StartOAuth(exchange="coinbase", wallet_id="wallet-1", idem="idem-1")], S.OAUTH_WAITING),
            (
                [
                    a.StartOAuth(exchange="coinbase", wallet_id="wallet-1", idem="idem-1"),
                    a.OAuthCompleted(wallet_id="wallet-1"),
                    a.LoadWallet(),
                ],
                S.WALLET_LOADING,
            ),
            (
                [
                    a.StartOAuth(exchange="coinbase", wallet_id="wallet-1", idem="idem-1"),
                    a.OAuthCompleted(wallet_id="wallet-1"),
                    a.LoadWallet(),
                    a.WalletLoaded(balances=[]),
                    a.RequestQuote(asset="BTC", amount="1", destination_address="bc1q"),
                ],
                S.QUOTE_REQUESTING,
            ),
        ],
    )
    def test_cancel_from_early_states(self, flow: FlowMachine, setup, state) -> None:
        for action in setup:
            flow.send(action)
        assert flow.get_state().state == state

        assert flow.send(a.CancelFlow()) is True
        assert flow.get_state().state == S.FLOW_CANCELLED

    def test_cancel_during_withdrawal_disposes_nested(self, flow: FlowMachine) -> None:
        _to_processing(flow)
        child = flow._withdrawal

        assert flow.send(a.CancelFlow()) is True
        assert flow.get_state().state == S.FLOW_CANCELLED
        assert flow.has_withdrawal is False
        assert child.is_disposed is True
        assert flow.send(a.CancelFlow()) is False

    def test_cancel_hooks_run_once(self, flow: FlowMachine) -> None:
        hook = MagicMock()
        flow.on_cancel(hook)

        flow.send(a.CancelFlow())

        hook.assert_called_once_with()

    def test_removed_hook_not_called(self, flow: FlowMachine) -> None:
        hook = MagicMock()
        remove = flow.on_cancel(hook)

        remove()
        flow.send(a.CancelFlow())

        hook.assert_not_called()

    def test_failing_hook_does_not_stop_cancel(self, flow: FlowMachine) -> None:
        other = MagicMock()
        flow.on_cancel(MagicMock(side_effect=RuntimeError("boom")))
        flow.on_cancel(other)

        flow.send(a.CancelFlow())

        assert flow.get_state().state == S.FLOW_CANCELLED
        other.assert_called_once()


class TestNestedAccess:
    def test_subscribe_withdrawal(self, flow: FlowMachine) -> None:
        assert flow.subscribe_withdrawal(lambda s: None)() is None

        _to_processing(flow)
        seen = []
        flow.subscribe_withdrawal(seen.append)
        flow.send(a.WithdrawalRequires2FA())

        assert [s.state for s in seen] == [W.PROCESSING, W.WAITING_FOR_2FA]

    def test_dispose_releases_nested_machine(self, flow: FlowMachine) -> None:
        _to_processing(flow)

        flow.dispose()

        with pytest.raises(MachineDisposedError):
            flow.get_withdrawal_state()
