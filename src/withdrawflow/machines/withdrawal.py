"""
Withdrawal machine.

Owns one withdrawal attempt: execution, 2FA/SMS/KYC challenges, bounded
caller-driven retries and the terminal outcome. `completed`, `blocked` and
`failed` have no outbound transitions; a new attempt is a new EXECUTE on a
new machine.

Idempotency keys are generated on EXECUTE and on every RETRY, and only there.
Challenge submissions resubmit the same attempt under the same key.
"""

from __future__ import annotations

from dataclasses import dataclass, replace

from withdrawflow.core.config import DEFAULT_MAX_RETRY_ATTEMPTS
from withdrawflow.core.exceptions import WithdrawalError
from withdrawflow.core.types import RequiredAction, WithdrawalStateType
from withdrawflow.idempotency import IdGenerator, generate_idempotency_key
from withdrawflow.machines import actions as a
from withdrawflow.machines.base import Machine, Snapshot, Transition

State = WithdrawalStateType


@dataclass(frozen=True)
class WithdrawalContext:
    """Data carried by the withdrawal machine."""

    quote_id: str = ""
    wallet_id: str = ""
    idempotency_key: str = ""
    retry_count: int = 0
    max_retries: int = DEFAULT_MAX_RETRY_ATTEMPTS
    two_factor_code: str | None = None
    sms_code: str | None = None
    required_actions: tuple[RequiredAction, ...] | None = None
    transaction_id: str | None = None
    last_error: Exception | None = None


WithdrawalSnapshot = Snapshot[WithdrawalStateType, WithdrawalContext]


class WithdrawalMachine(Machine[WithdrawalStateType, WithdrawalContext]):
    """
    State machine for a single withdrawal attempt.

    Example:
        >>> machine = WithdrawalMachine(max_retries=2)
        >>> machine.send(Execute(quote_id="quote-1", wallet_id="wallet-1"))
        True
        >>> machine.get_state().state
        <WithdrawalStateType.PROCESSING: 'processing'>
    """

    def __init__(
        self,
        quote_id: str = "",
        wallet_id: str = "",
        max_retries: int = DEFAULT_MAX_RETRY_ATTEMPTS,
        make_key: IdGenerator = generate_idempotency_key,
    ) -> None:
        """
        Initialize an idle withdrawal machine.

        Args:
            quote_id: Quote the attempt is for (EXECUTE overrides it)
            wallet_id: Source wallet (EXECUTE overrides it)
            max_retries: FAIL transitions that still land in `retrying`
            make_key: Idempotency key generator
        """
        self._make_key = make_key
        initial = Snapshot(
            state=State.IDLE,
            context=WithdrawalContext(
                quote_id=quote_id,
                wallet_id=wallet_id,
                max_retries=max_retries,
            ),
        )
        super().__init__(initial, self._build_transitions(), name="withdrawal")

    def _build_transitions(self) -> dict[tuple[WithdrawalStateType, str], Transition]:
        return {
            (State.IDLE, a.Execute.type): self._execute,
            (State.PROCESSING, a.Requires2FA.type): self._challenge(
                State.WAITING_FOR_2FA, RequiredAction.TWO_FACTOR
            ),
            (State.PROCESSING, a.RequiresSMS.type): self._challenge(
                State.WAITING_FOR_SMS, RequiredAction.SMS
            ),
            (State.PROCESSING, a.RequiresKYC.type): self._challenge(
                State.WAITING_FOR_KYC, RequiredAction.KYC
            ),
            (State.PROCESSING, a.Success.type): self._success,
            (State.PROCESSING, a.Fail.type): self._fail,
            (State.PROCESSING, a.Blocked.type): self._blocked,
            (State.WAITING_FOR_2FA, a.Submit2FA.type): self._submit_2fa,
            (State.WAITING_FOR_SMS, a.SubmitSMS.type): self._submit_sms,
            (State.RETRYING, a.Retry.type): self._retry,
            # waitingForKYC resolves out-of-band: no outbound transition
        }

    def _execute(self, snapshot: WithdrawalSnapshot, action: a.Execute) -> WithdrawalSnapshot:
        context = replace(
            snapshot.context,
            quote_id=action.quote_id,
            wallet_id=action.wallet_id,
            idempotency_key=self._make_key(),
            retry_count=0,
        )
        return Snapshot(State.PROCESSING, context)

    @staticmethod
    def _challenge(target: WithdrawalStateType, required: RequiredAction) -> Transition:
        def transition(snapshot: WithdrawalSnapshot, action: a.Action) -> WithdrawalSnapshot:
            return Snapshot(target, replace(snapshot.context, required_actions=(required,)))

        return transition

    def _submit_2fa(self, snapshot: WithdrawalSnapshot, action: a.Submit2FA) -> WithdrawalSnapshot:
        context = replace(snapshot.context, two_factor_code=action.code, required_actions=None)
        return Snapshot(State.PROCESSING, context)

    def _submit_sms(self, snapshot: WithdrawalSnapshot, action: a.SubmitSMS) -> WithdrawalSnapshot:
        context = replace(snapshot.context, sms_code=action.code, required_actions=None)
        return Snapshot(State.PROCESSING, context)

    def _success(self, snapshot: WithdrawalSnapshot, action: a.Success) -> WithdrawalSnapshot:
        context = replace(snapshot.context, transaction_id=action.transaction_id)
        return Snapshot(State.COMPLETED, context)

    def _fail(self, snapshot: WithdrawalSnapshot, action: a.Fail) -> WithdrawalSnapshot:
        context = snapshot.context
        if context.retry_count < context.max_retries:
            context = replace(context, retry_count=context.retry_count + 1, last_error=action.error)
            return Snapshot(State.RETRYING, context, action.error)
        return Snapshot(State.FAILED, replace(context, last_error=action.error), action.error)

    def _retry(self, snapshot: WithdrawalSnapshot, action: a.Retry) -> WithdrawalSnapshot:
        # New attempt at the transport layer, same logical withdrawal
        context = replace(snapshot.context, idempotency_key=self._make_key())
        return Snapshot(State.PROCESSING, context)

    def _blocked(self, snapshot: WithdrawalSnapshot, action: a.Blocked) -> WithdrawalSnapshot:
        error = WithdrawalError(action.reason, quote_id=snapshot.context.quote_id)
        return Snapshot(State.BLOCKED, snapshot.context, error)


def create_withdrawal_machine(
    quote_id: str = "",
    wallet_id: str = "",
    max_retries: int = DEFAULT_MAX_RETRY_ATTEMPTS,
    make_key: IdGenerator = generate_idempotency_key,
) -> WithdrawalMachine:
    """Create an idle withdrawal machine."""
    return WithdrawalMachine(
        quote_id=quote_id,
        wallet_id=wallet_id,
        max_retries=max_retries,
        make_key=make_key,
    )
