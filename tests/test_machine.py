"""Unit tests for the Machine primitive."""

from dataclasses import dataclass
from typing import ClassVar

import pytest

from withdrawflow.core.exceptions import MachineDisposedError
from withdrawflow.machines.base import Action, Machine, Snapshot


@dataclass(frozen=True)
class Toggle(Action):
    type: ClassVar[str] = "TOGGLE"


@dataclass(frozen=True)
class Noop(Action):
    type: ClassVar[str] = "NOOP"


def _toggle_machine() -> Machine:
    return Machine(
        Snapshot("off", 0),
        {
            ("off", Toggle.type): lambda s, a: Snapshot("on", s.context + 1),
            ("on", Toggle.type): lambda s, a: Snapshot("off", s.context + 1),
            # Declining transitions leave the machine untouched
            ("off", Noop.type): lambda s, a: None,
        },
        name="toggle",
    )


class TestSend:
    def test_applies_transition(self) -> None:
        machine = _toggle_machine()

        assert machine.send(Toggle()) is True
        assert machine.get_state() == Snapshot("on", 1)

    def test_ignored_action_keeps_snapshot(self) -> None:
        machine = _toggle_machine()
        machine.send(Toggle())
        before = machine.get_state()

        machine.send(Noop())

        assert machine.get_state() is before

    def test_unknown_action_is_ignored(self) -> None:
        machine = _toggle_machine()
        seen = []
        machine.subscribe(seen.append)

        machine.send(Toggle())
        assert machine.send(Noop()) is False

        assert machine.get_state().state == "on"
        assert len(seen) == 2

    def test_declined_transition_does_not_notify(self) -> None:
        machine = _toggle_machine()
        seen = []
        machine.subscribe(seen.append)

        assert machine.send(Noop()) is False
        assert seen == [Snapshot("off", 0)]

    def test_can_handle(self) -> None:
        machine = _toggle_machine()

        assert machine.can_handle(Toggle()) is True
        machine.send(Toggle())
        assert machine.can_handle(Noop()) is False


class TestSubscribe:
    def test_replays_current_snapshot(self) -> None:
        machine = _toggle_machine()
        machine.send(Toggle())
        seen = []

        machine.subscribe(seen.append)

        assert seen == [Snapshot("on", 1)]

    def test_unsubscribe(self) -> None:
        machine = _toggle_machine()
        seen = []
        unsubscribe = machine.subscribe(seen.append)

        unsubscribe()
        machine.send(Toggle())

        assert seen == [Snapshot("off", 0)]

    def test_listener_error_does_not_break_others(self) -> None:
        machine = _toggle_machine()
        seen = []
        calls = {"n": 0}

        def broken(snapshot: Snapshot) -> None:
            calls["n"] += 1
            if calls["n"] > 1:
                raise RuntimeError("listener failed")

        machine.subscribe(broken)
        machine.subscribe(seen.append)

        assert machine.send(Toggle()) is True
        assert seen[-1] == Snapshot("on", 1)

    def test_listener_failing_on_replay_is_not_registered(self) -> None:
        machine = _toggle_machine()
        calls = []

        def broken(snapshot: Snapshot) -> None:
            calls.append(snapshot)
            raise RuntimeError("listener failed")

        with pytest.raises(RuntimeError, match="listener failed"):
            machine.subscribe(broken)
        machine.send(Toggle())

        assert calls == [Snapshot("off", 0)]


class TestDispose:
    def test_calls_after_dispose_raise(self) -> None:
        machine = _toggle_machine()
        machine.dispose()

        assert machine.is_disposed is True
        with pytest.raises(MachineDisposedError):
            machine.send(Toggle())
        with pytest.raises(MachineDisposedError):
            machine.get_state()
        with pytest.raises(MachineDisposedError):
            machine.subscribe(lambda s: None)

    def test_dispose_is_idempotent(self) -> None:
        machine = _toggle_machine()

        machine.dispose()
        machine.dispose()

        assert machine.is_disposed is True

    def test_listeners_released(self) -> None:
        machine = _toggle_machine()
        seen = []
        machine.subscribe(seen.append)

        machine.dispose()

        assert seen == [Snapshot("off", 0)]
