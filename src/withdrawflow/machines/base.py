"""
Observable state machine primitive.

A Machine holds a `Snapshot(state, context, error)` and a transition table
keyed by `(state, action.type)`. `send()` runs the matching transition; an
action with no entry for the current state is ignored (no change, no
notification). Listeners see every applied transition.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any, ClassVar, Generic, TypeVar

from withdrawflow.core.exceptions import MachineDisposedError
from withdrawflow.core.logging import get_logger

S = TypeVar("S")
C = TypeVar("C")


@dataclass(frozen=True)
class Action:
    """Base class for machine actions. Subclasses set `type`."""

    type: ClassVar[str] = ""


@dataclass(frozen=True)
class Snapshot(Generic[S, C]):
    """Immutable view of a machine at one point in time."""

    state: S
    context: C
    error: Exception | None = None


Listener = Callable[[Snapshot[S, C]], None]
Unsubscribe = Callable[[], None]
# Returns the next snapshot, or None to leave the machine untouched
Transition = Callable[[Snapshot[S, C], Any], "Snapshot[S, C] | None"]
TransitionTable = Mapping[tuple[S, str], Transition]


class Machine(Generic[S, C]):
    """
    Reducer-style state container.

    Example:
        >>> machine = Machine(Snapshot("off", None), {("off", "TOGGLE"): turn_on})
        >>> unsubscribe = machine.subscribe(print)  # prints the current snapshot
        >>> machine.send(Toggle())                  # prints the new snapshot
        True
    """

    def __init__(
        self,
        initial: Snapshot[S, C],
        transitions: TransitionTable,
        name: str = "machine",
    ) -> None:
        """
        Initialize the machine.

        Args:
            initial: Starting snapshot
            transitions: Mapping of (state, action type) to transition function
            name: Used in log messages
        """
        self._snapshot = initial
        self._transitions = dict(transitions)
        # dict keeps insertion order and de-duplicates listeners
        self._listeners: dict[Listener, None] = {}
        self._disposed = False
        self.name = name
        self._logger = get_logger(f"machines.{name}")

    @property
    def is_disposed(self) -> bool:
        return self._disposed

    def _assert_not_disposed(self) -> None:
        if self._disposed:
            raise MachineDisposedError()

    def get_state(self) -> Snapshot[S, C]:
        """Return the current snapshot."""
        self._assert_not_disposed()
        return self._snapshot

    def can_handle(self, action: Action) -> bool:
        """Check whether `action` has a transition from the current state."""
        self._assert_not_disposed()
        return (self._snapshot.state, action.type) in self._transitions

    def send(self, action: Action) -> bool:
        """
        Apply an action.

        Returns:
            True if a transition was applied, False if the action was ignored
        """
        self._assert_not_disposed()
        previous = self._snapshot
        transition = self._transitions.get((previous.state, action.type))
        if transition is None:
            self._logger.debug(f"No transition for {action.type} in state {_label(previous.state)}")
            return False

        current = transition(previous, action)
        if current is None:
            self._logger.debug(f"Transition for {action.type} in state {_label(previous.state)} declined")
            return False

        self._snapshot = current
        self._after_transition(previous, current, action)
        self._notify()
        return True

    def subscribe(self, listener: Listener) -> Unsubscribe:
        """
        Register a listener.

        The listener is called once immediately with the current snapshot,
        then after every applied transition.

        Returns:
            A callable that removes the listener

        Raises:
            Exception: Whatever the listener raised on the initial call; the
                listener is not registered in that case
        """
        self._assert_not_disposed()
        listener(self._snapshot)
        self._listeners[listener] = None

        def unsubscribe() -> None:
            self._listeners.pop(listener, None)

        return unsubscribe

    def dispose(self) -> None:
        """Release listeners. Every later call except dispose() raises."""
        if self._disposed:
            return
        self._on_dispose()
        self._listeners.clear()
        self._disposed = True

    def _after_transition(self, previous: Snapshot[S, C], current: Snapshot[S, C], action: Action) -> None:
        """Hook for subclasses; runs after the state changed, before listeners."""

    def _on_dispose(self) -> None:
        """Hook for subclasses to release owned resources."""

    def _notify(self) -> None:
        snapshot = self._snapshot
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                self._logger.exception("Error in state listener")


def _label(state: Any) -> str:
    return str(getattr(state, "value", state))
