"""
Message channel abstraction.

The client listens on one topic per workflow (the OAuth idempotency key, then
the quote id) through a MessageChannel. Real transports (websockets, SSE)
implement the protocol; InMemoryMessageChannel is the default for tests and
local development.
"""

from __future__ import annotations

import inspect
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

from withdrawflow.core.logging import get_logger
from withdrawflow.core.types import WorkflowType
from withdrawflow.messaging.messages import WorkflowMessage, message_error, parse_workflow_message

logger = get_logger("messaging.channel")

MessageCallback = Callable[[WorkflowMessage], Any]
ErrorCallback = Callable[[Exception], Any]


@dataclass
class MessageHandlers:
    """Callbacks for one topic. Each may be a plain function or a coroutine function."""

    on_oauth2_complete: MessageCallback | None = None
    on_withdraw_complete: MessageCallback | None = None
    on_step: MessageCallback | None = None
    on_error: ErrorCallback | None = None


@dataclass(frozen=True)
class Subscription:
    topic_name: str


@runtime_checkable
class MessageChannel(Protocol):
    """Pub/sub transport the client listens on."""

    async def subscribe(self, topic: str, handlers: MessageHandlers) -> Subscription:
        """Start delivering messages for `topic` to `handlers`."""
        ...

    async def unsubscribe(self, topic: str) -> None:
        """Stop delivering messages for `topic`. Unknown topics are ignored."""
        ...


async def _call(callback: Callable[..., Any] | None, *args: Any) -> None:
    if callback is None:
        return
    result = callback(*args)
    if inspect.isawaitable(result):
        await result


async def dispatch_message(message: WorkflowMessage, handlers: MessageHandlers) -> None:
    """
    Route one parsed message to the matching handler.

    Pending messages go to `on_step`. A successful OAuth2 or withdraw message
    carrying a wallet id goes to its completion handler. A failed one goes to
    `on_error` as an ApiError.
    """
    if message.is_pending:
        await _call(handlers.on_step, message)
        return

    if message.type == WorkflowType.OAUTH2_FLOW:
        if handlers.on_oauth2_complete is None:
            logger.error("Received OAuth2 message but no on_oauth2_complete handler is defined")
            return
        if message.is_success and message.wallet_id:
            await _call(handlers.on_oauth2_complete, message)
        elif message.is_failure:
            await _call(handlers.on_error, message_error(message, "OAuth2 flow failed"))
        return

    if message.type == WorkflowType.WITHDRAW_FUNDS:
        if handlers.on_withdraw_complete is None:
            logger.error("Received withdraw message but no on_withdraw_complete handler is defined")
            return
        if message.is_success and message.wallet_id:
            await _call(handlers.on_withdraw_complete, message)
        elif message.is_failure:
            await _call(handlers.on_error, message_error(message, "Withdraw funds flow failed"))
        return

    logger.debug(f"Ignoring {message.type.value} message")


class InMemoryMessageChannel:
    """
    In-process message channel.

    Messages are delivered synchronously to the handlers subscribed to the
    topic at publish time. Data is lost when the process ends.
    """

    def __init__(self) -> None:
        self._topics: dict[str, MessageHandlers] = {}

    @property
    def topics(self) -> list[str]:
        return list(self._topics)

    def is_subscribed(self, topic: str) -> bool:
        return topic in self._topics

    async def subscribe(self, topic: str, handlers: MessageHandlers) -> Subscription:
        """Register handlers for a topic, replacing any previous ones."""
        self._topics[topic] = handlers
        logger.debug(f"Subscribed to topic {topic}")
        return Subscription(topic_name=topic)

    async def unsubscribe(self, topic: str) -> None:
        if self._topics.pop(topic, None) is not None:
            logger.debug(f"Unsubscribed from topic {topic}")

    async def publish(self, topic: str, payload: str | bytes | Mapping[str, Any]) -> bool:
        """
        Deliver a raw message to the topic's handlers.

        Returns:
            True if a subscriber received it, False if nobody listens on the topic

        Raises:
            ValidationError: If the payload is not a valid workflow message
        """
        handlers = self._topics.get(topic)
        if handlers is None:
            return False
        await dispatch_message(parse_workflow_message(payload), handlers)
        return True

    async def publish_error(self, topic: str, error: Exception) -> bool:
        """Report a transport-level failure to the topic's `on_error` handler."""
        handlers = self._topics.get(topic)
        if handlers is None:
            return False
        await _call(handlers.on_error, error)
        return True
