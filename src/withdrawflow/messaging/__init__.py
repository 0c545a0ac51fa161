"""
Workflow messaging for withdrawflow.

Typed workflow messages and the channel the client listens on.
"""

from .channel import (
    InMemoryMessageChannel,
    MessageChannel,
    MessageHandlers,
    Subscription,
    dispatch_message,
)
from .messages import WorkflowMessage, message_error, parse_workflow_message

__all__ = [
    "InMemoryMessageChannel",
    "MessageChannel",
    "MessageHandlers",
    "Subscription",
    "WorkflowMessage",
    "dispatch_message",
    "message_error",
    "parse_workflow_message",
]
