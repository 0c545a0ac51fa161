"""
Workflow message parsing.

The backend reports workflow progress on a pub/sub topic. Each message is a
JSON body, sometimes wrapped as `{messageId, idem, timestamp, body}`. This
module validates that body and converts it into a typed WorkflowMessage. It
does not deal with transport; that is the channel's job.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from withdrawflow.core.exceptions import ApiError, ValidationError
from withdrawflow.core.types import WorkflowType


@dataclass(frozen=True)
class WorkflowMessage:
    """
    One workflow update.

    `success` is True for a completed workflow, False for a failed one and
    None while steps are still being reported.
    """

    type: WorkflowType
    success: bool | None = None
    wallet_id: str | None = None
    exchange: str | None = None
    transaction_id: str | None = None
    quote_id: str | None = None
    step: str | None = None
    step_index: int | None = None
    total_steps: int | None = None
    error: Any = None
    raw: dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @property
    def is_pending(self) -> bool:
        return self.success is None

    @property
    def is_success(self) -> bool:
        return self.success is True

    @property
    def is_failure(self) -> bool:
        return self.success is False


def _decode(payload: str | bytes | Mapping[str, Any]) -> Mapping[str, Any]:
    if isinstance(payload, Mapping):
        return payload
    try:
        if isinstance(payload, bytes):
            data = json.loads(payload.decode("utf-8"))
        else:
            data = json.loads(payload)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ValidationError(f"Invalid JSON payload: {e}") from e
    if not isinstance(data, Mapping):
        raise ValidationError("Workflow message must be a JSON object")
    return data


def _optional_int(data: Mapping[str, Any], key: str) -> int | None:
    value = data.get(key)
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise ValidationError(f"Field '{key}' must be an integer", {"value": value}) from e


def parse_workflow_message(payload: str | bytes | Mapping[str, Any]) -> WorkflowMessage:
    """
    Parse a raw workflow message.

    Args:
        payload: Raw body (bytes/str) or an already decoded dict

    Returns:
        WorkflowMessage

    Raises:
        ValidationError: If the payload is malformed or of an unknown type
    """
    data = _decode(payload)

    # Unwrap the transport envelope
    body = data.get("body")
    if isinstance(body, Mapping):
        data = body

    if "type" not in data:
        raise ValidationError("Missing 'type' in workflow message")
    try:
        message_type = WorkflowType(data["type"])
    except ValueError as e:
        raise ValidationError(f"Unknown workflow type: {data['type']}") from e

    success = data.get("success")
    if success is not None and not isinstance(success, bool):
        # Anything that is neither true nor false counts as a pending step
        success = None

    return WorkflowMessage(
        type=message_type,
        success=success,
        wallet_id=data.get("walletId"),
        exchange=data.get("exchange"),
        transaction_id=data.get("transactionId"),
        quote_id=data.get("quoteId"),
        step=data.get("step"),
        step_index=_optional_int(data, "stepIndex"),
        total_steps=_optional_int(data, "totalSteps"),
        error=data.get("error"),
        raw=dict(data),
    )


def message_error(message: WorkflowMessage, default: str) -> ApiError:
    """
    Build the exception a failed workflow message reports.

    Understands the serialized `{code, message, result?}` shape, the legacy
    `{name, message}` shape and plain strings.
    """
    error = message.error
    if isinstance(error, Mapping):
        code = error.get("code") or error.get("name")
        text = error.get("message") or default
        return ApiError(
            text,
            error_code=code if isinstance(code, str) else None,
            result=error.get("result"),
            details={"original_error": dict(error)},
        )
    if isinstance(error, str) and error:
        return ApiError(error)
    return ApiError(default)
