"""
Configuration management for withdrawflow.

Handles loading configuration from environment variables and validation.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, fields
from typing import Any

DEFAULT_MAX_RETRY_ATTEMPTS = 3
DEFAULT_AUTO_REFRESH_QUOTATION = True


def _get_env_var(name: str, default: str | None = None, required: bool = False) -> str | None:
    """Get environment variable with optional default."""
    value = os.environ.get(name, default)
    if required and not value:
        raise ValueError(f"Required environment variable {name} is not set")
    return value


def _parse_bool(value: str | bool | None, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class Config:
    """Flow client configuration."""

    org_id: str
    project_id: str
    max_retry_attempts: int = DEFAULT_MAX_RETRY_ATTEMPTS
    auto_refresh_quotation: bool = DEFAULT_AUTO_REFRESH_QUOTATION
    log_level: str = "INFO"

    # Quote request default
    include_fee: bool = True

    # Retry read-only collaborator calls (balances, ping, exchange listing)
    retry_transient_reads: bool = True

    # Popup geometry passed to the OAuth window opener
    popup_width: int = 600
    popup_height: int = 700

    def __post_init__(self) -> None:
        if not self.org_id:
            raise ValueError("org_id is required")
        if not self.project_id:
            raise ValueError("project_id is required")
        if self.max_retry_attempts < 0:
            raise ValueError("max_retry_attempts must be >= 0")

    @classmethod
    def from_env(cls, **overrides: Any) -> Config:
        """Load configuration from environment variables."""
        org_id = overrides.get("org_id") or _get_env_var("WITHDRAWFLOW_ORG_ID", required=True)
        project_id = overrides.get("project_id") or _get_env_var(
            "WITHDRAWFLOW_PROJECT_ID", required=True
        )

        max_retry_attempts = overrides.get("max_retry_attempts")
        if max_retry_attempts is None:
            max_retry_attempts = int(
                _get_env_var(
                    "WITHDRAWFLOW_MAX_RETRY_ATTEMPTS", default=str(DEFAULT_MAX_RETRY_ATTEMPTS)
                )  # type: ignore
            )

        auto_refresh = overrides.get("auto_refresh_quotation")
        if auto_refresh is None:
            auto_refresh = _parse_bool(
                _get_env_var("WITHDRAWFLOW_AUTO_REFRESH_QUOTATION"),
                DEFAULT_AUTO_REFRESH_QUOTATION,
            )

        log_level = overrides.get("log_level") or _get_env_var(
            "WITHDRAWFLOW_LOG_LEVEL", default="INFO"
        )

        return cls(
            org_id=org_id,  # type: ignore
            project_id=project_id,  # type: ignore
            max_retry_attempts=max_retry_attempts,
            auto_refresh_quotation=auto_refresh,
            log_level=log_level,  # type: ignore
            include_fee=overrides.get("include_fee", cls.include_fee),
            retry_transient_reads=overrides.get(
                "retry_transient_reads", cls.retry_transient_reads
            ),
            popup_width=overrides.get("popup_width", cls.popup_width),
            popup_height=overrides.get("popup_height", cls.popup_height),
        )

    def with_updates(self, **updates: Any) -> Config:
        """Create a new Config with updated values."""
        current = {f.name: getattr(self, f.name) for f in fields(self)}
        current.update(updates)
        return Config(**current)
