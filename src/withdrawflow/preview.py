"""
Wallet previews.

Shows balances for several already-connected wallets without running a full
OAuth flow for each. Every wallet is pinged (to validate its credentials) and
then its withdrawable balance is fetched; the outcome is kept per wallet and
broadcast to subscribers.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, replace
from typing import Any

from withdrawflow.core.error_codes import is_wallet_not_found_error
from withdrawflow.core.exceptions import ValidationError
from withdrawflow.core.logging import get_logger
from withdrawflow.core.types import (
    PreviewStatus,
    WalletBalance,
    WalletPreview,
    balances_from_response,
    now_ms,
)
from withdrawflow.resilience import execute_with_retry

logger = get_logger("preview")

PingWallet = Callable[[str], Awaitable[Any]]
FetchWithdrawableBalance = Callable[[str], Awaitable[Any]]
PreviewListener = Callable[[dict[str, WalletPreview]], None]

INVALID_API_CREDENTIALS = "INVALID_API_CREDENTIALS"


@dataclass
class WalletCallbacks:
    """Optional notifications while a wallet is validated and loaded."""

    on_wallet_not_found: Callable[[str], None] | None = None
    on_wallet_invalid_api_credentials: Callable[[str], None] | None = None
    on_wallet_balance: Callable[[str, list[WalletBalance]], None] | None = None


@dataclass(frozen=True)
class PreviewWallet:
    id: str
    exchange: str


class WalletPreviewManager:
    """
    Tracks preview state for multiple wallets independently.

    Example:
        >>> manager = WalletPreviewManager(ping_wallet, fetch_withdrawable_balance)
        >>> await manager.load_preview_wallets([
        ...     PreviewWallet("wallet-1", "coinbase"),
        ...     PreviewWallet("wallet-2", "kraken"),
        ... ])
        >>> manager.get_preview_state("wallet-1").status
        <PreviewStatus.READY: 'ready'>
    """

    def __init__(
        self,
        ping_wallet: PingWallet,
        fetch_withdrawable_balance: FetchWithdrawableBalance,
        retry_reads: bool = False,
    ) -> None:
        """
        Initialize the manager.

        Args:
            ping_wallet: Validates a wallet; returns `{"status": ...}` or raises
            fetch_withdrawable_balance: Returns `{"balances": [...]}` or raises
            retry_reads: Retry transient failures of both calls
        """
        self._ping_wallet = ping_wallet
        self._fetch_withdrawable_balance = fetch_withdrawable_balance
        self._retry_reads = retry_reads
        self._states: dict[str, WalletPreview] = {}
        self._listeners: dict[PreviewListener, None] = {}

    async def _read(self, func: Callable[[str], Awaitable[Any]], wallet_id: str) -> Any:
        if self._retry_reads:
            return await execute_with_retry(func, wallet_id)
        return await func(wallet_id)

    async def load_preview_wallets(
        self,
        wallets: Iterable[PreviewWallet],
        callbacks: WalletCallbacks | None = None,
    ) -> None:
        """Load all wallets concurrently. One failure never affects the others."""
        results = await asyncio.gather(
            *(self.load_preview_wallet(w.id, w.exchange, callbacks) for w in wallets),
            return_exceptions=True,
        )
        for result in results:
            if isinstance(result, BaseException) and not isinstance(result, Exception):
                raise result

    async def load_preview_wallet(
        self,
        wallet_id: str,
        exchange: str,
        callbacks: WalletCallbacks | None = None,
    ) -> WalletPreview:
        """
        Validate and load one wallet.

        Ends in `ready`, `error_invalid_credentials`, `error_not_found` or
        `error_unknown`; collaborator errors are recorded, not raised.
        """
        callbacks = callbacks or WalletCallbacks()
        preview = WalletPreview(
            wallet_id=wallet_id,
            exchange=exchange,
            status=PreviewStatus.LOADING,
            last_updated=now_ms(),
        )
        self._update(preview)

        try:
            ping = await self._read(self._ping_wallet, wallet_id)
            if isinstance(ping, dict) and ping.get("status") == INVALID_API_CREDENTIALS:
                self._update(
                    replace(
                        preview,
                        status=PreviewStatus.ERROR_INVALID_CREDENTIALS,
                        error=ValidationError("Invalid API credentials"),
                        last_updated=now_ms(),
                    )
                )
                if callbacks.on_wallet_invalid_api_credentials:
                    callbacks.on_wallet_invalid_api_credentials(wallet_id)
                return self._states[wallet_id]

            response = await self._read(self._fetch_withdrawable_balance, wallet_id)
            balances = balances_from_response(response)
        except Exception as e:
            if is_wallet_not_found_error(e):
                logger.info(f"Preview wallet {wallet_id} not found")
                self._update(
                    replace(
                        preview,
                        status=PreviewStatus.ERROR_NOT_FOUND,
                        error=e,
                        last_updated=now_ms(),
                    )
                )
                if callbacks.on_wallet_not_found:
                    callbacks.on_wallet_not_found(wallet_id)
            else:
                logger.warning(f"Failed to load preview for wallet {wallet_id}: {e}")
                self._update(
                    replace(
                        preview,
                        status=PreviewStatus.ERROR_UNKNOWN,
                        error=e,
                        last_updated=now_ms(),
                    )
                )
            return self._states[wallet_id]

        self._update(
            replace(
                preview,
                status=PreviewStatus.READY,
                balances=balances,
                last_updated=now_ms(),
            )
        )
        if callbacks.on_wallet_balance:
            callbacks.on_wallet_balance(wallet_id, balances)
        return self._states[wallet_id]

    def get_preview_state(self, wallet_id: str) -> WalletPreview | None:
        return self._states.get(wallet_id)

    def get_all_preview_states(self) -> dict[str, WalletPreview]:
        return dict(self._states)

    def subscribe(self, listener: PreviewListener) -> Callable[[], None]:
        """
        Register a listener for preview changes.

        Called immediately with all current states, then on every change.
        """
        self._listeners[listener] = None
        listener(self.get_all_preview_states())

        def unsubscribe() -> None:
            self._listeners.pop(listener, None)

        return unsubscribe

    def clear_preview(self, wallet_id: str) -> None:
        self._states.pop(wallet_id, None)
        self._notify()

    def clear_all_previews(self) -> None:
        self._states.clear()
        self._notify()

    def dispose(self) -> None:
        self._states.clear()
        self._listeners.clear()

    def _update(self, preview: WalletPreview) -> None:
        self._states[preview.wallet_id] = preview
        self._notify()

    def _notify(self) -> None:
        states = self.get_all_preview_states()
        for listener in list(self._listeners):
            try:
                listener(states)
            except Exception:
                logger.exception("Error in preview listener")
