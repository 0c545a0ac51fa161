"""
withdrawflow - State-machine driven crypto withdrawal flows

Authorize an exchange, load the wallet, negotiate a quote and execute the
withdrawal as a sequence of explicit, observable states.

Usage:
    >>> from withdrawflow import FlowClient, FlowClientOptions, QuoteRequest
    >>>
    >>> client = FlowClient(FlowClientOptions(
    ...     org_id="org-1",
    ...     project_id="proj-1",
    ...     fetch_withdrawable_balance=api.get_withdrawable_balance,
    ...     request_quotation=api.request_quotation,
    ...     execute_withdrawal=api.execute_withdrawal,
    ...     open_oauth_window=popup.open,
    ... ))
    >>> handle = await client.start_withdrawal_flow("coinbase", "wallet-1")
    >>> client.subscribe(lambda snapshot: print(snapshot.state))
"""

from withdrawflow.client import FlowClient, FlowClientOptions, FlowHandle
from withdrawflow.core.config import Config
from withdrawflow.core.error_codes import (
    ErrorCategory,
    ErrorCode,
    WithdrawalErrorKind,
    classify_withdrawal_error,
    extract_error_code,
)
from withdrawflow.core.exceptions import (
    ApiError,
    ConfigurationError,
    MachineDisposedError,
    NetworkError,
    OAuthError,
    QuoteError,
    ValidationError,
    WithdrawalError,
    WithdrawFlowError,
)
from withdrawflow.core.types import (
    FlowStateType,
    PopupOptions,
    PreviewStatus,
    Quote,
    QuoteRequest,
    WalletBalance,
    WalletNetwork,
    WalletPreview,
    WithdrawalStateType,
)
from withdrawflow.idempotency import generate_idempotency_key
from withdrawflow.machines import (
    FlowMachine,
    Snapshot,
    WithdrawalMachine,
    create_flow_machine,
    create_withdrawal_machine,
)
from withdrawflow.messaging import InMemoryMessageChannel, MessageChannel, MessageHandlers
from withdrawflow.preview import PreviewWallet, WalletCallbacks, WalletPreviewManager

__version__ = "0.1.0"
__all__ = [
    # Main Client
    "FlowClient",
    "FlowClientOptions",
    "FlowHandle",
    # Machines
    "FlowMachine",
    "WithdrawalMachine",
    "Snapshot",
    "create_flow_machine",
    "create_withdrawal_machine",
    "generate_idempotency_key",
    # Previews
    "WalletPreviewManager",
    "PreviewWallet",
    "WalletCallbacks",
    # Messaging
    "MessageChannel",
    "MessageHandlers",
    "InMemoryMessageChannel",
    # Types
    "FlowStateType",
    "WithdrawalStateType",
    "PreviewStatus",
    "Quote",
    "QuoteRequest",
    "WalletBalance",
    "WalletNetwork",
    "WalletPreview",
    "PopupOptions",
    # Errors
    "ErrorCode",
    "ErrorCategory",
    "WithdrawalErrorKind",
    "classify_withdrawal_error",
    "extract_error_code",
    # Config
    "Config",
    # Exceptions
    "WithdrawFlowError",
    "ConfigurationError",
    "ValidationError",
    "MachineDisposedError",
    "ApiError",
    "NetworkError",
    "OAuthError",
    "QuoteError",
    "WithdrawalError",
]
