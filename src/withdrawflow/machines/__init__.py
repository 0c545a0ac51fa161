"""
State machines for withdrawflow.

A flow machine sequences one withdrawal journey and owns a nested withdrawal
machine for the execution phase.
"""

from . import actions
from .base import Action, Machine, Snapshot
from .flow import FlowContext, FlowMachine, create_flow_machine
from .withdrawal import WithdrawalContext, WithdrawalMachine, create_withdrawal_machine

__all__ = [
    "Action",
    "FlowContext",
    "FlowMachine",
    "Machine",
    "Snapshot",
    "WithdrawalContext",
    "WithdrawalMachine",
    "actions",
    "create_flow_machine",
    "create_withdrawal_machine",
]
