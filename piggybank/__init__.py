"""
Guardian/Dependent Savings Goals on a Shared Ledger

This module provides:
- Pre-flight parameter validation
- Decimal <-> smallest-unit conversion with explicit truncation
- Typed decoding of the nested GlobalLedger balance maps
- Atomic multi-step transaction composition for goal flows
- Declared cache invalidation after confirmed submissions
"""

from .aggregator import decode_global_ledger, derive_user_view
from .composer import TransactionComposer
from .models import (
    ApprovalOutcome,
    GlobalLedger,
    GoalStatus,
    SavingsGoal,
    UserLedgerView,
    WithdrawalRequest,
)
from .refresh import RefreshCoordinator
from .service import SavingsService
from .units import UnitConverter

__all__ = [
    "ApprovalOutcome",
    "GlobalLedger",
    "GoalStatus",
    "SavingsGoal",
    "UserLedgerView",
    "WithdrawalRequest",
    "TransactionComposer",
    "RefreshCoordinator",
    "SavingsService",
    "UnitConverter",
    "decode_global_ledger",
    "derive_user_view",
]
