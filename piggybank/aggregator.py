"""Typed views over the raw, loosely-typed ledger objects.

The GlobalLedger object arrives as nested ``VecMap`` payloads::

    deposit_balances.fields.contents[i].fields.key            -> depositor
    deposit_balances.fields.contents[i].fields.value
                    .fields.contents[j].fields.{key, value}   -> goal, amount

All decoding happens here and rejects anything that does not match this
shape. A malformed amount raises CorruptLedgerEntry and is never defaulted to
zero.

The whole object is decoded at once rather than per address. Goal balances
and ledger totals sum across every depositor, so one corrupt leaf anywhere
makes every derived view fail, including ``derive_user_view`` for addresses
whose own entries are well formed.
"""

import re
from typing import Any, Optional

from .errors import CorruptLedgerEntry, GlobalLedgerNotFound, ObjectNotFound
from .models import (
    ApprovalOutcome,
    GlobalLedger,
    GoalAmount,
    SavingsGoal,
    UserLedgerView,
    WithdrawalRequest,
)

_UNSIGNED = re.compile(r"[0-9]+")
_U64_MAX = 2**64 - 1


def parse_amount(value: Any, path: str) -> int:
    if isinstance(value, bool):
        raise CorruptLedgerEntry(f"Expected unsigned integer, got {value!r}", path)
    if isinstance(value, int):
        amount = value
    elif isinstance(value, str) and _UNSIGNED.fullmatch(value):
        amount = int(value)
    else:
        raise CorruptLedgerEntry(f"Expected unsigned integer, got {value!r}", path)
    if amount < 0 or amount > _U64_MAX:
        raise CorruptLedgerEntry(f"Amount {amount} outside u64 range", path)
    return amount


def _mapping(value: Any, path: str) -> dict:
    if not isinstance(value, dict):
        raise CorruptLedgerEntry(f"Expected object, got {type(value).__name__}", path)
    return value


def _string(value: Any, path: str) -> str:
    if not isinstance(value, str) or not value:
        raise CorruptLedgerEntry(f"Expected non-empty string, got {value!r}", path)
    return value


def _fields(raw: Any, path: str) -> dict:
    return _mapping(_mapping(raw, path).get("fields"), f"{path}.fields")


def _object_id(raw: dict, fields: dict, path: str) -> str:
    if "objectId" in raw:
        return _string(raw["objectId"], f"{path}.objectId")
    uid = _mapping(fields.get("id"), f"{path}.fields.id")
    return _string(uid.get("id"), f"{path}.fields.id.id")


def _vec_map_entries(raw: Any, path: str) -> list[tuple[str, Any]]:
    contents = _fields(raw, path).get("contents")
    if not isinstance(contents, list):
        raise CorruptLedgerEntry("Expected list of map entries", f"{path}.fields.contents")

    entries: list[tuple[str, Any]] = []
    seen: set[str] = set()
    for index, entry in enumerate(contents):
        entry_path = f"{path}.fields.contents[{index}]"
        fields = _fields(entry, entry_path)
        key = _string(fields.get("key"), f"{entry_path}.fields.key")
        if key in seen:
            raise CorruptLedgerEntry(f"Duplicate map key {key}", entry_path)
        if "value" not in fields:
            raise CorruptLedgerEntry("Map entry has no value", entry_path)
        seen.add(key)
        entries.append((key, fields["value"]))
    return entries


def decode_balance_map(raw: Any, path: str) -> dict[str, dict[str, int]]:
    """Decode a depositor -> goal -> amount nested map. ``None`` means empty."""
    if raw is None:
        return {}
    balances: dict[str, dict[str, int]] = {}
    for depositor, inner in _vec_map_entries(raw, path):
        inner_path = f"{path}[{depositor}]"
        balances[depositor] = {
            goal_id: parse_amount(amount, f"{inner_path}[{goal_id}]")
            for goal_id, amount in _vec_map_entries(inner, inner_path)
        }
    return balances


def decode_global_ledger(raw: Optional[dict], object_id: str = "") -> GlobalLedger:
    if raw is None:
        raise GlobalLedgerNotFound(object_id or "global ledger")
    fields = _fields(raw, "global_ledger")
    return GlobalLedger(
        object_id=_object_id(raw, fields, "global_ledger"),
        admin=fields.get("admin") or "",
        deposit_balances=decode_balance_map(fields.get("deposit_balances"), "deposit_balances"),
        reward_balances=decode_balance_map(fields.get("reward_balances"), "reward_balances"),
        total_goals=parse_amount(fields.get("total_goals", 0), "total_goals"),
        total_deposits=parse_amount(fields.get("total_deposits", 0), "total_deposits"),
        total_withdrawals=parse_amount(fields.get("total_withdrawals", 0), "total_withdrawals"),
        platform_fees_collected=parse_amount(
            fields.get("platform_fees_collected", 0), "platform_fees_collected"
        ),
    )


def _flatten(balances: dict[str, dict[str, int]], address: str) -> list[GoalAmount]:
    per_goal = balances.get(address)
    if per_goal is None:
        return []
    return [GoalAmount(goal_id=goal_id, amount=amount) for goal_id, amount in per_goal.items()]


def derive_user_view(ledger: GlobalLedger, address: str) -> UserLedgerView:
    return UserLedgerView(
        address=address,
        deposits=_flatten(ledger.deposit_balances, address),
        rewards=_flatten(ledger.reward_balances, address),
    )


def goal_balance(ledger: GlobalLedger, goal_id: str) -> int:
    return sum(per_goal.get(goal_id, 0) for per_goal in ledger.deposit_balances.values())


def goal_rewards(ledger: GlobalLedger, goal_id: str) -> int:
    return sum(per_goal.get(goal_id, 0) for per_goal in ledger.reward_balances.values())


def decode_goal(raw: Optional[dict], object_id: str = "") -> SavingsGoal:
    if raw is None:
        raise ObjectNotFound(object_id or "goal")
    fields = _fields(raw, "goal")
    created_at_ms = parse_amount(fields.get("created_at_ms"), "goal.created_at_ms")
    duration_days = parse_amount(fields.get("duration_days"), "goal.duration_days")
    deadline = fields.get("deadline_ms")
    return SavingsGoal(
        id=_object_id(raw, fields, "goal"),
        name=_string(fields.get("name"), "goal.name"),
        target_amount=parse_amount(fields.get("target_amount"), "goal.target_amount"),
        created_at_ms=created_at_ms,
        duration_days=duration_days,
        deadline_ms=(
            parse_amount(deadline, "goal.deadline_ms")
            if deadline is not None
            else created_at_ms + duration_days * 24 * 60 * 60 * 1000
        ),
        guardian=_string(fields.get("parent"), "goal.parent"),
        dependent=_string(fields.get("child"), "goal.child"),
    )


_STATUS_CODES = {
    0: ApprovalOutcome.PENDING,
    1: ApprovalOutcome.APPROVED,
    2: ApprovalOutcome.REJECTED,
}


def decode_withdrawal_request(raw: Optional[dict], object_id: str = "") -> WithdrawalRequest:
    if raw is None:
        raise ObjectNotFound(object_id or "withdrawal request")
    fields = _fields(raw, "request")
    status_code = parse_amount(fields.get("status", 0), "request.status")
    if status_code not in _STATUS_CODES:
        raise CorruptLedgerEntry(f"Unknown approval status {status_code}", "request.status")
    approved_by = fields.get("approved_by") or None
    audited = fields.get("audit_at_ms")
    executed = fields.get("executed", False)
    if not isinstance(executed, bool):
        raise CorruptLedgerEntry(f"Expected boolean, got {executed!r}", "request.executed")
    return WithdrawalRequest(
        id=_object_id(raw, fields, "request"),
        goal_id=_string(fields.get("goal_id"), "request.goal_id"),
        amount=parse_amount(fields.get("amount"), "request.amount"),
        reason=fields.get("reason") or "",
        requester=_string(fields.get("requester"), "request.requester"),
        created_at_ms=parse_amount(fields.get("created_at_ms"), "request.created_at_ms"),
        outcome=_STATUS_CODES[status_code],
        approved_by=approved_by,
        approval_reason=fields.get("approval_reason") or None,
        audited_at_ms=parse_amount(audited, "request.audit_at_ms") if audited is not None else None,
        executed=executed,
    )
