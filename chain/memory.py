"""Deterministic in-process ledger.

Implements the LedgerClient and HistoryIndex boundaries over plain Python
state so flows can be exercised end to end without a node. Every submission
runs against a snapshot and is rolled back entirely when any step aborts.
The yield pool is modelled as one collective position per share type whose
unharvested yield is set with ``accrue_yield``.
"""

import copy
import itertools
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from piggybank.config import Settings, get_settings
from piggybank.errors import LedgerRejected
from piggybank.models import (
    ApprovalOutcome,
    BalanceChange,
    DepositRecord,
    GoalRecord,
    HistoryPage,
    LedgerEvent,
    MS_PER_DAY,
    ObjectChange,
    SubmissionResult,
    WithdrawalRecord,
    WithdrawalRequestRecord,
)
from piggybank.pipeline import Handle, Transaction
from piggybank.units import UnitConverter

logger = logging.getLogger("chain.memory")

GENESIS_MS = 1_760_000_000_000

E_GOAL_NOT_FOUND = 1
E_NOT_PARTICIPANT = 2
E_INSUFFICIENT_BALANCE = 3
E_REQUEST_NOT_FOUND = 4
E_NOT_GUARDIAN = 5
E_ALREADY_DECIDED = 6
E_NOT_APPROVED = 7
E_NOT_REQUESTER = 8
E_ALREADY_EXECUTED = 9
E_EMPTY_REASON = 10
E_ZERO_AMOUNT = 11
E_NO_REWARD = 12
E_INSUFFICIENT_SHARES = 13
E_GOAL_MISMATCH = 14
E_WRONG_OBJECT = 15
E_INSUFFICIENT_FUNDS = 16
E_WRONG_COIN = 17
E_INJECTED = 99

_STATUS_CODES = {
    ApprovalOutcome.PENDING: 0,
    ApprovalOutcome.APPROVED: 1,
    ApprovalOutcome.REJECTED: 2,
}


class MoveAbort(Exception):
    def __init__(self, code: int, message: str):
        self.code = code
        super().__init__(message)


@dataclass
class Coin:
    coin_type: str
    value: int


@dataclass
class LedgerState:
    goals: dict[str, dict] = field(default_factory=dict)
    requests: dict[str, dict] = field(default_factory=dict)
    deposit_balances: dict[str, dict[str, int]] = field(default_factory=dict)
    reward_balances: dict[str, dict[str, int]] = field(default_factory=dict)
    total_goals: int = 0
    total_deposits: int = 0
    total_withdrawals: int = 0
    platform_fees_collected: int = 0
    reward_vault: int = 0
    pool_shares: dict[str, dict[str, int]] = field(default_factory=dict)
    pool_yield: dict[str, int] = field(default_factory=dict)
    wallets: dict[str, dict[str, int]] = field(default_factory=dict)
    deposits: list[DepositRecord] = field(default_factory=list)
    withdrawals: list[WithdrawalRecord] = field(default_factory=list)


@dataclass
class _Execution:
    sender: str
    now_ms: int
    values: dict[Handle, Coin] = field(default_factory=dict)
    changes: dict[str, ObjectChange] = field(default_factory=dict)
    balances: dict[tuple[str, str], int] = field(default_factory=dict)
    events: list[LedgerEvent] = field(default_factory=list)

    def touch(self, kind: str, object_id: str, object_type: str) -> None:
        existing = self.changes.get(object_id)
        if existing is None or existing.type != "created":
            self.changes[object_id] = ObjectChange(type=kind, object_id=object_id, object_type=object_type)

    def move(self, owner: str, coin_type: str, amount: int) -> None:
        key = (owner, coin_type)
        self.balances[key] = self.balances.get(key, 0) + amount


def _vec_map(entries: dict[str, Any], value: Callable[[Any], Any]) -> dict:
    return {
        "type": "0x2::vec_map::VecMap",
        "fields": {
            "contents": [
                {"type": "0x2::vec_map::Entry", "fields": {"key": key, "value": value(v)}}
                for key, v in entries.items()
            ]
        },
    }


def _amount_map(per_goal: dict[str, int]) -> dict:
    return _vec_map(per_goal, str)


def _paginate(items: list, page: int, limit: int) -> list:
    page = max(page, 1)
    offset = (page - 1) * limit
    return items[offset:offset + limit]


class InMemoryLedger:
    def __init__(self, settings: Optional[Settings] = None, now_ms: int = GENESIS_MS, published: bool = True):
        self.settings = settings or get_settings()
        self.now_ms = now_ms
        self.published = published
        self.state = LedgerState()
        self.submissions: list[tuple[str, Transaction]] = []
        self._ids = itertools.count(1)
        self._digests = itertools.count(1)
        self._failure: Optional[tuple[Optional[str], bool]] = None
        self.base_units = UnitConverter(self.settings.base_asset_decimals)
        self.stable_units = UnitConverter(self.settings.stable_asset_decimals)
        self._handlers: dict[str, Callable[..., tuple]] = {
            "create_goal": self._create_goal,
            "record_deposit": self._record_deposit,
            "request_withdrawal": self._request_withdrawal,
            "approve_or_reject": self._approve_or_reject,
            "execute_withdrawal": self._execute_withdrawal,
            "split_reward": self._split_reward,
            "claim_reward": self._claim_reward,
            "convert_in": self._convert_in,
            "convert_out": self._convert_out,
            "pool_deposit": self._pool_deposit,
            "pool_withdraw": self._pool_withdraw,
            "harvest_rewards": self._harvest_rewards,
            "transfer": self._transfer,
        }

    # -- test and development controls --------------------------------

    def publish(self) -> None:
        self.published = True

    def advance(self, days: int = 0, ms: int = 0) -> None:
        self.now_ms += days * MS_PER_DAY + ms

    def fund(self, owner: str, amount: int, coin_type: Optional[str] = None) -> None:
        coin_type = coin_type or self.settings.base_asset_type
        wallet = self.state.wallets.setdefault(owner, {})
        wallet[coin_type] = wallet.get(coin_type, 0) + amount

    def wallet_balance(self, owner: str, coin_type: Optional[str] = None) -> int:
        return self.state.wallets.get(owner, {}).get(coin_type or self.settings.base_asset_type, 0)

    def accrue_yield(self, amount: int, share_type: Optional[str] = None) -> None:
        share_type = share_type or self.settings.pool_share_type
        self.state.pool_yield[share_type] = self.state.pool_yield.get(share_type, 0) + amount

    def inject_failure(self, function: Optional[str] = None, contended: bool = False) -> None:
        """Make the next submission fail, at ``function`` or up front when contended."""
        self._failure = (function, contended)

    @property
    def ledger_type(self) -> str:
        return f"{self.settings.goal_package_id}::goals::GlobalLedger"

    @property
    def goal_type(self) -> str:
        return f"{self.settings.goal_package_id}::goals::SavingsGoal"

    @property
    def request_type(self) -> str:
        return f"{self.settings.goal_package_id}::goals::WithdrawalRequest"

    # -- LedgerClient -------------------------------------------------

    async def pending_rewards(self, share_type: str, owner: str) -> int:
        return self.state.pool_yield.get(share_type, 0)

    async def get_object(self, object_id: str) -> Optional[dict]:
        if object_id == self.settings.global_ledger_id:
            return self._ledger_payload() if self.published else None
        if object_id in self.state.goals:
            goal = self.state.goals[object_id]
            return {"objectId": object_id, "type": self.goal_type, "fields": dict(goal)}
        if object_id in self.state.requests:
            request = self.state.requests[object_id]
            return {"objectId": object_id, "type": self.request_type, "fields": dict(request)}
        return None

    async def submit(self, tx: Transaction, sender: str) -> SubmissionResult:
        self.submissions.append((sender, tx))
        if not tx.sealed:
            raise LedgerRejected("Transaction was not sealed before submission")

        failure, self._failure = self._failure, None
        if failure is not None and failure[1]:
            raise LedgerRejected("Shared object is contended, retry later", contended=True)

        snapshot = copy.deepcopy(self.state)
        ctx = _Execution(sender=sender, now_ms=self.now_ms)
        for index, step in enumerate(tx):
            try:
                if failure is not None and failure[0] == step.function:
                    raise MoveAbort(E_INJECTED, "injected failure")
                args = {k: self._take(ctx, v) if isinstance(v, Handle) else v for k, v in step.args.items()}
                results = self._handlers[step.function](ctx, **args)
            except MoveAbort as e:
                self.state = snapshot
                logger.info("ledger_abort", extra={"step_index": index, "function": step.function})
                raise LedgerRejected(
                    f"{step.function} aborted with code {e.code}: {e}",
                    step_index=index,
                    function=step.function,
                    abort_code=e.code,
                ) from e
            ctx.values.update(zip(step.outputs, results))

        if ctx.values:
            self.state = snapshot
            raise LedgerRejected("Transaction left unused values")

        return SubmissionResult(
            digest=f"tx-{next(self._digests):06d}",
            sender=sender,
            object_changes=list(ctx.changes.values()),
            balance_changes=[
                BalanceChange(owner=owner, coin_type=coin_type, amount=amount)
                for (owner, coin_type), amount in ctx.balances.items()
                if amount
            ],
            events=ctx.events,
        )

    @staticmethod
    def _take(ctx: _Execution, handle: Handle) -> Coin:
        if handle not in ctx.values:
            raise MoveAbort(E_WRONG_OBJECT, f"value {handle.name} from step {handle.step_index} is unavailable")
        return ctx.values.pop(handle)

    # -- payloads -----------------------------------------------------

    def _ledger_payload(self) -> dict:
        s = self.state
        return {
            "objectId": self.settings.global_ledger_id,
            "type": self.ledger_type,
            "fields": {
                "id": {"id": self.settings.global_ledger_id},
                "admin": "0xadmin",
                "deposit_balances": _vec_map(s.deposit_balances, _amount_map),
                "reward_balances": _vec_map(s.reward_balances, _amount_map),
                "total_goals": str(s.total_goals),
                "total_deposits": str(s.total_deposits),
                "total_withdrawals": str(s.total_withdrawals),
                "platform_fees_collected": str(s.platform_fees_collected),
            },
        }

    def _new_id(self, prefix: str) -> str:
        return f"0x{prefix}{next(self._ids):04x}"

    def _event(self, ctx: _Execution, name: str, **payload: Any) -> None:
        ctx.events.append(LedgerEvent(type=f"{self.settings.goal_package_id}::goals::{name}", payload=payload))

    def _check_ledger(self, ledger: str) -> None:
        if ledger != self.settings.global_ledger_id or not self.published:
            raise MoveAbort(E_WRONG_OBJECT, f"{ledger} is not the global ledger")

    def _check_clock(self, clock: str) -> None:
        if clock != self.settings.clock_object_id:
            raise MoveAbort(E_WRONG_OBJECT, f"{clock} is not the clock object")

    def _goal(self, goal_id: str) -> dict:
        goal = self.state.goals.get(goal_id)
        if goal is None:
            raise MoveAbort(E_GOAL_NOT_FOUND, f"goal {goal_id} not found")
        return goal

    def _request(self, request_id: str, goal_id: str) -> dict:
        request = self.state.requests.get(request_id)
        if request is None:
            raise MoveAbort(E_REQUEST_NOT_FOUND, f"request {request_id} not found")
        if request["goal_id"] != goal_id:
            raise MoveAbort(E_GOAL_MISMATCH, f"request {request_id} does not belong to goal {goal_id}")
        return request

    def _balance_of(self, goal_id: str) -> int:
        return sum(per_goal.get(goal_id, 0) for per_goal in self.state.deposit_balances.values())

    # -- goal-tracking program -----------------------------------------

    def _create_goal(self, ctx, ledger, name, target_amount, duration_days, dependent, clock) -> tuple:
        self._check_ledger(ledger)
        self._check_clock(clock)
        if not name or target_amount <= 0 or duration_days <= 0:
            raise MoveAbort(E_ZERO_AMOUNT, "goal needs a name, a target and a duration")
        goal_id = self._new_id("90a1")
        self.state.goals[goal_id] = {
            "id": {"id": goal_id},
            "name": name,
            "target_amount": str(target_amount),
            "created_at_ms": str(ctx.now_ms),
            "duration_days": str(duration_days),
            "deadline_ms": str(ctx.now_ms + duration_days * MS_PER_DAY),
            "parent": ctx.sender,
            "child": dependent,
        }
        self.state.total_goals += 1
        ctx.touch("created", goal_id, self.goal_type)
        ctx.touch("mutated", ledger, self.ledger_type)
        self._event(ctx, "GoalCreated", goal_id=goal_id, parent=ctx.sender, child=dependent)
        return ()

    def _record_deposit(self, ctx, ledger, goal_id, amount, clock) -> tuple:
        self._check_ledger(ledger)
        self._check_clock(clock)
        goal = self._goal(goal_id)
        if ctx.sender not in (goal["parent"], goal["child"]):
            raise MoveAbort(E_NOT_PARTICIPANT, f"{ctx.sender} is not a participant of {goal_id}")
        if amount <= 0:
            raise MoveAbort(E_ZERO_AMOUNT, "deposit amount must be positive")
        per_goal = self.state.deposit_balances.setdefault(ctx.sender, {})
        per_goal[goal_id] = per_goal.get(goal_id, 0) + amount
        self.state.total_deposits += 1
        self.state.deposits.append(
            DepositRecord(goal_id=goal_id, amount=amount, depositor=ctx.sender, created_at_ms=ctx.now_ms)
        )
        ctx.touch("mutated", goal_id, self.goal_type)
        ctx.touch("mutated", ledger, self.ledger_type)
        self._event(ctx, "DepositMade", goal_id=goal_id, amount=amount, depositor=ctx.sender)
        return ()

    def _request_withdrawal(self, ctx, goal_id, amount, reason, clock) -> tuple:
        self._check_clock(clock)
        goal = self._goal(goal_id)
        if ctx.sender != goal["child"]:
            raise MoveAbort(E_NOT_PARTICIPANT, "only the dependent may request a withdrawal")
        if amount <= 0:
            raise MoveAbort(E_ZERO_AMOUNT, "withdrawal amount must be positive")
        if amount > self._balance_of(goal_id):
            raise MoveAbort(E_INSUFFICIENT_BALANCE, "withdrawal exceeds goal balance")
        if not reason or not reason.strip():
            raise MoveAbort(E_EMPTY_REASON, "reason is required")
        request_id = self._new_id("7e9")
        self.state.requests[request_id] = {
            "id": {"id": request_id},
            "goal_id": goal_id,
            "amount": str(amount),
            "reason": reason,
            "requester": ctx.sender,
            "created_at_ms": str(ctx.now_ms),
            "status": _STATUS_CODES[ApprovalOutcome.PENDING],
            "approved_by": None,
            "approval_reason": None,
            "audit_at_ms": None,
            "executed": False,
        }
        ctx.touch("created", request_id, self.request_type)
        self._event(ctx, "WithdrawalRequested", request_id=request_id, goal_id=goal_id, amount=amount)
        return ()

    def _approve_or_reject(self, ctx, request_id, goal_id, approve, reason, clock) -> tuple:
        self._check_clock(clock)
        goal = self._goal(goal_id)
        request = self._request(request_id, goal_id)
        if ctx.sender != goal["parent"]:
            raise MoveAbort(E_NOT_GUARDIAN, "only the guardian may decide a withdrawal")
        if request["status"] != _STATUS_CODES[ApprovalOutcome.PENDING]:
            raise MoveAbort(E_ALREADY_DECIDED, f"request {request_id} was already decided")
        if not reason or not reason.strip():
            raise MoveAbort(E_EMPTY_REASON, "reason is required")
        outcome = ApprovalOutcome.APPROVED if approve else ApprovalOutcome.REJECTED
        request.update(
            status=_STATUS_CODES[outcome],
            approved_by=ctx.sender,
            approval_reason=reason,
            audit_at_ms=str(ctx.now_ms),
        )
        ctx.touch("mutated", request_id, self.request_type)
        self._event(ctx, "WithdrawalDecided", request_id=request_id, approved=bool(approve))
        return ()

    def _execute_withdrawal(self, ctx, ledger, goal_id, request_id, clock) -> tuple:
        self._check_ledger(ledger)
        self._check_clock(clock)
        self._goal(goal_id)
        request = self._request(request_id, goal_id)
        if ctx.sender != request["requester"]:
            raise MoveAbort(E_NOT_REQUESTER, "only the requester may execute the withdrawal")
        if request["status"] != _STATUS_CODES[ApprovalOutcome.APPROVED]:
            raise MoveAbort(E_NOT_APPROVED, f"request {request_id} is not approved")
        if request["executed"]:
            raise MoveAbort(E_ALREADY_EXECUTED, f"request {request_id} was already executed")
        amount = int(request["amount"])
        if amount > self._balance_of(goal_id):
            raise MoveAbort(E_INSUFFICIENT_BALANCE, "withdrawal exceeds goal balance")

        # Debit the requester's own contribution first, then other depositors.
        remaining = amount
        order = sorted(self.state.deposit_balances, key=lambda a: (a != ctx.sender, a))
        for depositor in order:
            per_goal = self.state.deposit_balances[depositor]
            taken = min(per_goal.get(goal_id, 0), remaining)
            if taken:
                per_goal[goal_id] -= taken
                remaining -= taken
            if not remaining:
                break

        request["executed"] = True
        self.state.total_withdrawals += 1
        left = self._balance_of(goal_id)
        self.state.withdrawals.append(
            WithdrawalRecord(
                request_id=request_id, goal_id=goal_id, amount=amount,
                left_balance=left, withdrawer=ctx.sender, created_at_ms=ctx.now_ms,
            )
        )
        ctx.touch("mutated", request_id, self.request_type)
        ctx.touch("mutated", goal_id, self.goal_type)
        ctx.touch("mutated", ledger, self.ledger_type)
        self._event(ctx, "Withdrawed", request_id=request_id, goal_id=goal_id, amount=amount, left_balance=left)
        return ()

    def _split_reward(self, ctx, ledger, reward: Coin) -> tuple:
        self._check_ledger(ledger)
        if reward.coin_type != self.settings.reward_asset_type:
            raise MoveAbort(E_WRONG_COIN, f"cannot split {reward.coin_type}")
        total = sum(sum(per_goal.values()) for per_goal in self.state.deposit_balances.values())
        distributed = 0
        if total:
            for depositor, per_goal in self.state.deposit_balances.items():
                for goal_id, amount in per_goal.items():
                    share = reward.value * amount // total
                    if share:
                        rewards = self.state.reward_balances.setdefault(depositor, {})
                        rewards[goal_id] = rewards.get(goal_id, 0) + share
                        distributed += share
        # Integer-division dust, or everything when nobody holds deposits.
        self.state.platform_fees_collected += reward.value - distributed
        self.state.reward_vault += reward.value
        ctx.touch("mutated", ledger, self.ledger_type)
        self._event(ctx, "RewardSplit", amount=reward.value, distributed=distributed)
        return ()

    def _claim_reward(self, ctx, ledger, goal_id, clock) -> tuple:
        self._check_ledger(ledger)
        self._check_clock(clock)
        self._goal(goal_id)
        rewards = self.state.reward_balances.get(ctx.sender, {})
        amount = rewards.get(goal_id, 0)
        if not amount:
            raise MoveAbort(E_NO_REWARD, f"no reward to claim for {goal_id}")
        rewards[goal_id] = 0
        self.state.reward_vault -= amount
        ctx.touch("mutated", ledger, self.ledger_type)
        self._event(ctx, "RewardClaimed", goal_id=goal_id, amount=amount, claimer=ctx.sender)
        return (Coin(self.settings.reward_asset_type, amount),)

    # -- yield-pool program --------------------------------------------

    def _convert_in(self, ctx, asset_type, amount) -> tuple:
        if asset_type != self.settings.base_asset_type:
            raise MoveAbort(E_WRONG_COIN, f"cannot convert {asset_type}")
        wallet = self.state.wallets.setdefault(ctx.sender, {})
        if wallet.get(asset_type, 0) < amount:
            raise MoveAbort(E_INSUFFICIENT_FUNDS, f"{ctx.sender} holds less than {amount} of {asset_type}")
        stable = self.base_units.rescale(amount, self.stable_units)
        if stable <= 0:
            raise MoveAbort(E_ZERO_AMOUNT, "amount too small to convert")
        wallet[asset_type] -= amount
        ctx.move(ctx.sender, asset_type, -amount)
        return (Coin(self.settings.stable_asset_type, stable),)

    def _convert_out(self, ctx, asset_type, stable: Coin) -> tuple:
        if stable.coin_type != self.settings.stable_asset_type or asset_type != self.settings.base_asset_type:
            raise MoveAbort(E_WRONG_COIN, f"cannot convert {stable.coin_type} to {asset_type}")
        return (Coin(asset_type, self.stable_units.rescale(stable.value, self.base_units)),)

    def _pool_deposit(self, ctx, share_type, owner, stable: Coin) -> tuple:
        if stable.coin_type != self.settings.stable_asset_type:
            raise MoveAbort(E_WRONG_COIN, f"pool does not accept {stable.coin_type}")
        shares = self.state.pool_shares.setdefault(share_type, {})
        shares[owner] = shares.get(owner, 0) + stable.value
        return ()

    def _pool_withdraw(self, ctx, share_type, amount) -> tuple:
        shares = self.state.pool_shares.get(share_type, {})
        if amount <= 0 or sum(shares.values()) < amount:
            raise MoveAbort(E_INSUFFICIENT_SHARES, f"pool holds fewer than {amount} shares")
        remaining = amount
        for owner in sorted(shares, key=lambda a: (a != ctx.sender, a)):
            taken = min(shares[owner], remaining)
            shares[owner] -= taken
            remaining -= taken
            if not remaining:
                break
        return (Coin(self.settings.stable_asset_type, amount),)

    def _harvest_rewards(self, ctx, share_type) -> tuple:
        harvested = self.state.pool_yield.pop(share_type, 0)
        return (Coin(self.settings.reward_asset_type, harvested),)

    def _transfer(self, ctx, recipient, coin: Coin) -> tuple:
        wallet = self.state.wallets.setdefault(recipient, {})
        wallet[coin.coin_type] = wallet.get(coin.coin_type, 0) + coin.value
        ctx.move(recipient, coin.coin_type, coin.value)
        ctx.touch("created", self._new_id("c01"), f"0x2::coin::Coin<{coin.coin_type}>")
        return ()

    # -- HistoryIndex ---------------------------------------------------

    def _goal_record(self, goal: dict) -> GoalRecord:
        goal_id = goal["id"]["id"]
        return GoalRecord(
            goal_id=goal_id,
            name=goal["name"],
            parent_address=goal["parent"],
            child_address=goal["child"],
            target_amount=int(goal["target_amount"]),
            created_at_ms=int(goal["created_at_ms"]),
            deadline_ms=int(goal["deadline_ms"]),
            duration_days=int(goal["duration_days"]),
            current_balance=self._balance_of(goal_id),
        )

    async def list_goals(self, page=1, limit=10, parent_address=None, child_address=None) -> HistoryPage[GoalRecord]:
        goals = [
            self._goal_record(g) for g in self.state.goals.values()
            if (parent_address is None or g["parent"] == parent_address)
            and (child_address is None or g["child"] == child_address)
        ]
        goals.sort(key=lambda g: g.created_at_ms, reverse=True)
        return HistoryPage[GoalRecord](items=_paginate(goals, page, limit), total=len(goals), page=page, limit=limit)

    async def list_deposits(self, goal_id, page=1, limit=10) -> HistoryPage[DepositRecord]:
        records = [d for d in reversed(self.state.deposits) if d.goal_id == goal_id]
        return HistoryPage[DepositRecord](
            items=_paginate(records, page, limit), total=len(records), page=page, limit=limit
        )

    async def list_withdrawals(self, goal_id, page=1, limit=10) -> HistoryPage[WithdrawalRecord]:
        records = [w for w in reversed(self.state.withdrawals) if w.goal_id == goal_id]
        return HistoryPage[WithdrawalRecord](
            items=_paginate(records, page, limit), total=len(records), page=page, limit=limit
        )

    async def list_withdrawal_requests(
        self, goal_id=None, requester=None, status=None, page=1, limit=10
    ) -> HistoryPage[WithdrawalRequestRecord]:
        outcomes = {code: outcome for outcome, code in _STATUS_CODES.items()}
        records = []
        for request_id, r in reversed(list(self.state.requests.items())):
            outcome = outcomes[r["status"]]
            if goal_id is not None and r["goal_id"] != goal_id:
                continue
            if requester is not None and r["requester"] != requester:
                continue
            if status is not None and outcome != status:
                continue
            records.append(
                WithdrawalRequestRecord(
                    request_id=request_id,
                    goal_id=r["goal_id"],
                    amount=int(r["amount"]),
                    requester=r["requester"],
                    reason=r["reason"],
                    status=outcome,
                    approved_by=r["approved_by"],
                    created_at_ms=int(r["created_at_ms"]),
                    audit_at_ms=int(r["audit_at_ms"]) if r["audit_at_ms"] is not None else None,
                )
            )
        return HistoryPage[WithdrawalRequestRecord](
            items=_paginate(records, page, limit), total=len(records), page=page, limit=limit
        )
