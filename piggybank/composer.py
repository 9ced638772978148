"""Assembles user operations into single atomic ledger submissions.

Every ``build_*`` method validates its parameters and returns a sealed
``Transaction`` without touching the network, so a caller can preview exactly
what will be submitted. The async flow methods add the pre-flight reads a
flow needs, submit once and only report success when the ledger confirms a
submission that changed state.
"""

import logging
from typing import Optional

from chain.client import LedgerClient
from chain.history import HistoryIndex

from .aggregator import decode_withdrawal_request
from .config import Settings, get_settings
from .errors import (
    InvalidAmount,
    LedgerRejected,
    NoEffectDetected,
    NotAuthorized,
    PendingRequestExists,
    TransientUnavailable,
    ValidationError,
    WithdrawalNotApproved,
)
from .models import (
    ApprovalOutcome,
    ApprovalParams,
    ClaimParams,
    CreateGoalParams,
    DepositParams,
    ExecuteParams,
    SubmissionResult,
    WithdrawalParams,
    WithdrawalRequest,
)
from .pipeline import Transaction
from .units import UnitConverter
from .validation import (
    ensure_valid,
    validate_approval,
    validate_claim,
    validate_create_goal,
    validate_deposit,
    validate_execution,
    validate_withdrawal_request,
)

logger = logging.getLogger("piggybank.composer")


class TransactionComposer:
    def __init__(
        self,
        client: LedgerClient,
        settings: Optional[Settings] = None,
        history: Optional[HistoryIndex] = None,
    ):
        self.client = client
        self.settings = settings or get_settings()
        self.history = history
        self.base_units = UnitConverter(self.settings.base_asset_decimals)
        self.stable_units = UnitConverter(self.settings.stable_asset_decimals)

    @property
    def ledger_id(self) -> str:
        return self.settings.global_ledger_id

    @property
    def clock_id(self) -> str:
        return self.settings.clock_object_id

    def _ledger_amount(self, value) -> int:
        amount = self.base_units.to_int(value)
        if amount == 0:
            raise InvalidAmount(f"Amount {value} is below the smallest ledger unit")
        return amount

    def _pool_amount(self, value) -> int:
        """Base-asset amount that maps onto a whole number of pool shares.

        Recorded balances and the pool shares backing them must stay equal,
        so amounts finer than the stable unit are rejected, not truncated.
        """
        amount = self._ledger_amount(value)
        shares = self.base_units.rescale(amount, self.stable_units)
        if shares == 0:
            raise InvalidAmount(f"Amount {value} is below the smallest convertible unit")
        if self.stable_units.rescale(shares, self.base_units) != amount:
            raise InvalidAmount(
                f"Amount {value} has more than {self.stable_units.decimals} decimal places"
            )
        return amount

    # -- builders -----------------------------------------------------

    def build_create_goals(self, goals: list[CreateGoalParams]) -> Transaction:
        if not goals:
            raise ValidationError(["at least one goal is required"])
        tx = Transaction()
        for index, params in enumerate(goals):
            violations = validate_create_goal(params)
            if violations and len(goals) > 1:
                violations = [f"goals[{index}]: {v}" for v in violations]
            ensure_valid(violations)
            tx.add(
                "create_goal",
                ledger=self.ledger_id,
                name=params.name.strip(),
                target_amount=self._ledger_amount(params.target_amount),
                duration_days=params.duration_days,
                dependent=params.dependent_address.strip(),
                clock=self.clock_id,
            )
        return tx.seal()

    def build_deposit(self, params: DepositParams, owner: str, pending_rewards: int = 0) -> Transaction:
        """Deposit steps in their fixed order.

        Accrued pool yield is harvested and split across existing deposits
        before this contribution is recorded, so a new deposit never captures
        yield that accrued before it existed. With nothing pending, the
        harvest and split steps are left out entirely.
        """
        ensure_valid(validate_deposit(params))
        amount = self._pool_amount(params.amount)

        tx = Transaction()
        stable = tx.add("convert_in", asset_type=self.settings.base_asset_type, amount=amount)
        tx.add("pool_deposit", share_type=self.settings.pool_share_type, owner=owner, stable=stable)
        if pending_rewards > 0:
            reward = tx.add("harvest_rewards", share_type=self.settings.pool_share_type)
            tx.add("split_reward", ledger=self.ledger_id, reward=reward)
        tx.add("record_deposit", ledger=self.ledger_id, goal_id=params.goal_id, amount=amount, clock=self.clock_id)
        return tx.seal()

    def build_request_withdrawal(self, params: WithdrawalParams) -> Transaction:
        ensure_valid(validate_withdrawal_request(params))
        tx = Transaction()
        tx.add(
            "request_withdrawal",
            goal_id=params.goal_id,
            amount=self._pool_amount(params.amount),
            reason=params.reason.strip(),
            clock=self.clock_id,
        )
        return tx.seal()

    def build_approval(self, params: ApprovalParams) -> Transaction:
        ensure_valid(validate_approval(params))
        tx = Transaction()
        tx.add(
            "approve_or_reject",
            request_id=params.request_id,
            goal_id=params.goal_id,
            approve=params.approve,
            reason=params.reason.strip(),
            clock=self.clock_id,
        )
        return tx.seal()

    def build_execution(self, request: WithdrawalRequest) -> Transaction:
        shares = self.base_units.rescale(request.amount, self.stable_units)
        if shares == 0:
            raise InvalidAmount(f"Withdrawal of {request.amount} is below the smallest redeemable unit")
        tx = Transaction()
        tx.add(
            "execute_withdrawal",
            ledger=self.ledger_id,
            goal_id=request.goal_id,
            request_id=request.id,
            clock=self.clock_id,
        )
        stable = tx.add("pool_withdraw", share_type=self.settings.pool_share_type, amount=shares)
        asset = tx.add("convert_out", asset_type=self.settings.base_asset_type, stable=stable)
        tx.add("transfer", recipient=request.requester, coin=asset)
        return tx.seal()

    def build_claim(self, params: ClaimParams, recipient: str, pending_rewards: int = 0) -> Transaction:
        ensure_valid(validate_claim(params))
        tx = Transaction()
        if pending_rewards > 0:
            harvested = tx.add("harvest_rewards", share_type=self.settings.pool_share_type)
            tx.add("split_reward", ledger=self.ledger_id, reward=harvested)
        reward = tx.add("claim_reward", ledger=self.ledger_id, goal_id=params.goal_id, clock=self.clock_id)
        tx.add("transfer", recipient=recipient, coin=reward)
        return tx.seal()

    # -- flows --------------------------------------------------------

    async def create_goals(self, goals: list[CreateGoalParams], sender: str) -> SubmissionResult:
        tx = self.build_create_goals(goals)
        return await self._submit("create_goals", tx, sender)

    async def create_goal(self, params: CreateGoalParams, sender: str) -> SubmissionResult:
        return await self.create_goals([params], sender)

    async def preview_deposit(self, params: DepositParams, sender: str) -> Transaction:
        ensure_valid(validate_deposit(params))
        pending = await self.client.pending_rewards(self.settings.pool_share_type, sender)
        return self.build_deposit(params, owner=sender, pending_rewards=pending)

    async def deposit(self, params: DepositParams, sender: str) -> SubmissionResult:
        tx = await self.preview_deposit(params, sender)
        if "split_reward" not in tx.functions:
            logger.info("reward_split_skipped", extra={"operation": "deposit", "goal_id": params.goal_id})
        return await self._submit("deposit", tx, sender, goal_id=params.goal_id)

    async def request_withdrawal(self, params: WithdrawalParams, sender: str) -> SubmissionResult:
        tx = self.build_request_withdrawal(params)
        await self._guard_pending_request(params.goal_id, sender)
        return await self._submit("request_withdrawal", tx, sender, goal_id=params.goal_id)

    async def approve_withdrawal(self, params: ApprovalParams, sender: str) -> SubmissionResult:
        tx = self.build_approval(params)
        return await self._submit(
            "approve_withdrawal", tx, sender, goal_id=params.goal_id, request_id=params.request_id
        )

    async def fetch_request(self, request_id: str) -> WithdrawalRequest:
        raw = await self.client.get_object(request_id)
        return decode_withdrawal_request(raw, request_id)

    async def execute_withdrawal(self, params: ExecuteParams, sender: str) -> SubmissionResult:
        ensure_valid(validate_execution(params))
        request = await self.fetch_request(params.request_id)
        log_extra = {"operation": "execute_withdrawal", "request_id": request.id, "sender": sender}

        if request.requester != sender:
            logger.warning("execute_not_authorized", extra=log_extra)
            raise NotAuthorized(f"Only the requester {request.requester} may execute request {request.id}")
        if request.goal_id != params.goal_id:
            raise ValidationError([f"request {request.id} does not belong to goal {params.goal_id}"])
        if request.executed:
            raise WithdrawalNotApproved(f"Withdrawal request {request.id} was already executed")
        if request.outcome != ApprovalOutcome.APPROVED:
            raise WithdrawalNotApproved(
                f"Withdrawal request {request.id} is {request.outcome.value}, not approved"
            )

        tx = self.build_execution(request)
        return await self._submit(
            "execute_withdrawal", tx, sender, goal_id=request.goal_id, request_id=request.id
        )

    async def claim_rewards(self, params: ClaimParams, sender: str) -> SubmissionResult:
        ensure_valid(validate_claim(params))
        pending = await self.client.pending_rewards(self.settings.pool_share_type, sender)
        tx = self.build_claim(params, recipient=sender, pending_rewards=pending)
        return await self._submit("claim_rewards", tx, sender, goal_id=params.goal_id)

    # -- internals ----------------------------------------------------

    async def _guard_pending_request(self, goal_id: str, requester: str) -> None:
        if self.history is None:
            return
        try:
            page = await self.history.list_withdrawal_requests(
                goal_id=goal_id, requester=requester, status=ApprovalOutcome.PENDING
            )
        except TransientUnavailable:
            logger.warning(
                "pending_request_check_unavailable",
                extra={"operation": "request_withdrawal", "goal_id": goal_id, "sender": requester},
            )
            return
        if page.items:
            raise PendingRequestExists(
                [f"request {page.items[0].request_id} for goal {goal_id} is still pending"]
            )

    async def _submit(self, operation: str, tx: Transaction, sender: str, **context: str) -> SubmissionResult:
        extra = {"operation": operation, "sender": sender, "step_count": len(tx), **context}
        logger.info("submitting", extra=extra)
        try:
            result = await self.client.submit(tx, sender)
        except LedgerRejected as e:
            logger.warning("ledger_rejected", extra={**extra, "step_index": e.step_index, "function": e.function})
            raise
        if not result.object_changes:
            logger.error("no_effect_detected", extra={**extra, "digest": result.digest})
            raise NoEffectDetected(f"{operation} confirmed as {result.digest} without any state change")
        logger.info("confirmed", extra={**extra, "digest": result.digest})
        return result
