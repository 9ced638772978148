import logging
import time
from decimal import Decimal
from typing import Callable, Optional

from chain.client import LedgerClient
from chain.history import HistoryIndex
from chain.oracle import PriceFeed

from .aggregator import decode_global_ledger, decode_goal, derive_user_view, goal_balance
from .composer import TransactionComposer
from .config import Settings, get_settings
from .errors import GlobalLedgerNotFound
from .models import (
    ApprovalOutcome,
    ApprovalParams,
    ClaimParams,
    CreateGoalParams,
    DepositParams,
    DepositRecord,
    ExecuteParams,
    GlobalLedger,
    GoalDetail,
    GoalRecord,
    HistoryPage,
    SubmissionResult,
    UserLedgerView,
    UserViewState,
    WithdrawalParams,
    WithdrawalRecord,
    WithdrawalRequestRecord,
)
from .refresh import Confirmation, OperationKind, RefreshCoordinator, ViewCache, ViewKey, ViewKind
from .units import UnitConverter

logger = logging.getLogger("piggybank.service")


def _wall_clock_ms() -> int:
    return int(time.time() * 1000)


class SavingsService:
    """Flows and cached reads for guardian/dependent savings goals.

    Flow methods submit through the composer and then drop exactly the cached
    views the confirmed operation made stale. Reads go through the view cache.
    """

    def __init__(
        self,
        client: LedgerClient,
        history: HistoryIndex,
        price_feed: Optional[PriceFeed] = None,
        settings: Optional[Settings] = None,
        clock: Optional[Callable[[], int]] = None,
    ):
        self.settings = settings or get_settings()
        self.client = client
        self.history = history
        self.price_feed = price_feed
        self.composer = TransactionComposer(client, self.settings, history)
        self.cache = ViewCache()
        self.refresh = RefreshCoordinator(self.cache)
        self.base_units = UnitConverter(self.settings.base_asset_decimals)
        self.reward_units = UnitConverter(self.settings.reward_asset_decimals)
        self._now = clock or _wall_clock_ms

    # -- flows --------------------------------------------------------

    async def create_goals(self, goals: list[CreateGoalParams], sender: str) -> SubmissionResult:
        result = await self.composer.create_goals(goals, sender)
        self._confirmed(OperationKind.CREATE_GOAL, result, tuple(result.created_ids("::SavingsGoal")))
        return result

    async def create_goal(self, params: CreateGoalParams, sender: str) -> SubmissionResult:
        return await self.create_goals([params], sender)

    async def deposit(self, params: DepositParams, sender: str) -> SubmissionResult:
        result = await self.composer.deposit(params, sender)
        self._confirmed(OperationKind.DEPOSIT, result, (params.goal_id,))
        return result

    async def request_withdrawal(self, params: WithdrawalParams, sender: str) -> SubmissionResult:
        result = await self.composer.request_withdrawal(params, sender)
        self._confirmed(OperationKind.REQUEST_WITHDRAWAL, result, (params.goal_id,), requester=sender)
        return result

    async def approve_withdrawal(self, params: ApprovalParams, sender: str) -> SubmissionResult:
        result = await self.composer.approve_withdrawal(params, sender)
        self._confirmed(OperationKind.APPROVE_WITHDRAWAL, result, (params.goal_id,))
        return result

    async def execute_withdrawal(self, params: ExecuteParams, sender: str) -> SubmissionResult:
        result = await self.composer.execute_withdrawal(params, sender)
        self._confirmed(OperationKind.EXECUTE_WITHDRAWAL, result, (params.goal_id,), requester=sender)
        return result

    async def claim_rewards(self, params: ClaimParams, sender: str) -> SubmissionResult:
        result = await self.composer.claim_rewards(params, sender)
        self._confirmed(OperationKind.CLAIM_REWARDS, result, (params.goal_id,))
        return result

    def _confirmed(
        self,
        operation: OperationKind,
        result: SubmissionResult,
        goal_ids: tuple[str, ...],
        requester: Optional[str] = None,
    ) -> None:
        self.refresh.on_confirmed(
            Confirmation(operation=operation, goal_ids=goal_ids, requester=requester, digest=result.digest)
        )

    # -- reads --------------------------------------------------------

    async def global_ledger(self) -> GlobalLedger:
        async def load() -> GlobalLedger:
            raw = await self.client.get_object(self.settings.global_ledger_id)
            return decode_global_ledger(raw, self.settings.global_ledger_id)

        return await self.cache.get_or_load(ViewKey(ViewKind.GLOBAL_LEDGER), load)

    async def user_view(self, address: str) -> UserLedgerView:
        async def load() -> UserLedgerView:
            return derive_user_view(await self.global_ledger(), address)

        try:
            return await self.cache.get_or_load(ViewKey(ViewKind.USER_VIEW, address), load)
        except GlobalLedgerNotFound:
            # Not cached: the ledger may appear on the next read.
            logger.info("global_ledger_absent", extra={"sender": address})
            return UserLedgerView(address=address, state=UserViewState.ABSENT)

    async def goal_detail(self, goal_id: str) -> GoalDetail:
        async def load() -> tuple:
            goal = decode_goal(await self.client.get_object(goal_id), goal_id)
            return goal, goal_balance(await self.global_ledger(), goal_id)

        goal, balance = await self.cache.get_or_load(ViewKey(ViewKind.GOAL_DETAIL, goal_id), load)
        now_ms = self._now()
        return GoalDetail(
            goal=goal,
            balance=balance,
            status=goal.status(balance, now_ms),
            days_left=goal.days_left(now_ms),
        )

    async def list_goals(
        self,
        page: int = 1,
        limit: int = 10,
        parent_address: Optional[str] = None,
        child_address: Optional[str] = None,
    ) -> HistoryPage[GoalRecord]:
        key = ViewKey(ViewKind.GOAL_LIST, variant=f"{page}:{limit}:{parent_address}:{child_address}")
        return await self.cache.get_or_load(
            key, lambda: self.history.list_goals(page, limit, parent_address, child_address)
        )

    async def deposit_history(self, goal_id: str, page: int = 1, limit: int = 10) -> HistoryPage[DepositRecord]:
        key = ViewKey(ViewKind.DEPOSIT_HISTORY, goal_id, f"{page}:{limit}")
        return await self.cache.get_or_load(key, lambda: self.history.list_deposits(goal_id, page, limit))

    async def withdrawal_history(
        self, goal_id: str, page: int = 1, limit: int = 10
    ) -> HistoryPage[WithdrawalRecord]:
        key = ViewKey(ViewKind.WITHDRAWAL_HISTORY, goal_id, f"{page}:{limit}")
        return await self.cache.get_or_load(key, lambda: self.history.list_withdrawals(goal_id, page, limit))

    async def goal_requests(
        self, goal_id: str, page: int = 1, limit: int = 10
    ) -> HistoryPage[WithdrawalRequestRecord]:
        key = ViewKey(ViewKind.GOAL_REQUESTS, goal_id, f"{page}:{limit}")
        return await self.cache.get_or_load(
            key, lambda: self.history.list_withdrawal_requests(goal_id=goal_id, page=page, limit=limit)
        )

    async def pending_requests(self, requester: str) -> list[WithdrawalRequestRecord]:
        async def load() -> list[WithdrawalRequestRecord]:
            page = await self.history.list_withdrawal_requests(
                requester=requester, status=ApprovalOutcome.PENDING, limit=100
            )
            return page.items

        return await self.cache.get_or_load(ViewKey(ViewKind.PENDING_REQUESTS, requester), load)

    async def ledger_stats(self) -> dict:
        async def load() -> dict:
            ledger = await self.global_ledger()
            return {
                "total_goals": ledger.total_goals,
                "total_deposits": ledger.total_deposits,
                "total_withdrawals": ledger.total_withdrawals,
                "platform_fees_collected": ledger.platform_fees_collected,
            }

        return await self.cache.get_or_load(ViewKey(ViewKind.LEDGER_STATS), load)

    @property
    def priced_assets(self) -> list[str]:
        return [self.settings.base_asset_type, self.settings.reward_asset_type]

    async def fiat_estimate(self, address: str) -> Optional[Decimal]:
        """Display-only value of the address's deposits, or None without a price."""
        view = await self._priced_view(address)
        if view is None:
            return None
        return self.price_feed.fiat_estimate(view.total_deposited, self.base_units, self.settings.base_asset_type)

    async def reward_estimate(self, address: str) -> Optional[Decimal]:
        view = await self._priced_view(address)
        if view is None:
            return None
        return self.price_feed.fiat_estimate(view.total_rewards, self.reward_units, self.settings.reward_asset_type)

    async def _priced_view(self, address: str) -> Optional[UserLedgerView]:
        if self.price_feed is None:
            return None
        view = await self.user_view(address)
        if view.state == UserViewState.ABSENT:
            return None
        return view

    async def aclose(self) -> None:
        """Close the HTTP clients behind the history index and price oracle."""
        oracle = self.price_feed.oracle if self.price_feed is not None else None
        for resource in (self.history, oracle):
            close = getattr(resource, "aclose", None)
            if close is not None:
                await close()
