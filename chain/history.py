"""Client for the read-only history index.

The index serves paginated event history (goal creation, deposits,
withdrawal requests and executed withdrawals). It is used for display and for
pre-flight warnings only; nothing here is authoritative for balances.
"""

import logging
from typing import Any, Optional, Protocol, TypeVar

import httpx
from pydantic import BaseModel, ValidationError as ModelValidationError

from piggybank.errors import CorruptLedgerEntry, TransientUnavailable
from piggybank.models import (
    ApprovalOutcome,
    DepositRecord,
    GoalRecord,
    HistoryPage,
    WithdrawalRecord,
    WithdrawalRequestRecord,
)

logger = logging.getLogger("chain.history")

DEFAULT_PAGE = 1
DEFAULT_LIMIT = 10

M = TypeVar("M", bound=BaseModel)


class HistoryIndex(Protocol):
    async def list_goals(
        self,
        page: int = DEFAULT_PAGE,
        limit: int = DEFAULT_LIMIT,
        parent_address: Optional[str] = None,
        child_address: Optional[str] = None,
    ) -> HistoryPage[GoalRecord]: ...

    async def list_deposits(
        self, goal_id: str, page: int = DEFAULT_PAGE, limit: int = DEFAULT_LIMIT
    ) -> HistoryPage[DepositRecord]: ...

    async def list_withdrawals(
        self, goal_id: str, page: int = DEFAULT_PAGE, limit: int = DEFAULT_LIMIT
    ) -> HistoryPage[WithdrawalRecord]: ...

    async def list_withdrawal_requests(
        self,
        goal_id: Optional[str] = None,
        requester: Optional[str] = None,
        status: Optional[ApprovalOutcome] = None,
        page: int = DEFAULT_PAGE,
        limit: int = DEFAULT_LIMIT,
    ) -> HistoryPage[WithdrawalRequestRecord]: ...


def _params(**values: Any) -> dict[str, Any]:
    return {k: v.value if isinstance(v, ApprovalOutcome) else v for k, v in values.items() if v is not None}


class HttpHistoryIndex:
    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.client = httpx.AsyncClient(base_url=base_url, timeout=timeout, transport=transport)

    async def aclose(self) -> None:
        await self.client.aclose()

    async def __aenter__(self) -> "HttpHistoryIndex":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def health_check(self) -> dict:
        return await self._get("/health")

    async def list_goals(
        self,
        page: int = DEFAULT_PAGE,
        limit: int = DEFAULT_LIMIT,
        parent_address: Optional[str] = None,
        child_address: Optional[str] = None,
    ) -> HistoryPage[GoalRecord]:
        params = _params(page=page, limit=limit, parent_address=parent_address, child_address=child_address)
        return await self._page("/api/goals", params, GoalRecord, page, limit)

    async def get_goal(self, goal_id: str) -> Optional[GoalRecord]:
        body = await self._get(f"/api/goals/{goal_id}")
        if not body.get("success") or body.get("data") is None:
            return None
        return self._record(body["data"], GoalRecord, f"/api/goals/{goal_id}")

    async def list_deposits(
        self, goal_id: str, page: int = DEFAULT_PAGE, limit: int = DEFAULT_LIMIT
    ) -> HistoryPage[DepositRecord]:
        params = _params(page=page, limit=limit)
        return await self._page(f"/api/goals/{goal_id}/deposits", params, DepositRecord, page, limit)

    async def list_withdrawals(
        self, goal_id: str, page: int = DEFAULT_PAGE, limit: int = DEFAULT_LIMIT
    ) -> HistoryPage[WithdrawalRecord]:
        params = _params(page=page, limit=limit)
        return await self._page(f"/api/goals/{goal_id}/withdrawals", params, WithdrawalRecord, page, limit)

    async def list_withdrawal_requests(
        self,
        goal_id: Optional[str] = None,
        requester: Optional[str] = None,
        status: Optional[ApprovalOutcome] = None,
        page: int = DEFAULT_PAGE,
        limit: int = DEFAULT_LIMIT,
    ) -> HistoryPage[WithdrawalRequestRecord]:
        if goal_id:
            path = f"/api/goals/{goal_id}/withdrawal-requests"
            params = _params(page=page, limit=limit, status=status, requester=requester)
        elif requester:
            path = f"/api/withdrawal-requests/requester/{requester}"
            params = _params(page=page, limit=limit, status=status)
        else:
            raise ValueError("goal_id or requester is required")
        return await self._page(path, params, WithdrawalRequestRecord, page, limit)

    async def _get(self, path: str, params: Optional[dict] = None) -> dict:
        try:
            response = await self.client.get(path, params=params)
            response.raise_for_status()
            body = response.json()
        except (httpx.TransportError, httpx.HTTPStatusError) as e:
            logger.warning("history_request_failed", extra={"route": path})
            raise TransientUnavailable(f"History index request failed for {path}: {e}") from e
        except ValueError as e:
            raise TransientUnavailable(f"History index returned invalid JSON for {path}") from e
        if not isinstance(body, dict):
            raise TransientUnavailable(f"History index returned unexpected payload for {path}")
        return body

    async def _page(self, path: str, params: dict, model: type[M], page: int, limit: int) -> HistoryPage[M]:
        body = await self._get(path, params)
        if not body.get("success", False):
            raise TransientUnavailable(body.get("error") or f"History index failed for {path}")
        data = body.get("data") or []
        items = [self._record(item, model, path) for item in data]
        return HistoryPage[model](items=items, total=int(body.get("total", len(items))), page=page, limit=limit)

    @staticmethod
    def _record(item: Any, model: type[M], path: str) -> M:
        try:
            return model.model_validate(item)
        except ModelValidationError as e:
            raise CorruptLedgerEntry(f"Malformed history record: {e.errors()[0]['msg']}", path) from e
