import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional, Union

import httpx
from fastapi import FastAPI, Header, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, StrictBool

from chain.history import HttpHistoryIndex
from chain.memory import InMemoryLedger
from chain.oracle import HttpPriceOracle, PriceFeed

from .config import Settings, get_settings
from .errors import (
    CompositionError,
    CorruptLedgerEntry,
    GlobalLedgerNotFound,
    InvalidAmount,
    LedgerRejected,
    NoEffectDetected,
    NotAuthorized,
    ObjectNotFound,
    PendingRequestExists,
    PiggyBankError,
    TransientUnavailable,
    ValidationError,
    WithdrawalNotApproved,
)
from .models import (
    ApprovalParams,
    ClaimParams,
    CreateGoalParams,
    DepositParams,
    ExecuteParams,
    FiatEstimate,
    GoalDetail,
    GoalRecord,
    HistoryPage,
    SubmissionResult,
    UserLedgerView,
    WithdrawalParams,
)
from .service import SavingsService

logger = logging.getLogger("piggybank.api")

AmountField = Optional[Union[int, float, str]]

_STATUS_BY_ERROR: list[tuple[type[PiggyBankError], int]] = [
    (PendingRequestExists, status.HTTP_409_CONFLICT),
    (ValidationError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (InvalidAmount, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (NotAuthorized, status.HTTP_403_FORBIDDEN),
    (WithdrawalNotApproved, status.HTTP_409_CONFLICT),
    (GlobalLedgerNotFound, status.HTTP_503_SERVICE_UNAVAILABLE),
    (ObjectNotFound, status.HTTP_404_NOT_FOUND),
    (CorruptLedgerEntry, status.HTTP_502_BAD_GATEWAY),
    (NoEffectDetected, status.HTTP_502_BAD_GATEWAY),
    (LedgerRejected, status.HTTP_409_CONFLICT),
    (TransientUnavailable, status.HTTP_503_SERVICE_UNAVAILABLE),
    (CompositionError, status.HTTP_500_INTERNAL_SERVER_ERROR),
]


class GoalBody(BaseModel):
    name: Optional[str] = None
    target_amount: AmountField = None
    duration_days: Optional[int] = None
    dependent_address: Optional[str] = None


class CreateGoalsBody(BaseModel):
    goals: list[GoalBody] = Field(default_factory=list)


class DepositBody(BaseModel):
    amount: AmountField = None


class WithdrawalBody(BaseModel):
    amount: AmountField = None
    reason: Optional[str] = None


class DecisionBody(BaseModel):
    goal_id: Optional[str] = None
    approve: Optional[StrictBool] = None
    reason: Optional[str] = None


class ExecuteBody(BaseModel):
    goal_id: Optional[str] = None


class PreviewBody(BaseModel):
    goal_id: Optional[str] = None
    amount: AmountField = None


class CreatedResponse(BaseModel):
    digest: str
    created_ids: list[str] = Field(default_factory=list)
    result: SubmissionResult


def _build_error(*, code: str, message: str, details: Any = None) -> dict[str, Any]:
    payload: dict[str, Any] = {"code": code, "message": message}
    if details is not None:
        payload["details"] = details
    return payload


def _status_for(exc: PiggyBankError) -> int:
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status_code
    return status.HTTP_400_BAD_REQUEST


async def piggybank_exception_handler(request: Request, exc: PiggyBankError) -> JSONResponse:
    status_code = _status_for(exc)
    logger.warning(
        "request_failed",
        extra={"route": request.url.path, "status_code": status_code, "operation": exc.code},
    )
    content = _build_error(code=exc.code, message=str(exc), details=exc.to_dict().get("details"))
    content["retryable"] = exc.retryable
    return JSONResponse(status_code=status_code, content=content)


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=_build_error(
            code="VALIDATION_ERROR",
            message="Validation failed",
            details=jsonable_encoder(exc.errors()),
        ),
    )


def _created(result: SubmissionResult, type_suffix: str) -> CreatedResponse:
    return CreatedResponse(digest=result.digest, created_ids=result.created_ids(type_suffix), result=result)


def build_service(
    settings: Optional[Settings] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> SavingsService:
    """Wire the service from settings.

    The history index and price oracle are remote only when their URLs are
    configured; otherwise the local ledger answers history queries and no
    prices are polled.
    """
    settings = settings or get_settings()
    ledger = InMemoryLedger(settings)

    history = ledger
    if settings.history_api_url:
        history = HttpHistoryIndex(
            settings.history_api_url, settings.history_timeout_seconds, transport=transport
        )

    price_feed = None
    if settings.oracle_api_url:
        price_feed = PriceFeed(
            HttpPriceOracle(settings.oracle_api_url, settings.oracle_timeout_seconds, transport=transport),
            max_retries=settings.oracle_max_retries,
            backoff_base=settings.oracle_backoff_base_seconds,
            backoff_cap=settings.oracle_backoff_cap_seconds,
        )

    return SavingsService(ledger, history, price_feed, settings, clock=lambda: ledger.now_ms)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    service: SavingsService = app.state.service
    stop = asyncio.Event()
    poller = None
    if service.price_feed is not None:
        poller = asyncio.create_task(
            service.price_feed.run(
                service.priced_assets, service.settings.oracle_poll_interval_seconds, stop
            )
        )
    try:
        yield
    finally:
        stop.set()
        if poller is not None:
            await poller
        await service.aclose()


def create_app(service: Optional[SavingsService] = None, root_path: str = "") -> FastAPI:
    if service is None:
        service = build_service()

    app = FastAPI(
        title="PiggyBank Ledger API",
        description="Guardian/dependent savings goals on a shared ledger",
        version="1.0.0",
        root_path=root_path,
        lifespan=lifespan,
    )
    app.state.service = service

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(PiggyBankError, piggybank_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)

    @app.get("/health", tags=["System"])
    async def health_check():
        return {"status": "healthy", "service": "piggybank-ledger", "network": get_settings().network}

    @app.get("/ledger/stats", tags=["Ledger"])
    async def ledger_stats():
        return await service.ledger_stats()

    @app.get("/ledger/users/{address}", response_model=UserLedgerView, tags=["Ledger"])
    async def user_view(address: str) -> UserLedgerView:
        return await service.user_view(address)

    @app.get("/ledger/users/{address}/fiat-estimate", response_model=FiatEstimate, tags=["Ledger"])
    async def fiat_estimate(address: str) -> FiatEstimate:
        return FiatEstimate(
            address=address,
            deposits=await service.fiat_estimate(address),
            rewards=await service.reward_estimate(address),
        )

    @app.get("/goals", response_model=HistoryPage[GoalRecord], tags=["Goals"])
    async def list_goals(
        page: int = 1,
        limit: int = 10,
        parent_address: Optional[str] = None,
        child_address: Optional[str] = None,
    ) -> HistoryPage[GoalRecord]:
        return await service.list_goals(page, limit, parent_address, child_address)

    @app.get("/goals/{goal_id}", response_model=GoalDetail, tags=["Goals"])
    async def goal_detail(goal_id: str) -> GoalDetail:
        return await service.goal_detail(goal_id)

    @app.post("/goals", response_model=CreatedResponse, status_code=status.HTTP_201_CREATED, tags=["Goals"])
    async def create_goals(body: CreateGoalsBody, x_wallet_address: str = Header(...)) -> CreatedResponse:
        params = [CreateGoalParams(**goal.model_dump()) for goal in body.goals]
        result = await service.create_goals(params, x_wallet_address)
        return _created(result, "::SavingsGoal")

    @app.post("/goals/{goal_id}/deposits", response_model=SubmissionResult, tags=["Goals"])
    async def deposit(goal_id: str, body: DepositBody, x_wallet_address: str = Header(...)) -> SubmissionResult:
        return await service.deposit(DepositParams(goal_id=goal_id, amount=body.amount), x_wallet_address)

    @app.post(
        "/goals/{goal_id}/withdrawal-requests",
        response_model=CreatedResponse,
        status_code=status.HTTP_201_CREATED,
        tags=["Withdrawals"],
    )
    async def request_withdrawal(
        goal_id: str, body: WithdrawalBody, x_wallet_address: str = Header(...)
    ) -> CreatedResponse:
        params = WithdrawalParams(goal_id=goal_id, amount=body.amount, reason=body.reason)
        result = await service.request_withdrawal(params, x_wallet_address)
        return _created(result, "::WithdrawalRequest")

    @app.post("/withdrawal-requests/{request_id}/decision", response_model=SubmissionResult, tags=["Withdrawals"])
    async def decide_withdrawal(
        request_id: str, body: DecisionBody, x_wallet_address: str = Header(...)
    ) -> SubmissionResult:
        params = ApprovalParams(
            request_id=request_id, goal_id=body.goal_id, approve=body.approve, reason=body.reason
        )
        return await service.approve_withdrawal(params, x_wallet_address)

    @app.post("/withdrawal-requests/{request_id}/execute", response_model=SubmissionResult, tags=["Withdrawals"])
    async def execute_withdrawal(
        request_id: str, body: ExecuteBody, x_wallet_address: str = Header(...)
    ) -> SubmissionResult:
        params = ExecuteParams(request_id=request_id, goal_id=body.goal_id)
        return await service.execute_withdrawal(params, x_wallet_address)

    @app.post("/goals/{goal_id}/rewards/claim", response_model=SubmissionResult, tags=["Rewards"])
    async def claim_rewards(goal_id: str, x_wallet_address: str = Header(...)) -> SubmissionResult:
        return await service.claim_rewards(ClaimParams(goal_id=goal_id), x_wallet_address)

    @app.post("/transactions/preview/deposit", tags=["Transactions"])
    async def preview_deposit(body: PreviewBody, x_wallet_address: str = Header(...)):
        params = DepositParams(goal_id=body.goal_id, amount=body.amount)
        tx = await service.composer.preview_deposit(params, x_wallet_address)
        return {"functions": tx.functions, "steps": tx.to_dict()}

    return app


if __name__ == "__main__":
    import uvicorn

    from .logs import setup_json_logging

    setup_json_logging()
    uvicorn.run(create_app(), host="0.0.0.0", port=8000)
