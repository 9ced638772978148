from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Generic, Optional, TypeVar, Union

from pydantic import BaseModel, ConfigDict, Field

AmountInput = Union[str, int, float, Decimal]
T = TypeVar("T")

MS_PER_DAY = 24 * 60 * 60 * 1000


class GoalStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    EXPIRED = "expired"


class ApprovalOutcome(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class UserViewState(str, Enum):
    READY = "ready"
    ABSENT = "absent"


# Parameter objects are built from raw user input and may be partially
# populated; piggybank.validation decides whether they are usable.


@dataclass
class CreateGoalParams:
    name: Optional[str] = None
    target_amount: Optional[AmountInput] = None
    duration_days: Optional[int] = None
    dependent_address: Optional[str] = None


@dataclass
class DepositParams:
    goal_id: Optional[str] = None
    amount: Optional[AmountInput] = None


@dataclass
class WithdrawalParams:
    goal_id: Optional[str] = None
    amount: Optional[AmountInput] = None
    reason: Optional[str] = None


@dataclass
class ApprovalParams:
    request_id: Optional[str] = None
    goal_id: Optional[str] = None
    approve: Optional[bool] = None
    reason: Optional[str] = None


@dataclass
class ExecuteParams:
    request_id: Optional[str] = None
    goal_id: Optional[str] = None


@dataclass
class ClaimParams:
    goal_id: Optional[str] = None


class SavingsGoal(BaseModel):
    id: str
    name: str
    target_amount: int
    created_at_ms: int
    duration_days: int
    deadline_ms: int
    guardian: str
    dependent: str

    model_config = ConfigDict(frozen=True)

    def status(self, balance: int, now_ms: int) -> GoalStatus:
        if balance >= self.target_amount:
            return GoalStatus.COMPLETED
        if now_ms > self.deadline_ms:
            return GoalStatus.EXPIRED
        return GoalStatus.ACTIVE

    def days_left(self, now_ms: int) -> int:
        remaining = self.deadline_ms - now_ms
        return max(0, -(-remaining // MS_PER_DAY))


class GoalAmount(BaseModel):
    goal_id: str
    amount: int

    model_config = ConfigDict(frozen=True)


class GlobalLedger(BaseModel):
    object_id: str
    admin: str = ""
    deposit_balances: dict[str, dict[str, int]] = Field(default_factory=dict)
    reward_balances: dict[str, dict[str, int]] = Field(default_factory=dict)
    total_goals: int = 0
    total_deposits: int = 0
    total_withdrawals: int = 0
    platform_fees_collected: int = 0


class UserLedgerView(BaseModel):
    address: str
    state: UserViewState = UserViewState.READY
    deposits: list[GoalAmount] = Field(default_factory=list)
    rewards: list[GoalAmount] = Field(default_factory=list)

    def deposit_for(self, goal_id: str) -> int:
        return next((d.amount for d in self.deposits if d.goal_id == goal_id), 0)

    def reward_for(self, goal_id: str) -> int:
        return next((r.amount for r in self.rewards if r.goal_id == goal_id), 0)

    @property
    def total_deposited(self) -> int:
        return sum(d.amount for d in self.deposits)

    @property
    def total_rewards(self) -> int:
        return sum(r.amount for r in self.rewards)


class FiatEstimate(BaseModel):
    """Display-only values; ``None`` when no price is known."""

    address: str
    deposits: Optional[Decimal] = None
    rewards: Optional[Decimal] = None


class WithdrawalRequest(BaseModel):
    id: str
    goal_id: str
    amount: int
    reason: str
    requester: str
    created_at_ms: int
    outcome: ApprovalOutcome = ApprovalOutcome.PENDING
    approved_by: Optional[str] = None
    approval_reason: Optional[str] = None
    audited_at_ms: Optional[int] = None
    executed: bool = False

    def is_pending(self) -> bool:
        return self.outcome == ApprovalOutcome.PENDING

    def can_execute(self) -> bool:
        return self.outcome == ApprovalOutcome.APPROVED and not self.executed


class GoalDetail(BaseModel):
    goal: SavingsGoal
    balance: int
    status: GoalStatus
    days_left: int


class ObjectChange(BaseModel):
    type: str
    object_id: str
    object_type: str


class BalanceChange(BaseModel):
    owner: str
    coin_type: str
    amount: int


class LedgerEvent(BaseModel):
    type: str
    payload: dict = Field(default_factory=dict)


class SubmissionResult(BaseModel):
    digest: str
    sender: str
    object_changes: list[ObjectChange] = Field(default_factory=list)
    balance_changes: list[BalanceChange] = Field(default_factory=list)
    events: list[LedgerEvent] = Field(default_factory=list)

    def created_ids(self, type_suffix: str) -> list[str]:
        return [
            c.object_id for c in self.object_changes
            if c.type == "created" and c.object_type.endswith(type_suffix)
        ]

    def events_of(self, type_suffix: str) -> list[LedgerEvent]:
        return [e for e in self.events if e.type.endswith(type_suffix)]


class GoalRecord(BaseModel):
    goal_id: str
    name: str
    parent_address: str
    child_address: str
    target_amount: int
    created_at_ms: int
    deadline_ms: int
    duration_days: int
    current_balance: int = 0


class DepositRecord(BaseModel):
    goal_id: str
    amount: int
    depositor: str
    created_at_ms: int


class WithdrawalRecord(BaseModel):
    request_id: str
    goal_id: str
    amount: int
    left_balance: int
    withdrawer: str
    created_at_ms: int


class WithdrawalRequestRecord(BaseModel):
    request_id: str
    goal_id: str
    amount: int
    requester: str
    reason: str
    status: ApprovalOutcome
    approved_by: Optional[str] = None
    created_at_ms: int
    audit_at_ms: Optional[int] = None


class HistoryPage(BaseModel, Generic[T]):
    items: list[T]
    total: int
    page: int = 1
    limit: int = 10
