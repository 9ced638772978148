"""Pre-flight checks on user-supplied operation parameters.

Every validator returns all violations it finds, in a fixed order, and never
touches the network. An empty list means the parameters are usable.
"""

from typing import Any, Optional

from .errors import InvalidAmount, ValidationError
from .models import (
    ApprovalParams,
    ClaimParams,
    CreateGoalParams,
    DepositParams,
    ExecuteParams,
    WithdrawalParams,
)
from .units import parse_decimal


def _is_blank(value: Optional[str]) -> bool:
    return not isinstance(value, str) or not value.strip()


def _check_amount(value: Any, label: str = "amount") -> Optional[str]:
    if value is None or value == "":
        return f"{label} is required and must be > 0"
    try:
        amount = parse_decimal(value)
    except InvalidAmount:
        return f"{label} must be a number > 0"
    if amount <= 0:
        return f"{label} must be > 0"
    return None


def validate_create_goal(params: CreateGoalParams) -> list[str]:
    errors: list[str] = []
    if _is_blank(params.name):
        errors.append("name is required")
    amount_error = _check_amount(params.target_amount, "target_amount")
    if amount_error:
        errors.append(amount_error)
    days = params.duration_days
    if isinstance(days, bool) or not isinstance(days, int) or days <= 0:
        errors.append("duration_days must be a whole number > 0")
    if _is_blank(params.dependent_address):
        errors.append("dependent_address is required")
    return errors


def validate_deposit(params: DepositParams) -> list[str]:
    errors: list[str] = []
    if _is_blank(params.goal_id):
        errors.append("goal_id is required")
    amount_error = _check_amount(params.amount)
    if amount_error:
        errors.append(amount_error)
    return errors


def validate_withdrawal_request(params: WithdrawalParams) -> list[str]:
    errors = validate_deposit(DepositParams(goal_id=params.goal_id, amount=params.amount))
    if _is_blank(params.reason):
        errors.append("reason is required")
    return errors


def validate_approval(params: ApprovalParams) -> list[str]:
    errors: list[str] = []
    if _is_blank(params.request_id):
        errors.append("request_id is required")
    if _is_blank(params.goal_id):
        errors.append("goal_id is required")
    if not isinstance(params.approve, bool):
        errors.append("approve must be an explicit true or false")
    if _is_blank(params.reason):
        errors.append("reason is required")
    return errors


def validate_execution(params: ExecuteParams) -> list[str]:
    errors: list[str] = []
    if _is_blank(params.request_id):
        errors.append("request_id is required")
    if _is_blank(params.goal_id):
        errors.append("goal_id is required")
    return errors


def validate_claim(params: ClaimParams) -> list[str]:
    return ["goal_id is required"] if _is_blank(params.goal_id) else []


def ensure_valid(errors: list[str]) -> None:
    if errors:
        raise ValidationError(errors)
