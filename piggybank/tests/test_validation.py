"""
Unit Tests for Parameter Validation

Tests cover:
1. Deposit parameters
2. Withdrawal requests and approvals
3. Goal creation, execution and claims
4. ensure_valid
"""

import pytest
from decimal import Decimal

from piggybank.errors import ValidationError
from piggybank.models import (
    ApprovalParams,
    ClaimParams,
    CreateGoalParams,
    DepositParams,
    ExecuteParams,
    WithdrawalParams,
)
from piggybank.validation import (
    ensure_valid,
    validate_approval,
    validate_claim,
    validate_create_goal,
    validate_deposit,
    validate_execution,
    validate_withdrawal_request,
)


# Test constants
GOAL_ID = "0x90a10001"
REQUEST_ID = "0x7e90002"
DEPENDENT = "0xchild"


class TestDepositValidation:
    """Tests for deposit parameter checks."""

    @pytest.mark.parametrize("amount", ["10", "0.5", 7, 1.25, Decimal("100.000000001")])
    def test_valid_deposit_has_no_violations(self, amount):
        """Test that well-formed deposits pass."""
        assert validate_deposit(DepositParams(goal_id=GOAL_ID, amount=amount)) == []

    @pytest.mark.parametrize("amount", ["0", 0, "-1", -3.5, "abc", "NaN", "inf", "", None, float("nan")])
    def test_bad_amount_reports_positive_requirement(self, amount):
        """Test that zero, negative and non-numeric amounts are rejected."""
        errors = validate_deposit(DepositParams(goal_id=GOAL_ID, amount=amount))

        assert len(errors) == 1
        assert "> 0" in errors[0]

    def test_boolean_amount_is_not_numeric(self):
        """Test that True is not accepted as the amount 1."""
        errors = validate_deposit(DepositParams(goal_id=GOAL_ID, amount=True))

        assert errors == ["amount must be a number > 0"]

    def test_all_violations_reported_in_order(self):
        """Test that every violation is reported, not just the first."""
        errors = validate_deposit(DepositParams(goal_id="  ", amount="-5"))

        assert errors == ["goal_id is required", "amount must be > 0"]


class TestWithdrawalValidation:
    """Tests for withdrawal request and approval checks."""

    def test_valid_request(self):
        """Test a complete withdrawal request."""
        params = WithdrawalParams(goal_id=GOAL_ID, amount="20", reason="New bike")
        assert validate_withdrawal_request(params) == []

    @pytest.mark.parametrize("reason", [None, "", "   \n"])
    def test_request_requires_reason(self, reason):
        """Test that a missing or blank reason is a violation."""
        params = WithdrawalParams(goal_id=GOAL_ID, amount="20", reason=reason)
        assert validate_withdrawal_request(params) == ["reason is required"]

    def test_approval_requires_explicit_decision(self):
        """Test that an undefined decision is rejected."""
        params = ApprovalParams(request_id=REQUEST_ID, goal_id=GOAL_ID, approve=None, reason="ok")
        assert validate_approval(params) == ["approve must be an explicit true or false"]

    def test_approval_rejects_truthy_non_bool(self):
        """Test that 1 or "yes" do not count as a decision."""
        assert validate_approval(ApprovalParams(REQUEST_ID, GOAL_ID, 1, "ok")) != []
        assert validate_approval(ApprovalParams(REQUEST_ID, GOAL_ID, "yes", "ok")) != []

    def test_rejection_is_a_valid_decision(self):
        """Test that approve=False passes validation."""
        params = ApprovalParams(request_id=REQUEST_ID, goal_id=GOAL_ID, approve=False, reason="Not now")
        assert validate_approval(params) == []

    def test_approval_reports_every_missing_field(self):
        """Test an empty approval."""
        errors = validate_approval(ApprovalParams())

        assert errors == [
            "request_id is required",
            "goal_id is required",
            "approve must be an explicit true or false",
            "reason is required",
        ]


class TestOtherValidators:
    """Tests for goal creation, execution and claim checks."""

    def test_create_goal_valid(self):
        """Test a complete goal."""
        params = CreateGoalParams(name="Bike Fund", target_amount="100", duration_days=30, dependent_address=DEPENDENT)
        assert validate_create_goal(params) == []

    def test_create_goal_rejects_bad_duration(self):
        """Test that duration must be a positive whole number."""
        for days in (0, -1, 2.5, True, None):
            params = CreateGoalParams(name="Bike", target_amount="1", duration_days=days, dependent_address=DEPENDENT)
            assert validate_create_goal(params) == ["duration_days must be a whole number > 0"]

    def test_create_goal_empty(self):
        """Test that an empty goal reports all four violations."""
        assert len(validate_create_goal(CreateGoalParams())) == 4

    def test_execution_requires_ids(self):
        """Test execution parameters."""
        assert validate_execution(ExecuteParams(request_id=REQUEST_ID, goal_id=GOAL_ID)) == []
        assert validate_execution(ExecuteParams()) == ["request_id is required", "goal_id is required"]

    def test_claim_requires_goal(self):
        """Test claim parameters."""
        assert validate_claim(ClaimParams(goal_id=GOAL_ID)) == []
        assert validate_claim(ClaimParams()) == ["goal_id is required"]


class TestEnsureValid:
    """Tests for raising on violations."""

    def test_no_violations_passes(self):
        """Test that an empty list does not raise."""
        ensure_valid([])

    def test_violations_raise_with_details(self):
        """Test that the error carries every violation."""
        with pytest.raises(ValidationError) as exc_info:
            ensure_valid(["goal_id is required", "amount must be > 0"])

        assert exc_info.value.violations == ["goal_id is required", "amount must be > 0"]
        assert exc_info.value.to_dict()["details"] == ["goal_id is required", "amount must be > 0"]
        assert exc_info.value.retryable is False
