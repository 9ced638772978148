"""
Unit Tests for the In-Memory Ledger

Tests cover:
1. Atomic execution and rollback
2. Raw object payloads
3. History queries and pagination
"""

import asyncio

import pytest

from chain.memory import E_GOAL_NOT_FOUND, E_INSUFFICIENT_FUNDS, InMemoryLedger
from piggybank.aggregator import decode_global_ledger, decode_goal, decode_withdrawal_request, derive_user_view
from piggybank.config import get_settings
from piggybank.errors import LedgerRejected
from piggybank.models import ApprovalOutcome
from piggybank.pipeline import Transaction


# Test constants
GUARDIAN = "0xparent"
DEPENDENT = "0xchild"
ONE = 10**9


def run(coro):
    return asyncio.run(coro)


def goal_tx(name="Bike Fund", target=100 * ONE):
    settings = get_settings()
    tx = Transaction()
    tx.add(
        "create_goal", ledger=settings.global_ledger_id, name=name, target_amount=target,
        duration_days=30, dependent=DEPENDENT, clock=settings.clock_object_id,
    )
    return tx.seal()


def deposit_tx(goal_id, amount):
    settings = get_settings()
    tx = Transaction()
    stable = tx.add("convert_in", asset_type=settings.base_asset_type, amount=amount)
    tx.add("pool_deposit", share_type=settings.pool_share_type, owner=GUARDIAN, stable=stable)
    tx.add("record_deposit", ledger=settings.global_ledger_id, goal_id=goal_id, amount=amount,
           clock=settings.clock_object_id)
    return tx.seal()


def new_goal(ledger, **kwargs):
    result = run(ledger.submit(goal_tx(**kwargs), GUARDIAN))
    return result.created_ids("::SavingsGoal")[0]


class TestExecution:
    """Tests for atomic submissions."""

    def test_unsealed_transaction_rejected(self):
        """Test that only sealed transactions are accepted."""
        ledger = InMemoryLedger()
        tx = Transaction()
        tx.add("harvest_rewards", share_type="0xshare")

        with pytest.raises(LedgerRejected, match="sealed"):
            run(ledger.submit(tx, GUARDIAN))

    def test_result_lists_changes_and_events(self):
        """Test the confirmation of a goal creation."""
        ledger = InMemoryLedger()

        result = run(ledger.submit(goal_tx(), GUARDIAN))

        kinds = {(c.type, c.object_type.rsplit("::", 1)[-1]) for c in result.object_changes}
        assert kinds == {("created", "SavingsGoal"), ("mutated", "GlobalLedger")}
        assert result.events_of("::GoalCreated")[0].payload["child"] == DEPENDENT
        assert result.digest == "tx-000001"

    def test_failure_rolls_back_every_step(self):
        """Test that an abort in a later step undoes earlier steps."""
        ledger = InMemoryLedger()
        ledger.fund(GUARDIAN, 10 * ONE)

        with pytest.raises(LedgerRejected) as exc_info:
            run(ledger.submit(deposit_tx("0xmissing", 10 * ONE), GUARDIAN))

        assert exc_info.value.step_index == 2
        assert exc_info.value.abort_code == E_GOAL_NOT_FOUND
        assert ledger.wallet_balance(GUARDIAN) == 10 * ONE
        assert ledger.state.pool_shares == {}

    def test_insufficient_funds(self):
        """Test that conversion needs the sender's funds."""
        ledger = InMemoryLedger()
        goal_id = new_goal(ledger)

        with pytest.raises(LedgerRejected) as exc_info:
            run(ledger.submit(deposit_tx(goal_id, ONE), GUARDIAN))

        assert exc_info.value.abort_code == E_INSUFFICIENT_FUNDS
        assert exc_info.value.step_index == 0

    def test_balance_changes_reported(self):
        """Test that the sender's debit is in the confirmation."""
        ledger = InMemoryLedger()
        ledger.fund(GUARDIAN, 10 * ONE)
        goal_id = new_goal(ledger)

        result = run(ledger.submit(deposit_tx(goal_id, 4 * ONE), GUARDIAN))

        assert [(b.owner, b.amount) for b in result.balance_changes] == [(GUARDIAN, -4 * ONE)]


class TestPayloads:
    """Tests that raw objects decode through the aggregator."""

    def test_global_ledger_round_trips(self):
        """Test that the emitted ledger payload decodes to the internal state."""
        ledger = InMemoryLedger()
        ledger.fund(GUARDIAN, 10 * ONE)
        goal_id = new_goal(ledger)
        run(ledger.submit(deposit_tx(goal_id, 3 * ONE), GUARDIAN))

        raw = run(ledger.get_object(get_settings().global_ledger_id))
        decoded = decode_global_ledger(raw)

        assert derive_user_view(decoded, GUARDIAN).deposit_for(goal_id) == 3 * ONE
        assert decoded.total_goals == 1
        assert decoded.total_deposits == 1

    def test_unpublished_ledger_is_absent(self):
        """Test that the ledger object can be missing."""
        ledger = InMemoryLedger(published=False)

        assert run(ledger.get_object(get_settings().global_ledger_id)) is None

    def test_goal_payload(self):
        """Test that goal objects decode."""
        ledger = InMemoryLedger()
        goal_id = new_goal(ledger)

        goal = decode_goal(run(ledger.get_object(goal_id)))

        assert goal.id == goal_id
        assert goal.guardian == GUARDIAN
        assert goal.deadline_ms == ledger.now_ms + 30 * 24 * 60 * 60 * 1000

    def test_request_payload(self):
        """Test that request objects decode with their status code."""
        ledger = InMemoryLedger()
        ledger.fund(GUARDIAN, 10 * ONE)
        goal_id = new_goal(ledger)
        run(ledger.submit(deposit_tx(goal_id, 5 * ONE), GUARDIAN))
        tx = Transaction()
        tx.add("request_withdrawal", goal_id=goal_id, amount=ONE, reason="Snacks", clock="0x6")
        request_id = run(ledger.submit(tx.seal(), DEPENDENT)).created_ids("::WithdrawalRequest")[0]

        request = decode_withdrawal_request(run(ledger.get_object(request_id)))

        assert request.outcome == ApprovalOutcome.PENDING
        assert request.amount == ONE
        assert run(ledger.get_object("0xnothing")) is None


class TestHistoryQueries:
    """Tests for the history index implementation."""

    def test_goals_paginate_newest_first(self):
        """Test page/limit semantics."""
        ledger = InMemoryLedger()
        for name in ("One", "Two", "Three"):
            new_goal(ledger, name=name)
            ledger.advance(ms=1)

        first = run(ledger.list_goals(page=1, limit=2))
        second = run(ledger.list_goals(page=2, limit=2))

        assert first.total == 3
        assert [g.name for g in first.items] == ["Three", "Two"]
        assert [g.name for g in second.items] == ["One"]

    def test_filters_by_participant(self):
        """Test guardian and dependent filters."""
        ledger = InMemoryLedger()
        new_goal(ledger)

        assert run(ledger.list_goals(child_address=DEPENDENT)).total == 1
        assert run(ledger.list_goals(parent_address=DEPENDENT)).total == 0

    def test_deposit_history_and_balance(self):
        """Test deposit records and live goal balance."""
        ledger = InMemoryLedger()
        ledger.fund(GUARDIAN, 10 * ONE)
        goal_id = new_goal(ledger)
        run(ledger.submit(deposit_tx(goal_id, 2 * ONE), GUARDIAN))

        deposits = run(ledger.list_deposits(goal_id))
        goals = run(ledger.list_goals())

        assert deposits.items[0].amount == 2 * ONE
        assert goals.items[0].current_balance == 2 * ONE
