"""
Unit Tests for the Step Pipeline

Tests cover:
1. Signature checks when a step is added
2. Value handle production and consumption
3. Sealing
"""

import pytest

from piggybank.errors import CompositionError
from piggybank.pipeline import SIGNATURES, Handle, Program, Transaction


class TestAddStep:
    """Tests for adding typed steps."""

    def test_returns_declared_outputs(self):
        """Test that a producing step returns a handle and a sink returns None."""
        tx = Transaction()

        stable = tx.add("convert_in", asset_type="0xusdc", amount=10)
        result = tx.add("pool_deposit", share_type="0xshare", owner="0xparent", stable=stable)

        assert stable == Handle(0, "stable")
        assert result is None
        assert tx.functions == ["convert_in", "pool_deposit"]
        assert tx.step(0).program == Program.POOL

    def test_unknown_function(self):
        """Test that unregistered functions are rejected."""
        with pytest.raises(CompositionError, match="Unknown"):
            Transaction().add("mint_money", amount=1)

    def test_missing_and_unexpected_args(self):
        """Test that arguments must match the signature exactly."""
        with pytest.raises(CompositionError) as exc_info:
            Transaction().add("convert_in", asset_type="0xusdc", amout=10)

        assert "amount" in str(exc_info.value)
        assert "amout" in str(exc_info.value)

    def test_literal_slot_rejects_handle(self):
        """Test that a handle cannot stand in for a literal."""
        tx = Transaction()
        stable = tx.add("convert_in", asset_type="0xusdc", amount=10)

        with pytest.raises(CompositionError, match="literal"):
            tx.add("pool_withdraw", share_type="0xshare", amount=stable)

    def test_handle_slot_rejects_literal(self):
        """Test that a handle slot needs a value from an earlier step."""
        with pytest.raises(CompositionError, match="value handle"):
            Transaction().add("transfer", recipient="0xchild", coin=5)

    def test_handle_from_later_step_rejected(self):
        """Test that a value cannot be used before it exists."""
        with pytest.raises(CompositionError, match="no earlier step"):
            Transaction().add("transfer", recipient="0xchild", coin=Handle(3, "asset"))

    def test_handle_name_must_match_output(self):
        """Test that a handle must name an output the step really produced."""
        tx = Transaction()
        tx.add("convert_in", asset_type="0xusdc", amount=10)

        with pytest.raises(CompositionError):
            tx.add("transfer", recipient="0xchild", coin=Handle(0, "reward"))

    def test_handle_consumed_once(self):
        """Test that a value cannot be spent twice."""
        tx = Transaction()
        stable = tx.add("convert_in", asset_type="0xusdc", amount=10)
        tx.add("pool_deposit", share_type="0xshare", owner="0xparent", stable=stable)

        with pytest.raises(CompositionError, match="reuses"):
            tx.add("convert_out", asset_type="0xusdc", stable=stable)

    def test_every_signature_is_addressable(self):
        """Test that registry keys match their function names."""
        for name, sig in SIGNATURES.items():
            assert sig.function == name


class TestSeal:
    """Tests for sealing a transaction."""

    def test_dangling_value_rejected(self):
        """Test that a produced value must be consumed."""
        tx = Transaction()
        tx.add("harvest_rewards", share_type="0xshare")

        assert tx.dangling() == [Handle(0, "reward")]
        with pytest.raises(CompositionError, match="harvest_rewards.reward"):
            tx.seal()

    def test_empty_rejected(self):
        """Test that an empty transaction cannot be sealed."""
        with pytest.raises(CompositionError):
            Transaction().seal()

    def test_sealed_is_immutable(self):
        """Test that no step can be added after sealing."""
        tx = Transaction()
        tx.add("request_withdrawal", goal_id="0xg", amount=1, reason="r", clock="0x6")
        tx.seal()

        assert tx.sealed
        with pytest.raises(CompositionError, match="sealed"):
            tx.add("request_withdrawal", goal_id="0xg", amount=1, reason="r", clock="0x6")

    def test_to_dict_describes_handles(self):
        """Test the serialisable preview."""
        tx = Transaction()
        reward = tx.add("harvest_rewards", share_type="0xshare")
        tx.add("split_reward", ledger="0x91b0", reward=reward)

        steps = tx.seal().to_dict()

        assert steps[1] == {
            "program": "goals",
            "function": "split_reward",
            "args": {"ledger": "0x91b0", "reward": {"handle": "reward", "step": 0}},
            "outputs": [],
        }
        assert steps[0]["outputs"] == ["reward"]
