"""Ordered, typed steps of one atomic ledger submission.

Each ledger function has a declared signature: literal inputs, value-handle
inputs and the value handles it produces. ``Transaction.add`` checks every
step against its signature when the step is enqueued, so a flow that uses a
value before it exists, uses it twice or leaves it dangling fails at
composition time instead of on the ledger.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterator, Optional, Union

from .errors import CompositionError


class Program(str, Enum):
    GOALS = "goals"
    POOL = "pool"
    CORE = "core"


@dataclass(frozen=True)
class Handle:
    step_index: int
    name: str

    def to_dict(self) -> dict:
        return {"handle": self.name, "step": self.step_index}


@dataclass(frozen=True)
class Signature:
    program: Program
    function: str
    inputs: tuple[str, ...] = ()
    handles: tuple[str, ...] = ()
    outputs: tuple[str, ...] = ()


SIGNATURES: dict[str, Signature] = {
    sig.function: sig
    for sig in (
        Signature(Program.GOALS, "create_goal",
                  inputs=("ledger", "name", "target_amount", "duration_days", "dependent", "clock")),
        Signature(Program.GOALS, "record_deposit", inputs=("ledger", "goal_id", "amount", "clock")),
        Signature(Program.GOALS, "request_withdrawal", inputs=("goal_id", "amount", "reason", "clock")),
        Signature(Program.GOALS, "approve_or_reject",
                  inputs=("request_id", "goal_id", "approve", "reason", "clock")),
        Signature(Program.GOALS, "execute_withdrawal", inputs=("ledger", "goal_id", "request_id", "clock")),
        Signature(Program.GOALS, "split_reward", inputs=("ledger",), handles=("reward",)),
        Signature(Program.GOALS, "claim_reward", inputs=("ledger", "goal_id", "clock"), outputs=("reward",)),
        Signature(Program.POOL, "convert_in", inputs=("asset_type", "amount"), outputs=("stable",)),
        Signature(Program.POOL, "convert_out", inputs=("asset_type",), handles=("stable",), outputs=("asset",)),
        Signature(Program.POOL, "pool_deposit", inputs=("share_type", "owner"), handles=("stable",)),
        Signature(Program.POOL, "pool_withdraw", inputs=("share_type", "amount"), outputs=("stable",)),
        Signature(Program.POOL, "harvest_rewards", inputs=("share_type",), outputs=("reward",)),
        Signature(Program.CORE, "transfer", inputs=("recipient",), handles=("coin",)),
    )
}


@dataclass
class Step:
    program: Program
    function: str
    args: dict[str, Any]
    outputs: tuple[Handle, ...] = ()

    def to_dict(self) -> dict:
        return {
            "program": self.program.value,
            "function": self.function,
            "args": {k: v.to_dict() if isinstance(v, Handle) else v for k, v in self.args.items()},
            "outputs": [h.name for h in self.outputs],
        }


@dataclass
class Transaction:
    steps: list[Step] = field(default_factory=list)
    sealed: bool = False
    _consumed: set[Handle] = field(default_factory=set, repr=False, init=False)

    def __len__(self) -> int:
        return len(self.steps)

    def __iter__(self) -> Iterator[Step]:
        return iter(self.steps)

    @property
    def functions(self) -> list[str]:
        return [s.function for s in self.steps]

    def add(self, function: str, **args: Any) -> Union[None, Handle, tuple[Handle, ...]]:
        if self.sealed:
            raise CompositionError("Transaction is sealed")
        sig = SIGNATURES.get(function)
        if sig is None:
            raise CompositionError(f"Unknown ledger function {function}")

        expected = set(sig.inputs) | set(sig.handles)
        missing = sorted(expected - set(args))
        unexpected = sorted(set(args) - expected)
        if missing or unexpected:
            raise CompositionError(
                f"{function}: missing {missing or 'nothing'}, unexpected {unexpected or 'nothing'}"
            )

        for name in sig.inputs:
            if isinstance(args[name], Handle):
                raise CompositionError(f"{function}.{name} expects a literal, got a value handle")
        for name in sig.handles:
            self._claim(function, name, args[name])

        index = len(self.steps)
        outputs = tuple(Handle(index, name) for name in sig.outputs)
        self.steps.append(Step(sig.program, function, dict(args), outputs))

        if not outputs:
            return None
        return outputs[0] if len(outputs) == 1 else outputs

    def _claim(self, function: str, name: str, value: Any) -> None:
        if not isinstance(value, Handle):
            raise CompositionError(f"{function}.{name} expects a value handle from an earlier step")
        if not 0 <= value.step_index < len(self.steps) or value not in self.steps[value.step_index].outputs:
            raise CompositionError(f"{function}.{name} refers to a value no earlier step produces")
        if value in self._consumed:
            raise CompositionError(f"{function}.{name} reuses an already consumed value")
        self._consumed.add(value)

    def dangling(self) -> list[Handle]:
        return [h for step in self.steps for h in step.outputs if h not in self._consumed]

    def seal(self) -> "Transaction":
        if not self.steps:
            raise CompositionError("Transaction has no steps")
        leftover = self.dangling()
        if leftover:
            names = ", ".join(f"{self.steps[h.step_index].function}.{h.name}" for h in leftover)
            raise CompositionError(f"Unconsumed values: {names}")
        self.sealed = True
        return self

    def step(self, index: int) -> Optional[Step]:
        return self.steps[index] if 0 <= index < len(self.steps) else None

    def to_dict(self) -> list[dict]:
        return [s.to_dict() for s in self.steps]
