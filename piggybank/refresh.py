"""Which cached views a confirmed operation makes stale.

``INVALIDATIONS`` is the declared table from operation kind to the views it
changes directly; ``VIEW_DEPENDENCIES`` lists the views derived from others.
The stale set of a confirmation is the transitive closure of both. Adding an
``OperationKind`` without an ``INVALIDATIONS`` entry fails at import.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Iterable, Mapping, Optional

logger = logging.getLogger("piggybank.refresh")


class OperationKind(str, Enum):
    CREATE_GOAL = "create_goal"
    DEPOSIT = "deposit"
    REQUEST_WITHDRAWAL = "request_withdrawal"
    APPROVE_WITHDRAWAL = "approve_withdrawal"
    EXECUTE_WITHDRAWAL = "execute_withdrawal"
    CLAIM_REWARDS = "claim_rewards"


class ViewKind(str, Enum):
    GLOBAL_LEDGER = "global_ledger"
    LEDGER_STATS = "ledger_stats"
    USER_VIEW = "user_view"
    GOAL_LIST = "goal_list"
    GOAL_DETAIL = "goal_detail"
    DEPOSIT_HISTORY = "deposit_history"
    WITHDRAWAL_HISTORY = "withdrawal_history"
    GOAL_REQUESTS = "goal_requests"
    PENDING_REQUESTS = "pending_requests"


GOAL_SCOPED = frozenset({
    ViewKind.GOAL_DETAIL,
    ViewKind.DEPOSIT_HISTORY,
    ViewKind.WITHDRAWAL_HISTORY,
    ViewKind.GOAL_REQUESTS,
})
REQUESTER_SCOPED = frozenset({ViewKind.PENDING_REQUESTS})

INVALIDATIONS: Mapping[OperationKind, frozenset[ViewKind]] = {
    OperationKind.CREATE_GOAL: frozenset({ViewKind.GLOBAL_LEDGER, ViewKind.GOAL_LIST}),
    OperationKind.DEPOSIT: frozenset({
        ViewKind.GLOBAL_LEDGER,
        ViewKind.GOAL_DETAIL,
        ViewKind.DEPOSIT_HISTORY,
    }),
    OperationKind.REQUEST_WITHDRAWAL: frozenset({ViewKind.GOAL_REQUESTS, ViewKind.PENDING_REQUESTS}),
    OperationKind.APPROVE_WITHDRAWAL: frozenset({ViewKind.GOAL_REQUESTS, ViewKind.PENDING_REQUESTS}),
    OperationKind.EXECUTE_WITHDRAWAL: frozenset({
        ViewKind.GLOBAL_LEDGER,
        ViewKind.GOAL_DETAIL,
        ViewKind.WITHDRAWAL_HISTORY,
        ViewKind.GOAL_REQUESTS,
        ViewKind.PENDING_REQUESTS,
    }),
    OperationKind.CLAIM_REWARDS: frozenset({ViewKind.GLOBAL_LEDGER}),
}

VIEW_DEPENDENCIES: Mapping[ViewKind, frozenset[ViewKind]] = {
    ViewKind.LEDGER_STATS: frozenset({ViewKind.GLOBAL_LEDGER}),
    ViewKind.USER_VIEW: frozenset({ViewKind.GLOBAL_LEDGER}),
    ViewKind.GOAL_LIST: frozenset({ViewKind.GLOBAL_LEDGER}),
    ViewKind.GOAL_DETAIL: frozenset({ViewKind.GLOBAL_LEDGER}),
}

_uncovered = set(OperationKind) - set(INVALIDATIONS)
if _uncovered:
    raise RuntimeError(f"No invalidation declared for {sorted(k.value for k in _uncovered)}")


@dataclass(frozen=True)
class ViewKey:
    """A cached view. ``scope`` is a goal id or address; ``None`` means every scope."""

    kind: ViewKind
    scope: Optional[str] = None
    variant: str = ""

    def covers(self, other: "ViewKey") -> bool:
        return self.kind == other.kind and (self.scope is None or self.scope == other.scope)


@dataclass(frozen=True)
class Confirmation:
    operation: OperationKind
    goal_ids: tuple[str, ...] = ()
    requester: Optional[str] = None
    digest: str = ""


def closure(
    kinds: Iterable[ViewKind],
    dependencies: Mapping[ViewKind, frozenset[ViewKind]] = VIEW_DEPENDENCIES,
) -> frozenset[ViewKind]:
    stale = set(kinds)
    changed = True
    while changed:
        changed = False
        for derived, upstream in dependencies.items():
            if derived not in stale and upstream & stale:
                stale.add(derived)
                changed = True
    return frozenset(stale)


def stale_views(confirmation: Confirmation) -> frozenset[ViewKey]:
    keys: set[ViewKey] = set()
    for kind in closure(INVALIDATIONS[confirmation.operation]):
        if kind in GOAL_SCOPED:
            # Goals created by this operation have nothing cached yet.
            keys.update(ViewKey(kind, goal_id) for goal_id in confirmation.goal_ids)
        elif kind in REQUESTER_SCOPED:
            keys.add(ViewKey(kind, confirmation.requester))
        else:
            keys.add(ViewKey(kind))
    return frozenset(keys)


class ViewCache:
    """Cached views keyed by ``ViewKey``.

    Every key that has been loaded carries a generation which ``invalidate``
    bumps. A load that was in flight across an invalidation returns its value
    to the caller but does not cache it.
    """

    def __init__(self):
        self._entries: dict[ViewKey, Any] = {}
        self._generations: dict[ViewKey, int] = {}

    def __contains__(self, key: ViewKey) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, key: ViewKey) -> Any:
        return self._entries.get(key)

    def put(self, key: ViewKey, value: Any) -> None:
        self._generations.setdefault(key, 0)
        self._entries[key] = value

    async def get_or_load(self, key: ViewKey, loader: Callable[[], Awaitable[Any]]) -> Any:
        if key in self._entries:
            return self._entries[key]
        generation = self._generations.setdefault(key, 0)
        value = await loader()
        if self._generations[key] == generation:
            self._entries[key] = value
        else:
            logger.debug("stale_load_discarded", extra={"view": key.kind.value})
        return value

    def invalidate(self, keys: Iterable[ViewKey]) -> list[ViewKey]:
        keys = list(keys)
        for known in self._generations:
            if any(k.covers(known) for k in keys):
                self._generations[known] += 1
        removed = [cached for cached in self._entries if any(k.covers(cached) for k in keys)]
        for cached in removed:
            del self._entries[cached]
        return removed


class RefreshCoordinator:
    def __init__(self, cache: ViewCache):
        self.cache = cache

    def on_confirmed(self, confirmation: Confirmation) -> frozenset[ViewKey]:
        stale = stale_views(confirmation)
        removed = self.cache.invalidate(stale)
        logger.info(
            "views_invalidated",
            extra={
                "operation": confirmation.operation.value,
                "digest": confirmation.digest or None,
                "view_count": len(removed),
            },
        )
        return stale
