"""
Unit Tests for Refresh Coordination

Tests cover:
1. The declared invalidation table
2. Transitive closure over derived views
3. Goal- and requester-scoped invalidation
4. The view cache
"""

import asyncio

from piggybank.refresh import (
    GOAL_SCOPED,
    INVALIDATIONS,
    Confirmation,
    OperationKind,
    RefreshCoordinator,
    ViewCache,
    ViewKey,
    ViewKind,
    closure,
    stale_views,
)


# Test constants
GOAL_A = "0x90a10001"
GOAL_B = "0x90a10002"
DEPENDENT = "0xchild"


class TestInvalidationTable:
    """Tests for the declared mapping."""

    def test_every_operation_is_declared(self):
        """Test that no operation kind is left without a decision."""
        assert set(INVALIDATIONS) == set(OperationKind)

    def test_execute_invalidates_pending_index(self):
        """Test that execution drops the requester-indexed pending requests."""
        assert ViewKind.PENDING_REQUESTS in INVALIDATIONS[OperationKind.EXECUTE_WITHDRAWAL]

    def test_deposit_covers_goal_views(self):
        """Test the views a deposit changes."""
        stale = closure(INVALIDATIONS[OperationKind.DEPOSIT])

        assert {ViewKind.GOAL_LIST, ViewKind.GOAL_DETAIL, ViewKind.DEPOSIT_HISTORY} <= stale
        assert ViewKind.WITHDRAWAL_HISTORY not in stale
        assert ViewKind.PENDING_REQUESTS not in stale


class TestClosure:
    """Tests for transitive dependencies."""

    def test_follows_chains(self):
        """Test that derived-of-derived views are included."""
        dependencies = {
            ViewKind.USER_VIEW: frozenset({ViewKind.GLOBAL_LEDGER}),
            ViewKind.LEDGER_STATS: frozenset({ViewKind.USER_VIEW}),
        }

        stale = closure({ViewKind.GLOBAL_LEDGER}, dependencies)

        assert stale == {ViewKind.GLOBAL_LEDGER, ViewKind.USER_VIEW, ViewKind.LEDGER_STATS}

    def test_unrelated_views_untouched(self):
        """Test that a request does not touch ledger-derived views."""
        stale = closure(INVALIDATIONS[OperationKind.REQUEST_WITHDRAWAL])

        assert stale == {ViewKind.GOAL_REQUESTS, ViewKind.PENDING_REQUESTS}


class TestStaleViews:
    """Tests for scoping stale keys."""

    def test_goal_views_scoped_to_goal(self):
        """Test that only the affected goal's detail is stale."""
        keys = stale_views(Confirmation(OperationKind.DEPOSIT, goal_ids=(GOAL_A,)))

        assert ViewKey(ViewKind.GOAL_DETAIL, GOAL_A) in keys
        assert all(k.scope == GOAL_A for k in keys if k.kind in GOAL_SCOPED)
        assert ViewKey(ViewKind.USER_VIEW) in keys

    def test_execute_scopes_pending_to_requester(self):
        """Test the requester-indexed key."""
        keys = stale_views(Confirmation(OperationKind.EXECUTE_WITHDRAWAL, goal_ids=(GOAL_A,), requester=DEPENDENT))

        assert ViewKey(ViewKind.PENDING_REQUESTS, DEPENDENT) in keys
        assert ViewKey(ViewKind.WITHDRAWAL_HISTORY, GOAL_A) in keys

    def test_unknown_requester_invalidates_all(self):
        """Test that an approval clears every requester's pending index."""
        keys = stale_views(Confirmation(OperationKind.APPROVE_WITHDRAWAL, goal_ids=(GOAL_A,)))

        assert ViewKey(ViewKind.PENDING_REQUESTS) in keys


class TestViewCache:
    """Tests for caching and invalidating views."""

    def test_scoped_invalidation(self):
        """Test that a goal-scoped key leaves other goals cached."""
        cache = ViewCache()
        cache.put(ViewKey(ViewKind.GOAL_DETAIL, GOAL_A), "a")
        cache.put(ViewKey(ViewKind.GOAL_DETAIL, GOAL_B), "b")
        cache.put(ViewKey(ViewKind.DEPOSIT_HISTORY, GOAL_A, "1:10"), "history")

        removed = cache.invalidate([ViewKey(ViewKind.GOAL_DETAIL, GOAL_A), ViewKey(ViewKind.DEPOSIT_HISTORY, GOAL_A)])

        assert len(removed) == 2
        assert cache.get(ViewKey(ViewKind.GOAL_DETAIL, GOAL_B)) == "b"
        assert len(cache) == 1

    def test_wildcard_invalidation(self):
        """Test that a scope of None clears every scope of the kind."""
        cache = ViewCache()
        cache.put(ViewKey(ViewKind.USER_VIEW, "0x1"), 1)
        cache.put(ViewKey(ViewKind.USER_VIEW, "0x2"), 2)

        cache.invalidate([ViewKey(ViewKind.USER_VIEW)])

        assert len(cache) == 0

    def test_get_or_load_loads_once(self):
        """Test that a cached view is not reloaded."""
        cache = ViewCache()
        calls = []

        async def loader():
            calls.append(1)
            return "value"

        async def scenario():
            first = await cache.get_or_load(ViewKey(ViewKind.GLOBAL_LEDGER), loader)
            second = await cache.get_or_load(ViewKey(ViewKind.GLOBAL_LEDGER), loader)
            return first, second

        assert asyncio.run(scenario()) == ("value", "value")
        assert calls == [1]

    def test_coordinator_drops_stale_entries(self):
        """Test the coordinator end to end."""
        cache = ViewCache()
        cache.put(ViewKey(ViewKind.GLOBAL_LEDGER), "ledger")
        cache.put(ViewKey(ViewKind.GOAL_DETAIL, GOAL_B), "other goal")
        cache.put(ViewKey(ViewKind.PENDING_REQUESTS, DEPENDENT), [])

        RefreshCoordinator(cache).on_confirmed(
            Confirmation(OperationKind.DEPOSIT, goal_ids=(GOAL_A,), digest="tx-000001")
        )

        assert ViewKey(ViewKind.GLOBAL_LEDGER) not in cache
        assert ViewKey(ViewKind.GOAL_DETAIL, GOAL_B) in cache
        assert ViewKey(ViewKind.PENDING_REQUESTS, DEPENDENT) in cache

    def test_load_in_flight_across_confirmation_is_not_cached(self):
        """Test that a snapshot read before a confirmation never lands in the cache."""
        cache = ViewCache()
        coordinator = RefreshCoordinator(cache)
        key = ViewKey(ViewKind.GLOBAL_LEDGER)

        async def scenario():
            release = asyncio.Event()

            async def slow_loader():
                await release.wait()
                return "balance=0"

            load = asyncio.create_task(cache.get_or_load(key, slow_loader))
            await asyncio.sleep(0)
            coordinator.on_confirmed(Confirmation(OperationKind.DEPOSIT, goal_ids=(GOAL_A,)))
            release.set()
            return await load

        assert asyncio.run(scenario()) == "balance=0"
        assert key not in cache

    def test_wildcard_invalidation_reaches_loads_in_flight(self):
        """Test that an approval drops an in-flight pending list for any requester."""
        cache = ViewCache()
        key = ViewKey(ViewKind.PENDING_REQUESTS, DEPENDENT)

        async def scenario():
            release = asyncio.Event()

            async def slow_loader():
                await release.wait()
                return ["old request"]

            load = asyncio.create_task(cache.get_or_load(key, slow_loader))
            await asyncio.sleep(0)
            RefreshCoordinator(cache).on_confirmed(Confirmation(OperationKind.APPROVE_WITHDRAWAL, goal_ids=(GOAL_A,)))
            release.set()
            await load
            return await cache.get_or_load(key, lambda: asyncio.sleep(0, result=["fresh"]))

        assert asyncio.run(scenario()) == ["fresh"]
        assert cache.get(key) == ["fresh"]
