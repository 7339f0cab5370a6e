"""
Tests for the cross-session file lock coordinator.
"""

import asyncio

from tools.locks import FileLockCoordinator, LockOutcome


def test_first_caller_acquires_and_reentry_is_immediate():
    async def scenario():
        locks = FileLockCoordinator()
        assert await locks.acquire("s1", "/tmp/app.py") is LockOutcome.ACQUIRED
        assert await locks.acquire("s1", "/tmp/app.py") is LockOutcome.ACQUIRED
        assert locks.holder("/tmp/app.py") == "s1"
        # Two holds need two releases
        locks.release("s1", "/tmp/app.py")
        assert locks.holder("/tmp/app.py") == "s1"
        locks.release("s1", "/tmp/app.py")
        assert locks.holder("/tmp/app.py") is None

    asyncio.run(scenario())


def test_waiters_are_served_fifo():
    async def scenario():
        locks = FileLockCoordinator()
        order = []
        await locks.acquire("s1", "/tmp/f")

        async def wait_for(session):
            outcome = await locks.acquire(session, "/tmp/f", timeout=0)
            order.append((session, outcome))
            locks.release(session, "/tmp/f")

        t2 = asyncio.ensure_future(wait_for("s2"))
        await asyncio.sleep(0)
        t3 = asyncio.ensure_future(wait_for("s3"))
        await asyncio.sleep(0)
        assert locks.waiting_sessions() == {"s2": locks.locked_paths()[0], "s3": locks.locked_paths()[0]}

        locks.release("s1", "/tmp/f")
        await asyncio.gather(t2, t3)
        assert order == [("s2", LockOutcome.ACQUIRED), ("s3", LockOutcome.ACQUIRED)]
        assert locks.locked_paths() == []

    asyncio.run(scenario())


def test_timeout_leaves_queue():
    async def scenario():
        locks = FileLockCoordinator()
        await locks.acquire("s1", "/tmp/f")
        waited = []
        outcome = await locks.acquire("s2", "/tmp/f", timeout=0.05, on_wait=waited.append)
        assert outcome is LockOutcome.TIMEOUT
        assert waited == ["s1"]
        assert locks.waiting_sessions() == {}
        assert locks.holder("/tmp/f") == "s1"

    asyncio.run(scenario())


def test_release_all_hands_off_and_cancels_own_waits():
    async def scenario():
        locks = FileLockCoordinator()
        await locks.acquire("s1", "/tmp/a")
        await locks.acquire("s2", "/tmp/b")
        s1_waiting = asyncio.ensure_future(locks.acquire("s1", "/tmp/b", timeout=0))
        s2_waiting = asyncio.ensure_future(locks.acquire("s2", "/tmp/a", timeout=0))
        await asyncio.sleep(0)

        assert locks.release_all("s1") == 1
        assert await s1_waiting is LockOutcome.CANCELLED
        assert await s2_waiting is LockOutcome.ACQUIRED
        assert locks.locked_paths("s1") == []
        assert len(locks.locked_paths("s2")) == 2

    asyncio.run(scenario())


def test_release_by_non_holder_is_refused():
    async def scenario():
        locks = FileLockCoordinator()
        await locks.acquire("s1", "/tmp/f")
        assert locks.release("s2", "/tmp/f") is False
        assert locks.holder("/tmp/f") == "s1"

    asyncio.run(scenario())
