"""
会话管理器测试
"""

import asyncio

import pytest

from core.types import BusyPolicy
from infrastructure.exceptions import ConcurrentTurnConflict
from services.session_manager import SessionManager


class TestSessionRegistry:
    """会话注册表测试"""

    def test_create_and_get(self, session_manager):
        session = session_manager.create_session()

        assert session_manager.get_session(session.session_id) is session
        assert len(session.session_id) == 8

    def test_get_or_create_is_stable(self, session_manager):
        first = session_manager.get_or_create("abc")
        second = session_manager.get_or_create("abc")
        assert first is second

    def test_end_session(self, session_manager):
        session_manager.get_or_create("abc")

        assert session_manager.end_session("abc")
        assert session_manager.get_session("abc") is None
        assert not session_manager.end_session("abc")

    def test_snapshot(self, session_manager):
        session = session_manager.get_or_create("abc")
        session.memory.upsert_line("latte", "拿铁", 32.0, 1)

        snapshot = session_manager.snapshot("abc")

        assert snapshot["session_id"] == "abc"
        assert snapshot["cart"][0]["product_id"] == "latte"
        assert snapshot["order_state"] == "idle"
        assert session_manager.snapshot("missing") is None

    def test_cleanup_idle(self):
        manager = SessionManager(idle_timeout=60)
        stale = manager.get_or_create("stale")
        stale.last_active -= 120
        manager.get_or_create("fresh")

        assert manager.cleanup_idle() == 1
        assert manager.get_session("stale") is None
        assert manager.get_session("fresh") is not None

    @pytest.mark.asyncio
    async def test_cleanup_skips_busy_session(self):
        manager = SessionManager(idle_timeout=60)
        session = manager.get_or_create("busy")
        session.last_active -= 120

        async with manager.turn_lock("busy"):
            assert manager.is_busy("busy")
            assert manager.cleanup_idle() == 0

        assert manager.cleanup_idle() == 1

    def test_stats(self, session_manager):
        session_manager.get_or_create("a")
        stats = session_manager.stats()
        assert stats["active_sessions"] == 1
        assert stats["busy_sessions"] == 0
        assert stats["busy_policy"] == "queue"


class TestTurnLock:
    """会话锁测试"""

    @pytest.mark.asyncio
    async def test_queue_policy_preserves_arrival_order(self):
        manager = SessionManager(busy_policy=BusyPolicy.QUEUE)
        order = []

        async def turn(n):
            async with manager.turn_lock("s"):
                order.append(f"start-{n}")
                await asyncio.sleep(0.01)
                order.append(f"end-{n}")

        await asyncio.gather(turn(1), turn(2), turn(3))

        assert order == ["start-1", "end-1", "start-2", "end-2", "start-3", "end-3"]

    @pytest.mark.asyncio
    async def test_reject_policy_raises_conflict(self):
        manager = SessionManager(busy_policy="reject")
        entered = asyncio.Event()
        release = asyncio.Event()

        async def first():
            async with manager.turn_lock("s"):
                entered.set()
                await release.wait()

        task = asyncio.create_task(first())
        await entered.wait()

        with pytest.raises(ConcurrentTurnConflict) as exc_info:
            async with manager.turn_lock("s"):
                pass
        assert exc_info.value.status_code == 409

        release.set()
        await task

    @pytest.mark.asyncio
    async def test_different_sessions_run_concurrently(self):
        manager = SessionManager()
        inside = []

        async def turn(session_id):
            async with manager.turn_lock(session_id):
                inside.append(session_id)
                await asyncio.sleep(0.01)
                assert len(inside) == 2

        await asyncio.gather(turn("a"), turn("b"))

    @pytest.mark.asyncio
    @pytest.mark.parametrize("teardown", ["end_session", "cleanup_idle"])
    async def test_teardown_between_turns_keeps_single_lock(self, teardown):
        manager = SessionManager(idle_timeout=60)
        manager.get_or_create("s").last_active -= 120
        running = []
        overlaps = []

        async def turn(name):
            async with manager.turn_lock("s"):
                if running:
                    overlaps.append((list(running), name))
                running.append(name)
                await asyncio.sleep(0.01)
                running.remove(name)

        first = manager.turn_lock("s")
        await first.__aenter__()
        queued = asyncio.create_task(turn("B"))
        await asyncio.sleep(0)

        # 释放后排队的轮次尚未运行，此时结束会话
        await first.__aexit__(None, None, None)
        if teardown == "end_session":
            manager.end_session("s")
        else:
            manager.cleanup_idle()
        late = asyncio.create_task(turn("C"))
        await asyncio.gather(queued, late)

        assert overlaps == []
        assert not manager.is_busy("s")
