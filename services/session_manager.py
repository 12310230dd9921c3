"""会话管理器

进程内会话注册表。每个会话有一把 asyncio.Lock，同一会话的轮次串行执行：
- queue 策略：后到的轮次排队（按到达顺序获得锁）
- reject 策略：上一轮未完成时直接抛出 ConcurrentTurnConflict
"""

import asyncio
import logging
import threading
import time
import uuid
from contextlib import asynccontextmanager
from typing import Dict, List, Optional, Union

from core.types import BusyPolicy
from infrastructure.exceptions import ConcurrentTurnConflict
from models.session import Session

logger = logging.getLogger(__name__)


class SessionManager:
    """会话管理器（注册表操作线程安全）"""

    def __init__(
        self,
        idle_timeout: float = 1800,
        busy_policy: Union[BusyPolicy, str] = BusyPolicy.QUEUE
    ):
        self.sessions: Dict[str, Session] = {}
        self.idle_timeout = idle_timeout
        self.busy_policy = BusyPolicy(busy_policy)
        self._turn_locks: Dict[str, asyncio.Lock] = {}
        self._pending_turns: Dict[str, int] = {}
        self._lock = threading.Lock()

    def create_session(self, session_id: Optional[str] = None) -> Session:
        """创建新会话"""
        with self._lock:
            session_id = session_id or str(uuid.uuid4())[:8]
            session = Session(session_id=session_id)
            self.sessions[session_id] = session
            logger.debug(f"创建会话: {session_id}")
            return session

    def get_session(self, session_id: str) -> Optional[Session]:
        with self._lock:
            return self.sessions.get(session_id)

    def get_or_create(self, session_id: str) -> Session:
        """获取会话，不存在时以该 ID 创建"""
        with self._lock:
            session = self.sessions.get(session_id)
            if session is None:
                session = Session(session_id=session_id)
                self.sessions[session_id] = session
                logger.debug(f"创建会话: {session_id}")
            return session

    def _enter_turn(self, session_id: str) -> asyncio.Lock:
        """登记一个进行中或排队中的轮次，返回会话锁

        Raises:
            ConcurrentTurnConflict: reject 策略下会话正忙
        """
        with self._lock:
            pending = self._pending_turns.get(session_id, 0)
            if pending and self.busy_policy == BusyPolicy.REJECT:
                raise ConcurrentTurnConflict(session_id)
            lock = self._turn_locks.get(session_id)
            if lock is None:
                lock = asyncio.Lock()
                self._turn_locks[session_id] = lock
            self._pending_turns[session_id] = pending + 1
        if pending:
            logger.debug(f"会话 {session_id} 正忙，排队等待 (前面还有 {pending} 轮)")
        return lock

    def _leave_turn(self, session_id: str):
        with self._lock:
            remaining = self._pending_turns.get(session_id, 0) - 1
            if remaining > 0:
                self._pending_turns[session_id] = remaining
                return
            self._pending_turns.pop(session_id, None)
            # 轮次进行中会话被结束时，最后一轮退出后再释放锁
            if session_id not in self.sessions:
                self._turn_locks.pop(session_id, None)

    def is_busy(self, session_id: str) -> bool:
        """会话是否有进行中或排队中的轮次"""
        with self._lock:
            return self._pending_turns.get(session_id, 0) > 0

    @asynccontextmanager
    async def turn_lock(self, session_id: str):
        """在一轮处理期间独占会话

        锁在仍有轮次持有或等待时不会被移除，结束会话或清理空闲会话
        不会让同一会话出现两把锁。

        Raises:
            ConcurrentTurnConflict: reject 策略下会话正忙
        """
        lock = self._enter_turn(session_id)
        try:
            async with lock:
                yield
        finally:
            self._leave_turn(session_id)

    def end_session(self, session_id: str) -> bool:
        """结束会话"""
        with self._lock:
            existed = self.sessions.pop(session_id, None) is not None
            if not self._pending_turns.get(session_id):
                self._turn_locks.pop(session_id, None)
        if existed:
            logger.info(f"会话已结束: {session_id}")
        return existed

    def cleanup_idle(self) -> int:
        """清理空闲会话，跳过正在处理轮次的会话"""
        with self._lock:
            expired: List[str] = []
            for session_id, session in self.sessions.items():
                if self._pending_turns.get(session_id):
                    continue
                if session.is_idle(self.idle_timeout):
                    expired.append(session_id)

            for session_id in expired:
                del self.sessions[session_id]
                self._turn_locks.pop(session_id, None)

        if expired:
            logger.info(f"已清理 {len(expired)} 个空闲会话")
        return len(expired)

    def snapshot(self, session_id: str) -> Optional[Dict]:
        """会话快照"""
        session = self.get_session(session_id)
        return session.to_dict() if session else None

    def stats(self) -> Dict:
        with self._lock:
            busy = sum(1 for pending in self._pending_turns.values() if pending)
            return {
                "active_sessions": len(self.sessions),
                "busy_sessions": busy,
                "busy_policy": self.busy_policy.value,
                "idle_timeout": self.idle_timeout,
                "checked_at": time.time(),
            }
