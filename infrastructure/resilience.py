"""
语言模型调用的熔断保护

补全和向量化各用一个熔断器。向量化故障时只有商品详情阶段回退到兜底回复，
守卫、分类和点单阶段的补全调用不受影响，反之亦然。

熔断器打开后直接抛出 CircuitOpenError（属于 UpstreamServiceError），
各阶段按既有的回退策略处理，不会等待超时。
"""

import logging
import threading
import time
from enum import Enum
from typing import Any, Callable, Dict, Optional

from config import CircuitBreakerSettings
from .exceptions import CircuitOpenError

logger = logging.getLogger(__name__)


class CircuitState(str, Enum):
    """熔断器状态"""
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """单个上游操作的熔断器

    - 连续失败 failure_threshold 次后打开，拒绝调用
    - 打开 cooldown 秒后进入半开，放行试探调用
    - 半开时连续成功 success_threshold 次后关闭，任何一次失败重新打开

    Usage:
        breaker.before_call()
        try:
            result = await client.embeddings.create(...)
        except Exception as e:
            breaker.on_failure(e)
            raise
        breaker.on_success()
    """

    def __init__(
        self,
        operation: str,
        failure_threshold: int = 5,
        success_threshold: int = 3,
        cooldown: float = 30.0,
        enabled: bool = True,
        clock: Callable[[], float] = time.monotonic
    ):
        self.operation = operation
        self.failure_threshold = failure_threshold
        self.success_threshold = success_threshold
        self.cooldown = cooldown
        self.enabled = enabled
        self._clock = clock

        self._state = CircuitState.CLOSED
        self._failures = 0
        self._trial_successes = 0
        self._opened_at: Optional[float] = None
        self._rejected = 0
        self._last_error: Optional[str] = None
        self._lock = threading.Lock()

    def _refresh(self) -> CircuitState:
        if self._state == CircuitState.OPEN and self._clock() - self._opened_at >= self.cooldown:
            self._state = CircuitState.HALF_OPEN
            self._trial_successes = 0
            logger.info(f"熔断器 [{self.operation}] 冷却结束，放行试探调用")
        return self._state

    def _open(self):
        self._state = CircuitState.OPEN
        self._opened_at = self._clock()
        logger.warning(
            f"熔断器 [{self.operation}] 已打开: 连续失败 {self._failures} 次, "
            f"最近错误 {self._last_error}, {self.cooldown}s 后重试"
        )

    @property
    def state(self) -> CircuitState:
        with self._lock:
            return self._refresh()

    def before_call(self):
        """调用前检查

        Raises:
            CircuitOpenError: 熔断器处于打开状态
        """
        if not self.enabled:
            return
        with self._lock:
            if self._refresh() == CircuitState.OPEN:
                self._rejected += 1
                raise CircuitOpenError(self.operation)

    def on_success(self):
        with self._lock:
            self._failures = 0
            if self._state != CircuitState.HALF_OPEN:
                return
            self._trial_successes += 1
            if self._trial_successes >= self.success_threshold:
                self._state = CircuitState.CLOSED
                self._opened_at = None
                logger.info(f"熔断器 [{self.operation}] 已恢复")

    def on_failure(self, error: Exception):
        with self._lock:
            self._failures += 1
            self._last_error = type(error).__name__
            if self._state == CircuitState.HALF_OPEN or (
                self._state == CircuitState.CLOSED and self._failures >= self.failure_threshold
            ):
                self._open()

    def retry_after(self) -> float:
        """距离放行试探调用的剩余秒数"""
        with self._lock:
            if self._refresh() != CircuitState.OPEN:
                return 0.0
            return max(0.0, self.cooldown - (self._clock() - self._opened_at))

    def health(self) -> Dict[str, Any]:
        with self._lock:
            state = self._refresh()
            return {
                "state": state.value,
                "enabled": self.enabled,
                "consecutive_failures": self._failures,
                "rejected_calls": self._rejected,
                "last_error": self._last_error,
            }

    def reset(self):
        with self._lock:
            self._state = CircuitState.CLOSED
            self._failures = 0
            self._trial_successes = 0
            self._opened_at = None
            logger.info(f"熔断器 [{self.operation}] 已重置")


class ModelCircuitBreakers:
    """补全与向量化两个熔断器"""

    def __init__(self, settings: Optional[CircuitBreakerSettings] = None):
        settings = settings or CircuitBreakerSettings()
        options = dict(
            failure_threshold=settings.failure_threshold,
            success_threshold=settings.success_threshold,
            cooldown=settings.timeout,
            enabled=settings.enabled
        )
        self.completion = CircuitBreaker("completion", **options)
        self.embedding = CircuitBreaker("embedding", **options)

    def health(self) -> Dict[str, Any]:
        """健康检查详情，任一熔断器未关闭即为降级"""
        report = {
            breaker.operation: {**breaker.health(), "retry_after": round(breaker.retry_after(), 1)}
            for breaker in (self.completion, self.embedding)
        }
        report["degraded"] = any(item["state"] != CircuitState.CLOSED.value for item in report.values())
        return report
