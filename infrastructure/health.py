"""
健康检查模块

检查商品目录、向量索引、补全与向量化熔断器、会话注册表和向量缓存的状态。
"""

import time
import asyncio
import logging
from enum import Enum
from typing import Dict, Any, Callable, Optional, List
from dataclasses import dataclass, field
from datetime import datetime, timezone

from .cache import EmbeddingCache
from .resilience import ModelCircuitBreakers

logger = logging.getLogger(__name__)


class HealthStatus(str, Enum):
    """健康状态"""
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


@dataclass
class CheckResult:
    """单项检查结果"""
    name: str
    status: HealthStatus
    latency_ms: float
    details: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None


@dataclass
class HealthReport:
    """健康检查报告"""
    status: HealthStatus
    checks: List[CheckResult]
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "timestamp": self.timestamp,
            "checks": {
                check.name: {
                    "status": check.status.value,
                    "latency_ms": round(check.latency_ms, 2),
                    "details": check.details,
                    **({"error": check.error} if check.error else {})
                }
                for check in self.checks
            }
        }


class HealthChecker:
    """健康检查器

    检查函数可以是同步或异步函数，返回详情字典；
    返回字典中 "degraded": True 表示降级，抛出异常表示不健康。
    """

    def __init__(self, timeout: float = 5.0):
        self._checks: Dict[str, Callable] = {}
        self._timeout = timeout

    def register(self, name: str, check_func: Callable):
        self._checks[name] = check_func
        logger.debug(f"注册健康检查: {name}")

    def unregister(self, name: str):
        self._checks.pop(name, None)

    async def _run_check(self, name: str, check_func: Callable) -> CheckResult:
        start = time.time()
        try:
            if asyncio.iscoroutinefunction(check_func):
                result = await asyncio.wait_for(check_func(), timeout=self._timeout)
            else:
                result = await asyncio.wait_for(
                    asyncio.to_thread(check_func), timeout=self._timeout
                )

            details = result if isinstance(result, dict) else {}
            status = HealthStatus.DEGRADED if details.pop("degraded", False) else HealthStatus.HEALTHY
            return CheckResult(
                name=name,
                status=status,
                latency_ms=(time.time() - start) * 1000,
                details=details
            )
        except asyncio.TimeoutError:
            return CheckResult(
                name=name,
                status=HealthStatus.UNHEALTHY,
                latency_ms=(time.time() - start) * 1000,
                error=f"检查超时 ({self._timeout}s)"
            )
        except Exception as e:
            logger.warning(f"健康检查失败 [{name}]: {e}")
            return CheckResult(
                name=name,
                status=HealthStatus.UNHEALTHY,
                latency_ms=(time.time() - start) * 1000,
                error=str(e)
            )

    async def check_all(self) -> HealthReport:
        """并发执行所有健康检查"""
        if not self._checks:
            return HealthReport(status=HealthStatus.HEALTHY, checks=[])

        results = await asyncio.gather(*[
            self._run_check(name, func)
            for name, func in self._checks.items()
        ])

        statuses = [r.status for r in results]
        if all(s == HealthStatus.HEALTHY for s in statuses):
            overall = HealthStatus.HEALTHY
        elif any(s == HealthStatus.UNHEALTHY for s in statuses):
            overall = HealthStatus.UNHEALTHY
        else:
            overall = HealthStatus.DEGRADED

        return HealthReport(status=overall, checks=list(results))

    async def check_one(self, name: str) -> Optional[CheckResult]:
        if name not in self._checks:
            return None
        return await self._run_check(name, self._checks[name])


def build_health_checker(
    catalog,
    vector_index,
    breakers: ModelCircuitBreakers,
    session_manager,
    embedding_cache: Optional[EmbeddingCache] = None
) -> HealthChecker:
    """为编排核心的协作方注册健康检查"""
    checker = HealthChecker()

    def check_catalog() -> Dict[str, Any]:
        products = catalog.list_products()
        if not products:
            raise RuntimeError("商品目录为空")
        return {"products": len(products), "categories": len(catalog.categories())}

    def check_vector_index() -> Dict[str, Any]:
        count = vector_index.count()
        return {"type": type(vector_index).__name__, "vectors": count, "degraded": count == 0}

    def check_sessions() -> Dict[str, Any]:
        return session_manager.stats()

    checker.register("catalog", check_catalog)
    checker.register("vector_index", check_vector_index)
    checker.register("llm", breakers.health)
    checker.register("sessions", check_sessions)
    if embedding_cache is not None:
        checker.register("embedding_cache", embedding_cache.stats)
    return checker
