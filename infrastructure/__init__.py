"""基础设施模块"""

from .cache import EmbeddingCache
from .health import HealthChecker, HealthStatus, build_health_checker
from .monitoring import (
    MonitoringMiddleware, get_metrics_collector, get_structured_logger,
    setup_logging, monitor_performance
)
from .resilience import CircuitBreaker, CircuitState, ModelCircuitBreakers
from .retry import create_stage_retrying, MAX_STAGE_ATTEMPTS

__all__ = [
    # cache
    "EmbeddingCache",
    # health
    "HealthChecker",
    "HealthStatus",
    "build_health_checker",
    # monitoring
    "MonitoringMiddleware",
    "get_metrics_collector",
    "get_structured_logger",
    "setup_logging",
    "monitor_performance",
    # resilience
    "CircuitBreaker",
    "CircuitState",
    "ModelCircuitBreakers",
    # retry
    "create_stage_retrying",
    "MAX_STAGE_ATTEMPTS",
]
