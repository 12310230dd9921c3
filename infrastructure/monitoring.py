"""
监控和结构化日志模块

提供结构化日志、性能监控和请求追踪功能。
"""

import re
import sys
import time
import json
import uuid
import asyncio
import logging
import threading
import contextvars
from typing import Dict, Any, Optional, Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from functools import wraps
from collections import deque

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

SERVICE_NAME = "cafemind-core"

# ==================== 请求追踪 ====================

_request_id: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "request_id", default=None
)


def get_request_id() -> Optional[str]:
    """获取当前请求 ID"""
    return _request_id.get()


def set_request_id(request_id: Optional[str]) -> contextvars.Token:
    """设置当前请求 ID"""
    return _request_id.set(request_id)


def generate_request_id() -> str:
    return str(uuid.uuid4())


# ==================== 结构化日志 ====================

class StructuredFormatter(logging.Formatter):
    """结构化日志格式化器

    输出 JSON 格式的日志，便于日志聚合和分析。
    """

    def __init__(self, service_name: str = SERVICE_NAME):
        super().__init__()
        self.service_name = service_name

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "service": self.service_name,
        }

        if hasattr(record, 'extra_data'):
            log_data["data"] = record.extra_data

        if record.exc_info:
            log_data["exception"] = {
                "type": record.exc_info[0].__name__ if record.exc_info[0] else None,
                "message": str(record.exc_info[1]) if record.exc_info[1] else None,
                "traceback": self.formatException(record.exc_info)
            }

        request_id = getattr(record, 'request_id', None) or get_request_id()
        if request_id:
            log_data["request_id"] = request_id

        return json.dumps(log_data, ensure_ascii=False, default=str)


class SensitiveDataFilter(logging.Filter):
    """敏感数据过滤器

    自动屏蔽日志中的密钥等敏感信息。
    """

    SENSITIVE_PATTERNS = [
        (r'(api[_-]?key\s*[=:]\s*)["\']?([^"\'\s,}]+)["\']?', r'\1****'),
        (r'(token\s*[=:]\s*)["\']?([^"\'\s,}]+)["\']?', r'\1****'),
        (r'(secret\s*[=:]\s*)["\']?([^"\'\s,}]+)["\']?', r'\1****'),
        (r'(sk-[a-zA-Z0-9_-]+)', '****'),
    ]

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, str):
            masked = record.msg
            for pattern, replacement in self.SENSITIVE_PATTERNS:
                masked = re.sub(pattern, replacement, masked, flags=re.IGNORECASE)
            record.msg = masked
        return True


class StructuredLogger:
    """结构化日志记录器

    以「事件名 + 字段」的方式记录日志。
    """

    def __init__(self, name: str):
        self.logger = logging.getLogger(name)

    def _log(self, level: int, event: str, **kwargs):
        self.logger.log(level, event, extra={'extra_data': kwargs})

    def debug(self, event: str, **kwargs):
        self._log(logging.DEBUG, event, **kwargs)

    def info(self, event: str, **kwargs):
        self._log(logging.INFO, event, **kwargs)

    def warning(self, event: str, **kwargs):
        self._log(logging.WARNING, event, **kwargs)

    def error(self, event: str, **kwargs):
        self._log(logging.ERROR, event, **kwargs)

    def log_turn(
        self,
        session_id: str,
        guard_decision: str,
        routed_agent: str,
        order_state: str,
        duration_ms: float
    ):
        """记录一轮对话完成"""
        self.info(
            "turn_completed",
            session_id=session_id,
            guard_decision=guard_decision,
            routed_agent=routed_agent,
            order_state=order_state,
            duration_ms=round(duration_ms, 2)
        )

    def log_stage_fallback(self, stage: str, error: Exception, **context):
        """记录阶段回退到默认结果"""
        self.warning(
            "stage_fallback",
            stage=stage,
            error_type=type(error).__name__,
            error_message=str(error),
            **context
        )


# ==================== 性能监控 ====================

@dataclass
class MetricPoint:
    """指标数据点"""
    name: str
    value: float
    timestamp: float = field(default_factory=time.time)
    labels: Dict[str, str] = field(default_factory=dict)


class MetricsCollector:
    """指标收集器"""

    def __init__(self, max_points: int = 10000):
        self._metrics: Dict[str, deque] = {}
        self._lock = threading.Lock()
        self._max_points = max_points

    def record(self, name: str, value: float, labels: Optional[Dict[str, str]] = None):
        point = MetricPoint(name=name, value=value, labels=labels or {})
        with self._lock:
            if name not in self._metrics:
                self._metrics[name] = deque(maxlen=self._max_points)
            self._metrics[name].append(point)

    def record_duration(self, name: str, duration_seconds: float, labels: Optional[Dict[str, str]] = None):
        """记录持续时间（毫秒）"""
        self.record(name, duration_seconds * 1000, labels)

    def increment(self, name: str, labels: Optional[Dict[str, str]] = None):
        self.record(name, 1, labels)

    def get_stats(self, name: str, window_seconds: int = 300) -> Dict[str, Any]:
        """获取指标统计"""
        cutoff = time.time() - window_seconds

        with self._lock:
            if name not in self._metrics:
                return {}
            points = [p for p in self._metrics[name] if p.timestamp >= cutoff]

        if not points:
            return {}

        values = sorted(p.value for p in points)
        count = len(values)

        return {
            "name": name,
            "count": count,
            "sum": sum(values),
            "avg": sum(values) / count,
            "min": values[0],
            "max": values[-1],
            "p50": values[int(count * 0.5)],
            "p95": values[min(int(count * 0.95), count - 1)],
            "p99": values[min(int(count * 0.99), count - 1)],
        }

    def get_all_stats(self, window_seconds: int = 300) -> Dict[str, Dict[str, Any]]:
        with self._lock:
            names = list(self._metrics.keys())
        return {name: self.get_stats(name, window_seconds) for name in names}

    def clear(self, name: Optional[str] = None):
        with self._lock:
            if name:
                self._metrics.pop(name, None)
            else:
                self._metrics.clear()


def monitor_performance(
    name: Optional[str] = None,
    collector: Optional[MetricsCollector] = None
):
    """性能监控装饰器（仅用于协程函数）

    Usage:
        @monitor_performance("workflow.post_turn")
        async def post_turn(...):
            ...
    """
    def decorator(func: Callable) -> Callable:
        metric_name = name or f"{func.__module__}.{func.__name__}"

        if not asyncio.iscoroutinefunction(func):
            raise TypeError(f"monitor_performance 只能装饰协程函数: {metric_name}")

        @wraps(func)
        async def wrapper(*args, **kwargs):
            metrics = collector or get_metrics_collector()
            start = time.time()
            try:
                result = await func(*args, **kwargs)
                metrics.increment(f"{metric_name}.success")
                return result
            except Exception as e:
                metrics.increment(f"{metric_name}.error", {"error": type(e).__name__})
                raise
            finally:
                metrics.record_duration(f"{metric_name}.duration", time.time() - start)
        return wrapper
    return decorator


# ==================== FastAPI 中间件 ====================

class MonitoringMiddleware(BaseHTTPMiddleware):
    """监控中间件

    自动添加请求追踪和性能监控。
    """

    def __init__(self, app, logger: Optional[StructuredLogger] = None):
        super().__init__(app)
        self.logger = logger or StructuredLogger("http")
        self.metrics = get_metrics_collector()

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request.headers.get("X-Request-ID") or generate_request_id()
        token = set_request_id(request_id)

        start = time.time()
        try:
            response = await call_next(request)
            duration = time.time() - start
            self.logger.info(
                "request_completed",
                method=request.method,
                path=request.url.path,
                status_code=response.status_code,
                duration_ms=round(duration * 1000, 2)
            )
            self.metrics.record_duration("http.request.duration", duration, {
                "method": request.method,
                "path": request.url.path,
                "status": str(response.status_code)
            })
            response.headers["X-Request-ID"] = request_id
            return response
        except Exception as e:
            self.logger.error(
                "request_failed",
                path=request.url.path,
                error_type=type(e).__name__,
                error_message=str(e)
            )
            self.metrics.increment("http.request.error", {"error": type(e).__name__})
            raise
        finally:
            _request_id.reset(token)


# ==================== 全局实例 ====================

_metrics_collector: Optional[MetricsCollector] = None


def get_metrics_collector() -> MetricsCollector:
    """获取指标收集器实例"""
    global _metrics_collector
    if _metrics_collector is None:
        _metrics_collector = MetricsCollector()
    return _metrics_collector


def get_structured_logger(name: str = "app") -> StructuredLogger:
    return StructuredLogger(name)


def setup_logging(
    level: str = "INFO",
    structured: bool = True,
    service_name: str = SERVICE_NAME
):
    """配置日志系统

    Args:
        level: 日志级别名
        structured: 是否使用结构化日志格式
        service_name: 服务名称
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)

    if structured:
        handler.setFormatter(StructuredFormatter(service_name))
    else:
        handler.setFormatter(logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        ))

    handler.addFilter(SensitiveDataFilter())
    root_logger.addHandler(handler)

    logging.info(f"日志系统已配置: level={level}, structured={structured}")
