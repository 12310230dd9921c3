"""
重试策略模块

基于 tenacity 的异步重试，阶段级调用最多重试一次后回退到默认结果。
"""

import logging
from typing import Tuple, Type

from tenacity import (
    AsyncRetrying,
    stop_after_attempt,
    wait_fixed,
    retry_if_exception_type,
    before_sleep_log,
)

from .exceptions import RetryableError

logger = logging.getLogger(__name__)

# 阶段级最多尝试次数（首次 + 一次重试）
MAX_STAGE_ATTEMPTS = 2


def create_stage_retrying(
    max_attempts: int = MAX_STAGE_ATTEMPTS,
    wait_seconds: float = 0.5,
    retryable_exceptions: Tuple[Type[Exception], ...] = (RetryableError,)
) -> AsyncRetrying:
    """创建阶段级异步重试控制器

    Args:
        max_attempts: 最大尝试次数，不超过 MAX_STAGE_ATTEMPTS
        wait_seconds: 重试前等待时间（秒）
        retryable_exceptions: 需要重试的异常类型

    Returns:
        配置好的 AsyncRetrying，最后一次失败时抛出原异常

    Usage:
        async for attempt in create_stage_retrying():
            with attempt:
                n = attempt.retry_state.attempt_number
                ...
    """
    return AsyncRetrying(
        retry=retry_if_exception_type(retryable_exceptions),
        stop=stop_after_attempt(min(max_attempts, MAX_STAGE_ATTEMPTS)),
        wait=wait_fixed(wait_seconds),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True
    )
