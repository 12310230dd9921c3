"""
统一异常定义模块

提供分层的异常体系，区分可重试和不可重试的错误类型。
编排核心内的错误都在阶段内恢复，只有目录不可用等致命情况会以轮次失败回复上报。
"""

from typing import Optional, Dict, Any


class APIError(Exception):
    """异常基类"""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """转换为字典格式，用于API响应"""
        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "status_code": self.status_code,
            "details": self.details
        }


class RetryableError(APIError):
    """可重试的错误基类

    这类错误通常是临时性的，重试可能成功。
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
        retry_after: Optional[float] = None
    ):
        super().__init__(message, status_code, details)
        self.retry_after = retry_after


class FatalError(APIError):
    """不可重试的错误基类

    这类错误是永久性的，重试不会改变结果。
    """
    pass


# ============ 上游服务错误（可重试） ============

class UpstreamServiceError(RetryableError):
    """外部服务（语言模型 / 向量检索）调用失败或超时"""
    pass


class RateLimitError(UpstreamServiceError):
    """速率限制错误 (HTTP 429)"""

    def __init__(
        self,
        message: str = "API调用频率超过限制",
        retry_after: Optional[float] = None
    ):
        super().__init__(
            message=message,
            status_code=429,
            retry_after=retry_after
        )


class NetworkError(UpstreamServiceError):
    """网络错误

    连接超时、DNS解析失败等网络问题。
    """

    def __init__(
        self,
        message: str = "网络连接失败",
        original_error: Optional[Exception] = None
    ):
        super().__init__(
            message=message,
            details={"original_error": str(original_error)} if original_error else {}
        )
        self.original_error = original_error


class ServiceError(UpstreamServiceError):
    """服务端错误 (HTTP 5xx)"""

    def __init__(
        self,
        message: str = "服务暂时不可用",
        status_code: int = 500
    ):
        super().__init__(message=message, status_code=status_code)


class TimeoutError(UpstreamServiceError):
    """请求超时错误"""

    def __init__(
        self,
        message: str = "请求超时",
        timeout_seconds: Optional[float] = None
    ):
        super().__init__(
            message=message,
            details={"timeout_seconds": timeout_seconds} if timeout_seconds else {}
        )


class CircuitOpenError(UpstreamServiceError):
    """熔断器开启，请求被拒绝"""

    def __init__(self, name: str):
        super().__init__(
            message=f"熔断器 [{name}] 处于开启状态，请稍后重试",
            status_code=503,
            details={"circuit": name}
        )


# ============ 结构化输出错误（可重试） ============

class MalformedStructuredOutput(RetryableError):
    """模型返回的结构化结果未通过 Schema 校验"""

    def __init__(self, message: str = "结构化输出解析失败", raw: Optional[str] = None):
        super().__init__(
            message=message,
            details={"raw": raw[:200]} if raw else {}
        )
        self.raw = raw


# ============ 不可重试错误 ============

class AuthError(FatalError):
    """认证错误 (HTTP 401/403)"""

    def __init__(
        self,
        message: str = "认证失败，请检查API密钥",
        status_code: int = 401
    ):
        super().__init__(message=message, status_code=status_code)


class BadRequestError(FatalError):
    """请求错误 (HTTP 400)"""

    def __init__(
        self,
        message: str = "请求参数无效",
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message=message, status_code=400, details=details)


class NotFoundError(FatalError):
    """资源不存在错误 (HTTP 404)"""

    def __init__(
        self,
        message: str = "请求的资源不存在",
        resource: Optional[str] = None
    ):
        super().__init__(
            message=message,
            status_code=404,
            details={"resource": resource} if resource else {}
        )


class CatalogUnavailableError(FatalError):
    """商品目录不可用（轮次级失败）"""

    def __init__(self, message: str = "商品目录暂时不可用"):
        super().__init__(message=message, status_code=503)


# ============ 业务错误 ============

class SessionError(APIError):
    """会话相关错误"""
    pass


class ConcurrentTurnConflict(SessionError):
    """同一会话上一轮尚未处理完成"""

    def __init__(self, session_id: str):
        super().__init__(
            message=f"会话 '{session_id}' 上一条消息仍在处理中",
            status_code=409,
            details={"session_id": session_id}
        )


class OrderError(APIError):
    """订单相关错误"""
    pass


class UnresolvedReference(OrderError):
    """点单或推荐引用的商品在目录中不存在"""

    def __init__(self, names: list):
        super().__init__(
            message=f"无法识别的商品: {', '.join(names)}",
            status_code=400,
            details={"names": names}
        )
        self.names = names


class InvalidOrderStateError(OrderError):
    """订单状态转换非法"""

    def __init__(self, current_state: str, event: str, expected_states: list):
        super().__init__(
            message=f"订单当前状态为 '{current_state}'，无法处理事件 '{event}'",
            status_code=400,
            details={
                "current_state": current_state,
                "event": event,
                "expected_states": expected_states
            }
        )


# ============ 向量存储错误 ============

class VectorStoreError(APIError):
    """向量存储相关错误"""
    pass


class VectorStoreInitError(VectorStoreError):
    """向量存储初始化错误"""

    def __init__(self, message: str = "向量存储初始化失败"):
        super().__init__(message=message, status_code=503)


def classify_openai_error(error: Exception) -> APIError:
    """将 OpenAI 库的异常转换为自定义异常

    Args:
        error: OpenAI 库抛出的异常

    Returns:
        对应的自定义异常
    """
    if isinstance(error, APIError):
        return error

    error_name = type(error).__name__
    error_message = str(error)

    error_mapping = {
        "RateLimitError": RateLimitError,
        "APIConnectionError": NetworkError,
        "APITimeoutError": TimeoutError,
        "AuthenticationError": AuthError,
        "PermissionDeniedError": AuthError,
        "BadRequestError": BadRequestError,
        "NotFoundError": NotFoundError,
        "InternalServerError": ServiceError,
        "ServiceUnavailableError": ServiceError,
    }

    error_class = error_mapping.get(error_name)

    if error_class:
        if error_class == NetworkError:
            return NetworkError(message=error_message, original_error=error)
        return error_class(message=error_message)

    # 根据 HTTP 状态码判断
    status_code = getattr(error, "status_code", None)
    if status_code:
        if status_code == 429:
            return RateLimitError(message=error_message)
        elif status_code in (401, 403):
            return AuthError(message=error_message, status_code=status_code)
        elif status_code == 400:
            return BadRequestError(message=error_message)
        elif status_code == 404:
            return NotFoundError(message=error_message)
        elif 500 <= status_code < 600:
            return ServiceError(message=error_message, status_code=status_code)

    # 默认视为上游可重试错误
    return UpstreamServiceError(message=error_message)
