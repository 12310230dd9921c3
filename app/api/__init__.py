"""API 模块"""

from .schemas import ChatRequest, ChatResponse, CartLineResponse

__all__ = [
    "ChatRequest",
    "ChatResponse",
    "CartLineResponse",
]
