"""API 请求/响应模型"""

import re
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

# 验证常量
MAX_TEXT_LENGTH = 500
MIN_TEXT_LENGTH = 1
MAX_SESSION_ID_LENGTH = 64

_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")
_SESSION_ID = re.compile(r"^[A-Za-z0-9_-]+$")


class ChatRequest(BaseModel):
    """多轮对话请求"""
    message: str = Field(
        ...,
        min_length=MIN_TEXT_LENGTH,
        max_length=MAX_TEXT_LENGTH,
        description="用户消息"
    )
    session_id: Optional[str] = Field(
        default=None,
        max_length=MAX_SESSION_ID_LENGTH,
        description="会话ID，如果为空则创建新会话"
    )

    @field_validator('message')
    @classmethod
    def validate_message(cls, v: str) -> str:
        v = _CONTROL_CHARS.sub("", v).strip()
        if not v:
            raise ValueError("消息不能为空")
        return v

    @field_validator('session_id')
    @classmethod
    def validate_session_id(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        v = v.strip()
        if not v:
            return None
        if not _SESSION_ID.match(v):
            raise ValueError("会话ID只能包含字母、数字、下划线和连字符")
        return v


class CartLineResponse(BaseModel):
    """购物车行"""
    product_id: str
    name: str
    unit_price: float
    quantity: int
    modifiers: List[str] = Field(default_factory=list)
    subtotal: float


class ChatResponse(BaseModel):
    """多轮对话响应"""
    session_id: str
    reply: str
    cart: List[CartLineResponse] = Field(default_factory=list)
    order_state: str
