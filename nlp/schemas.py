"""结构化输出 Schema 定义"""

from typing import List, Literal, Optional

from pydantic import BaseModel, Field, field_validator


class GuardJudgment(BaseModel):
    """守卫阶段判定"""
    reasoning: str = Field(..., description="判断理由")
    decision: Literal["allowed", "not_allowed"] = Field(..., description="是否允许进入后续处理")
    message: str = Field(..., description="不允许时回复给用户的话，允许时可为空字符串")


class RoutingDecision(BaseModel):
    """分类阶段路由结果"""
    reasoning: str = Field(..., description="判断理由")
    agent: Literal["details", "order_taking", "recommendation"] = Field(..., description="负责处理的专家")
    category: Optional[str] = Field(default=None, description="用户提到的商品分类，没有则为 null")

    @field_validator('category')
    @classmethod
    def blank_category(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not v.strip():
            return None
        return v.strip() if v else v


class IntentItem(BaseModel):
    """点单意图中的商品条目"""
    product_name: str = Field(default="", description="商品名称")
    quantity: Optional[int] = Field(default=None, ge=0, description="数量，未提及为 null")
    modifier: Optional[str] = Field(default=None, description="规格备注，如 大杯、燕麦奶")
    recommendation_index: Optional[int] = Field(
        default=None, ge=1, description="引用最近推荐列表中的第几个（从 1 开始）"
    )


class OrderIntentPayload(BaseModel):
    """点单阶段意图抽取结果"""
    intent: Literal["add", "remove", "modify", "confirm", "cancel", "unclear"] = Field(
        ..., description="意图"
    )
    items: List[IntentItem] = Field(default_factory=list, description="按用户提及顺序的商品")
