"""数据模型模块"""

from .catalog import Product, AssociationRule, AssociationRuleTable
from .order import CartLine, ORDER_TRANSITIONS, can_transition, next_order_state
from .session import Message, RetrievedPassage, AgentMemory, Session

__all__ = [
    "Product",
    "AssociationRule",
    "AssociationRuleTable",
    "CartLine",
    "ORDER_TRANSITIONS",
    "can_transition",
    "next_order_state",
    "Message",
    "RetrievedPassage",
    "AgentMemory",
    "Session",
]
