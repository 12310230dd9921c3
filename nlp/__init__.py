"""NLP 模块"""

from .schemas import GuardJudgment, RoutingDecision, OrderIntentPayload, IntentItem
from .structured_output import parse_structured
from .product_matcher import ProductMatcher, MatchResult

__all__ = [
    "GuardJudgment",
    "RoutingDecision",
    "OrderIntentPayload",
    "IntentItem",
    "parse_structured",
    "ProductMatcher",
    "MatchResult",
]
