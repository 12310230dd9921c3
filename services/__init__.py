"""服务层"""

from .catalog import MenuCatalog, load_menu_catalog, load_association_rules
from .guard import GuardStage, GuardResult
from .classifier import ClassificationStage, RoutingResult
from .details import DetailsStage, DetailsResult
from .order_taking import OrderTakingStage, OrderResult
from .recommendation import RecommendationEngine, RecommendationStage, RecommendationResult
from .session_manager import SessionManager

__all__ = [
    "MenuCatalog",
    "load_menu_catalog",
    "load_association_rules",
    "GuardStage",
    "GuardResult",
    "ClassificationStage",
    "RoutingResult",
    "DetailsStage",
    "DetailsResult",
    "OrderTakingStage",
    "OrderResult",
    "RecommendationEngine",
    "RecommendationStage",
    "RecommendationResult",
    "SessionManager",
]
