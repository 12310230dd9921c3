"""轮次编排"""

from .orchestrator import TurnOrchestrator, TurnResult, TURN_FAILURE_REPLY
from .factory import AssistantRuntime, build_runtime, build_orchestrator

__all__ = [
    "TurnOrchestrator",
    "TurnResult",
    "TURN_FAILURE_REPLY",
    "AssistantRuntime",
    "build_runtime",
    "build_orchestrator",
]
