"""阶段服务基类

封装各阶段共用的模型调用：截取最近对话、按 Schema 请求结构化结果、
失败时最多重试一次，以及回退日志。
"""

import logging
from typing import List, Optional, Sequence, Type, TypeVar

from pydantic import BaseModel

from config import AgentSettings, get_agent_settings
from core.interfaces import CompletionService
from core.types import Role
from infrastructure.monitoring import get_metrics_collector, get_structured_logger
from infrastructure.retry import create_stage_retrying
from models.session import Message
from nlp.prompts import STRICT_JSON_REMINDER
from nlp.structured_output import parse_structured

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)


class StageService:
    """阶段服务基类"""

    stage_name = "stage"

    def __init__(self, completion: CompletionService, settings: Optional[AgentSettings] = None):
        self.completion = completion
        self.settings = settings or get_agent_settings()
        self._logger = get_structured_logger(f"stage.{self.stage_name}")
        self._metrics = get_metrics_collector()

    def _recent(self, history: Sequence[Message]) -> List[Message]:
        return list(history[-self.settings.history_window:])

    def _retrying(self):
        return create_stage_retrying(
            max_attempts=self.settings.max_attempts,
            wait_seconds=self.settings.retry_wait
        )

    async def _request_structured(
        self,
        history: Sequence[Message],
        instruction: str,
        model: Type[T]
    ) -> T:
        """请求并校验结构化结果

        第二次尝试会在指令后追加严格 JSON 提示。

        Raises:
            RetryableError: 重试后仍失败
            FatalError: 不可重试的调用错误
        """
        schema = model.model_json_schema()
        recent = self._recent(history)

        async for attempt in self._retrying():
            with attempt:
                number = attempt.retry_state.attempt_number
                system = instruction if number == 1 else instruction + STRICT_JSON_REMINDER
                raw = await self.completion.complete_json(recent, system, schema)
                result = parse_structured(raw, model)
                if number > 1:
                    logger.info(f"[{self.stage_name}] 第 {number} 次尝试解析成功")
                return result

    async def _complete_text(self, history: Sequence[Message], instruction: str) -> str:
        """自由文本补全，失败时重试一次"""
        recent = self._recent(history)

        async for attempt in self._retrying():
            with attempt:
                reply = await self.completion.complete_text(recent, instruction)
                return reply.strip()

    def _fallback(self, error: Exception, **context):
        """记录回退"""
        self._logger.log_stage_fallback(self.stage_name, error, **context)
        self._metrics.increment(f"stage.{self.stage_name}.fallback", {"error": type(error).__name__})


def latest_user_text(history: Sequence[Message]) -> str:
    """最近一条用户消息"""
    for message in reversed(history):
        if message.role == Role.USER:
            return message.content
    return ""
