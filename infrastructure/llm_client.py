"""
OpenAI 客户端封装

实现语言模型补全服务和向量化服务接口。每次调用都有显式超时，
经熔断器保护，并将 SDK 异常转换为统一异常体系。
"""

import asyncio
import json
import logging
from typing import Any, Dict, List, Optional, Sequence

from openai import AsyncOpenAI

from config import OpenAISettings, get_openai_settings
from core.interfaces import CompletionService, EmbeddingService
from models.session import Message
from .cache import EmbeddingCache
from .exceptions import TimeoutError, UpstreamServiceError, classify_openai_error
from .resilience import CircuitBreaker

logger = logging.getLogger(__name__)


def _build_messages(history: Sequence[Message], system_instruction: str) -> List[Dict[str, str]]:
    messages = [{"role": "system", "content": system_instruction}]
    messages.extend(m.to_dict() for m in history)
    return messages


def _schema_instruction(response_schema: Dict[str, Any]) -> str:
    required = response_schema.get("required", [])
    return (
        "\n\n## 输出格式\n"
        "只输出一个 JSON 对象，不要输出其他文字。"
        f"必填字段: {', '.join(required)}。\n"
        f"JSON Schema:\n{json.dumps(response_schema, ensure_ascii=False)}"
    )


class _OpenAIService:
    """OpenAI 调用的公共部分"""

    operation = "openai"

    def __init__(
        self,
        settings: Optional[OpenAISettings] = None,
        circuit_breaker: Optional[CircuitBreaker] = None,
        client: Optional[AsyncOpenAI] = None
    ):
        self.settings = settings or get_openai_settings()
        self.circuit_breaker = circuit_breaker or CircuitBreaker(self.operation)
        self.client = client or AsyncOpenAI(
            api_key=self.settings.api_key,
            base_url=self.settings.base_url or None,
            timeout=self.settings.timeout,
            max_retries=0
        )

    async def _call(self, method: str, coro_factory):
        """带超时和熔断保护的调用"""
        self.circuit_breaker.before_call()

        try:
            result = await asyncio.wait_for(coro_factory(), timeout=self.settings.timeout)
        except asyncio.TimeoutError as e:
            self.circuit_breaker.on_failure(e)
            raise TimeoutError(f"{method} 请求超时", timeout_seconds=self.settings.timeout)
        except Exception as e:
            self.circuit_breaker.on_failure(e)
            error = classify_openai_error(e)
            logger.warning(f"{method} 调用失败: {type(error).__name__}: {error.message}")
            if error is e:
                raise
            raise error from e

        self.circuit_breaker.on_success()
        return result


class OpenAICompletionService(_OpenAIService, CompletionService):
    """基于 OpenAI Chat Completions 的补全服务"""

    operation = "completion"

    async def complete_json(
        self,
        history: Sequence[Message],
        system_instruction: str,
        response_schema: Dict[str, Any]
    ) -> str:
        messages = _build_messages(history, system_instruction + _schema_instruction(response_schema))

        response = await self._call("complete_json", lambda: self.client.chat.completions.create(
            model=self.settings.model,
            messages=messages,
            temperature=self.settings.temperature,
            max_tokens=self.settings.max_tokens,
            response_format={"type": "json_object"}
        ))
        return self._content(response)

    async def complete_text(self, history: Sequence[Message], system_instruction: str) -> str:
        messages = _build_messages(history, system_instruction)

        response = await self._call("complete_text", lambda: self.client.chat.completions.create(
            model=self.settings.model,
            messages=messages,
            temperature=self.settings.temperature,
            max_tokens=self.settings.max_tokens
        ))
        return self._content(response)

    @staticmethod
    def _content(response) -> str:
        if not response.choices or response.choices[0].message.content is None:
            raise UpstreamServiceError("模型未返回内容")
        return response.choices[0].message.content


class OpenAIEmbeddingService(_OpenAIService, EmbeddingService):
    """基于 OpenAI Embeddings 的向量化服务（带 TTL 缓存）"""

    operation = "embedding"

    def __init__(
        self,
        settings: Optional[OpenAISettings] = None,
        circuit_breaker: Optional[CircuitBreaker] = None,
        client: Optional[AsyncOpenAI] = None,
        cache: Optional[EmbeddingCache] = None
    ):
        super().__init__(settings, circuit_breaker, client)
        self._cache = cache or EmbeddingCache()

    async def embed(self, text: str) -> List[float]:
        model = self.settings.embedding_model
        cached = self._cache.get(text, model)
        if cached is not None:
            return cached

        response = await self._call("embed", lambda: self.client.embeddings.create(
            model=model,
            input=text
        ))
        vector = list(response.data[0].embedding)
        self._cache.set(text, model, vector)
        return vector
