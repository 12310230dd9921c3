"""商品详情阶段（检索增强回答）

流程：向量化问题 → 向量检索 top-k → 按分数降序拼接参考资料 → 基于参考资料生成回答。
检索失败或无结果时仍以空参考资料调用模型，由模型回答「没有相关信息」。
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from config import AgentSettings
from core.interfaces import CatalogService, CompletionService, EmbeddingService, VectorSearchService
from infrastructure.exceptions import APIError
from models.session import AgentMemory, Message, RetrievedPassage
from nlp.prompts import DETAILS_PROMPT
from .base import StageService

logger = logging.getLogger(__name__)

DETAILS_FALLBACK_REPLY = "抱歉，我暂时查不到这方面的信息，您可以稍后再问或直接咨询店员。"


@dataclass
class DetailsResult:
    reply: str
    passages: List[RetrievedPassage] = field(default_factory=list)


def build_grounding_block(passages: Sequence[RetrievedPassage]) -> str:
    """拼接参考资料，无段落时返回空字符串"""
    return "\n".join(f"[{i}] {p.text}" for i, p in enumerate(passages, 1))


class DetailsStage(StageService):
    """商品详情阶段"""

    stage_name = "details"

    def __init__(
        self,
        completion: CompletionService,
        embedder: EmbeddingService,
        vector_index: VectorSearchService,
        catalog: CatalogService,
        settings: Optional[AgentSettings] = None,
        top_k: int = 5
    ):
        super().__init__(completion, settings)
        self.embedder = embedder
        self.vector_index = vector_index
        self.catalog = catalog
        self.top_k = top_k

    async def retrieve(self, query: str) -> List[RetrievedPassage]:
        """检索相关商品段落，检索失败时返回空列表"""
        try:
            hits = None
            async for attempt in self._retrying():
                with attempt:
                    vector = await self.embedder.embed(query)
                    hits = await self.vector_index.search(vector, self.top_k)
        except APIError as e:
            self._fallback(e, step="retrieval")
            return []

        passages = []
        for hit in hits or []:
            product = self.catalog.get_product(hit.product_id)
            if product is None:
                logger.warning(f"检索结果中的商品不在目录中: {hit.product_id}")
                continue
            passages.append(RetrievedPassage(
                product_id=product.id,
                text=product.grounding_text(),
                score=hit.score
            ))

        passages.sort(key=lambda p: p.score, reverse=True)
        return passages

    async def answer(
        self,
        query: str,
        history: Sequence[Message],
        memory: Optional[AgentMemory] = None
    ) -> DetailsResult:
        if memory is not None:
            memory.last_retrieved_context = []

        passages = await self.retrieve(query)
        if memory is not None:
            memory.last_retrieved_context = list(passages)

        if not passages:
            self._metrics.increment("stage.details.empty_grounding")

        instruction = DETAILS_PROMPT.format(grounding=build_grounding_block(passages))
        try:
            reply = await self._complete_text(history, instruction)
        except APIError as e:
            self._fallback(e, step="completion")
            return DetailsResult(reply=DETAILS_FALLBACK_REPLY, passages=passages)

        return DetailsResult(reply=reply or DETAILS_FALLBACK_REPLY, passages=passages)
