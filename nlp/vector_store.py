"""
商品向量索引

- ChromaProductIndex: 基于 Chroma 的持久化索引（余弦距离）
- InMemoryVectorIndex: 基于 numpy 的内存索引，用于开发环境和测试

索引由外部导入流程写入，编排核心只做查询。
"""

import asyncio
import logging
from pathlib import Path
from typing import Dict, List, Optional, Sequence

import chromadb
import numpy as np
from chromadb.config import Settings as ChromaSettings

from config import VectorStoreSettings
from core.interfaces import SearchHit, VectorSearchService
from infrastructure.exceptions import TimeoutError, UpstreamServiceError, VectorStoreInitError

logger = logging.getLogger(__name__)


class ChromaProductIndex(VectorSearchService):
    """基于 Chroma 的商品向量检索"""

    def __init__(
        self,
        persist_directory: Path,
        collection_name: str = "menu_products",
        timeout: float = 10.0
    ):
        self.collection_name = collection_name
        self.timeout = timeout

        try:
            persist_directory.mkdir(parents=True, exist_ok=True)
            self.client = chromadb.PersistentClient(
                path=str(persist_directory),
                settings=ChromaSettings(anonymized_telemetry=False)
            )
            self.collection = self.client.get_or_create_collection(
                name=collection_name,
                metadata={"hnsw:space": "cosine"}
            )
            logger.info(f"Chroma 商品索引已加载，共 {self.collection.count()} 条记录")
        except Exception as e:
            raise VectorStoreInitError(f"Chroma 初始化失败: {e}")

    def _query(self, vector: Sequence[float], k: int) -> List[SearchHit]:
        total = self.collection.count()
        if total == 0:
            return []
        results = self.collection.query(
            query_embeddings=[list(vector)],
            n_results=min(k, total),
            include=["distances"]
        )

        hits = []
        if results["ids"] and results["ids"][0]:
            for i, product_id in enumerate(results["ids"][0]):
                # cosine distance -> similarity
                similarity = 1 - results["distances"][0][i]
                hits.append(SearchHit(product_id=product_id, score=round(similarity, 4)))
        return hits

    async def search(self, vector: Sequence[float], k: int) -> List[SearchHit]:
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(self._query, vector, k),
                timeout=self.timeout
            )
        except asyncio.TimeoutError:
            raise TimeoutError("向量检索超时", timeout_seconds=self.timeout)
        except Exception as e:
            raise UpstreamServiceError(f"向量检索失败: {e}")

    def count(self) -> int:
        return self.collection.count()


class InMemoryVectorIndex(VectorSearchService):
    """基于 numpy 的内存向量索引"""

    def __init__(self, vectors: Optional[Dict[str, Sequence[float]]] = None):
        self._ids: List[str] = []
        self._matrix: Optional[np.ndarray] = None
        for product_id, vector in (vectors or {}).items():
            self.add(product_id, vector)

    def add(self, product_id: str, vector: Sequence[float]):
        """添加或替换一个商品向量"""
        row = np.asarray(vector, dtype=float)
        norm = np.linalg.norm(row)
        row = row / norm if norm > 0 else row

        if product_id in self._ids:
            self._matrix[self._ids.index(product_id)] = row
            return
        self._ids.append(product_id)
        self._matrix = row[np.newaxis, :] if self._matrix is None else np.vstack([self._matrix, row])

    async def search(self, vector: Sequence[float], k: int) -> List[SearchHit]:
        if self._matrix is None or k <= 0:
            return []

        query = np.asarray(vector, dtype=float)
        norm = np.linalg.norm(query)
        if norm == 0:
            return []
        if query.shape[0] != self._matrix.shape[1]:
            raise UpstreamServiceError(
                f"向量维度不匹配: {query.shape[0]} != {self._matrix.shape[1]}"
            )

        scores = self._matrix @ (query / norm)
        order = np.argsort(-scores, kind="stable")[:k]
        return [
            SearchHit(product_id=self._ids[i], score=round(float(scores[i]), 4))
            for i in order
        ]

    def count(self) -> int:
        return len(self._ids)


def create_vector_index(settings: VectorStoreSettings, timeout: float = 10.0) -> VectorSearchService:
    """按配置创建向量索引"""
    if settings.backend == "chroma":
        return ChromaProductIndex(
            persist_directory=settings.persist_directory,
            collection_name=settings.collection_name,
            timeout=timeout
        )
    logger.warning("使用内存向量索引，需由导入流程写入商品向量")
    return InMemoryVectorIndex()
