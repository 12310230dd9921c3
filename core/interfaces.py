"""
抽象接口定义

定义编排核心依赖的外部协作方接口（语言模型、向量检索、商品目录），
编排器通过构造参数注入具体实现，测试中可替换为假实现。
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Sequence

if TYPE_CHECKING:
    from models.catalog import Product
    from models.session import Message


@dataclass(frozen=True)
class SearchHit:
    """向量检索命中"""
    product_id: str
    score: float


class CompletionService(ABC):
    """语言模型补全服务接口"""

    @abstractmethod
    async def complete_json(
        self,
        history: Sequence["Message"],
        system_instruction: str,
        response_schema: Dict[str, Any]
    ) -> str:
        """结构化补全

        Args:
            history: 有序对话消息
            system_instruction: 系统指令
            response_schema: 要求模型遵守的 JSON Schema

        Returns:
            模型返回的原始文本（应为 JSON 对象，由调用方校验）

        Raises:
            UpstreamServiceError: 调用失败或超时
        """

    @abstractmethod
    async def complete_text(
        self,
        history: Sequence["Message"],
        system_instruction: str
    ) -> str:
        """自由文本补全

        Raises:
            UpstreamServiceError: 调用失败或超时
        """


class EmbeddingService(ABC):
    """文本向量化服务接口"""

    @abstractmethod
    async def embed(self, text: str) -> List[float]:
        """返回固定维度的向量"""


class VectorSearchService(ABC):
    """向量相似度检索服务接口"""

    @abstractmethod
    async def search(self, vector: Sequence[float], k: int) -> List[SearchHit]:
        """按余弦相似度返回最相近的 k 个商品，按分数降序"""

    @abstractmethod
    def count(self) -> int:
        """索引中的向量数量"""


class CatalogService(ABC):
    """商品目录接口（只读，同步查询）"""

    @abstractmethod
    def get_product(self, product_id: str) -> Optional["Product"]:
        """按 ID 获取商品，不存在时返回 None

        Raises:
            CatalogUnavailableError: 目录整体不可用
        """

    @abstractmethod
    def list_by_category(self, category: str) -> List["Product"]:
        """列出某分类下的商品，按热度降序"""

    @abstractmethod
    def list_popular(self, n: int) -> List["Product"]:
        """热度最高的 n 个商品"""

    @abstractmethod
    def list_products(self) -> List["Product"]:
        """全部商品"""

    @abstractmethod
    def categories(self) -> List[str]:
        """全部分类名"""
