"""商品名称匹配器

按 精确 → 别名 → 包含 → 编辑距离 的顺序把用户说的商品名解析到目录商品。
"""

import logging
from dataclasses import dataclass
from difflib import SequenceMatcher
from typing import Dict, Optional

from core.interfaces import CatalogService
from models.catalog import Product

logger = logging.getLogger(__name__)


@dataclass
class MatchResult:
    """匹配结果"""
    product: Product
    confidence: float
    method: str  # exact, alias, contains, fuzzy


def _normalize(text: str) -> str:
    return "".join(text.lower().split())


class ProductMatcher:
    """商品名称匹配器"""

    def __init__(self, catalog: CatalogService, fuzzy_threshold: float = 0.75):
        self.catalog = catalog
        self.fuzzy_threshold = fuzzy_threshold

    def _name_index(self) -> Dict[str, Product]:
        index = {}
        for product in self.catalog.list_products():
            index[_normalize(product.name)] = product
            index[_normalize(product.id)] = product
        return index

    def _alias_index(self) -> Dict[str, Product]:
        index = {}
        for product in self.catalog.list_products():
            for alias in product.aliases:
                index[_normalize(alias)] = product
        return index

    def match(self, name: str) -> Optional[MatchResult]:
        """解析商品名，无法确定时返回 None"""
        key = _normalize(name or "")
        if not key:
            return None

        names = self._name_index()
        if key in names:
            return MatchResult(names[key], 1.0, "exact")

        aliases = self._alias_index()
        if key in aliases:
            return MatchResult(aliases[key], 0.95, "alias")

        # 包含关系只在唯一时采用
        contained = {
            p.id: p for k, p in {**names, **aliases}.items()
            if len(k) >= 2 and (k in key or key in k)
        }
        if len(contained) == 1:
            return MatchResult(next(iter(contained.values())), 0.85, "contains")

        best: Optional[Product] = None
        best_score = 0.0
        for candidate, product in {**names, **aliases}.items():
            score = SequenceMatcher(None, key, candidate).ratio()
            if score > best_score:
                best_score = score
                best = product

        if best is not None and best_score >= self.fuzzy_threshold:
            logger.debug(f"模糊匹配: {name} -> {best.name} ({best_score:.2f})")
            return MatchResult(best, round(best_score, 4), "fuzzy")

        return None
