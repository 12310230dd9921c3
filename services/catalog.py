"""菜单目录

从 YAML 加载商品与关联规则。加载后只读，可在会话间共享。
"""

import logging
from pathlib import Path
from typing import Dict, List, Optional, Union

import yaml

from core.interfaces import CatalogService
from infrastructure.exceptions import CatalogUnavailableError
from models.catalog import AssociationRule, AssociationRuleTable, Product

logger = logging.getLogger(__name__)


def _popularity_key(product: Product):
    # 热度降序，同分按 ID 保证确定性
    return (-product.popularity, product.id)


class MenuCatalog(CatalogService):
    """内存菜单目录"""

    def __init__(self, products: List[Product], version: str = "0.0.0"):
        self.version = version
        self._products: Dict[str, Product] = {}
        for product in products:
            if product.id in self._products:
                raise ValueError(f"商品 ID 重复: {product.id}")
            self._products[product.id] = product

    def _require_available(self):
        if not self._products:
            raise CatalogUnavailableError()

    def get_product(self, product_id: str) -> Optional[Product]:
        self._require_available()
        return self._products.get(product_id)

    def list_by_category(self, category: str) -> List[Product]:
        self._require_available()
        return sorted(
            (p for p in self._products.values() if p.category == category),
            key=_popularity_key
        )

    def list_popular(self, n: int) -> List[Product]:
        self._require_available()
        return sorted(self._products.values(), key=_popularity_key)[:max(n, 0)]

    def list_products(self) -> List[Product]:
        return list(self._products.values())

    def categories(self) -> List[str]:
        seen = []
        for product in self._products.values():
            if product.category not in seen:
                seen.append(product.category)
        return seen

    def __len__(self) -> int:
        return len(self._products)


def load_menu_catalog(path: Union[str, Path]) -> MenuCatalog:
    """从 YAML 文件加载菜单

    文件格式:
        version: "1.0"
        products:
          - id: latte
            name: 拿铁
            category: 咖啡
            price: 32
            popularity: 0.92
            description: ...
            aliases: [latte]
    """
    with open(path, "r", encoding="utf-8") as f:
        config = yaml.safe_load(f) or {}

    products = []
    for item in config.get("products", []):
        products.append(Product(
            id=str(item["id"]),
            name=item["name"],
            description=item.get("description", ""),
            category=item.get("category", "其他"),
            price=float(item.get("price", 0)),
            embedding_handle=item.get("embedding_handle", str(item["id"])),
            popularity=float(item.get("popularity", 0.0)),
            aliases=tuple(item.get("aliases", []))
        ))

    catalog = MenuCatalog(products, version=str(config.get("version", "0.0.0")))
    logger.info(f"菜单已加载: {len(catalog)} 个商品, {len(catalog.categories())} 个分类")
    return catalog


def load_association_rules(path: Union[str, Path], catalog: Optional[CatalogService] = None) -> AssociationRuleTable:
    """从 YAML 文件加载关联规则

    提供 catalog 时，跳过引用了未知商品的规则。
    """
    with open(path, "r", encoding="utf-8") as f:
        config = yaml.safe_load(f) or {}

    rules = []
    for item in config.get("rules", []):
        rule = AssociationRule(
            antecedent=str(item["antecedent"]),
            consequent=str(item["consequent"]),
            confidence=float(item["confidence"])
        )
        if catalog is not None and (
            catalog.get_product(rule.antecedent) is None
            or catalog.get_product(rule.consequent) is None
        ):
            logger.warning(f"跳过引用未知商品的关联规则: {rule.antecedent} -> {rule.consequent}")
            continue
        rules.append(rule)

    table = AssociationRuleTable(rules)
    logger.info(f"关联规则已加载: {len(table)} 条")
    return table
