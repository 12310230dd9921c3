"""商品目录数据模型"""

from dataclasses import dataclass, field
from typing import Any, Dict, List


@dataclass(frozen=True)
class Product:
    """商品（只读参考数据）"""
    id: str
    name: str
    description: str
    category: str
    price: float
    embedding_handle: str = ""
    popularity: float = 0.0
    aliases: tuple = ()

    def grounding_text(self) -> str:
        """用于检索增强回答的文本段落"""
        return f"{self.name}: {self.description}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "category": self.category,
            "price": self.price,
            "popularity": self.popularity,
        }


@dataclass(frozen=True)
class AssociationRule:
    """关联规则：购买 antecedent 时购买 consequent 的经验概率"""
    antecedent: str
    consequent: str
    confidence: float

    def __post_init__(self):
        if not 0.0 < self.confidence <= 1.0:
            raise ValueError(
                f"关联规则置信度必须在 (0, 1] 区间: "
                f"{self.antecedent} -> {self.consequent} = {self.confidence}"
            )


@dataclass
class AssociationRuleTable:
    """按前件索引的关联规则表（加载后只读，可跨会话共享）"""
    rules: List[AssociationRule] = field(default_factory=list)

    def __post_init__(self):
        self._by_antecedent: Dict[str, List[AssociationRule]] = {}
        for rule in self.rules:
            self._by_antecedent.setdefault(rule.antecedent, []).append(rule)

    def rules_for(self, product_id: str) -> List[AssociationRule]:
        """获取以某商品为前件的全部规则"""
        return list(self._by_antecedent.get(product_id, ()))

    def __len__(self) -> int:
        return len(self.rules)
