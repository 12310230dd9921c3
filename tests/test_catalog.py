"""
菜单目录与关联规则加载测试
"""

import pytest

from config import DataSettings
from infrastructure.exceptions import CatalogUnavailableError
from services.catalog import MenuCatalog, load_association_rules, load_menu_catalog
from models.catalog import AssociationRule, Product


MENU_YAML = """
version: "2.1"
products:
  - id: latte
    name: 拿铁
    category: 咖啡
    price: 32
    popularity: 0.9
    description: 奶香顺滑
    aliases: [latte]
  - id: mocha
    name: 摩卡
    category: 咖啡
    price: 34
    popularity: 0.9
  - id: croissant
    name: 牛角包
    category: 甜点
    price: 18
"""

RULES_YAML = """
rules:
  - {antecedent: latte, consequent: croissant, confidence: 0.6}
  - {antecedent: latte, consequent: unknown_cake, confidence: 0.5}
"""


@pytest.fixture
def menu_file(tmp_path):
    path = tmp_path / "menu.yaml"
    path.write_text(MENU_YAML, encoding="utf-8")
    return path


class TestLoadMenu:

    def test_load_products(self, menu_file):
        catalog = load_menu_catalog(menu_file)

        assert len(catalog) == 3
        assert catalog.version == "2.1"
        latte = catalog.get_product("latte")
        assert latte.price == 32.0
        assert latte.aliases == ("latte",)
        assert latte.embedding_handle == "latte"
        assert catalog.get_product("croissant").popularity == 0.0

    def test_categories_in_file_order(self, menu_file):
        assert load_menu_catalog(menu_file).categories() == ["咖啡", "甜点"]

    def test_popularity_tie_broken_by_id(self, menu_file):
        catalog = load_menu_catalog(menu_file)
        assert [p.id for p in catalog.list_by_category("咖啡")] == ["latte", "mocha"]

    def test_bundled_menu_loads(self):
        data = DataSettings()
        catalog = load_menu_catalog(data.menu_path)
        rules = load_association_rules(data.rules_path, catalog)

        assert len(catalog) >= 10
        assert len(rules) == len(rules.rules) > 0
        for rule in rules.rules:
            assert catalog.get_product(rule.consequent) is not None


class TestLoadRules:

    def test_skips_unknown_products(self, menu_file, tmp_path):
        rules_file = tmp_path / "rules.yaml"
        rules_file.write_text(RULES_YAML, encoding="utf-8")

        table = load_association_rules(rules_file, load_menu_catalog(menu_file))

        assert len(table) == 1
        assert table.rules_for("latte")[0].consequent == "croissant"

    def test_without_catalog_keeps_all(self, tmp_path):
        rules_file = tmp_path / "rules.yaml"
        rules_file.write_text(RULES_YAML, encoding="utf-8")
        assert len(load_association_rules(rules_file)) == 2

    def test_invalid_confidence(self):
        with pytest.raises(ValueError):
            AssociationRule("latte", "croissant", 1.5)


class TestMenuCatalog:

    def test_list_popular(self, catalog):
        assert [p.id for p in catalog.list_popular(3)] == ["latte", "americano", "cappuccino"]
        assert catalog.list_popular(0) == []

    def test_duplicate_ids_rejected(self):
        product = Product("latte", "拿铁", "", "咖啡", 32.0)
        with pytest.raises(ValueError):
            MenuCatalog([product, product])

    def test_empty_catalog_unavailable(self):
        catalog = MenuCatalog([])
        with pytest.raises(CatalogUnavailableError):
            catalog.get_product("latte")
        with pytest.raises(CatalogUnavailableError):
            catalog.list_popular(3)
