"""测试公共夹具"""

import pytest

from config import AgentSettings, Settings
from models.catalog import AssociationRule, AssociationRuleTable, Product
from services.catalog import MenuCatalog
from services.recommendation import RecommendationEngine
from services.session_manager import SessionManager
from workflow.factory import build_runtime
from fakes import FakeEmbedder, FakeVectorIndex, ScriptedCompletion


@pytest.fixture
def products():
    return [
        Product("latte", "拿铁", "浓缩咖啡加蒸奶，奶香顺滑", "咖啡", 32.0, popularity=0.95, aliases=("latte",)),
        Product("americano", "美式咖啡", "浓缩咖啡加热水", "咖啡", 28.0, popularity=0.88, aliases=("美式", "americano")),
        Product("cappuccino", "卡布奇诺", "浓缩咖啡加厚奶泡", "咖啡", 32.0, popularity=0.81, aliases=("cappuccino",)),
        Product("croissant", "牛角包", "法式黄油可颂", "甜点", 18.0, popularity=0.78, aliases=("可颂",)),
        Product("cheesecake", "芝士蛋糕", "浓郁奶油奶酪蛋糕", "甜点", 28.0, popularity=0.60),
        Product("muffin", "巧克力玛芬", "双重巧克力玛芬", "甜点", 16.0, popularity=0.52),
        Product("earl_grey", "伯爵红茶", "佛手柑香气红茶", "茶饮", 22.0, popularity=0.45),
    ]


@pytest.fixture
def catalog(products):
    return MenuCatalog(products)


@pytest.fixture
def rules():
    return AssociationRuleTable([
        AssociationRule("latte", "croissant", 0.7),
        AssociationRule("latte", "cheesecake", 0.5),
        AssociationRule("americano", "croissant", 0.6),
        AssociationRule("americano", "muffin", 0.5),
    ])


@pytest.fixture
def agent_settings():
    return AgentSettings(retry_wait=0.0)


@pytest.fixture
def settings(agent_settings):
    return Settings(environment="testing", agent=agent_settings)


@pytest.fixture
def engine(catalog, rules):
    return RecommendationEngine(catalog, rules, top_n=3, popular_n=3)


@pytest.fixture
def completion():
    return ScriptedCompletion()


@pytest.fixture
def embedder():
    return FakeEmbedder()


@pytest.fixture
def vector_index():
    return FakeVectorIndex()


@pytest.fixture
def session_manager():
    return SessionManager(idle_timeout=1800, busy_policy="queue")


@pytest.fixture
def runtime(settings, completion, embedder, vector_index, catalog, rules, session_manager):
    return build_runtime(
        settings=settings,
        completion=completion,
        embedder=embedder,
        vector_index=vector_index,
        catalog=catalog,
        rules=rules,
        session_manager=session_manager
    )


@pytest.fixture
def orchestrator(runtime):
    return runtime.orchestrator
