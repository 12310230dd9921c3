"""
内存向量索引测试
"""

import pytest

from config import VectorStoreSettings
from infrastructure.exceptions import UpstreamServiceError
from nlp.vector_store import InMemoryVectorIndex, create_vector_index


@pytest.fixture
def index():
    return InMemoryVectorIndex({
        "latte": [1.0, 0.0, 0.0],
        "mocha": [0.8, 0.6, 0.0],
        "croissant": [0.0, 0.0, 2.0],
    })


class TestInMemoryVectorIndex:

    @pytest.mark.asyncio
    async def test_search_orders_by_cosine(self, index):
        hits = await index.search([2.0, 0.0, 0.0], k=2)

        assert [h.product_id for h in hits] == ["latte", "mocha"]
        assert hits[0].score == 1.0
        assert hits[1].score == 0.8

    @pytest.mark.asyncio
    async def test_k_larger_than_index(self, index):
        assert len(await index.search([0.0, 0.0, 1.0], k=10)) == 3

    @pytest.mark.asyncio
    async def test_replace_vector(self, index):
        index.add("croissant", [0.0, 1.0, 0.0])

        hits = await index.search([0.0, 1.0, 0.0], k=1)

        assert index.count() == 3
        assert hits[0].product_id == "croissant"

    @pytest.mark.asyncio
    async def test_empty_and_zero_query(self, index):
        assert await InMemoryVectorIndex().search([1.0], k=3) == []
        assert await index.search([0.0, 0.0, 0.0], k=3) == []

    @pytest.mark.asyncio
    async def test_dimension_mismatch(self, index):
        with pytest.raises(UpstreamServiceError):
            await index.search([1.0, 0.0], k=1)

    def test_factory_memory_backend(self):
        index = create_vector_index(VectorStoreSettings(backend="memory"))
        assert isinstance(index, InMemoryVectorIndex)
        assert index.count() == 0
