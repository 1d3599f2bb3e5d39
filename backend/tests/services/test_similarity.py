# tests/services/test_similarity.py
"""
Tests for category-mix embeddings and similar account pairs.

Run with: pytest tests/services/test_similarity.py -v
"""

import numpy as np
import pytest
import pytest_asyncio
from datetime import timedelta

from sqlalchemy import select, func

from wallet_share.models import AccountEmbedding, SimilarAccountPair
from wallet_share.schemas.settings import EngineConfig
from wallet_share.services.similarity import SimilarityService, similarity_matrix, top_neighbours


# ============================================================================
# TEST: Scoring
# ============================================================================

class TestSimilarityMatrix:

    def test_cosine_scores(self):
        scores = similarity_matrix([[0.8, 0.2], [0.4, 0.1], [0.0, 1.0], [1.0, 0.0]])

        assert scores[0, 1] == pytest.approx(1.0)
        assert scores[0, 2] == pytest.approx(0.2425, abs=1e-4)
        assert scores[2, 3] == pytest.approx(0.0)
        np.testing.assert_allclose(scores, scores.T)

    def test_zero_vector_scores_zero(self):
        scores = similarity_matrix([[0.0, 0.0], [0.5, 0.5]])

        assert scores[0, 1] == 0.0
        assert scores[1, 0] == 0.0

    def test_no_categories(self):
        assert similarity_matrix([[], []]).shape == (2, 2)
        assert not similarity_matrix([[], []]).any()

    def test_no_accounts(self):
        assert similarity_matrix([]).shape == (0, 0)


class TestTopNeighbours:

    def test_best_first_without_self(self):
        scores = np.array([
            [1.0, 0.3, 0.9],
            [0.3, 1.0, 0.0],
            [0.9, 0.0, 1.0],
        ])

        assert top_neighbours(scores, 5) == [[(2, 0.9), (1, 0.3)], [(0, 0.3)], [(0, 0.9)]]

    def test_limit_and_ties_keep_column_order(self):
        scores = np.array([
            [1.0, 0.5, 0.5, 0.2],
            [0.5, 1.0, 0.1, 0.1],
            [0.5, 0.1, 1.0, 0.1],
            [0.2, 0.1, 0.1, 1.0],
        ])

        best = top_neighbours(scores, 2)

        assert best[0] == [(1, 0.5), (2, 0.5)]
        assert best[3] == [(0, 0.2), (1, 0.1)]

    def test_input_is_left_untouched(self):
        scores = np.eye(2)
        top_neighbours(scores, 1)

        assert scores[0, 0] == 1.0


# ============================================================================
# TEST: Refresh
# ============================================================================

@pytest_asyncio.fixture
async def accounts(factory, hvac_catalog, as_of):
    tenant = hvac_catalog["tenant"]
    equipment = hvac_catalog["equipment_product"]
    heaters = hvac_catalog["water_heater_product"]
    ordered = as_of - timedelta(days=30)

    elite = await factory.account(tenant, "Elite HVAC Services", "HVAC", "Northeast")
    await factory.order(tenant, elite, ordered, [(equipment, 80000), (heaters, 20000)])

    summit = await factory.account(tenant, "Summit Mechanical", "HVAC", "Northeast")
    await factory.order(tenant, summit, ordered, [(equipment, 40000), (heaters, 10000)])

    pacific = await factory.account(tenant, "Pacific Plumbing", "Plumbing", "West")
    await factory.order(tenant, pacific, ordered, [(heaters, 5000)])

    dormant = await factory.account(tenant, "Dormant Heating Co", "HVAC", "Midwest")

    return {"tenant": tenant, "elite": elite, "summit": summit, "pacific": pacific, "dormant": dormant}


class TestSimilarityRefresh:

    @pytest.mark.asyncio
    async def test_refresh_ranks_neighbours(self, db, accounts, as_of):
        tenant = accounts["tenant"]
        service = SimilarityService(db, tenant.id)

        stats = await service.refresh(as_of=as_of)

        assert stats == {"processed": 4, "total": 4, "failed": 0}
        pairs = await service.list_similar(accounts["elite"].id)
        assert [p.account_id_b for p in pairs] == [accounts["summit"].id, accounts["pacific"].id]
        assert float(pairs[0].similarity_score) == pytest.approx(1.0)
        assert float(pairs[1].similarity_score) == pytest.approx(0.2425, abs=1e-4)

    @pytest.mark.asyncio
    async def test_shared_attributes(self, db, accounts, as_of):
        service = SimilarityService(db, accounts["tenant"].id)
        await service.refresh(as_of=as_of)

        summit, pacific = await service.list_similar(accounts["elite"].id)

        assert summit.shared_segment == "HVAC"
        assert summit.shared_region == "Northeast"
        assert pacific.shared_segment is None
        assert pacific.shared_region is None

    @pytest.mark.asyncio
    async def test_accounts_without_orders_have_no_neighbours(self, db, accounts, as_of):
        service = SimilarityService(db, accounts["tenant"].id)
        await service.refresh(as_of=as_of)

        assert await service.list_similar(accounts["dormant"].id) == []
        embeddings = await db.execute(
            select(func.count(AccountEmbedding.id)).where(AccountEmbedding.tenant_id == accounts["tenant"].id)
        )
        assert embeddings.scalar() == 4

    @pytest.mark.asyncio
    async def test_graduated_neighbour_is_flagged(self, db, factory, accounts, as_of):
        await factory.graduated_record(accounts["tenant"], accounts["summit"], graduation_revenue=150000)
        service = SimilarityService(db, accounts["tenant"].id)

        await service.refresh(as_of=as_of)

        summit, pacific = await service.list_similar(accounts["elite"].id)
        assert summit.account_b_graduated is True
        assert float(summit.account_b_graduation_revenue) == 150000.0
        assert pacific.account_b_graduated is False

    @pytest.mark.asyncio
    async def test_top_k_and_rerun_replaces_pairs(self, db, accounts, as_of):
        tenant = accounts["tenant"]
        service = SimilarityService(db, tenant.id, EngineConfig(similarity_top_k=1))

        await service.refresh(as_of=as_of)
        await service.refresh(as_of=as_of)

        pairs = await service.list_similar(accounts["elite"].id)
        assert [p.account_id_b for p in pairs] == [accounts["summit"].id]
        total = await db.execute(
            select(func.count(SimilarAccountPair.id)).where(SimilarAccountPair.tenant_id == tenant.id)
        )
        # elite, summit and pacific each keep one neighbour; dormant has none
        assert total.scalar() == 3
