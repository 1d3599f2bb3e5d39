"""
Account similarity refresh.

Each account is embedded as its trailing category-mix vector over the
tenant's categories. The tenant's accounts x categories matrix is scored
with cosine similarity in one pass and the top K neighbours are stored
per account, together with whether the neighbour has already graduated
from the program.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple
from uuid import UUID
import logging

import numpy as np
from sklearn.metrics.pairwise import cosine_similarity
from sqlalchemy import Row, select, delete
from sqlalchemy.ext.asyncio import AsyncSession

from wallet_share.models import (
    Account, AccountEmbedding, ProductCategory, ProgramAccount, SimilarAccountPair
)
from wallet_share.schemas.settings import EngineConfig
from wallet_share.scoring_engine.core.aggregator import MetricsAggregator
from wallet_share.utils.dates import utcnow

logger = logging.getLogger(__name__)


def similarity_matrix(vectors: Sequence[Sequence[float]]) -> np.ndarray:
    """Pairwise cosine similarity of the rows; an all-zero row scores 0 against everything."""
    matrix = np.asarray(vectors, dtype=float)
    if matrix.ndim != 2 or matrix.shape[1] == 0:
        return np.zeros((len(vectors), len(vectors)))
    return cosine_similarity(matrix)


def top_neighbours(scores: np.ndarray, k: int) -> List[List[Tuple[int, float]]]:
    """
    Best ``k`` (column, score) pairs per row, highest first.

    The diagonal and non-positive scores are never returned. Ties keep
    column order.
    """
    scores = np.array(scores, dtype=float)
    if scores.size == 0:
        return [[] for _ in range(len(scores))]
    np.fill_diagonal(scores, 0.0)
    order = np.argsort(-scores, axis=1, kind="stable")[:, :k]
    return [
        [(int(j), float(scores[i, j])) for j in order[i] if scores[i, j] > 0]
        for i in range(scores.shape[0])
    ]


class SimilarityService:
    def __init__(self, db: AsyncSession, tenant_id: UUID, config: Optional[EngineConfig] = None):
        self.db = db
        self.tenant_id = tenant_id
        self.config = config or EngineConfig()
        self.aggregator = MetricsAggregator(db, tenant_id)

    async def refresh(self, as_of: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Rebuild embeddings, then similar pairs, for every account.

        Returns:
            {"processed": int, "total": int, "failed": int}
        """
        as_of = as_of or utcnow()

        accounts_result = await self.db.execute(
            select(Account.id, Account.segment, Account.region)
            .where(Account.tenant_id == self.tenant_id)
            .order_by(Account.created_at)
        )
        # Plain rows, so a rollback below never expires them
        accounts = list(accounts_result.all())

        categories_result = await self.db.execute(
            select(ProductCategory.id).where(ProductCategory.tenant_id == self.tenant_id)
        )
        dimensions = sorted(str(row[0]) for row in categories_result.all())

        stats = {"processed": 0, "total": len(accounts), "failed": 0}
        embedded: Dict[UUID, List[float]] = {}

        for account in accounts:
            try:
                embedded[account.id] = await self._embed(account.id, dimensions, as_of)
                await self.db.commit()
            except Exception as e:
                await self.db.rollback()
                stats["failed"] += 1
                logger.error(f"Embedding failed for account {account.id}: {e}")

        graduated = await self._graduation_revenue()

        ranked = [account for account in accounts if account.id in embedded]
        neighbours = top_neighbours(
            similarity_matrix([embedded[account.id] for account in ranked]),
            self.config.similarity_top_k
        )

        for account, best in zip(ranked, neighbours):
            try:
                pairs = [(ranked[j], score) for j, score in best]
                await self._store_pairs(account, pairs, graduated, as_of)
                await self.db.commit()
                stats["processed"] += 1
            except Exception as e:
                await self.db.rollback()
                stats["failed"] += 1
                logger.error(f"Similarity refresh failed for account {account.id}: {e}")

        logger.info(
            f"Tenant {self.tenant_id} similarity: processed {stats['processed']}/{stats['total']} accounts"
        )
        return stats

    async def _embed(self, account_id: UUID, dimensions: List[str], as_of: datetime) -> List[float]:
        aggregate = await self.aggregator.aggregate_account(account_id, as_of)
        shares = {str(k): v for k, v in aggregate.distribution.items()}
        vector = [round(shares.get(d, 0.0) / 100.0, 4) for d in dimensions]

        result = await self.db.execute(
            select(AccountEmbedding).where(
                AccountEmbedding.tenant_id == self.tenant_id,
                AccountEmbedding.account_id == account_id
            )
        )
        row = result.scalar_one_or_none()
        if not row:
            row = AccountEmbedding(tenant_id=self.tenant_id, account_id=account_id)
            self.db.add(row)
        row.vector = vector
        row.dimensions = dimensions
        row.computed_at = as_of
        return vector

    async def _graduation_revenue(self) -> Dict[UUID, float]:
        """Latest graduation revenue per graduated account."""
        result = await self.db.execute(
            select(ProgramAccount.account_id, ProgramAccount.graduation_revenue).where(
                ProgramAccount.tenant_id == self.tenant_id,
                ProgramAccount.status == "graduated"
            ).order_by(ProgramAccount.graduated_at)
        )
        return {row[0]: float(row[1] or 0) for row in result.all()}

    async def _store_pairs(
        self,
        account: Row,
        pairs: List[Tuple[Row, float]],
        graduated: Dict[UUID, float],
        as_of: datetime
    ):
        await self.db.execute(
            delete(SimilarAccountPair).where(
                SimilarAccountPair.tenant_id == self.tenant_id,
                SimilarAccountPair.account_id_a == account.id
            )
        )

        for other, score in pairs:
            self.db.add(SimilarAccountPair(
                tenant_id=self.tenant_id,
                account_id_a=account.id,
                account_id_b=other.id,
                similarity_score=round(score, 4),
                shared_segment=account.segment if account.segment and account.segment == other.segment else None,
                shared_region=account.region if account.region and account.region == other.region else None,
                account_b_graduated=other.id in graduated,
                account_b_graduation_revenue=graduated.get(other.id),
                computed_at=as_of,
            ))

    async def list_similar(self, account_id: UUID) -> List[SimilarAccountPair]:
        result = await self.db.execute(
            select(SimilarAccountPair).where(
                SimilarAccountPair.tenant_id == self.tenant_id,
                SimilarAccountPair.account_id_a == account_id
            ).order_by(SimilarAccountPair.similarity_score.desc())
        )
        return list(result.scalars().all())
