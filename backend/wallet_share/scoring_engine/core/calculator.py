"""
Opportunity calculator.

Recomputes AccountMetrics and AccountCategoryGap rows for one account or
for a whole tenant. The metrics row is overwritten in place and the gap
rows are replaced wholesale inside one transaction, so a reader never
observes a half-replaced gap set.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple
from uuid import UUID
import logging

from sqlalchemy import select, delete, nulls_last
from sqlalchemy.ext.asyncio import AsyncSession

from wallet_share.errors import NotFoundError
from wallet_share.models import Account, AccountMetrics, AccountCategoryGap
from wallet_share.schemas.settings import EngineConfig
from wallet_share.scoring_engine.scorers import get_scorer
from wallet_share.scoring_engine.core.aggregator import (
    AccountAggregate, MetricsAggregator, TenantReference
)
from wallet_share.scoring_engine.core.gap_calculator import (
    GapAnalysis, ProfileTarget, compute_gaps
)
from wallet_share.scoring_engine.core.matcher import ProfileMatcher
from wallet_share.utils.dates import utcnow
from wallet_share.utils.locks import account_locks


logger = logging.getLogger(__name__)


RANKING_SORT_KEYS = {
    "opportunity_score": AccountMetrics.opportunity_score,
    "category_gap_score": AccountMetrics.category_gap_score,
    "last_12m_revenue": AccountMetrics.last_12m_revenue,
    "last_3m_revenue": AccountMetrics.last_3m_revenue,
    "yoy_growth_rate": AccountMetrics.yoy_growth_rate,
    "category_penetration": AccountMetrics.category_penetration,
    "days_since_last_order": AccountMetrics.days_since_last_order,
}


class OpportunityCalculator:
    """
    Compute account metrics, category gaps and opportunity scores.

    The tenant's EngineConfig is passed in explicitly; nothing here reads
    process-wide state.
    """

    def __init__(self, db: AsyncSession, tenant_id: UUID, config: Optional[EngineConfig] = None):
        """
        Initialize calculator.

        Args:
            db: Database session
            tenant_id: Tenant scope for every query
            config: Engine parameters (defaults when omitted)
        """
        self.db = db
        self.tenant_id = tenant_id
        self.config = config or EngineConfig()
        self.aggregator = MetricsAggregator(db, tenant_id)
        self.matcher = ProfileMatcher(db, tenant_id)

    # ========================================================================
    # SCORING
    # ========================================================================

    def score_signals(
        self,
        aggregate: AccountAggregate,
        analysis: Optional[GapAnalysis],
        reference: TenantReference
    ) -> Dict[str, Optional[float]]:
        """
        Normalise the four signals to 0-100 and combine them.

        A zero-revenue account scores 0 on every signal. Without a usable
        profile the mix signal and the composite are undefined (None).
        """
        scores: Dict[str, Optional[float]] = {
            "recency_score": 0.0,
            "frequency_score": 0.0,
            "monetary_score": 0.0,
            "mix_score": None,
            "opportunity_score": None,
        }

        has_profile = analysis is not None and bool(analysis.mix_pairs)

        if aggregate.last_12m_revenue <= 0:
            if has_profile:
                scores["mix_score"] = 0.0
                scores["opportunity_score"] = 0.0
            return scores

        recency = get_scorer("recency", {"horizon_days": self.config.recency_horizon_days})
        frequency = get_scorer("frequency", {
            "reference_count": reference.frequency_reference(self.config.frequency_reference_percentile)
        })
        monetary = get_scorer("monetary", {"distribution": reference.revenue_distribution()})

        scores["recency_score"] = recency.score_percent(aggregate.days_since_last_order)
        scores["frequency_score"] = frequency.score_percent(aggregate.order_count_12m)
        scores["monetary_score"] = monetary.score_percent(aggregate.last_12m_revenue)

        if not has_profile:
            return scores

        mix = get_scorer("mix", {})
        scores["mix_score"] = mix.score_percent(analysis.mix_pairs)

        weighted = (
            scores["recency_score"] * self.config.recency_weight
            + scores["frequency_score"] * self.config.frequency_weight
            + scores["monetary_score"] * self.config.monetary_weight
            + scores["mix_score"] * self.config.mix_weight
        )
        total_weight = (
            self.config.recency_weight
            + self.config.frequency_weight
            + self.config.monetary_weight
            + self.config.mix_weight
        )
        scores["opportunity_score"] = round(weighted / total_weight, 2) if total_weight > 0 else 0.0

        return scores

    # ========================================================================
    # RECOMPUTE
    # ========================================================================

    async def recompute_account(
        self,
        account_id: UUID,
        as_of: Optional[datetime] = None,
        reference: Optional[TenantReference] = None
    ) -> Tuple[AccountMetrics, List[AccountCategoryGap]]:
        """
        Recompute metrics and gaps for one account.

        Args:
            account_id: Account to recompute
            as_of: End of the trailing window (defaults to now)
            reference: Tenant reference for frequency/monetary scaling;
                built on demand when not supplied by a batch

        Returns:
            (metrics, gaps) as persisted

        Raises:
            NotFoundError: Account does not exist in this tenant
        """
        as_of = as_of or utcnow()

        async with account_locks.hold((self.tenant_id, account_id)):
            account = await self._get_account(account_id)

            if reference is None:
                reference = await self.aggregator.tenant_reference(as_of)

            aggregate = await self.aggregator.aggregate_account(account.id, as_of)

            matched = await self.matcher.find_profile(account.segment)
            profile = None
            analysis = None
            if matched is not None:
                profile, categories = matched
                targets = [
                    ProfileTarget(
                        category_id=c.category_id,
                        expected_pct=float(c.expected_pct or 0),
                        importance=float(c.importance if c.importance is not None else 1.0),
                        is_required=bool(c.is_required),
                    )
                    for c in categories
                ]
                analysis = compute_gaps(
                    targets,
                    aggregate.distribution,
                    aggregate.category_totals,
                    aggregate.last_12m_revenue,
                    self.config.required_category_multiplier,
                )

            scores = self.score_signals(aggregate, analysis, reference)

            try:
                metrics = await self._write_metrics(account.id, as_of, aggregate, analysis, scores, profile)
                gaps = await self._replace_gaps(account.id, as_of, analysis)
                await self.db.commit()
            except Exception:
                await self.db.rollback()
                self.matcher.clear()
                raise

        logger.info(
            f"Recomputed account {account_id}: revenue={aggregate.last_12m_revenue} "
            f"gaps={len(gaps)} score={scores['opportunity_score']}"
        )
        return metrics, gaps

    async def recompute_all(self, as_of: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Recompute every account of the tenant.

        Failures are isolated per account and reported, never raised.

        Returns:
            {"processed": int, "failed": int, "errors": [{"account_id", "error"}]}
        """
        as_of = as_of or utcnow()
        stats = {"processed": 0, "failed": 0, "errors": []}

        result = await self.db.execute(
            select(Account.id).where(Account.tenant_id == self.tenant_id).order_by(Account.created_at)
        )
        account_ids = [row[0] for row in result.all()]

        reference = await self.aggregator.tenant_reference(as_of)

        for account_id in account_ids:
            try:
                await self.recompute_account(account_id, as_of=as_of, reference=reference)
                stats["processed"] += 1
            except Exception as e:
                # A failed read aborts the transaction for the rest of the batch
                await self.db.rollback()
                self.matcher.clear()
                logger.error(f"Recompute failed for account {account_id}: {e}")
                stats["failed"] += 1
                stats["errors"].append({"account_id": str(account_id), "error": str(e)})

        logger.info(
            f"Tenant {self.tenant_id} recompute: {stats['processed']} processed, "
            f"{stats['failed']} failed"
        )
        return stats

    # ========================================================================
    # READS
    # ========================================================================

    async def get_opportunity_ranking(
        self,
        limit: int = 50,
        sort_key: str = "opportunity_score"
    ) -> List[Dict[str, Any]]:
        """
        Accounts ranked by an AccountMetrics field, descending, nulls last.

        Raises:
            ValueError: Unknown sort key
        """
        column = RANKING_SORT_KEYS.get(sort_key)
        if column is None:
            raise ValueError(
                f"Unknown sort key: {sort_key}. Available: {list(RANKING_SORT_KEYS.keys())}"
            )

        stmt = (
            select(Account, AccountMetrics)
            .join(AccountMetrics, AccountMetrics.account_id == Account.id)
            .where(
                Account.tenant_id == self.tenant_id,
                AccountMetrics.tenant_id == self.tenant_id
            )
            .order_by(nulls_last(column.desc()), Account.name)
            .limit(limit)
        )
        result = await self.db.execute(stmt)

        ranking = []
        for account, metrics in result.all():
            entry = account.to_dict()
            entry["metrics"] = metrics.to_dict()
            ranking.append(entry)
        return ranking

    async def get_account_metrics(self, account_id: UUID) -> Dict[str, Any]:
        """Persisted metrics and gap rows for one account."""
        account = await self._get_account(account_id)

        metrics_result = await self.db.execute(
            select(AccountMetrics).where(
                AccountMetrics.tenant_id == self.tenant_id,
                AccountMetrics.account_id == account.id
            )
        )
        metrics = metrics_result.scalars().first()

        gaps_result = await self.db.execute(
            select(AccountCategoryGap).where(
                AccountCategoryGap.tenant_id == self.tenant_id,
                AccountCategoryGap.account_id == account.id
            ).order_by(AccountCategoryGap.estimated_opportunity.desc())
        )

        return {
            "account": account.to_dict(),
            "metrics": metrics.to_dict() if metrics else None,
            "gaps": [g.to_dict() for g in gaps_result.scalars().all()],
        }

    # ========================================================================
    # PERSISTENCE HELPERS
    # ========================================================================

    async def _get_account(self, account_id: UUID) -> Account:
        result = await self.db.execute(
            select(Account).where(
                Account.tenant_id == self.tenant_id,
                Account.id == account_id
            )
        )
        account = result.scalars().first()
        if not account:
            raise NotFoundError(f"Account {account_id} not found", {"account_id": str(account_id)})
        return account

    async def _write_metrics(
        self,
        account_id: UUID,
        as_of: datetime,
        aggregate: AccountAggregate,
        analysis: Optional[GapAnalysis],
        scores: Dict[str, Optional[float]],
        profile
    ) -> AccountMetrics:
        result = await self.db.execute(
            select(AccountMetrics).where(
                AccountMetrics.tenant_id == self.tenant_id,
                AccountMetrics.account_id == account_id
            )
        )
        metrics = result.scalars().first()
        if not metrics:
            metrics = AccountMetrics(tenant_id=self.tenant_id, account_id=account_id)
            self.db.add(metrics)

        metrics.computed_at = as_of
        metrics.last_12m_revenue = aggregate.last_12m_revenue
        metrics.last_3m_revenue = aggregate.last_3m_revenue
        metrics.yoy_growth_rate = aggregate.yoy_growth_rate
        metrics.order_count_12m = aggregate.order_count_12m
        metrics.days_since_last_order = aggregate.days_since_last_order
        metrics.category_count = aggregate.category_count

        metrics.category_penetration = analysis.penetration if analysis else None
        metrics.category_gap_score = analysis.gap_score if analysis else None
        metrics.missing_required_count = analysis.missing_required_count if analysis else 0

        metrics.recency_score = scores["recency_score"]
        metrics.frequency_score = scores["frequency_score"]
        metrics.monetary_score = scores["monetary_score"]
        metrics.mix_score = scores["mix_score"]
        metrics.opportunity_score = scores["opportunity_score"]

        metrics.matched_profile_id = profile.id if profile is not None else None

        await self.db.flush()
        return metrics

    async def _replace_gaps(
        self,
        account_id: UUID,
        as_of: datetime,
        analysis: Optional[GapAnalysis]
    ) -> List[AccountCategoryGap]:
        await self.db.execute(
            delete(AccountCategoryGap).where(
                AccountCategoryGap.tenant_id == self.tenant_id,
                AccountCategoryGap.account_id == account_id
            )
        )

        rows = []
        for gap in (analysis.gaps if analysis else []):
            row = AccountCategoryGap(
                tenant_id=self.tenant_id,
                account_id=account_id,
                category_id=gap.category_id,
                expected_pct=gap.expected_pct,
                actual_pct=gap.actual_pct,
                gap_pct=gap.gap_pct,
                estimated_opportunity=gap.estimated_opportunity,
                importance=gap.importance,
                is_required=gap.is_required,
                is_missing_required=gap.is_missing_required,
                computed_at=as_of,
            )
            self.db.add(row)
            rows.append(row)

        await self.db.flush()
        return rows
