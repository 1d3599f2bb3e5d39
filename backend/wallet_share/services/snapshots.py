"""
Revenue snapshot generation for enrolled program accounts.

One snapshot per (program account, period). Re-running a period skips
accounts that already have a snapshot unless ``force`` is set, in which
case the existing row is replaced inside the same transaction.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID
import logging

from sqlalchemy import select, delete
from sqlalchemy.ext.asyncio import AsyncSession

from wallet_share.config import settings
from wallet_share.models import ProgramAccount, RevenueSnapshot
from wallet_share.schemas.tier import TierIn
from wallet_share.scoring_engine.core.aggregator import MetricsAggregator, TRAILING_DAYS
from wallet_share.services.rev_share import RevShareService, tier_rate_for
from wallet_share.utils.dates import days_between

logger = logging.getLogger(__name__)

SNAPSHOT_STATUSES = ("active", "at_risk")


class SnapshotGenerator:
    """Build period snapshots for one tenant."""

    def __init__(self, db: AsyncSession, tenant_id: UUID):
        self.db = db
        self.tenant_id = tenant_id
        self.aggregator = MetricsAggregator(db, tenant_id)
        self.rev_share = RevShareService(db, tenant_id)

    async def generate(
        self,
        period_start: datetime,
        period_end: datetime,
        force: bool = False
    ) -> Dict[str, Any]:
        """
        Snapshot the period ``[period_start, period_end)`` for every active
        and at-risk program account enrolled before ``period_end``. A period
        that straddles enrollment is measured from ``enrolled_at`` with the
        baseline pro-rated over the shorter window.

        Returns:
            {"snapshots": [RevenueSnapshot], "created": int, "skipped": int, "errors": [...]}
        """
        if period_end <= period_start:
            raise ValueError("period_end must be after period_start")

        outcome: Dict[str, Any] = {"snapshots": [], "created": 0, "skipped": 0, "errors": []}

        result = await self.db.execute(
            select(ProgramAccount.id).where(
                ProgramAccount.tenant_id == self.tenant_id,
                ProgramAccount.status.in_(SNAPSHOT_STATUSES),
                # Nothing to measure for a period that ends before enrollment
                ProgramAccount.enrolled_at < period_end
            ).order_by(ProgramAccount.enrolled_at)
        )
        record_ids = [row[0] for row in result.all()]

        # Tier edits apply from the next run, so the set is read once per batch.
        # Plain bands survive the per-record rollback below.
        tiers = [
            TierIn(
                min_revenue=float(t.min_revenue),
                max_revenue=float(t.max_revenue) if t.max_revenue is not None else None,
                share_rate=float(t.share_rate),
            )
            for t in await self.rev_share.list_tiers()
        ]

        for record_id in record_ids:
            try:
                record = await self._record(record_id)
                existing = await self._existing(record.id, period_start, period_end)
                if existing is not None and not force:
                    outcome["snapshots"].append(existing)
                    outcome["skipped"] += 1
                    continue

                if existing is not None:
                    await self.db.execute(
                        delete(RevenueSnapshot).where(RevenueSnapshot.id == existing.id)
                    )

                snapshot = await self._build(record, period_start, period_end, tiers)
                self.db.add(snapshot)
                await self.db.commit()

                outcome["snapshots"].append(snapshot)
                outcome["created"] += 1
            except Exception as e:
                await self.db.rollback()
                logger.error(f"Snapshot failed for program account {record_id}: {e}")
                outcome["errors"].append({"program_account_id": str(record_id), "error": str(e)})

        if outcome["errors"]:
            # A rollback expires the snapshots committed before it
            for snapshot in outcome["snapshots"]:
                await self.db.refresh(snapshot)

        logger.info(
            f"Tenant {self.tenant_id} snapshots {period_start.date()}..{period_end.date()}: "
            f"{outcome['created']} created, {outcome['skipped']} skipped, {len(outcome['errors'])} failed"
        )
        return outcome

    async def _record(self, program_account_id: UUID) -> ProgramAccount:
        result = await self.db.execute(
            select(ProgramAccount).where(
                ProgramAccount.tenant_id == self.tenant_id,
                ProgramAccount.id == program_account_id
            )
        )
        return result.scalar_one()

    async def _existing(
        self,
        program_account_id: UUID,
        period_start: datetime,
        period_end: datetime
    ) -> Optional[RevenueSnapshot]:
        result = await self.db.execute(
            select(RevenueSnapshot).where(
                RevenueSnapshot.tenant_id == self.tenant_id,
                RevenueSnapshot.program_account_id == program_account_id,
                RevenueSnapshot.period_start == period_start,
                RevenueSnapshot.period_end == period_end
            )
        )
        return result.scalar_one_or_none()

    async def _build(
        self,
        record: ProgramAccount,
        period_start: datetime,
        period_end: datetime,
        tiers: List[TierIn]
    ) -> RevenueSnapshot:
        # Only revenue since enrollment counts as incremental
        measured_start = max(period_start, record.enrolled_at or period_start)

        period_revenue, categories = await self.aggregator.period_revenue(
            record.account_id, measured_start, period_end
        )

        baseline_revenue = float(record.baseline_revenue or 0)
        baseline_comparison = round(
            baseline_revenue * days_between(measured_start, period_end) / TRAILING_DAYS, 2
        )
        incremental = round(max(0.0, period_revenue - baseline_comparison), 2)

        if tiers:
            rate = tier_rate_for(period_revenue, tiers)
        else:
            rate = float(record.share_rate if record.share_rate is not None else settings.DEFAULT_SHARE_RATE)

        return RevenueSnapshot(
            tenant_id=self.tenant_id,
            program_account_id=record.id,
            period_start=period_start,
            period_end=period_end,
            period_revenue=period_revenue,
            period_categories=categories,
            baseline_comparison=baseline_comparison,
            incremental_revenue=incremental,
            share_rate_applied=rate,
            fee_amount=round(incremental * rate / 100, 2),
        )
