"""
Rev-share tiers: validation, lookup and fee calculation.

Bands are contiguous ``[min_revenue, max_revenue)`` ranges starting at 0,
and only the last band is unbounded, so every non-negative revenue value
falls into exactly one band.
"""
from typing import Any, Dict, List, Optional, Sequence
from uuid import UUID
import logging

from sqlalchemy import select, delete
from sqlalchemy.ext.asyncio import AsyncSession

from wallet_share.config import settings
from wallet_share.errors import InvalidTierConfigError, TierCoverageError
from wallet_share.models import RevShareTier
from wallet_share.schemas.tier import TierIn

logger = logging.getLogger(__name__)

DEFAULT_TIER_RATE = 15.0


def _bounds(tier):
    min_revenue = float(tier.min_revenue)
    max_revenue = float(tier.max_revenue) if tier.max_revenue is not None else None
    return min_revenue, max_revenue


def validate_tiers(tiers: Sequence[TierIn]):
    """
    Check a complete tier set before it is written.

    Raises:
        InvalidTierConfigError: describing the first violation found
    """
    if not tiers:
        raise InvalidTierConfigError("At least one tier is required")

    ordered = sorted(tiers, key=lambda t: t.min_revenue)

    if ordered[0].min_revenue != 0:
        raise InvalidTierConfigError(
            "The first tier must start at 0",
            {"min_revenue": ordered[0].min_revenue}
        )

    for index, tier in enumerate(ordered):
        is_last = index == len(ordered) - 1

        if not 0 <= tier.share_rate <= 100:
            raise InvalidTierConfigError(
                "Share rate must be between 0 and 100",
                {"index": index, "share_rate": tier.share_rate}
            )

        if tier.max_revenue is None:
            if not is_last:
                raise InvalidTierConfigError(
                    "Only the last tier may be unbounded",
                    {"index": index}
                )
            continue

        if tier.max_revenue <= tier.min_revenue:
            raise InvalidTierConfigError(
                "max_revenue must be greater than min_revenue",
                {"index": index, "min_revenue": tier.min_revenue, "max_revenue": tier.max_revenue}
            )

        if is_last:
            raise InvalidTierConfigError(
                "The last tier must be unbounded (max_revenue = null)",
                {"index": index}
            )

        next_min = ordered[index + 1].min_revenue
        if next_min != tier.max_revenue:
            raise InvalidTierConfigError(
                "Tiers must be contiguous without gaps or overlaps",
                {"index": index, "max_revenue": tier.max_revenue, "next_min_revenue": next_min}
            )


def tier_rate_for(revenue: float, tiers: Sequence[RevShareTier]) -> float:
    """
    Share rate (percent) of the band containing ``revenue``.

    Raises:
        TierCoverageError: no band contains the value
    """
    if revenue < 0:
        raise TierCoverageError("Revenue must be non-negative", {"revenue": revenue})

    for tier in sorted(tiers, key=lambda t: float(t.min_revenue)):
        min_revenue, max_revenue = _bounds(tier)
        if revenue >= min_revenue and (max_revenue is None or revenue < max_revenue):
            return float(tier.share_rate)

    raise TierCoverageError(
        f"No rev-share tier covers revenue {revenue:,.2f}",
        {"revenue": revenue}
    )


def calculate_tiered_fee(incremental_revenue: float, tiers: Sequence[RevShareTier]) -> Dict[str, Any]:
    """
    Marginal fee: each slice of the amount is charged at its own band's rate.

    Without tiers the default 15% applies to the whole amount.
    """
    if not tiers:
        fee = round(incremental_revenue * DEFAULT_TIER_RATE / 100, 2)
        return {
            "incremental_revenue": incremental_revenue,
            "total_fee": fee,
            "effective_rate": DEFAULT_TIER_RATE,
            "breakdown": [{
                "tier": "Default",
                "rate": DEFAULT_TIER_RATE,
                "revenue_in_tier": incremental_revenue,
                "fee": fee,
            }],
        }

    remaining = incremental_revenue
    total_fee = 0.0
    breakdown = []

    for tier in sorted(tiers, key=lambda t: float(t.min_revenue)):
        if remaining <= 0:
            break

        min_revenue, max_revenue = _bounds(tier)
        rate = float(tier.share_rate)
        size = (max_revenue - min_revenue) if max_revenue is not None else remaining
        in_tier = min(remaining, size)

        if in_tier > 0:
            fee = in_tier * rate / 100
            total_fee += fee
            label_max = "Unlimited" if max_revenue is None else f"${max_revenue:,.0f}"
            breakdown.append({
                "tier": f"${min_revenue:,.0f} - {label_max}",
                "rate": rate,
                "revenue_in_tier": round(in_tier, 2),
                "fee": round(fee, 2),
            })
            remaining -= in_tier

    effective_rate = (total_fee / incremental_revenue * 100) if incremental_revenue > 0 else 0.0

    return {
        "incremental_revenue": incremental_revenue,
        "total_fee": round(total_fee, 2),
        "effective_rate": round(effective_rate, 2),
        "breakdown": breakdown,
    }


class RevShareService:
    """Tier storage for one tenant."""

    def __init__(self, db: AsyncSession, tenant_id: UUID):
        self.db = db
        self.tenant_id = tenant_id

    async def list_tiers(self, active_only: bool = True) -> List[RevShareTier]:
        stmt = select(RevShareTier).where(RevShareTier.tenant_id == self.tenant_id)
        if active_only:
            stmt = stmt.where(RevShareTier.is_active == True)
        result = await self.db.execute(stmt.order_by(RevShareTier.display_order, RevShareTier.min_revenue))
        return list(result.scalars().all())

    async def replace_tiers(self, tiers: Sequence[TierIn]) -> List[RevShareTier]:
        """Validate the full set, then swap it in within one transaction."""
        validate_tiers(tiers)

        ordered = sorted(tiers, key=lambda t: t.min_revenue)
        try:
            await self.db.execute(
                delete(RevShareTier).where(RevShareTier.tenant_id == self.tenant_id)
            )
            rows = []
            for index, tier in enumerate(ordered):
                row = RevShareTier(
                    tenant_id=self.tenant_id,
                    min_revenue=tier.min_revenue,
                    max_revenue=tier.max_revenue,
                    share_rate=tier.share_rate,
                    display_order=index,
                    is_active=True,
                )
                self.db.add(row)
                rows.append(row)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(f"Replaced rev-share tiers for tenant {self.tenant_id} ({len(rows)} bands)")
        return rows

    async def seed_default_tier(self) -> Optional[RevShareTier]:
        """Create a single unbounded band when the tenant has none. Returns None if tiers exist."""
        if await self.list_tiers(active_only=False):
            return None

        tier = RevShareTier(
            tenant_id=self.tenant_id,
            min_revenue=0,
            max_revenue=None,
            share_rate=settings.DEFAULT_SHARE_RATE,
            display_order=0,
            is_active=True,
        )
        self.db.add(tier)
        await self.db.commit()
        return tier

    async def calculate_fee(self, incremental_revenue: float) -> Dict[str, Any]:
        return calculate_tiered_fee(incremental_revenue, await self.list_tiers())
