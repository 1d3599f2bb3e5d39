"""
Account metrics aggregation over raw order history.

Windows are day based and half-open on the left: an order dated exactly
``as_of`` is inside the trailing window, one dated exactly 365 days
earlier is not.
"""
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Sequence
from uuid import UUID
import logging

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from wallet_share.models import Order, OrderItem, Product

logger = logging.getLogger(__name__)

TRAILING_DAYS = 365
SHORT_TRAILING_DAYS = 90


@dataclass(frozen=True)
class OrderRecord:
    order_date: datetime
    total_amount: float


@dataclass(frozen=True)
class LineRecord:
    order_date: datetime
    category_id: Optional[UUID]
    line_total: float


@dataclass
class AccountAggregate:
    """Trailing-window totals for one account."""
    last_12m_revenue: float = 0.0
    last_3m_revenue: float = 0.0
    prior_12m_revenue: Optional[float] = None
    yoy_growth_rate: Optional[float] = None
    order_count_12m: int = 0
    days_since_last_order: Optional[int] = None
    category_totals: Dict[UUID, float] = field(default_factory=dict)
    distribution: Dict[UUID, float] = field(default_factory=dict)

    @property
    def category_count(self) -> int:
        return sum(1 for total in self.category_totals.values() if total > 0)


@dataclass
class TenantReference:
    """Tenant-wide distributions used to scale frequency and monetary signals."""
    order_counts: List[int] = field(default_factory=list)
    revenues: List[float] = field(default_factory=list)

    def frequency_reference(self, percentile: float) -> float:
        """Nearest-rank percentile of order counts among ordering accounts."""
        counts = sorted(c for c in self.order_counts if c > 0)
        if not counts:
            return 0.0
        rank = max(1, int(round(percentile / 100.0 * len(counts))))
        return float(counts[min(rank, len(counts)) - 1])

    def revenue_distribution(self) -> List[float]:
        return sorted(r for r in self.revenues if r > 0)


def aggregate_history(
    orders: Sequence[OrderRecord],
    lines: Sequence[LineRecord],
    as_of: datetime
) -> AccountAggregate:
    """
    Aggregate one account's orders into trailing metrics.

    Args:
        orders: Order headers (date, total)
        lines: Order lines resolved to categories
        as_of: End of the trailing window

    Returns:
        AccountAggregate
    """
    start_12m = as_of - timedelta(days=TRAILING_DAYS)
    start_3m = as_of - timedelta(days=SHORT_TRAILING_DAYS)
    start_prior = start_12m - timedelta(days=TRAILING_DAYS)

    aggregate = AccountAggregate()
    prior_total = 0.0
    prior_seen = False
    last_order_date = None

    for order in orders:
        if order.order_date > as_of:
            continue

        amount = float(order.total_amount or 0)

        if last_order_date is None or order.order_date > last_order_date:
            last_order_date = order.order_date

        if order.order_date > start_12m:
            aggregate.last_12m_revenue += amount
            aggregate.order_count_12m += 1
            if order.order_date > start_3m:
                aggregate.last_3m_revenue += amount
        elif order.order_date > start_prior:
            prior_total += amount
            prior_seen = True

    aggregate.last_12m_revenue = round(aggregate.last_12m_revenue, 2)
    aggregate.last_3m_revenue = round(aggregate.last_3m_revenue, 2)

    if last_order_date is not None:
        aggregate.days_since_last_order = (as_of - last_order_date).days

    # Missing prior-window data is reported as null, not as zero growth
    if prior_seen:
        aggregate.prior_12m_revenue = round(prior_total, 2)
        if prior_total > 0:
            aggregate.yoy_growth_rate = round(
                (aggregate.last_12m_revenue - prior_total) / prior_total * 100, 2
            )

    category_totals: Dict[UUID, float] = defaultdict(float)
    for line in lines:
        if line.category_id is None:
            continue
        if start_12m < line.order_date <= as_of:
            category_totals[line.category_id] += float(line.line_total or 0)

    line_revenue = sum(category_totals.values())
    aggregate.category_totals = {k: round(v, 2) for k, v in category_totals.items()}
    if line_revenue > 0:
        aggregate.distribution = {
            category_id: round(total / line_revenue * 100, 2)
            for category_id, total in category_totals.items()
        }

    return aggregate


class MetricsAggregator:
    """Load order history for an account or a whole tenant."""

    def __init__(self, db: AsyncSession, tenant_id: UUID):
        self.db = db
        self.tenant_id = tenant_id

    async def load_history(self, account_id: UUID, as_of: datetime):
        """Orders and category-resolved lines for the current and prior windows."""
        since = as_of - timedelta(days=2 * TRAILING_DAYS)

        order_rows = await self.db.execute(
            select(Order.order_date, Order.total_amount).where(
                Order.tenant_id == self.tenant_id,
                Order.account_id == account_id,
                Order.order_date > since,
                Order.order_date <= as_of
            )
        )
        orders = [OrderRecord(row[0], float(row[1] or 0)) for row in order_rows.all()]

        line_rows = await self.db.execute(
            select(Order.order_date, Product.category_id, OrderItem.line_total)
            .join(OrderItem, OrderItem.order_id == Order.id)
            .join(Product, Product.id == OrderItem.product_id)
            .where(
                Order.tenant_id == self.tenant_id,
                OrderItem.tenant_id == self.tenant_id,
                Order.account_id == account_id,
                Order.order_date > as_of - timedelta(days=TRAILING_DAYS),
                Order.order_date <= as_of
            )
        )
        lines = [LineRecord(row[0], row[1], float(row[2] or 0)) for row in line_rows.all()]

        return orders, lines

    async def aggregate_account(self, account_id: UUID, as_of: datetime) -> AccountAggregate:
        orders, lines = await self.load_history(account_id, as_of)
        return aggregate_history(orders, lines, as_of)

    async def trailing_revenue(self, account_id: UUID, start: datetime, end: datetime) -> float:
        """Sum of order totals in (start, end]."""
        result = await self.db.execute(
            select(func.coalesce(func.sum(Order.total_amount), 0)).where(
                Order.tenant_id == self.tenant_id,
                Order.account_id == account_id,
                Order.order_date > start,
                Order.order_date <= end
            )
        )
        return round(float(result.scalar() or 0), 2)

    async def period_revenue(self, account_id: UUID, start: datetime, end: datetime):
        """
        Revenue and per-category revenue for a reporting period [start, end).
        """
        total_result = await self.db.execute(
            select(func.coalesce(func.sum(Order.total_amount), 0)).where(
                Order.tenant_id == self.tenant_id,
                Order.account_id == account_id,
                Order.order_date >= start,
                Order.order_date < end
            )
        )
        total = round(float(total_result.scalar() or 0), 2)

        category_result = await self.db.execute(
            select(Product.category_id, func.sum(OrderItem.line_total))
            .select_from(Order)
            .join(OrderItem, OrderItem.order_id == Order.id)
            .join(Product, Product.id == OrderItem.product_id)
            .where(
                Order.tenant_id == self.tenant_id,
                Order.account_id == account_id,
                Order.order_date >= start,
                Order.order_date < end
            )
            .group_by(Product.category_id)
        )
        categories = {
            str(row[0]): round(float(row[1] or 0), 2)
            for row in category_result.all()
            if row[0] is not None
        }
        return total, categories

    async def tenant_reference(self, as_of: datetime) -> TenantReference:
        """Order counts and trailing revenue for every ordering account in the tenant."""
        result = await self.db.execute(
            select(
                Order.account_id,
                func.count(Order.id),
                func.coalesce(func.sum(Order.total_amount), 0)
            )
            .where(
                Order.tenant_id == self.tenant_id,
                Order.order_date > as_of - timedelta(days=TRAILING_DAYS),
                Order.order_date <= as_of
            )
            .group_by(Order.account_id)
        )
        rows = result.all()

        reference = TenantReference(
            order_counts=[int(row[1]) for row in rows],
            revenues=[round(float(row[2] or 0), 2) for row in rows],
        )
        logger.debug(f"Tenant {self.tenant_id} reference built from {len(rows)} accounts")
        return reference
