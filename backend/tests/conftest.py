# tests/conftest.py
"""
Shared fixtures for the engine, service and router tests.

Every test gets a fresh in-memory SQLite database (aiosqlite) with the
full schema, plus a ``factory`` that writes realistic rows into it.
"""

import pytest
import pytest_asyncio
from datetime import datetime
from typing import Iterable, Optional, Sequence, Tuple

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from wallet_share.database import Base
from wallet_share.models import (
    Account, Order, OrderItem, Product, ProductCategory, ProfileCategory,
    ProgramAccount, RevShareTier, SegmentProfile, Tenant, User
)


# ============================================================================
# DATABASE
# ============================================================================

@pytest_asyncio.fixture
async def engine():
    """In-memory SQLite engine shared by every session of one test"""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def as_of():
    """Fixed evaluation instant so window arithmetic is deterministic"""
    return datetime(2025, 6, 30, 12, 0, 0)


# ============================================================================
# FACTORY
# ============================================================================

class Factory:
    """Writes committed rows; every helper returns the created object."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self._sku = 0

    async def _save(self, obj):
        self.db.add(obj)
        await self.db.commit()
        return obj

    async def tenant(self, name: str = "Mark Supply Co", status: str = "active", plan_limits=None) -> Tenant:
        return await self._save(Tenant(
            name=name,
            status=status,
            plan_type="growth",
            plan_limits=plan_limits if plan_limits is not None else {"enrolled_accounts": -1, "icps": -1},
        ))

    async def user(self, tenant: Tenant, email: str = "ops@marksupply.example", role: str = "admin") -> User:
        return await self._save(User(tenant_id=tenant.id, email=email, full_name="Ops User", role=role))

    async def category(self, tenant: Tenant, name: str) -> ProductCategory:
        return await self._save(ProductCategory(tenant_id=tenant.id, name=name))

    async def product(self, tenant: Tenant, category: Optional[ProductCategory]) -> Product:
        self._sku += 1
        return await self._save(Product(
            tenant_id=tenant.id,
            sku=f"SKU-{self._sku:04d}",
            name=f"{category.name if category else 'Uncategorised'} item",
            category_id=category.id if category else None,
        ))

    async def account(
        self,
        tenant: Tenant,
        name: str = "Elite HVAC Services",
        segment: Optional[str] = "HVAC",
        region: Optional[str] = "Northeast"
    ) -> Account:
        return await self._save(Account(
            tenant_id=tenant.id,
            name=name,
            segment=segment,
            region=region,
            assigned_owner="John Smith",
        ))

    async def order(
        self,
        tenant: Tenant,
        account: Account,
        order_date: datetime,
        lines: Iterable[Tuple[Product, float]]
    ) -> Order:
        """One order whose total is the sum of its line totals"""
        lines = list(lines)
        order = Order(
            tenant_id=tenant.id,
            account_id=account.id,
            order_date=order_date,
            total_amount=round(sum(amount for _, amount in lines), 2),
        )
        self.db.add(order)
        await self.db.flush()
        for product, amount in lines:
            self.db.add(OrderItem(
                tenant_id=tenant.id,
                order_id=order.id,
                product_id=product.id,
                quantity=1,
                unit_price=amount,
                line_total=amount,
            ))
        await self.db.commit()
        return order

    async def profile(
        self,
        tenant: Tenant,
        segment: str,
        rows: Sequence[Tuple[ProductCategory, float, float, bool]],
        status: str = "approved",
        name: Optional[str] = None,
        approved_at: Optional[datetime] = None
    ) -> SegmentProfile:
        """rows: (category, expected_pct, importance, is_required)"""
        profile = SegmentProfile(
            tenant_id=tenant.id,
            segment=segment,
            name=name or f"Full-Scope {segment} Contractor",
            status=status,
            approved_by="reviewer@marksupply.example" if status == "approved" else None,
            approved_at=(approved_at or datetime(2025, 1, 1)) if status == "approved" else None,
        )
        self.db.add(profile)
        await self.db.flush()
        for order, (category, expected, importance, required) in enumerate(rows):
            self.db.add(ProfileCategory(
                tenant_id=tenant.id,
                profile_id=profile.id,
                category_id=category.id,
                expected_pct=expected,
                importance=importance,
                is_required=required,
                display_order=order,
            ))
        await self.db.commit()
        return profile

    async def tiers(self, tenant: Tenant, bands: Sequence[Tuple[float, Optional[float], float]]):
        """bands: (min_revenue, max_revenue, share_rate)"""
        rows = []
        for order, (min_revenue, max_revenue, rate) in enumerate(bands):
            row = RevShareTier(
                tenant_id=tenant.id,
                min_revenue=min_revenue,
                max_revenue=max_revenue,
                share_rate=rate,
                display_order=order,
                is_active=True,
            )
            self.db.add(row)
            rows.append(row)
        await self.db.commit()
        return rows

    async def graduated_record(self, tenant: Tenant, account: Account, graduation_revenue: float) -> ProgramAccount:
        return await self._save(ProgramAccount(
            tenant_id=tenant.id,
            account_id=account.id,
            status="graduated",
            enrolled_at=datetime(2024, 1, 1),
            graduated_at=datetime(2024, 7, 1),
            graduation_revenue=graduation_revenue,
        ))


@pytest.fixture
def factory(db):
    return Factory(db)


# ============================================================================
# COMMON SCENARIOS
# ============================================================================

@pytest_asyncio.fixture
async def hvac_catalog(factory):
    """Tenant with two HVAC categories, one product each and an approved profile"""
    tenant = await factory.tenant()
    equipment = await factory.category(tenant, "HVAC Equipment")
    water_heaters = await factory.category(tenant, "Water Heaters")
    profile = await factory.profile(tenant, "HVAC", [
        (equipment, 35, 1.0, True),
        (water_heaters, 18, 2.0, False),
    ])
    return {
        "tenant": tenant,
        "equipment": equipment,
        "water_heaters": water_heaters,
        "equipment_product": await factory.product(tenant, equipment),
        "water_heater_product": await factory.product(tenant, water_heaters),
        "profile": profile,
    }
