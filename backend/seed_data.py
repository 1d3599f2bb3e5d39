"""Seed database with demo data - Async version."""

import asyncio
from datetime import timedelta
import random

from sqlalchemy import select

from wallet_share.auth import create_access_token
from wallet_share.database import AsyncSessionLocal, create_schema
from wallet_share.models import (
    Account, Order, OrderItem, Product, ProductCategory, ProfileCategory,
    RevShareTier, SegmentProfile, Tenant, User
)
from wallet_share.utils.dates import utcnow


CATEGORIES = [
    "HVAC Equipment",
    "Refrigerant & Supplies",
    "Ductwork & Fittings",
    "Controls & Thermostats",
    "Water Heaters",
    "Tools & Safety",
    "Pipe & Fittings",
    "PVF (Pipe, Valves, Fittings)",
    "Plumbing Fixtures",
    "Drainage Systems",
    "Insulation Materials",
]

# segment -> (profile name, [(category, expected_pct, importance, is_required)])
PROFILES = {
    "HVAC": ("Full-Scope HVAC Contractor", [
        ("HVAC Equipment", 35, 1.0, True),
        ("Refrigerant & Supplies", 18, 1.0, True),
        ("Ductwork & Fittings", 15, 1.0, False),
        ("Controls & Thermostats", 12, 1.5, False),
        ("Water Heaters", 10, 2.0, False),
        ("Tools & Safety", 5, 0.5, False),
        ("Insulation Materials", 5, 1.0, False),
    ]),
    "Plumbing": ("Full-Scope Plumbing Contractor", [
        ("Pipe & Fittings", 30, 1.0, True),
        ("PVF (Pipe, Valves, Fittings)", 20, 1.0, True),
        ("Water Heaters", 18, 2.0, False),
        ("Plumbing Fixtures", 15, 1.0, False),
        ("Drainage Systems", 10, 1.0, False),
        ("Tools & Safety", 7, 0.5, False),
    ]),
}

ACCOUNTS = [
    ("Elite HVAC Services", "HVAC", "Northeast", "John Smith"),
    ("Climate Control Inc", "HVAC", "West Coast", "Lisa Brown"),
    ("Superior Heating & Cooling", "HVAC", "Midwest", "Mike Wilson"),
    ("Comfort Zone HVAC", "HVAC", "Southeast", "Sarah Johnson"),
    ("Arctic Air Systems", "HVAC", "Northeast", "John Smith"),
    ("ABC Plumbing Co", "Plumbing", "Northeast", "John Smith"),
    ("Premier Plumbing", "Plumbing", "Mid-Atlantic", "John Smith"),
    ("Fast Flow Plumbing", "Plumbing", "Southeast", "Sarah Johnson"),
    ("WaterWorks Pro", "Plumbing", "Florida", "Sarah Johnson"),
    ("Metro Mechanical", "Mechanical", "Northeast", "John Smith"),
]


async def seed_demo():
    """Seed a demo tenant with catalog, profiles, accounts and two years of orders."""
    random.seed(42)

    await create_schema()

    async with AsyncSessionLocal() as db:
        print("🌱 Seeding database with demo data...")

        result = await db.execute(select(Tenant).where(Tenant.domain == "marksupply.example"))
        if result.scalar_one_or_none():
            print("⚠️  Demo tenant already exists. Exiting...")
            return

        tenant = Tenant(
            name="Mark Supply Co",
            domain="marksupply.example",
            plan_type="growth",
            plan_limits={"enrolled_accounts": 25, "icps": 5, "accounts": -1},
        )
        db.add(tenant)
        await db.flush()

        db.add(User(
            tenant_id=tenant.id,
            email="admin@marksupply.example",
            full_name="Demo Admin",
            role="admin",
        ))

        categories = {}
        products = {}
        for name in CATEGORIES:
            category = ProductCategory(tenant_id=tenant.id, name=name)
            db.add(category)
            await db.flush()
            categories[name] = category

            product = Product(
                tenant_id=tenant.id,
                sku=f"SKU-{len(products) + 1:04d}",
                name=f"{name} (assorted)",
                category_id=category.id,
            )
            db.add(product)
            products[name] = product
        await db.flush()
        print(f"✅ Created {len(categories)} categories")

        now = utcnow()
        for segment, (profile_name, rows) in PROFILES.items():
            profile = SegmentProfile(
                tenant_id=tenant.id,
                segment=segment,
                name=profile_name,
                status="approved",
                approved_by="admin@marksupply.example",
                approved_at=now,
            )
            db.add(profile)
            await db.flush()
            for order, (category_name, expected, importance, required) in enumerate(rows):
                db.add(ProfileCategory(
                    tenant_id=tenant.id,
                    profile_id=profile.id,
                    category_id=categories[category_name].id,
                    expected_pct=expected,
                    importance=importance,
                    is_required=required,
                    display_order=order,
                ))
        print(f"✅ Created {len(PROFILES)} approved segment profiles")

        order_count = 0
        for name, segment, region, owner in ACCOUNTS:
            account = Account(
                tenant_id=tenant.id,
                name=name,
                segment=segment,
                region=region,
                assigned_owner=owner,
            )
            db.add(account)
            await db.flush()

            # Each account buys from a random subset of its segment's categories
            profile_rows = PROFILES.get(segment, (None, [(c, 10, 1.0, False) for c in CATEGORIES[:4]]))[1]
            bought = random.sample(profile_rows, k=max(1, len(profile_rows) - random.randint(1, 3)))

            for _ in range(random.randint(12, 40)):
                order_date = now - timedelta(days=random.randint(1, 720))
                lines = random.sample(bought, k=random.randint(1, len(bought)))
                amounts = [round(random.uniform(200, 4000), 2) for _ in lines]

                order = Order(
                    tenant_id=tenant.id,
                    account_id=account.id,
                    order_date=order_date,
                    total_amount=round(sum(amounts), 2),
                )
                db.add(order)
                await db.flush()

                for (category_name, _, _, _), amount in zip(lines, amounts):
                    db.add(OrderItem(
                        tenant_id=tenant.id,
                        order_id=order.id,
                        product_id=products[category_name].id,
                        quantity=1,
                        unit_price=amount,
                        line_total=amount,
                    ))
                order_count += 1

        db.add(RevShareTier(tenant_id=tenant.id, min_revenue=0, max_revenue=None, share_rate=15, display_order=0))

        await db.commit()
        print(f"✅ Created {len(ACCOUNTS)} accounts with {order_count} orders")
        print(f"🔑 Admin token: {create_access_token('admin@marksupply.example', tenant.id)}")
        print("🎉 Seeding complete! Run a recompute to populate metrics.")


if __name__ == "__main__":
    asyncio.run(seed_demo())
