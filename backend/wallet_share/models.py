# backend/wallet_share/models.py
"""
SQLAlchemy ORM models.

Relationships are intentionally not declared: every model carries its
foreign keys and tenant_id, and services query explicitly (async sessions
cannot lazy-load).
"""

from sqlalchemy import (
    Column, String, Boolean, Integer, Numeric, Text, DateTime, JSON, Index,
    ForeignKey, CheckConstraint, UniqueConstraint, Uuid, text
)
from sqlalchemy.dialects.postgresql import JSONB
from wallet_share.database import Base
from wallet_share.utils.dates import utcnow
import uuid


JSONType = JSON().with_variant(JSONB(), "postgresql")


def _num(value):
    """Numeric column value as float (None stays None)."""
    if value is None:
        return None
    return float(value)


def _iso(value):
    return value.isoformat() if value else None


def _str(value):
    return str(value) if value is not None else None


# ============================================================================
# STATUS VOCABULARY
# ============================================================================

PROFILE_STATUSES = ("draft", "approved")

PROGRAM_STATUSES = ("candidate", "active", "at_risk", "paused", "graduated")
LIVE_PROGRAM_STATUSES = ("candidate", "active", "at_risk", "paused")
ENROLLED_PROGRAM_STATUSES = ("active", "at_risk", "paused")

GRADUATION_CRITERIA = ("any", "all")

CRM_EVENT_STATUSES = ("pending", "sent", "failed")

_LIVE_STATUS_SQL = "status IN ('candidate', 'active', 'at_risk', 'paused')"


# ============================================================================
# TENANT & USER MODELS
# ============================================================================

class Tenant(Base):
    """Tenant/customer organisation."""
    __tablename__ = "tenants"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False)
    domain = Column(String(255), unique=True, index=True)
    status = Column(String(50), nullable=False, default="active")
    plan_type = Column(String(50), nullable=False, default="free")
    plan_limits = Column(JSONType, default=dict)
    created_at = Column(DateTime, default=utcnow)

    __table_args__ = (
        CheckConstraint("status IN ('active', 'suspended', 'trial')", name="chk_tenant_status"),
    )

    def __repr__(self):
        return f"<Tenant(id={self.id}, name='{self.name}', plan='{self.plan_type}')>"


class User(Base):
    """Operator account for the web interface."""
    __tablename__ = "users"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id = Column(Uuid, ForeignKey("tenants.id"), nullable=False, index=True)
    email = Column(String(255), nullable=False, unique=True)
    full_name = Column(String(255))
    role = Column(String(50), nullable=False, default="operator")
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=utcnow)

    __table_args__ = (
        CheckConstraint("role IN ('admin', 'operator', 'viewer')", name="chk_user_role"),
    )


class TenantSettings(Base):
    """Tenant-specific engine configuration (validated into EngineConfig on read)."""
    __tablename__ = "tenant_settings"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id = Column(Uuid, ForeignKey("tenants.id", ondelete="CASCADE"), unique=True, nullable=False)
    engine_config = Column(JSONType, default=dict)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


# ============================================================================
# CATALOG: CATEGORIES & PRODUCTS
# ============================================================================

class ProductCategory(Base):
    """Purchasable product category. Immutable once referenced."""
    __tablename__ = "product_categories"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id = Column(Uuid, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    parent_id = Column(Uuid, ForeignKey("product_categories.id"), nullable=True)
    created_at = Column(DateTime, default=utcnow)

    __table_args__ = (
        UniqueConstraint("tenant_id", "name", name="uq_product_categories_tenant_name"),
    )

    def to_dict(self):
        return {
            "id": str(self.id),
            "name": self.name,
            "parent_id": _str(self.parent_id),
        }


class Product(Base):
    __tablename__ = "products"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id = Column(Uuid, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    sku = Column(String(100), nullable=False)
    name = Column(String(255))
    category_id = Column(Uuid, ForeignKey("product_categories.id"), index=True)
    unit_cost = Column(Numeric(14, 2))
    unit_price = Column(Numeric(14, 2))


# ============================================================================
# ACCOUNTS & ORDER HISTORY (created by import, read-only to the engine)
# ============================================================================

class Account(Base):
    """Customer account. Identity fields are immutable after import."""
    __tablename__ = "accounts"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id = Column(Uuid, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    external_id = Column(String(255))
    name = Column(String(255), nullable=False)
    segment = Column(String(100), index=True)  # HVAC, plumbing, mechanical, ...
    region = Column(String(100))
    assigned_owner = Column(String(255), index=True)
    status = Column(String(50), default="active")  # active, inactive, prospect
    created_at = Column(DateTime, default=utcnow)

    def to_dict(self):
        return {
            "id": str(self.id),
            "name": self.name,
            "segment": self.segment,
            "region": self.region,
            "assigned_owner": self.assigned_owner,
            "status": self.status,
        }


class Order(Base):
    __tablename__ = "orders"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id = Column(Uuid, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    account_id = Column(Uuid, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False, index=True)
    order_date = Column(DateTime, nullable=False, index=True)
    total_amount = Column(Numeric(14, 2), nullable=False)
    margin_amount = Column(Numeric(14, 2))


class OrderItem(Base):
    __tablename__ = "order_items"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id = Column(Uuid, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    order_id = Column(Uuid, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column(Uuid, ForeignKey("products.id"), nullable=False)
    quantity = Column(Numeric(14, 2), nullable=False, default=1)
    unit_price = Column(Numeric(14, 2), nullable=False)
    line_total = Column(Numeric(14, 2), nullable=False)


# ============================================================================
# SEGMENT PROFILES (ICP definitions)
# ============================================================================

class SegmentProfile(Base):
    """
    Ideal Customer Profile for a segment.

    Only approved profiles participate in scoring; drafts are visible but inert.
    """
    __tablename__ = "segment_profiles"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id = Column(Uuid, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    segment = Column(String(100), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text)
    min_annual_revenue = Column(Numeric(14, 2))
    status = Column(String(20), nullable=False, default="draft")
    approved_by = Column(String(255))
    approved_at = Column(DateTime)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        CheckConstraint("status IN ('draft', 'approved')", name="chk_segment_profile_status"),
    )

    def to_dict(self, categories=None):
        data = {
            "id": str(self.id),
            "segment": self.segment,
            "name": self.name,
            "description": self.description,
            "min_annual_revenue": _num(self.min_annual_revenue),
            "status": self.status,
            "approved_by": self.approved_by,
            "approved_at": _iso(self.approved_at),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }
        if categories is not None:
            data["categories"] = [c.to_dict() for c in categories]
        return data


class ProfileCategory(Base):
    """Expected share of one category within a segment profile."""
    __tablename__ = "profile_categories"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id = Column(Uuid, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    profile_id = Column(Uuid, ForeignKey("segment_profiles.id", ondelete="CASCADE"), nullable=False, index=True)
    category_id = Column(Uuid, ForeignKey("product_categories.id"), nullable=False)
    expected_pct = Column(Numeric(6, 2), nullable=False, default=0)
    importance = Column(Numeric(4, 2), nullable=False, default=1.0)
    is_required = Column(Boolean, nullable=False, default=False)
    notes = Column(Text)
    display_order = Column(Integer, nullable=False, default=0)

    __table_args__ = (
        UniqueConstraint("profile_id", "category_id", name="uq_profile_categories_profile_category"),
        CheckConstraint("expected_pct >= 0 AND expected_pct <= 100", name="chk_profile_category_expected_pct"),
    )

    def to_dict(self):
        return {
            "category_id": str(self.category_id),
            "expected_pct": _num(self.expected_pct),
            "importance": _num(self.importance),
            "is_required": bool(self.is_required),
            "notes": self.notes,
            "display_order": self.display_order,
        }


class ProfileReviewLog(Base):
    __tablename__ = "profile_review_log"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id = Column(Uuid, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    profile_id = Column(Uuid, ForeignKey("segment_profiles.id", ondelete="CASCADE"), nullable=False, index=True)
    reviewer = Column(String(255), nullable=False)
    action = Column(String(50), nullable=False)  # created, adjusted, approved
    notes = Column(Text)
    created_at = Column(DateTime, default=utcnow)


# ============================================================================
# DERIVED METRICS (owned by the opportunity calculator)
# ============================================================================

class AccountMetrics(Base):
    """Recomputed snapshot per account; overwritten in place on every recompute."""
    __tablename__ = "account_metrics"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id = Column(Uuid, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    account_id = Column(Uuid, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False, index=True)
    computed_at = Column(DateTime, nullable=False, default=utcnow)

    last_12m_revenue = Column(Numeric(14, 2), nullable=False, default=0)
    last_3m_revenue = Column(Numeric(14, 2), nullable=False, default=0)
    yoy_growth_rate = Column(Numeric(10, 2))  # null = no prior-window data
    order_count_12m = Column(Integer, nullable=False, default=0)
    days_since_last_order = Column(Integer)

    category_count = Column(Integer, nullable=False, default=0)
    category_penetration = Column(Numeric(6, 2))
    category_gap_score = Column(Numeric(6, 2))
    missing_required_count = Column(Integer, nullable=False, default=0)

    recency_score = Column(Numeric(6, 2))
    frequency_score = Column(Numeric(6, 2))
    monetary_score = Column(Numeric(6, 2))
    mix_score = Column(Numeric(6, 2))
    opportunity_score = Column(Numeric(6, 2))  # null = no usable profile

    matched_profile_id = Column(Uuid, ForeignKey("segment_profiles.id", ondelete="SET NULL"))

    __table_args__ = (
        UniqueConstraint("tenant_id", "account_id", name="uq_account_metrics_account"),
    )

    def to_dict(self):
        return {
            "account_id": str(self.account_id),
            "computed_at": _iso(self.computed_at),
            "last_12m_revenue": _num(self.last_12m_revenue),
            "last_3m_revenue": _num(self.last_3m_revenue),
            "yoy_growth_rate": _num(self.yoy_growth_rate),
            "order_count_12m": self.order_count_12m,
            "days_since_last_order": self.days_since_last_order,
            "category_count": self.category_count,
            "category_penetration": _num(self.category_penetration),
            "category_gap_score": _num(self.category_gap_score),
            "missing_required_count": self.missing_required_count,
            "recency_score": _num(self.recency_score),
            "frequency_score": _num(self.frequency_score),
            "monetary_score": _num(self.monetary_score),
            "mix_score": _num(self.mix_score),
            "opportunity_score": _num(self.opportunity_score),
            "matched_profile_id": _str(self.matched_profile_id),
        }


class AccountCategoryGap(Base):
    """Per-category shortfall. Replaced wholesale on each recompute."""
    __tablename__ = "account_category_gaps"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id = Column(Uuid, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    account_id = Column(Uuid, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False, index=True)
    category_id = Column(Uuid, ForeignKey("product_categories.id"), nullable=False)
    expected_pct = Column(Numeric(6, 2), nullable=False)
    actual_pct = Column(Numeric(6, 2), nullable=False)
    gap_pct = Column(Numeric(6, 2), nullable=False)
    estimated_opportunity = Column(Numeric(14, 2), nullable=False)
    importance = Column(Numeric(4, 2), nullable=False, default=1.0)
    is_required = Column(Boolean, nullable=False, default=False)
    is_missing_required = Column(Boolean, nullable=False, default=False)
    computed_at = Column(DateTime, default=utcnow)

    __table_args__ = (
        CheckConstraint("gap_pct > 0", name="chk_account_category_gap_positive"),
    )

    def to_dict(self):
        return {
            "category_id": str(self.category_id),
            "expected_pct": _num(self.expected_pct),
            "actual_pct": _num(self.actual_pct),
            "gap_pct": _num(self.gap_pct),
            "estimated_opportunity": _num(self.estimated_opportunity),
            "importance": _num(self.importance),
            "is_required": bool(self.is_required),
            "is_missing_required": bool(self.is_missing_required),
        }


# ============================================================================
# PROGRAM LIFECYCLE
# ============================================================================

class ProgramAccount(Base):
    """
    Enrollment record.

    At most one non-terminal record per account. Graduated records are
    historical snapshots and are never mutated again.
    """
    __tablename__ = "program_accounts"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id = Column(Uuid, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    account_id = Column(Uuid, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False, index=True)
    status = Column(String(20), nullable=False, default="candidate")
    status_changed_at = Column(DateTime, default=utcnow)
    notes = Column(Text)
    created_at = Column(DateTime, default=utcnow)

    # Enrollment & baseline (fixed at enrollment)
    enrolled_at = Column(DateTime)
    enrolled_by = Column(String(255))
    baseline_start = Column(DateTime)
    baseline_end = Column(DateTime)
    baseline_revenue = Column(Numeric(14, 2))
    baseline_categories = Column(JSONType, default=list)  # gapped category ids at enrollment
    share_rate = Column(Numeric(5, 2))  # percent

    # Graduation objectives
    target_penetration = Column(Numeric(6, 2))
    target_incremental_revenue = Column(Numeric(14, 2))
    target_duration_months = Column(Integer)
    graduation_criteria = Column(String(10), nullable=False, default="any")

    # Frozen at graduation
    graduated_at = Column(DateTime)
    graduation_notes = Column(Text)
    graduation_revenue = Column(Numeric(14, 2))
    graduation_penetration = Column(Numeric(6, 2))
    incremental_revenue = Column(Numeric(14, 2))
    enrollment_duration_days = Column(Integer)
    icp_categories_at_enrollment = Column(Integer)
    icp_categories_achieved = Column(Integer)

    __table_args__ = (
        CheckConstraint(
            "status IN ('candidate', 'active', 'at_risk', 'paused', 'graduated')",
            name="chk_program_account_status"
        ),
        CheckConstraint("graduation_criteria IN ('any', 'all')", name="chk_program_account_criteria"),
        Index(
            "uq_program_accounts_live",
            "tenant_id", "account_id",
            unique=True,
            postgresql_where=text(_LIVE_STATUS_SQL),
            sqlite_where=text(_LIVE_STATUS_SQL),
        ),
    )

    @property
    def is_graduated(self) -> bool:
        return self.status == "graduated"

    def to_dict(self):
        return {
            "id": str(self.id),
            "account_id": str(self.account_id),
            "status": self.status,
            "status_changed_at": _iso(self.status_changed_at),
            "notes": self.notes,
            "enrolled_at": _iso(self.enrolled_at),
            "enrolled_by": self.enrolled_by,
            "baseline_start": _iso(self.baseline_start),
            "baseline_end": _iso(self.baseline_end),
            "baseline_revenue": _num(self.baseline_revenue),
            "share_rate": _num(self.share_rate),
            "target_penetration": _num(self.target_penetration),
            "target_incremental_revenue": _num(self.target_incremental_revenue),
            "target_duration_months": self.target_duration_months,
            "graduation_criteria": self.graduation_criteria,
            "graduated_at": _iso(self.graduated_at),
            "graduation_notes": self.graduation_notes,
            "graduation_revenue": _num(self.graduation_revenue),
            "graduation_penetration": _num(self.graduation_penetration),
            "incremental_revenue": _num(self.incremental_revenue),
            "enrollment_duration_days": self.enrollment_duration_days,
            "icp_categories_at_enrollment": self.icp_categories_at_enrollment,
            "icp_categories_achieved": self.icp_categories_achieved,
        }


class RevenueSnapshot(Base):
    """Periodic revenue measurement. Append-only audit trail."""
    __tablename__ = "program_revenue_snapshots"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id = Column(Uuid, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    program_account_id = Column(
        Uuid, ForeignKey("program_accounts.id", ondelete="CASCADE"), nullable=False, index=True
    )
    period_start = Column(DateTime, nullable=False)
    period_end = Column(DateTime, nullable=False)
    period_revenue = Column(Numeric(14, 2), nullable=False)
    period_categories = Column(JSONType, default=dict)
    baseline_comparison = Column(Numeric(14, 2), nullable=False)
    incremental_revenue = Column(Numeric(14, 2), nullable=False)
    share_rate_applied = Column(Numeric(5, 2), nullable=False)
    fee_amount = Column(Numeric(14, 2), nullable=False)
    created_at = Column(DateTime, default=utcnow)

    __table_args__ = (
        UniqueConstraint(
            "program_account_id", "period_start", "period_end",
            name="uq_program_revenue_snapshots_period"
        ),
        CheckConstraint("incremental_revenue >= 0", name="chk_snapshot_incremental_non_negative"),
    )

    def to_dict(self):
        return {
            "id": str(self.id),
            "program_account_id": str(self.program_account_id),
            "period_start": _iso(self.period_start),
            "period_end": _iso(self.period_end),
            "period_revenue": _num(self.period_revenue),
            "period_categories": self.period_categories or {},
            "baseline_comparison": _num(self.baseline_comparison),
            "incremental_revenue": _num(self.incremental_revenue),
            "share_rate_applied": _num(self.share_rate_applied),
            "fee_amount": _num(self.fee_amount),
            "created_at": _iso(self.created_at),
        }


class RevShareTier(Base):
    """Revenue band -> share rate. Bands are contiguous; the last is unbounded."""
    __tablename__ = "rev_share_tiers"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id = Column(Uuid, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    min_revenue = Column(Numeric(14, 2), nullable=False, default=0)
    max_revenue = Column(Numeric(14, 2))  # null = unbounded
    share_rate = Column(Numeric(5, 2), nullable=False, default=15)  # percent
    display_order = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    def to_dict(self):
        return {
            "id": str(self.id),
            "min_revenue": _num(self.min_revenue),
            "max_revenue": _num(self.max_revenue),
            "share_rate": _num(self.share_rate),
            "display_order": self.display_order,
            "is_active": bool(self.is_active),
        }


class ProgramActivity(Base):
    """Lifecycle transition log for a program account."""
    __tablename__ = "program_activity"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id = Column(Uuid, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    program_account_id = Column(
        Uuid, ForeignKey("program_accounts.id", ondelete="CASCADE"), nullable=False, index=True
    )
    from_status = Column(String(20))
    to_status = Column(String(20), nullable=False)
    reason = Column(String(100), nullable=False)
    details = Column(JSONType, default=dict)
    actor = Column(String(255))
    timestamp = Column(DateTime, nullable=False, default=utcnow)


# ============================================================================
# MAINTENANCE: CRM SYNC & SIMILARITY
# ============================================================================

class CrmSyncEvent(Base):
    """Outbound CRM webhook event, retried by the scheduler."""
    __tablename__ = "crm_sync_events"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id = Column(Uuid, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    account_id = Column(Uuid, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False)
    entity_type = Column(String(50), nullable=False, default="program_account")
    event_type = Column(String(50), nullable=False)  # enrolled, graduated, at_risk
    payload = Column(JSONType, default=dict)
    status = Column(String(20), nullable=False, default="pending", index=True)
    attempts = Column(Integer, nullable=False, default=0)
    last_attempt_at = Column(DateTime)
    sent_at = Column(DateTime)
    error_message = Column(Text)
    created_at = Column(DateTime, default=utcnow)


class AccountEmbedding(Base):
    """Category-mix vector used for similarity search."""
    __tablename__ = "account_embeddings"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id = Column(Uuid, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    account_id = Column(Uuid, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False)
    vector = Column(JSONType, nullable=False, default=list)
    dimensions = Column(JSONType, nullable=False, default=list)  # category ids, in vector order
    computed_at = Column(DateTime, default=utcnow)

    __table_args__ = (
        UniqueConstraint("tenant_id", "account_id", name="uq_account_embeddings_account"),
    )


class SimilarAccountPair(Base):
    __tablename__ = "similar_account_pairs"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id = Column(Uuid, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    account_id_a = Column(Uuid, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False, index=True)
    account_id_b = Column(Uuid, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False)
    similarity_score = Column(Numeric(6, 4), nullable=False)
    shared_segment = Column(String(100))
    shared_region = Column(String(100))
    account_b_graduated = Column(Boolean, nullable=False, default=False)
    account_b_graduation_revenue = Column(Numeric(14, 2))
    computed_at = Column(DateTime, default=utcnow)

    __table_args__ = (
        UniqueConstraint("tenant_id", "account_id_a", "account_id_b", name="uq_similar_account_pairs"),
    )

    def to_dict(self):
        return {
            "account_id": str(self.account_id_b),
            "similarity_score": _num(self.similarity_score),
            "shared_segment": self.shared_segment,
            "shared_region": self.shared_region,
            "graduated": bool(self.account_b_graduated),
            "graduation_revenue": _num(self.account_b_graduation_revenue),
        }
