"""
Plan feature limits.

Checked by the HTTP layer before enrollment and before profile
creation/approval; the engine itself never consults plan limits.
"""
from uuid import UUID
import logging

from pydantic import ValidationError
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from wallet_share.errors import FeatureLimitError, NotFoundError
from wallet_share.models import Tenant, ProgramAccount, SegmentProfile, ENROLLED_PROGRAM_STATUSES
from wallet_share.schemas.settings import PlanLimits

logger = logging.getLogger(__name__)


async def get_plan_limits(db: AsyncSession, tenant_id: UUID) -> PlanLimits:
    result = await db.execute(select(Tenant).where(Tenant.id == tenant_id))
    tenant = result.scalar_one_or_none()
    if not tenant:
        raise NotFoundError(f"Tenant {tenant_id} not found")

    try:
        return PlanLimits.model_validate(tenant.plan_limits or {})
    except ValidationError as e:
        logger.warning(f"Invalid plan limits on tenant {tenant_id}, using plan defaults: {e}")
        return PlanLimits()


def _check(feature: str, limit: int, current: int):
    if limit == -1:
        return
    if current >= limit:
        raise FeatureLimitError(
            f"Plan limit reached for {feature} ({current}/{limit})",
            {"feature": feature, "current": current, "limit": limit}
        )


async def check_enrollment_limit(db: AsyncSession, tenant_id: UUID):
    limits = await get_plan_limits(db, tenant_id)
    result = await db.execute(
        select(func.count(ProgramAccount.id)).where(
            ProgramAccount.tenant_id == tenant_id,
            ProgramAccount.status.in_(ENROLLED_PROGRAM_STATUSES)
        )
    )
    _check("enrolled_accounts", limits.enrolled_accounts, int(result.scalar() or 0))


async def check_profile_limit(db: AsyncSession, tenant_id: UUID, approved_only: bool = True):
    """
    Gate profile creation (all profiles) or approval (approved profiles).
    """
    limits = await get_plan_limits(db, tenant_id)
    stmt = select(func.count(SegmentProfile.id)).where(SegmentProfile.tenant_id == tenant_id)
    if approved_only:
        stmt = stmt.where(SegmentProfile.status == "approved")
    result = await db.execute(stmt)
    _check("icps", limits.icps, int(result.scalar() or 0))
