"""
Rev-share tier routes.
"""
from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession
import logging

from wallet_share.auth import get_current_user, require_admin
from wallet_share.database import get_db
from wallet_share.errors import EngineError, to_http_exception
from wallet_share.models import User
from wallet_share.schemas.tier import FeeCalculationRequest, TierReplaceRequest
from wallet_share.services.rev_share import RevShareService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/rev-share-tiers", tags=["Rev-share"])


@router.get("")
async def list_tiers(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    service = RevShareService(db, current_user.tenant_id)
    return [t.to_dict() for t in await service.list_tiers()]


@router.put("")
async def replace_tiers(
    data: TierReplaceRequest,
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    """Replace the whole tier set. Applies to snapshots generated afterwards."""
    service = RevShareService(db, current_user.tenant_id)
    try:
        tiers = await service.replace_tiers(data.tiers)
    except EngineError as e:
        raise to_http_exception(e)
    logger.info(f"Rev-share tiers replaced by {current_user.email}")
    return [t.to_dict() for t in tiers]


@router.post("/seed-default")
async def seed_default_tier(
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    service = RevShareService(db, current_user.tenant_id)
    tier = await service.seed_default_tier()
    if tier is None:
        existing = await service.list_tiers(active_only=False)
        return {"message": "Tiers already exist", "tiers": [t.to_dict() for t in existing]}
    return JSONResponse(
        status_code=status.HTTP_201_CREATED,
        content={"message": "Default tier created", "tier": tier.to_dict()}
    )


@router.post("/calculate")
async def calculate_fee(
    data: FeeCalculationRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    service = RevShareService(db, current_user.tenant_id)
    return await service.calculate_fee(data.incremental_revenue)
