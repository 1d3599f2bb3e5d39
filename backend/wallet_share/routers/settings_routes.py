"""Tenant engine settings endpoints."""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
import logging

from wallet_share.auth import get_current_user, require_admin
from wallet_share.database import get_db
from wallet_share.errors import EngineError, to_http_exception
from wallet_share.models import User
from wallet_share.schemas.settings import EngineConfigUpdate
from wallet_share.services.tenant_config import load_engine_config, update_engine_config

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/settings", tags=["Settings"])


def _public(config) -> dict:
    data = config.model_dump()
    data["crm_webhook_secret"] = "********" if config.crm_webhook_secret else None
    return data


@router.get("/engine")
async def get_engine_settings(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Get current tenant's engine settings."""
    try:
        config = await load_engine_config(db, current_user.tenant_id)
    except EngineError as e:
        raise to_http_exception(e)
    return _public(config)


@router.put("/engine")
async def update_engine_settings(
    update: EngineConfigUpdate,
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    """Update engine settings. Requires admin role."""
    try:
        config = await update_engine_config(db, current_user.tenant_id, update)
    except EngineError as e:
        raise to_http_exception(e)
    
    logger.info(f"Engine settings updated by {current_user.email}")
    return _public(config)
