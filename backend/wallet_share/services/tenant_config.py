"""
Per-tenant engine configuration.

The JSON blob in tenant_settings is parsed into EngineConfig on every
read. A stored blob that no longer validates raises ConfigError rather
than silently falling back to defaults.
"""
from typing import Any, Dict
from uuid import UUID
import logging

from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from wallet_share.errors import ConfigError
from wallet_share.models import TenantSettings
from wallet_share.schemas.settings import EngineConfig, EngineConfigUpdate

logger = logging.getLogger(__name__)


async def _get_settings_row(db: AsyncSession, tenant_id: UUID):
    result = await db.execute(
        select(TenantSettings).where(TenantSettings.tenant_id == tenant_id)
    )
    return result.scalar_one_or_none()


async def load_engine_config(db: AsyncSession, tenant_id: UUID) -> EngineConfig:
    """Validated engine config for a tenant (defaults when none stored)."""
    row = await _get_settings_row(db, tenant_id)
    raw = (row.engine_config if row else None) or {}

    try:
        return EngineConfig.model_validate(raw)
    except ValidationError as e:
        logger.error(f"Stored engine config for tenant {tenant_id} is invalid: {e}")
        raise ConfigError(
            "Stored engine configuration is invalid",
            {"errors": e.errors(include_url=False, include_context=False)}
        )


async def update_engine_config(
    db: AsyncSession,
    tenant_id: UUID,
    update: EngineConfigUpdate
) -> EngineConfig:
    """
    Merge a partial update into the stored config and validate the result.

    Nothing is written when the merged config is invalid.
    """
    current = await load_engine_config(db, tenant_id)
    merged: Dict[str, Any] = current.model_dump()
    merged.update(update.model_dump(exclude_unset=True))

    try:
        config = EngineConfig.model_validate(merged)
    except ValidationError as e:
        raise ConfigError(
            "Invalid engine configuration",
            {"errors": e.errors(include_url=False, include_context=False)}
        )

    row = await _get_settings_row(db, tenant_id)
    if not row:
        row = TenantSettings(tenant_id=tenant_id)
        db.add(row)

    row.engine_config = config.model_dump()
    await db.commit()

    logger.info(f"Engine config updated for tenant {tenant_id}")
    return config
