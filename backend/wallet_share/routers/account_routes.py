"""
Account scoring routes: recompute, ranking and per-account detail.
"""
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional
from uuid import UUID
from datetime import datetime

from wallet_share.auth import get_current_user
from wallet_share.database import get_db
from wallet_share.errors import EngineError, to_http_exception
from wallet_share.models import User
from wallet_share.scoring_engine.core import OpportunityCalculator
from wallet_share.services.similarity import SimilarityService
from wallet_share.services.tenant_config import load_engine_config
from wallet_share.utils.dates import to_naive_utc

router = APIRouter(prefix="/api/v1/accounts", tags=["Accounts"])


async def _calculator(db: AsyncSession, user: User) -> OpportunityCalculator:
    try:
        config = await load_engine_config(db, user.tenant_id)
    except EngineError as e:
        raise to_http_exception(e)
    return OpportunityCalculator(db, user.tenant_id, config)


# ============================================================================
# SPECIFIC ROUTES FIRST
# ============================================================================

@router.get("/ranking")
async def get_ranking(
    limit: int = Query(50, ge=1, le=500),
    sort_key: str = Query("opportunity_score"),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Accounts ranked by a metrics field, descending (nulls last)"""
    calculator = await _calculator(db, current_user)
    try:
        return await calculator.get_opportunity_ranking(limit=limit, sort_key=sort_key)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.post("/recompute-all")
async def recompute_all(
    as_of: Optional[datetime] = None,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Recompute every account; returns counts plus per-account errors"""
    calculator = await _calculator(db, current_user)
    return await calculator.recompute_all(as_of=to_naive_utc(as_of))


# ============================================================================
# PER-ACCOUNT
# ============================================================================

@router.post("/{account_id}/recompute")
async def recompute_account(
    account_id: UUID,
    as_of: Optional[datetime] = None,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    calculator = await _calculator(db, current_user)
    try:
        metrics, gaps = await calculator.recompute_account(account_id, as_of=to_naive_utc(as_of))
    except EngineError as e:
        raise to_http_exception(e)
    return {
        "metrics": metrics.to_dict(),
        "gaps": [g.to_dict() for g in gaps],
    }


@router.get("/{account_id}/metrics")
async def get_account_metrics(
    account_id: UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    calculator = await _calculator(db, current_user)
    try:
        return await calculator.get_account_metrics(account_id)
    except EngineError as e:
        raise to_http_exception(e)


@router.get("/{account_id}/similar")
async def get_similar_accounts(
    account_id: UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    service = SimilarityService(db, current_user.tenant_id)
    return [pair.to_dict() for pair in await service.list_similar(account_id)]
