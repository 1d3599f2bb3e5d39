"""
Program lifecycle routes.
"""
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional
from uuid import UUID

from wallet_share.auth import get_current_user
from wallet_share.database import get_db
from wallet_share.errors import EngineError, to_http_exception
from wallet_share.models import User
from wallet_share.schemas.program import (
    EnrollRequest, GraduateRequest, NominateRequest, SnapshotRequest, StatusNote
)
from wallet_share.services.feature_limits import check_enrollment_limit
from wallet_share.services.lifecycle import ProgramLifecycleManager
from wallet_share.services.snapshots import SnapshotGenerator
from wallet_share.services.tenant_config import load_engine_config

router = APIRouter(prefix="/api/v1/program", tags=["Program"])


async def _manager(db: AsyncSession, user: User) -> ProgramLifecycleManager:
    try:
        config = await load_engine_config(db, user.tenant_id)
    except EngineError as e:
        raise to_http_exception(e)
    return ProgramLifecycleManager(db, user.tenant_id, config)


@router.get("/accounts")
async def list_program_accounts(
    status_filter: Optional[str] = None,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    manager = await _manager(db, current_user)
    return [r.to_dict() for r in await manager.list_records(status_filter)]


@router.post("/nominate", status_code=status.HTTP_201_CREATED)
async def nominate(
    data: NominateRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    manager = await _manager(db, current_user)
    try:
        record = await manager.nominate(data.account_id, current_user.email, data.notes)
    except EngineError as e:
        raise to_http_exception(e)
    return record.to_dict()


@router.post("/enroll", status_code=status.HTTP_201_CREATED)
async def enroll(
    data: EnrollRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Enroll an account. Plan limits are checked before the engine is called."""
    manager = await _manager(db, current_user)
    try:
        await check_enrollment_limit(db, current_user.tenant_id)
        record = await manager.enroll(data.account_id, current_user.email, data)
    except EngineError as e:
        raise to_http_exception(e)
    return record.to_dict()


@router.post("/evaluate")
async def evaluate_lifecycle(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    manager = await _manager(db, current_user)
    return await manager.evaluate_lifecycle()


@router.post("/snapshots")
async def generate_snapshots(
    data: SnapshotRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    generator = SnapshotGenerator(db, current_user.tenant_id)
    try:
        outcome = await generator.generate(data.period_start, data.period_end, force=data.force)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    outcome["snapshots"] = [s.to_dict() for s in outcome["snapshots"]]
    return outcome


@router.get("/accounts/{program_account_id}")
async def get_program_account(
    program_account_id: UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    manager = await _manager(db, current_user)
    try:
        record = await manager.get_record(program_account_id)
        snapshots = await manager.list_snapshots(program_account_id)
    except EngineError as e:
        raise to_http_exception(e)
    data = record.to_dict()
    data["snapshots"] = [s.to_dict() for s in snapshots]
    return data


@router.get("/accounts/{program_account_id}/graduation-progress")
async def graduation_progress(
    program_account_id: UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    manager = await _manager(db, current_user)
    try:
        return await manager.graduation_progress(program_account_id)
    except EngineError as e:
        raise to_http_exception(e)


@router.post("/accounts/{program_account_id}/pause")
async def pause(
    program_account_id: UUID,
    data: Optional[StatusNote] = None,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    manager = await _manager(db, current_user)
    try:
        record = await manager.pause(program_account_id, current_user.email, data.notes if data else None)
    except EngineError as e:
        raise to_http_exception(e)
    return record.to_dict()


@router.post("/accounts/{program_account_id}/resume")
async def resume(
    program_account_id: UUID,
    data: Optional[StatusNote] = None,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    manager = await _manager(db, current_user)
    try:
        record = await manager.resume(program_account_id, current_user.email, data.notes if data else None)
    except EngineError as e:
        raise to_http_exception(e)
    return record.to_dict()


@router.post("/accounts/{program_account_id}/graduate")
async def graduate(
    program_account_id: UUID,
    data: Optional[GraduateRequest] = None,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Manually graduate. The record is frozen afterwards."""
    manager = await _manager(db, current_user)
    try:
        record = await manager.graduate(program_account_id, current_user.email, data.notes if data else None)
    except EngineError as e:
        raise to_http_exception(e)
    return record.to_dict()
