"""
Category and segment profile routes.
"""
from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional
from uuid import UUID
import logging

from wallet_share.auth import get_current_user, require_admin
from wallet_share.database import get_db
from wallet_share.errors import EngineError, to_http_exception
from wallet_share.models import User
from wallet_share.schemas.profile import (
    CategoryCreate, CategoryRename, ProfileApprove, SegmentProfileCreate, SegmentProfileUpdate
)
from wallet_share.services.feature_limits import check_profile_limit
from wallet_share.services.profile_store import ProfileStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", tags=["Profiles"])


# ============================================================================
# CATEGORIES
# ============================================================================

@router.get("/categories")
async def list_categories(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    store = ProfileStore(db, current_user.tenant_id)
    return [c.to_dict() for c in await store.list_categories()]


@router.post("/categories", status_code=status.HTTP_201_CREATED)
async def create_category(
    data: CategoryCreate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    store = ProfileStore(db, current_user.tenant_id)
    try:
        category = await store.create_category(data.name, data.parent_id)
    except EngineError as e:
        raise to_http_exception(e)
    return category.to_dict()


@router.patch("/categories/{category_id}")
async def rename_category(
    category_id: UUID,
    data: CategoryRename,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Rename a category. Referenced categories are immutable."""
    store = ProfileStore(db, current_user.tenant_id)
    try:
        category = await store.rename_category(category_id, data.name)
    except EngineError as e:
        raise to_http_exception(e)
    return category.to_dict()


# ============================================================================
# SEGMENT PROFILES
# ============================================================================

@router.get("/profiles")
async def list_profiles(
    segment: Optional[str] = None,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    store = ProfileStore(db, current_user.tenant_id)
    return [p.to_dict() for p in await store.list_profiles(segment)]


@router.post("/profiles", status_code=status.HTTP_201_CREATED)
async def create_profile(
    data: SegmentProfileCreate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Create a draft profile"""
    store = ProfileStore(db, current_user.tenant_id)
    try:
        await check_profile_limit(db, current_user.tenant_id, approved_only=False)
        profile = await store.create_profile(data, reviewer=current_user.email)
        return await store.get_profile_detail(profile.id)
    except EngineError as e:
        raise to_http_exception(e)


@router.get("/profiles/{profile_id}")
async def get_profile(
    profile_id: UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    store = ProfileStore(db, current_user.tenant_id)
    try:
        return await store.get_profile_detail(profile_id)
    except EngineError as e:
        raise to_http_exception(e)


@router.put("/profiles/{profile_id}")
async def update_profile(
    profile_id: UUID,
    data: SegmentProfileUpdate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    store = ProfileStore(db, current_user.tenant_id)
    try:
        await store.update_profile(profile_id, data, reviewer=current_user.email)
        return await store.get_profile_detail(profile_id)
    except EngineError as e:
        raise to_http_exception(e)


@router.post("/profiles/{profile_id}/approve")
async def approve_profile(
    profile_id: UUID,
    data: Optional[ProfileApprove] = None,
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    """Approve a draft profile. Takes effect on the next recompute."""
    store = ProfileStore(db, current_user.tenant_id)
    try:
        await check_profile_limit(db, current_user.tenant_id)
        await store.approve_profile(profile_id, current_user.email, data.notes if data else None)
        return await store.get_profile_detail(profile_id)
    except EngineError as e:
        raise to_http_exception(e)


@router.delete("/profiles/{profile_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_profile(
    profile_id: UUID,
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    store = ProfileStore(db, current_user.tenant_id)
    try:
        await store.delete_profile(profile_id)
    except EngineError as e:
        raise to_http_exception(e)


@router.get("/profiles/{profile_id}/review-log")
async def get_review_log(
    profile_id: UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    store = ProfileStore(db, current_user.tenant_id)
    try:
        entries = await store.get_review_log(profile_id)
    except EngineError as e:
        raise to_http_exception(e)
    return [
        {
            "reviewer": entry.reviewer,
            "action": entry.action,
            "notes": entry.notes,
            "created_at": entry.created_at.isoformat() if entry.created_at else None,
        }
        for entry in entries
    ]
