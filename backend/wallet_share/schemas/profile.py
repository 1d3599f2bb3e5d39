"""
Pydantic schemas for categories and segment profiles.
"""
from typing import Optional, List
from pydantic import BaseModel, Field
from uuid import UUID


# ============================================================================
# CATEGORY SCHEMAS
# ============================================================================

class CategoryCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    parent_id: Optional[UUID] = None


class CategoryRename(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)


# ============================================================================
# SEGMENT PROFILE SCHEMAS
# ============================================================================

class ProfileCategoryIn(BaseModel):
    category_id: UUID
    expected_pct: float = Field(..., ge=0, le=100)
    importance: float = Field(default=1.0, ge=0.5, le=2.0)
    is_required: bool = False
    notes: Optional[str] = None


class SegmentProfileCreate(BaseModel):
    segment: str = Field(..., min_length=1, max_length=100)
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    min_annual_revenue: Optional[float] = Field(None, ge=0)
    categories: List[ProfileCategoryIn] = Field(default_factory=list)


class SegmentProfileUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    min_annual_revenue: Optional[float] = Field(None, ge=0)
    # When present, replaces the profile's category rows
    categories: Optional[List[ProfileCategoryIn]] = None
    notes: Optional[str] = None


class ProfileApprove(BaseModel):
    notes: Optional[str] = None
