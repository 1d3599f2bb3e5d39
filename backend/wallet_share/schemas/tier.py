"""
Pydantic schemas for rev-share tiers.
"""
from typing import Optional, List
from pydantic import BaseModel, Field


class TierIn(BaseModel):
    min_revenue: float = Field(..., ge=0)
    max_revenue: Optional[float] = None
    share_rate: float


class TierReplaceRequest(BaseModel):
    tiers: List[TierIn]


class FeeCalculationRequest(BaseModel):
    incremental_revenue: float = Field(..., ge=0)
