"""
Pydantic schemas for the program lifecycle.
"""
from typing import Optional, Literal
from datetime import datetime
from pydantic import BaseModel, Field, field_validator
from uuid import UUID

from wallet_share.utils.dates import to_naive_utc


class NominateRequest(BaseModel):
    account_id: UUID
    notes: Optional[str] = None


class EnrollmentTargets(BaseModel):
    target_penetration: Optional[float] = Field(None, ge=0, le=100)
    target_incremental_revenue: Optional[float] = Field(None, ge=0)
    target_duration_months: Optional[int] = Field(None, ge=1)
    graduation_criteria: Literal["any", "all"] = "any"
    share_rate: Optional[float] = Field(None, ge=0, le=100)


class EnrollRequest(EnrollmentTargets):
    account_id: UUID


class GraduateRequest(BaseModel):
    notes: Optional[str] = None


class StatusNote(BaseModel):
    notes: Optional[str] = None


class SnapshotRequest(BaseModel):
    period_start: datetime
    period_end: datetime
    force: bool = False

    @field_validator("period_start", "period_end")
    @classmethod
    def naive_utc(cls, value: datetime) -> datetime:
        return to_naive_utc(value)
