"""
Validated shapes for JSON configuration stored on tenants.

Stored blobs are parsed into these models on every read; unknown keys are
rejected so that a typo in stored config fails loudly instead of silently
falling back to a default.
"""
from typing import Optional

from pydantic import BaseModel, Field, model_validator


class EngineConfig(BaseModel):
    """Per-tenant engine parameters, passed explicitly into every engine call."""

    # Opportunity score weights (percent, must sum to 100)
    recency_weight: float = Field(default=20.0, ge=0, le=100)
    frequency_weight: float = Field(default=20.0, ge=0, le=100)
    monetary_weight: float = Field(default=30.0, ge=0, le=100)
    mix_weight: float = Field(default=30.0, ge=0, le=100)

    # Sub-score scaling
    recency_horizon_days: int = Field(default=365, ge=1)
    frequency_reference_percentile: float = Field(default=90.0, gt=0, le=100)

    # Category weighting
    required_category_multiplier: float = Field(default=1.5, ge=1.0)
    important_category_min: float = Field(default=1.0, ge=0)

    # At-risk heuristic
    at_risk_decline_pct: float = Field(default=15.0, ge=0, le=100)
    at_risk_consecutive_periods: int = Field(default=2, ge=1)

    # Maintenance
    similarity_top_k: int = Field(default=5, ge=1, le=50)
    crm_webhook_url: Optional[str] = None
    crm_webhook_secret: Optional[str] = None

    class Config:
        extra = "forbid"

    @model_validator(mode="after")
    def check_weights(self):
        total = self.recency_weight + self.frequency_weight + self.monetary_weight + self.mix_weight
        if abs(total - 100.0) > 0.01:
            raise ValueError(f"Scoring weights must sum to 100. Current total: {total}")
        return self


class EngineConfigUpdate(BaseModel):
    recency_weight: Optional[float] = None
    frequency_weight: Optional[float] = None
    monetary_weight: Optional[float] = None
    mix_weight: Optional[float] = None
    recency_horizon_days: Optional[int] = None
    frequency_reference_percentile: Optional[float] = None
    required_category_multiplier: Optional[float] = None
    important_category_min: Optional[float] = None
    at_risk_decline_pct: Optional[float] = None
    at_risk_consecutive_periods: Optional[int] = None
    similarity_top_k: Optional[int] = None
    crm_webhook_url: Optional[str] = None
    crm_webhook_secret: Optional[str] = None


class PlanLimits(BaseModel):
    """Feature limits of a subscription plan. -1 means unlimited."""

    enrolled_accounts: int = Field(default=1, ge=-1)
    icps: int = Field(default=1, ge=-1)
    accounts: int = Field(default=-1, ge=-1)

    class Config:
        extra = "ignore"
