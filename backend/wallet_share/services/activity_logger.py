# backend/wallet_share/services/activity_logger.py
"""
Activity Logger - program account status transitions
"""

from typing import Optional, Dict, Any
from sqlalchemy.ext.asyncio import AsyncSession
import uuid

from wallet_share.models import ProgramActivity
from wallet_share.utils.dates import utcnow


class ActivityLogger:
    """Logs program account status transitions"""
    
    def __init__(self, db: AsyncSession):
        self.db = db
    
    @staticmethod
    def _to_uuid(value):
        """Safely convert to UUID"""
        if value is None:
            return None
        if isinstance(value, uuid.UUID):
            return value
        return uuid.UUID(str(value))
    
    async def log_transition(
        self,
        tenant_id,
        program_account_id,
        from_status: Optional[str],
        to_status: str,
        reason: str,
        details: Optional[Dict[str, Any]] = None,
        actor: Optional[str] = None
    ) -> ProgramActivity:
        """Log a status transition. Flushed, not committed."""
        activity = ProgramActivity(
            tenant_id=self._to_uuid(tenant_id),
            program_account_id=self._to_uuid(program_account_id),
            from_status=from_status,
            to_status=to_status,
            reason=reason,
            details=details or {},
            actor=actor,
            timestamp=utcnow()
        )
        
        self.db.add(activity)
        await self.db.flush()
        
        return activity
    
    async def log_nomination(self, record, actor: Optional[str] = None):
        return await self.log_transition(
            record.tenant_id, record.id, None, "candidate", "nominated", actor=actor
        )
    
    async def log_enrollment(self, record, from_status: Optional[str], actor: Optional[str] = None):
        details = {
            "baseline_revenue": float(record.baseline_revenue or 0),
            "share_rate": float(record.share_rate or 0),
        }
        return await self.log_transition(
            record.tenant_id, record.id, from_status, "active", "enrolled", details, actor
        )
    
    async def log_graduation(self, record, from_status: str, met: Dict[str, bool], actor: Optional[str] = None):
        details = {
            "criteria": record.graduation_criteria,
            "objectives_met": met,
            "incremental_revenue": float(record.incremental_revenue or 0),
        }
        reason = "graduated_manual" if actor else "graduated_auto"
        return await self.log_transition(
            record.tenant_id, record.id, from_status, "graduated", reason, details, actor
        )
    
    async def log_at_risk(self, record, periods: int, decline_pct: float):
        details = {"consecutive_periods": periods, "decline_pct": decline_pct}
        return await self.log_transition(
            record.tenant_id, record.id, "active", "at_risk", "revenue_decline", details
        )
    
    async def log_recovery(self, record):
        return await self.log_transition(
            record.tenant_id, record.id, "at_risk", "active", "revenue_recovered"
        )
    
    async def log_manual(
        self, record, from_status: str, to_status: str, reason: str,
        actor: Optional[str] = None, notes: Optional[str] = None
    ):
        details = {"notes": notes} if notes else {}
        return await self.log_transition(
            record.tenant_id, record.id, from_status, to_status, reason, details, actor
        )
