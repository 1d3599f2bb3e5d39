"""
Program lifecycle manager.

State machine for program accounts:

    candidate -> active
    active    -> graduated | at_risk | paused
    at_risk   -> active
    paused    -> active

``graduated`` is terminal. A graduated record is a frozen historical
snapshot; re-enrolling the account creates a new record.
"""
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Set
from uuid import UUID
import logging

from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from wallet_share.config import settings
from wallet_share.errors import (
    AlreadyEnrolledError, GraduatedRecordError, InvalidTransitionError, NotFoundError
)
from wallet_share.models import (
    Account, AccountCategoryGap, AccountMetrics, ProfileCategory, ProgramAccount,
    RevenueSnapshot, ENROLLED_PROGRAM_STATUSES, LIVE_PROGRAM_STATUSES
)
from wallet_share.schemas.program import EnrollmentTargets
from wallet_share.schemas.settings import EngineConfig
from wallet_share.scoring_engine.core.aggregator import MetricsAggregator, TRAILING_DAYS
from wallet_share.services.activity_logger import ActivityLogger
from wallet_share.services.crm_sync import build_payload, queue_crm_event
from wallet_share.utils.dates import utcnow

logger = logging.getLogger(__name__)


ALLOWED_TRANSITIONS = {
    "candidate": {"active"},
    "active": {"graduated", "at_risk", "paused"},
    "at_risk": {"active"},
    "paused": {"active"},
    "graduated": set(),
}

DAYS_PER_MONTH = 30


class ProgramLifecycleManager:
    """
    Enrollment, graduation and at-risk evaluation for one tenant.
    """

    def __init__(self, db: AsyncSession, tenant_id: UUID, config: Optional[EngineConfig] = None):
        self.db = db
        self.tenant_id = tenant_id
        self.config = config or EngineConfig()
        self.aggregator = MetricsAggregator(db, tenant_id)
        self.activity = ActivityLogger(db)

    # ========================================================================
    # LOOKUPS
    # ========================================================================

    async def _get_account(self, account_id: UUID) -> Account:
        result = await self.db.execute(
            select(Account).where(Account.tenant_id == self.tenant_id, Account.id == account_id)
        )
        account = result.scalar_one_or_none()
        if not account:
            raise NotFoundError(f"Account {account_id} not found", {"account_id": str(account_id)})
        return account

    async def get_record(self, program_account_id: UUID) -> ProgramAccount:
        result = await self.db.execute(
            select(ProgramAccount).where(
                ProgramAccount.tenant_id == self.tenant_id,
                ProgramAccount.id == program_account_id
            )
        )
        record = result.scalar_one_or_none()
        if not record:
            raise NotFoundError(f"Program account {program_account_id} not found")
        return record

    async def get_live_record(self, account_id: UUID) -> Optional[ProgramAccount]:
        result = await self.db.execute(
            select(ProgramAccount).where(
                ProgramAccount.tenant_id == self.tenant_id,
                ProgramAccount.account_id == account_id,
                ProgramAccount.status.in_(LIVE_PROGRAM_STATUSES)
            )
        )
        return result.scalars().first()

    async def list_records(self, status: Optional[str] = None) -> List[ProgramAccount]:
        stmt = select(ProgramAccount).where(ProgramAccount.tenant_id == self.tenant_id)
        if status:
            stmt = stmt.where(ProgramAccount.status == status)
        result = await self.db.execute(stmt.order_by(ProgramAccount.created_at))
        return list(result.scalars().all())

    async def list_snapshots(self, program_account_id: UUID) -> List[RevenueSnapshot]:
        await self.get_record(program_account_id)
        result = await self.db.execute(
            select(RevenueSnapshot).where(
                RevenueSnapshot.tenant_id == self.tenant_id,
                RevenueSnapshot.program_account_id == program_account_id
            ).order_by(RevenueSnapshot.period_start)
        )
        return list(result.scalars().all())

    # ========================================================================
    # TRANSITIONS
    # ========================================================================

    def _check_transition(self, record: ProgramAccount, to_status: str):
        if record.is_graduated:
            raise GraduatedRecordError(
                f"Program account {record.id} has graduated and can no longer change",
                {"program_account_id": str(record.id)}
            )
        if to_status not in ALLOWED_TRANSITIONS.get(record.status, set()):
            raise InvalidTransitionError(
                f"Cannot move program account from {record.status} to {to_status}",
                {"from": record.status, "to": to_status}
            )

    def _set_status(self, record: ProgramAccount, to_status: str, now: datetime):
        record.status = to_status
        record.status_changed_at = now

    async def nominate(self, account_id: UUID, operator: str, notes: Optional[str] = None) -> ProgramAccount:
        """Create a candidate record for an account with no live record."""
        account = await self._get_account(account_id)

        live = await self.get_live_record(account.id)
        if live is not None:
            if live.status in ENROLLED_PROGRAM_STATUSES:
                raise AlreadyEnrolledError(
                    f"Account {account_id} is already enrolled",
                    {"program_account_id": str(live.id), "status": live.status}
                )
            raise InvalidTransitionError(
                f"Account {account_id} is already a candidate",
                {"program_account_id": str(live.id)}
            )

        record = ProgramAccount(
            tenant_id=self.tenant_id,
            account_id=account.id,
            status="candidate",
            status_changed_at=utcnow(),
            notes=notes,
            graduation_criteria=settings.DEFAULT_GRADUATION_CRITERIA,
        )
        self.db.add(record)
        try:
            await self.db.flush()
            await self.activity.log_nomination(record, actor=operator)
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            raise AlreadyEnrolledError(f"Account {account_id} already has a live program record")
        except Exception:
            await self.db.rollback()
            raise

        return record

    async def enroll(
        self,
        account_id: UUID,
        operator: str,
        targets: EnrollmentTargets,
        now: Optional[datetime] = None
    ) -> ProgramAccount:
        """
        Enroll an account: promote its candidate record or create a new one.

        The baseline is the account's order revenue over the 12 months
        preceding enrollment and is never recomputed afterwards.

        Raises:
            AlreadyEnrolledError: the account has an active, at-risk or paused record
        """
        now = now or utcnow()
        account = await self._get_account(account_id)

        live = await self.get_live_record(account.id)
        if live is not None and live.status in ENROLLED_PROGRAM_STATUSES:
            raise AlreadyEnrolledError(
                f"Account {account_id} is already enrolled",
                {"program_account_id": str(live.id), "status": live.status}
            )

        baseline_start = now - timedelta(days=TRAILING_DAYS)
        baseline_revenue = await self.aggregator.trailing_revenue(account.id, baseline_start, now)
        baseline_categories, important_count = await self._enrollment_gaps(account.id)

        from_status = live.status if live is not None else None
        record = live
        if record is None:
            record = ProgramAccount(tenant_id=self.tenant_id, account_id=account.id)
            self.db.add(record)
        else:
            self._check_transition(record, "active")

        self._set_status(record, "active", now)
        record.enrolled_at = now
        record.enrolled_by = operator
        record.baseline_start = baseline_start
        record.baseline_end = now
        record.baseline_revenue = baseline_revenue
        record.baseline_categories = baseline_categories
        record.icp_categories_at_enrollment = important_count
        record.share_rate = (
            targets.share_rate if targets.share_rate is not None else settings.DEFAULT_SHARE_RATE
        )
        record.target_penetration = targets.target_penetration
        record.target_incremental_revenue = targets.target_incremental_revenue
        record.target_duration_months = targets.target_duration_months
        record.graduation_criteria = targets.graduation_criteria

        try:
            await self.db.flush()
            await self.activity.log_enrollment(record, from_status, actor=operator)
            await queue_crm_event(
                self.db, self.tenant_id, account.id, "enrolled",
                build_payload("enrolled", account, record, baseline_revenue=baseline_revenue)
            )
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            raise AlreadyEnrolledError(f"Account {account_id} is already enrolled")
        except Exception:
            await self.db.rollback()
            raise

        logger.info(
            f"Enrolled account {account_id} by {operator}: baseline={baseline_revenue} "
            f"gapped_categories={len(baseline_categories)}"
        )
        return record

    async def pause(self, program_account_id: UUID, actor: str, notes: Optional[str] = None) -> ProgramAccount:
        return await self._manual_transition(program_account_id, "paused", "paused", actor, notes)

    async def resume(self, program_account_id: UUID, actor: str, notes: Optional[str] = None) -> ProgramAccount:
        """paused -> active. At-risk records return to active only by recovering."""
        record = await self.get_record(program_account_id)
        if record.status == "at_risk":
            raise InvalidTransitionError(
                "At-risk records return to active automatically when revenue recovers",
                {"from": record.status, "to": "active"}
            )
        return await self._manual_transition(program_account_id, "active", "resumed", actor, notes)

    async def _manual_transition(
        self,
        program_account_id: UUID,
        to_status: str,
        reason: str,
        actor: str,
        notes: Optional[str]
    ) -> ProgramAccount:
        record = await self.get_record(program_account_id)
        self._check_transition(record, to_status)

        from_status = record.status
        self._set_status(record, to_status, utcnow())
        try:
            await self.activity.log_manual(record, from_status, to_status, reason, actor, notes)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(f"Program account {program_account_id}: {from_status} -> {to_status} by {actor}")
        return record

    async def graduate(
        self,
        program_account_id: UUID,
        actor: str,
        notes: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> ProgramAccount:
        """Manual graduation. Freezes the same fields as automatic graduation."""
        now = now or utcnow()
        record = await self.get_record(program_account_id)
        self._check_transition(record, "graduated")

        progress = await self._progress(record, now)
        try:
            await self._graduate(record, progress, now, actor=actor, notes=notes)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise
        return record

    # ========================================================================
    # GRADUATION
    # ========================================================================

    async def graduation_progress(self, program_account_id: UUID, now: Optional[datetime] = None) -> Dict[str, Any]:
        record = await self.get_record(program_account_id)
        return await self._progress(record, now or utcnow())

    async def _progress(self, record: ProgramAccount, now: datetime) -> Dict[str, Any]:
        """
        Current value, target and progress for each graduation objective.

        Objectives without a target are reported but never count as met.
        """
        elapsed_days = (now - record.enrolled_at).days if record.enrolled_at else 0
        penetration = await self._current_penetration(record.account_id)
        incremental = await self._cumulative_incremental(record.id)

        def objective(current, target):
            if target is None:
                return {"current": current, "target": None, "progress": None, "is_met": False}
            target = float(target)
            progress = 100.0 if target <= 0 else min(100.0, round(current / target * 100, 2))
            return {"current": current, "target": target, "progress": progress, "is_met": current >= target}

        duration_target = (
            record.target_duration_months * DAYS_PER_MONTH
            if record.target_duration_months is not None
            else None
        )
        objectives = {
            "penetration": objective(penetration, record.target_penetration),
            "incremental_revenue": objective(incremental, record.target_incremental_revenue),
            "duration": objective(elapsed_days, duration_target),
        }

        targeted = [o for o in objectives.values() if o["target"] is not None]
        if not targeted:
            ready = False
        elif record.graduation_criteria == "all":
            ready = all(o["is_met"] for o in targeted)
        else:
            ready = any(o["is_met"] for o in targeted)

        return {
            "program_account_id": str(record.id),
            "status": record.status,
            "graduation_criteria": record.graduation_criteria,
            "elapsed_days": elapsed_days,
            "objectives": objectives,
            "is_ready_to_graduate": ready and record.status == "active",
        }

    async def _graduate(
        self,
        record: ProgramAccount,
        progress: Dict[str, Any],
        now: datetime,
        actor: Optional[str] = None,
        notes: Optional[str] = None
    ):
        from_status = record.status

        totals = await self.db.execute(
            select(
                func.coalesce(func.sum(RevenueSnapshot.period_revenue), 0),
                func.coalesce(func.sum(RevenueSnapshot.incremental_revenue), 0)
            ).where(
                RevenueSnapshot.tenant_id == self.tenant_id,
                RevenueSnapshot.program_account_id == record.id
            )
        )
        period_total, incremental_total = totals.one()

        self._set_status(record, "graduated", now)
        record.graduated_at = now
        record.graduation_notes = notes
        record.graduation_revenue = round(float(period_total or 0), 2)
        record.incremental_revenue = round(float(incremental_total or 0), 2)
        record.enrollment_duration_days = progress["elapsed_days"]
        record.graduation_penetration = progress["objectives"]["penetration"]["current"]
        record.icp_categories_achieved = await self._categories_achieved(record)

        met = {name: o["is_met"] for name, o in progress["objectives"].items()}
        await self.activity.log_graduation(record, from_status, met, actor=actor)

        account = await self._get_account(record.account_id)
        await queue_crm_event(
            self.db, self.tenant_id, account.id, "graduated",
            build_payload(
                "graduated", account, record,
                graduation_reason="manual" if actor else "objectives_met",
                incremental_revenue=float(record.incremental_revenue),
            )
        )
        logger.info(
            f"Program account {record.id} graduated: incremental={record.incremental_revenue} "
            f"days={record.enrollment_duration_days}"
        )

    async def _current_penetration(self, account_id: UUID) -> float:
        result = await self.db.execute(
            select(AccountMetrics.category_penetration).where(
                AccountMetrics.tenant_id == self.tenant_id,
                AccountMetrics.account_id == account_id
            )
        )
        value = result.scalar_one_or_none()
        return float(value) if value is not None else 0.0

    async def _cumulative_incremental(self, program_account_id: UUID) -> float:
        result = await self.db.execute(
            select(func.coalesce(func.sum(RevenueSnapshot.incremental_revenue), 0)).where(
                RevenueSnapshot.tenant_id == self.tenant_id,
                RevenueSnapshot.program_account_id == program_account_id
            )
        )
        return round(float(result.scalar() or 0), 2)

    def _is_important(self, is_required, importance) -> bool:
        return bool(is_required) or float(importance or 0) >= self.config.important_category_min

    async def _enrollment_gaps(self, account_id: UUID):
        """Gapped category ids right now, and how many are required or important."""
        result = await self.db.execute(
            select(AccountCategoryGap).where(
                AccountCategoryGap.tenant_id == self.tenant_id,
                AccountCategoryGap.account_id == account_id
            )
        )
        gaps = list(result.scalars().all())
        categories = sorted(str(g.category_id) for g in gaps)
        important = sum(1 for g in gaps if self._is_important(g.is_required, g.importance))
        return categories, important

    async def _categories_achieved(self, record: ProgramAccount) -> int:
        """
        Required or important categories gapped at enrollment that no longer
        have a gap in the account's current matched profile.
        """
        baseline: Set[str] = set(record.baseline_categories or [])
        if not baseline:
            return 0

        metrics_result = await self.db.execute(
            select(AccountMetrics.matched_profile_id).where(
                AccountMetrics.tenant_id == self.tenant_id,
                AccountMetrics.account_id == record.account_id
            )
        )
        profile_id = metrics_result.scalar_one_or_none()
        if profile_id is None:
            return 0

        profile_result = await self.db.execute(
            select(ProfileCategory).where(
                ProfileCategory.tenant_id == self.tenant_id,
                ProfileCategory.profile_id == profile_id
            )
        )
        important = {
            str(c.category_id)
            for c in profile_result.scalars().all()
            if self._is_important(c.is_required, c.importance)
        }

        gap_result = await self.db.execute(
            select(AccountCategoryGap.category_id).where(
                AccountCategoryGap.tenant_id == self.tenant_id,
                AccountCategoryGap.account_id == record.account_id
            )
        )
        still_gapped = {str(row[0]) for row in gap_result.all()}

        return len((baseline & important) - still_gapped)

    # ========================================================================
    # AT-RISK
    # ========================================================================

    async def _recent_snapshots(self, program_account_id: UUID, limit: int) -> List[RevenueSnapshot]:
        result = await self.db.execute(
            select(RevenueSnapshot).where(
                RevenueSnapshot.tenant_id == self.tenant_id,
                RevenueSnapshot.program_account_id == program_account_id
            ).order_by(RevenueSnapshot.period_end.desc()).limit(limit)
        )
        return list(result.scalars().all())

    def _is_declining(self, snapshot: RevenueSnapshot) -> bool:
        threshold = float(snapshot.baseline_comparison) * (1 - self.config.at_risk_decline_pct / 100)
        return float(snapshot.period_revenue) < threshold

    async def _should_flag_at_risk(self, record: ProgramAccount) -> bool:
        periods = self.config.at_risk_consecutive_periods
        recent = await self._recent_snapshots(record.id, periods)
        return len(recent) >= periods and all(self._is_declining(s) for s in recent)

    async def _has_recovered(self, record: ProgramAccount) -> bool:
        recent = await self._recent_snapshots(record.id, 1)
        return bool(recent) and not self._is_declining(recent[0])

    # ========================================================================
    # EVALUATION
    # ========================================================================

    async def evaluate_lifecycle(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Graduation, at-risk and recovery evaluation for every enrolled record.

        Each record is evaluated and committed on its own; a failure is
        recorded in ``errors`` and the batch continues.

        Returns:
            {"graduated": [id], "at_risk": [id], "recovered": [id], "errors": [...]}
        """
        now = now or utcnow()
        outcome: Dict[str, Any] = {"graduated": [], "at_risk": [], "recovered": [], "errors": []}

        result = await self.db.execute(
            select(ProgramAccount.id).where(
                ProgramAccount.tenant_id == self.tenant_id,
                ProgramAccount.status.in_(("active", "at_risk"))
            ).order_by(ProgramAccount.enrolled_at)
        )
        record_ids = [row[0] for row in result.all()]

        for record_id in record_ids:
            try:
                record = await self.get_record(record_id)
                change = await self._evaluate_record(record, now)
                await self.db.commit()
                if change:
                    outcome[change].append(str(record_id))
            except Exception as e:
                await self.db.rollback()
                logger.error(f"Lifecycle evaluation failed for program account {record_id}: {e}")
                outcome["errors"].append({"program_account_id": str(record_id), "error": str(e)})

        logger.info(
            f"Tenant {self.tenant_id} lifecycle: {len(outcome['graduated'])} graduated, "
            f"{len(outcome['at_risk'])} at risk, {len(outcome['recovered'])} recovered"
        )
        return outcome

    async def _evaluate_record(self, record: ProgramAccount, now: datetime) -> Optional[str]:
        if record.status == "active":
            progress = await self._progress(record, now)
            if progress["is_ready_to_graduate"]:
                await self._graduate(record, progress, now)
                return "graduated"

            if await self._should_flag_at_risk(record):
                self._set_status(record, "at_risk", now)
                await self.activity.log_at_risk(
                    record, self.config.at_risk_consecutive_periods, self.config.at_risk_decline_pct
                )
                account = await self._get_account(record.account_id)
                await queue_crm_event(
                    self.db, self.tenant_id, account.id, "at_risk",
                    build_payload(
                        "at_risk", account, record,
                        risk_signals=[
                            f"revenue below baseline by more than {self.config.at_risk_decline_pct}% "
                            f"for {self.config.at_risk_consecutive_periods} periods"
                        ]
                    )
                )
                return "at_risk"

        elif record.status == "at_risk":
            if await self._has_recovered(record):
                self._set_status(record, "active", now)
                await self.activity.log_recovery(record)
                return "recovered"

        return None
