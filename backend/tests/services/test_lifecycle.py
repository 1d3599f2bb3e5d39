# tests/services/test_lifecycle.py
"""
Tests for ProgramLifecycleManager.

Coverage:
- Enrollment and baseline capture
- One live enrollment per account
- Graduation on "any" / "all" objectives
- Frozen graduated records
- At-risk detection and recovery
- Manual pause / resume / graduate

Run with: pytest tests/services/test_lifecycle.py -v
"""

import pytest
import pytest_asyncio
from datetime import datetime, timedelta
from uuid import uuid4

from sqlalchemy import select, func

from wallet_share.errors import (
    AlreadyEnrolledError, GraduatedRecordError, InvalidTransitionError, NotFoundError
)
from wallet_share.models import CrmSyncEvent, ProgramAccount, ProgramActivity
from wallet_share.schemas.program import EnrollmentTargets
from wallet_share.schemas.settings import EngineConfig
from wallet_share.scoring_engine.core import OpportunityCalculator
from wallet_share.services.lifecycle import ProgramLifecycleManager
from wallet_share.services.snapshots import SnapshotGenerator


ENROLLED_AT = datetime(2025, 1, 1)

# 30-day share of a $100,000 baseline is $8,219.18; this leaves $15,500 incremental
STRONG_PERIOD = 23719.18
WEAK_PERIOD = 1000.0


def day(n: int) -> datetime:
    return ENROLLED_AT + timedelta(days=n)


@pytest_asyncio.fixture
async def program(factory):
    """Account with $100,000 of orders in the 12 months before enrollment"""
    tenant = await factory.tenant()
    category = await factory.category(tenant, "HVAC Equipment")
    product = await factory.product(tenant, category)
    account = await factory.account(tenant)
    for days_before in (300, 200, 100, 10):
        await factory.order(tenant, account, ENROLLED_AT - timedelta(days=days_before), [(product, 25000.0)])
    # Outside the baseline window
    await factory.order(tenant, account, ENROLLED_AT - timedelta(days=400), [(product, 99999.0)])
    return {"tenant": tenant, "account": account, "product": product}


async def _period_orders(factory, program, amounts):
    """One order inside each consecutive 30-day period after enrollment"""
    for index, amount in enumerate(amounts):
        await factory.order(program["tenant"], program["account"], day(30 * index + 5), [(program["product"], amount)])


async def _snapshot_periods(db, tenant_id, periods: int):
    generator = SnapshotGenerator(db, tenant_id)
    for index in range(periods):
        await generator.generate(day(30 * index), day(30 * (index + 1)))


async def _count(db, model, *criteria):
    result = await db.execute(select(func.count(model.id)).where(*criteria))
    return result.scalar()


# ============================================================================
# TEST: Enrollment
# ============================================================================

class TestEnrollment:

    @pytest.mark.asyncio
    async def test_enroll_captures_baseline(self, db, program):
        manager = ProgramLifecycleManager(db, program["tenant"].id)
        record = await manager.enroll(
            program["account"].id, "ops@marksupply.example",
            EnrollmentTargets(target_incremental_revenue=30000), now=ENROLLED_AT
        )

        assert record.status == "active"
        assert float(record.baseline_revenue) == 100000.0
        assert record.baseline_start == ENROLLED_AT - timedelta(days=365)
        assert record.baseline_end == ENROLLED_AT
        assert record.enrolled_by == "ops@marksupply.example"
        assert float(record.share_rate) == 15.0
        assert record.graduation_criteria == "any"

        assert await _count(db, ProgramActivity, ProgramActivity.to_status == "active") == 1
        assert await _count(db, CrmSyncEvent, CrmSyncEvent.event_type == "enrolled") == 1

    @pytest.mark.asyncio
    async def test_already_enrolled_creates_no_record(self, db, program):
        manager = ProgramLifecycleManager(db, program["tenant"].id)
        account_id = program["account"].id
        await manager.enroll(account_id, "ops", EnrollmentTargets(), now=ENROLLED_AT)

        with pytest.raises(AlreadyEnrolledError) as exc_info:
            await manager.enroll(account_id, "ops", EnrollmentTargets(), now=ENROLLED_AT)

        assert exc_info.value.code == "ALREADY_ENROLLED"
        assert await _count(db, ProgramAccount, ProgramAccount.account_id == account_id) == 1

    @pytest.mark.asyncio
    async def test_paused_record_blocks_enrollment(self, db, program):
        manager = ProgramLifecycleManager(db, program["tenant"].id)
        record = await manager.enroll(program["account"].id, "ops", EnrollmentTargets(), now=ENROLLED_AT)
        await manager.pause(record.id, "ops")

        with pytest.raises(AlreadyEnrolledError):
            await manager.enroll(program["account"].id, "ops", EnrollmentTargets(), now=ENROLLED_AT)

    @pytest.mark.asyncio
    async def test_enroll_promotes_candidate(self, db, program):
        manager = ProgramLifecycleManager(db, program["tenant"].id)
        candidate = await manager.nominate(program["account"].id, "ops", notes="big water heater gap")
        assert candidate.status == "candidate"

        record = await manager.enroll(program["account"].id, "ops", EnrollmentTargets(), now=ENROLLED_AT)

        assert record.id == candidate.id
        assert record.status == "active"
        result = await db.execute(
            select(ProgramActivity).where(ProgramActivity.to_status == "active")
        )
        assert result.scalar_one().from_status == "candidate"

    @pytest.mark.asyncio
    async def test_double_nomination_rejected(self, db, program):
        manager = ProgramLifecycleManager(db, program["tenant"].id)
        await manager.nominate(program["account"].id, "ops")

        with pytest.raises(InvalidTransitionError):
            await manager.nominate(program["account"].id, "ops")

    @pytest.mark.asyncio
    async def test_enroll_unknown_account(self, db, program):
        manager = ProgramLifecycleManager(db, program["tenant"].id)

        with pytest.raises(NotFoundError):
            await manager.enroll(uuid4(), "ops", EnrollmentTargets(), now=ENROLLED_AT)

    @pytest.mark.asyncio
    async def test_enrollment_records_gapped_categories(self, db, factory, hvac_catalog, as_of):
        tenant = hvac_catalog["tenant"]
        account = await factory.account(tenant)
        await factory.order(tenant, account, as_of - timedelta(days=30), [
            (hvac_catalog["equipment_product"], 196000.0),
            (hvac_catalog["water_heater_product"], 4000.0),
        ])
        await OpportunityCalculator(db, tenant.id).recompute_account(account.id, as_of=as_of)

        record = await ProgramLifecycleManager(db, tenant.id).enroll(
            account.id, "ops", EnrollmentTargets(), now=as_of
        )

        assert record.baseline_categories == [str(hvac_catalog["water_heaters"].id)]
        assert record.icp_categories_at_enrollment == 1


# ============================================================================
# TEST: Graduation
# ============================================================================

class TestGraduation:

    @pytest.mark.asyncio
    async def test_graduates_on_incremental_revenue_alone(self, db, factory, program):
        """$31,000 incremental after 60 days beats a $30,000 target; 3-month duration not yet met"""
        manager = ProgramLifecycleManager(db, program["tenant"].id)
        record = await manager.enroll(
            program["account"].id, "ops",
            EnrollmentTargets(
                target_incremental_revenue=30000,
                target_duration_months=3,
                graduation_criteria="any",
            ),
            now=ENROLLED_AT
        )
        record_id = record.id
        await _period_orders(factory, program, [STRONG_PERIOD, STRONG_PERIOD])
        await _snapshot_periods(db, program["tenant"].id, 2)

        progress = await manager.graduation_progress(record_id, now=day(60))
        assert progress["objectives"]["incremental_revenue"]["current"] == 31000.0
        assert progress["objectives"]["incremental_revenue"]["is_met"] is True
        assert progress["objectives"]["duration"]["is_met"] is False
        assert progress["is_ready_to_graduate"] is True

        outcome = await manager.evaluate_lifecycle(now=day(60))

        assert outcome["graduated"] == [str(record_id)]
        graduated = await manager.get_record(record_id)
        assert graduated.status == "graduated"
        assert graduated.graduated_at == day(60)
        assert graduated.enrollment_duration_days == 60
        assert float(graduated.incremental_revenue) == 31000.0
        assert float(graduated.graduation_revenue) == round(2 * STRONG_PERIOD, 2)

        activity = await db.execute(
            select(ProgramActivity).where(ProgramActivity.to_status == "graduated")
        )
        assert activity.scalar_one().reason == "graduated_auto"

    @pytest.mark.asyncio
    async def test_all_criteria_waits_for_every_target(self, db, factory, program):
        manager = ProgramLifecycleManager(db, program["tenant"].id)
        record = await manager.enroll(
            program["account"].id, "ops",
            EnrollmentTargets(
                target_incremental_revenue=30000,
                target_duration_months=3,
                graduation_criteria="all",
            ),
            now=ENROLLED_AT
        )
        await _period_orders(factory, program, [STRONG_PERIOD, STRONG_PERIOD, STRONG_PERIOD])
        await _snapshot_periods(db, program["tenant"].id, 3)

        early = await manager.evaluate_lifecycle(now=day(60))
        assert early["graduated"] == []
        assert record.status == "active"

        later = await manager.evaluate_lifecycle(now=day(90))
        assert later["graduated"] == [str(record.id)]

    @pytest.mark.asyncio
    async def test_no_targets_never_graduates(self, db, factory, program):
        manager = ProgramLifecycleManager(db, program["tenant"].id)
        record = await manager.enroll(program["account"].id, "ops", EnrollmentTargets(), now=ENROLLED_AT)
        await _period_orders(factory, program, [STRONG_PERIOD, STRONG_PERIOD])
        await _snapshot_periods(db, program["tenant"].id, 2)

        outcome = await manager.evaluate_lifecycle(now=day(400))

        assert outcome["graduated"] == []
        assert record.status == "active"

    @pytest.mark.asyncio
    async def test_graduated_record_is_frozen(self, db, factory, program):
        manager = ProgramLifecycleManager(db, program["tenant"].id)
        record = await manager.enroll(
            program["account"].id, "ops",
            EnrollmentTargets(target_incremental_revenue=30000),
            now=ENROLLED_AT
        )
        await _period_orders(factory, program, [STRONG_PERIOD, STRONG_PERIOD])
        await _snapshot_periods(db, program["tenant"].id, 2)
        await manager.evaluate_lifecycle(now=day(60))
        frozen = record.to_dict()

        # More revenue, another snapshot run, a recompute and a re-evaluation
        await _period_orders(factory, program, [0, 0, 80000.0])
        await _snapshot_periods(db, program["tenant"].id, 3)
        await OpportunityCalculator(db, program["tenant"].id).recompute_account(program["account"].id, as_of=day(90))
        outcome = await manager.evaluate_lifecycle(now=day(90))

        assert outcome["graduated"] == []
        assert (await manager.get_record(record.id)).to_dict() == frozen

        with pytest.raises(GraduatedRecordError):
            await manager.pause(record.id, "ops")

    @pytest.mark.asyncio
    async def test_reenrollment_creates_new_record(self, db, factory, program):
        manager = ProgramLifecycleManager(db, program["tenant"].id)
        first = await manager.enroll(program["account"].id, "ops", EnrollmentTargets(), now=ENROLLED_AT)
        await manager.graduate(first.id, "ops", notes="hit the mix target", now=day(45))

        second = await manager.enroll(program["account"].id, "ops", EnrollmentTargets(), now=day(50))

        assert second.id != first.id
        assert first.status == "graduated"
        assert second.status == "active"

    @pytest.mark.asyncio
    async def test_manual_graduation(self, db, program):
        manager = ProgramLifecycleManager(db, program["tenant"].id)
        record = await manager.enroll(program["account"].id, "ops", EnrollmentTargets(), now=ENROLLED_AT)

        graduated = await manager.graduate(record.id, "lead@marksupply.example", notes="strategic", now=day(20))

        assert graduated.status == "graduated"
        assert graduated.graduation_notes == "strategic"
        assert graduated.enrollment_duration_days == 20
        assert float(graduated.incremental_revenue) == 0.0
        assert await _count(db, CrmSyncEvent, CrmSyncEvent.event_type == "graduated") == 1

        activity = await db.execute(
            select(ProgramActivity).where(ProgramActivity.to_status == "graduated")
        )
        entry = activity.scalar_one()
        assert entry.reason == "graduated_manual"
        assert entry.actor == "lead@marksupply.example"


# ============================================================================
# TEST: At-risk
# ============================================================================

class TestAtRisk:

    TARGETS = EnrollmentTargets(target_incremental_revenue=50000, target_duration_months=12)

    @pytest.mark.asyncio
    async def test_two_declining_periods_flag_at_risk(self, db, factory, program):
        manager = ProgramLifecycleManager(db, program["tenant"].id)
        record = await manager.enroll(program["account"].id, "ops", self.TARGETS, now=ENROLLED_AT)
        await _period_orders(factory, program, [WEAK_PERIOD, WEAK_PERIOD])
        await _snapshot_periods(db, program["tenant"].id, 2)

        outcome = await manager.evaluate_lifecycle(now=day(60))

        assert outcome["at_risk"] == [str(record.id)]
        assert record.status == "at_risk"
        assert await _count(db, CrmSyncEvent, CrmSyncEvent.event_type == "at_risk") == 1

    @pytest.mark.asyncio
    async def test_single_declining_period_is_not_enough(self, db, factory, program):
        manager = ProgramLifecycleManager(db, program["tenant"].id)
        record = await manager.enroll(program["account"].id, "ops", self.TARGETS, now=ENROLLED_AT)
        await _period_orders(factory, program, [STRONG_PERIOD, WEAK_PERIOD])
        await _snapshot_periods(db, program["tenant"].id, 2)

        outcome = await manager.evaluate_lifecycle(now=day(60))

        assert outcome["at_risk"] == []
        assert record.status == "active"

    @pytest.mark.asyncio
    async def test_thresholds_are_configurable(self, db, factory, program):
        config = EngineConfig(at_risk_consecutive_periods=1)
        manager = ProgramLifecycleManager(db, program["tenant"].id, config)
        record = await manager.enroll(program["account"].id, "ops", self.TARGETS, now=ENROLLED_AT)
        await _period_orders(factory, program, [WEAK_PERIOD])
        await _snapshot_periods(db, program["tenant"].id, 1)

        outcome = await manager.evaluate_lifecycle(now=day(30))

        assert outcome["at_risk"] == [str(record.id)]

    @pytest.mark.asyncio
    async def test_recovery_returns_to_active(self, db, factory, program):
        manager = ProgramLifecycleManager(db, program["tenant"].id)
        record = await manager.enroll(program["account"].id, "ops", self.TARGETS, now=ENROLLED_AT)
        await _period_orders(factory, program, [WEAK_PERIOD, WEAK_PERIOD, 10000.0])
        await _snapshot_periods(db, program["tenant"].id, 2)
        await manager.evaluate_lifecycle(now=day(60))
        assert record.status == "at_risk"

        await SnapshotGenerator(db, program["tenant"].id).generate(day(60), day(90))
        outcome = await manager.evaluate_lifecycle(now=day(90))

        assert outcome["recovered"] == [str(record.id)]
        assert record.status == "active"

        reasons = await db.execute(
            select(ProgramActivity.reason).order_by(ProgramActivity.timestamp)
        )
        assert [r[0] for r in reasons.all()] == ["enrolled", "revenue_decline", "revenue_recovered"]


# ============================================================================
# TEST: Manual transitions
# ============================================================================

class TestManualTransitions:

    @pytest.mark.asyncio
    async def test_pause_and_resume(self, db, program):
        manager = ProgramLifecycleManager(db, program["tenant"].id)
        record = await manager.enroll(program["account"].id, "ops", EnrollmentTargets(), now=ENROLLED_AT)

        paused = await manager.pause(record.id, "ops", notes="customer requested hold")
        assert paused.status == "paused"

        resumed = await manager.resume(record.id, "ops")
        assert resumed.status == "active"

    @pytest.mark.asyncio
    async def test_resume_active_record_rejected(self, db, program):
        manager = ProgramLifecycleManager(db, program["tenant"].id)
        record = await manager.enroll(program["account"].id, "ops", EnrollmentTargets(), now=ENROLLED_AT)

        with pytest.raises(InvalidTransitionError):
            await manager.resume(record.id, "ops")

    @pytest.mark.asyncio
    async def test_at_risk_cannot_be_resumed_manually(self, db, program):
        manager = ProgramLifecycleManager(db, program["tenant"].id)
        record = await manager.enroll(program["account"].id, "ops", EnrollmentTargets(), now=ENROLLED_AT)
        record.status = "at_risk"
        await db.commit()

        with pytest.raises(InvalidTransitionError):
            await manager.resume(record.id, "ops")

    @pytest.mark.asyncio
    async def test_paused_record_cannot_graduate(self, db, program):
        manager = ProgramLifecycleManager(db, program["tenant"].id)
        record = await manager.enroll(program["account"].id, "ops", EnrollmentTargets(), now=ENROLLED_AT)
        await manager.pause(record.id, "ops")

        with pytest.raises(InvalidTransitionError):
            await manager.graduate(record.id, "ops")

    @pytest.mark.asyncio
    async def test_paused_records_skip_evaluation(self, db, factory, program):
        manager = ProgramLifecycleManager(db, program["tenant"].id)
        record = await manager.enroll(
            program["account"].id, "ops",
            EnrollmentTargets(target_duration_months=1),
            now=ENROLLED_AT
        )
        await manager.pause(record.id, "ops")

        outcome = await manager.evaluate_lifecycle(now=day(120))

        assert outcome == {"graduated": [], "at_risk": [], "recovered": [], "errors": []}
        assert record.status == "paused"
