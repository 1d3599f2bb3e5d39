"""APScheduler configuration for the recurring engine jobs."""

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional
from uuid import UUID
import asyncio
import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from wallet_share.config import settings
from wallet_share.database import AsyncSessionLocal
from wallet_share.models import Tenant
from wallet_share.scoring_engine.core import OpportunityCalculator
from wallet_share.services.crm_sync import process_crm_sync_queue
from wallet_share.services.lifecycle import ProgramLifecycleManager
from wallet_share.services.similarity import SimilarityService
from wallet_share.services.snapshots import SnapshotGenerator
from wallet_share.services.tenant_config import load_engine_config
from wallet_share.utils.dates import previous_month, utcnow

logger = logging.getLogger(__name__)

# Create scheduler instance
scheduler = AsyncIOScheduler(timezone=settings.SCHEDULER_TIMEZONE)

JobHandler = Callable[[AsyncSession, UUID], Awaitable[Any]]


@dataclass(frozen=True)
class JobSpec:
    id: str
    name: str
    trigger: Dict[str, Any]  # CronTrigger fields
    handler: JobHandler
    timeout: float


# ============================================================================
# JOB HANDLERS (one tenant per call)
# ============================================================================

async def recompute_accounts_job(db: AsyncSession, tenant_id: UUID):
    config = await load_engine_config(db, tenant_id)
    return await OpportunityCalculator(db, tenant_id, config).recompute_all()


async def generate_snapshots_job(db: AsyncSession, tenant_id: UUID):
    """Snapshot the calendar month that just ended."""
    period_start, period_end = previous_month(utcnow())
    outcome = await SnapshotGenerator(db, tenant_id).generate(period_start, period_end)
    return {
        "created": outcome["created"],
        "skipped": outcome["skipped"],
        "errors": outcome["errors"],
    }


async def evaluate_lifecycle_job(db: AsyncSession, tenant_id: UUID):
    config = await load_engine_config(db, tenant_id)
    return await ProgramLifecycleManager(db, tenant_id, config).evaluate_lifecycle()


async def refresh_similarity_job(db: AsyncSession, tenant_id: UUID):
    config = await load_engine_config(db, tenant_id)
    return await SimilarityService(db, tenant_id, config).refresh()


async def crm_sync_retry_job(db: AsyncSession, tenant_id: UUID):
    config = await load_engine_config(db, tenant_id)
    return await process_crm_sync_queue(db, tenant_id, config)


JOB_REGISTRY: List[JobSpec] = [
    JobSpec(
        id="recompute-accounts",
        name="Recompute Account Metrics",
        trigger={"hour": 1, "minute": 0},
        handler=recompute_accounts_job,
        timeout=settings.JOB_TIMEOUT_SECONDS,
    ),
    JobSpec(
        id="generate-snapshots",
        name="Generate Revenue Snapshots",
        trigger={"day": 1, "hour": 2, "minute": 0},
        handler=generate_snapshots_job,
        timeout=settings.JOB_TIMEOUT_SECONDS,
    ),
    JobSpec(
        id="evaluate-lifecycle",
        name="Evaluate Program Lifecycle",
        trigger={"hour": 3, "minute": 0},
        handler=evaluate_lifecycle_job,
        timeout=settings.JOB_TIMEOUT_SECONDS,
    ),
    JobSpec(
        id="refresh-similarity",
        name="Refresh Similar Accounts",
        trigger={"day_of_week": "sun", "hour": 3, "minute": 0},
        handler=refresh_similarity_job,
        timeout=settings.JOB_TIMEOUT_SECONDS,
    ),
    JobSpec(
        id="crm-sync-retry",
        name="CRM Sync Retry",
        trigger={"hour": "*/4", "minute": 0},
        handler=crm_sync_retry_job,
        timeout=settings.JOB_TIMEOUT_SECONDS,
    ),
]


# ============================================================================
# RUNNER
# ============================================================================

async def run_job(spec: JobSpec, session_factory=None) -> Dict[str, Any]:
    """
    Run one job for every active tenant.

    Each tenant gets its own session and its own timeout budget. A failure
    or timeout is logged with the job label and tenant and never stops the
    remaining tenants; this function does not raise.
    """
    session_factory = session_factory or AsyncSessionLocal
    summary: Dict[str, Any] = {"job": spec.id, "succeeded": 0, "failed": 0, "results": {}}

    try:
        async with session_factory() as db:
            result = await db.execute(
                select(Tenant.id).where(Tenant.status.in_(("active", "trial")))
            )
            tenant_ids = [row[0] for row in result.all()]
    except Exception as e:
        logger.error(f"[{spec.id}] Could not list tenants: {e}")
        return summary

    for tenant_id in tenant_ids:
        try:
            async with session_factory() as db:
                outcome = await asyncio.wait_for(spec.handler(db, tenant_id), timeout=spec.timeout)
            summary["succeeded"] += 1
            summary["results"][str(tenant_id)] = {"status": "ok", "result": outcome}
            logger.info(f"[{spec.id}] tenant {tenant_id}: {outcome}")
        except asyncio.TimeoutError:
            summary["failed"] += 1
            summary["results"][str(tenant_id)] = {"status": "timeout"}
            logger.error(f"[{spec.id}] tenant {tenant_id}: timed out after {spec.timeout}s")
        except Exception as e:
            summary["failed"] += 1
            summary["results"][str(tenant_id)] = {"status": "error", "error": str(e)}
            logger.error(f"[{spec.id}] tenant {tenant_id}: {e}")

    return summary


def get_job(job_id: str) -> Optional[JobSpec]:
    return next((spec for spec in JOB_REGISTRY if spec.id == job_id), None)


def start_scheduler(registry: Optional[List[JobSpec]] = None):
    """
    Initialize and start the APScheduler with every registered job.

    Jobs are independent: each has its own trigger and runs even if
    another job failed or is still running.
    """
    if scheduler.running:
        logger.info("Scheduler already running")
        return

    for spec in (registry if registry is not None else JOB_REGISTRY):
        scheduler.add_job(
            run_job,
            trigger=CronTrigger(timezone=settings.SCHEDULER_TIMEZONE, **spec.trigger),
            args=[spec],
            id=spec.id,
            name=spec.name,
            replace_existing=True,
            max_instances=1,
            coalesce=True
        )
        logger.info(f"Scheduled: {spec.name} ({spec.trigger})")

    scheduler.start()
    logger.info("APScheduler started")

    for job in scheduler.get_jobs():
        logger.info(f"   • {job.name}: Next run at {job.next_run_time}")


def stop_scheduler():
    """Stop the scheduler gracefully."""
    if scheduler.running:
        scheduler.shutdown()
        logger.info("Scheduler stopped")
