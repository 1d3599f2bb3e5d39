"""
CRM sync: queue lifecycle events and push them to the tenant's webhook.

Events are queued inside the lifecycle transaction and delivered later
by the crm-sync-retry job. A failed delivery stays pending until it has
been attempted CRM_SYNC_MAX_ATTEMPTS times, then becomes ``failed``.
"""
from typing import Any, Dict, Optional
from uuid import UUID
import logging

import httpx
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from wallet_share.config import settings
from wallet_share.models import Account, CrmSyncEvent, ProgramAccount
from wallet_share.schemas.settings import EngineConfig
from wallet_share.utils.dates import utcnow
from wallet_share.utils.retry import with_retry

logger = logging.getLogger(__name__)


def build_payload(event_type: str, account: Account, record: ProgramAccount, **extra) -> Dict[str, Any]:
    payload = {
        "event": event_type,
        "account_id": str(account.id),
        "account_name": account.name,
        "segment": account.segment,
        "assigned_owner": account.assigned_owner,
        "program_account_id": str(record.id),
        "status": record.status,
        "timestamp": utcnow().isoformat(),
    }
    payload.update(extra)
    return payload


async def queue_crm_event(
    db: AsyncSession,
    tenant_id: UUID,
    account_id: UUID,
    event_type: str,
    payload: Dict[str, Any]
) -> CrmSyncEvent:
    """Add a pending event to the session. The caller commits."""
    event = CrmSyncEvent(
        tenant_id=tenant_id,
        account_id=account_id,
        event_type=event_type,
        payload=payload,
        status="pending",
        attempts=0,
    )
    db.add(event)
    await db.flush()
    return event


async def fire_webhook(url: str, secret: Optional[str], payload: Dict[str, Any]):
    """POST one payload; raises on transport errors and non-2xx responses."""
    headers = {
        "Content-Type": "application/json",
        "User-Agent": settings.CRM_USER_AGENT,
    }
    if secret:
        headers["X-Webhook-Secret"] = secret

    async with httpx.AsyncClient(timeout=settings.EXTERNAL_CALL_TIMEOUT_SECONDS) as client:
        response = await client.post(url, json=payload, headers=headers)
        response.raise_for_status()


async def process_crm_sync_queue(
    db: AsyncSession,
    tenant_id: UUID,
    config: EngineConfig
) -> Dict[str, int]:
    """
    Deliver pending events for one tenant.

    Returns:
        {"sent": int, "failed": int, "total": int}
    """
    stats = {"sent": 0, "failed": 0, "total": 0}

    url = config.crm_webhook_url or settings.DEFAULT_CRM_WEBHOOK_URL
    if not url:
        logger.info(f"No CRM webhook configured for tenant {tenant_id}")
        return stats

    result = await db.execute(
        select(CrmSyncEvent).where(
            CrmSyncEvent.tenant_id == tenant_id,
            CrmSyncEvent.status == "pending"
        ).order_by(CrmSyncEvent.created_at)
    )
    pending = list(result.scalars().all())
    stats["total"] = len(pending)

    for event in pending:
        event.attempts = (event.attempts or 0) + 1
        event.last_attempt_at = utcnow()
        try:
            await with_retry(
                lambda: fire_webhook(url, config.crm_webhook_secret, event.payload or {}),
                max_retries=2,
                timeout=settings.EXTERNAL_CALL_TIMEOUT_SECONDS,
            )
            event.status = "sent"
            event.sent_at = utcnow()
            event.error_message = None
            stats["sent"] += 1
            logger.info(f"CRM event {event.event_type} sent for account {event.account_id}")
        except Exception as e:
            if event.attempts >= settings.CRM_SYNC_MAX_ATTEMPTS:
                event.status = "failed"
            event.error_message = str(e) or e.__class__.__name__
            stats["failed"] += 1
            logger.error(f"CRM event {event.id} failed (attempt {event.attempts}): {e}")

        await db.commit()

    return stats
