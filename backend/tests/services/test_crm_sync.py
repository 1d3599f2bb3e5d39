# tests/services/test_crm_sync.py
"""
Tests for CRM event queueing and webhook delivery.

The webhook call is mocked; no network access is needed.

Run with: pytest tests/services/test_crm_sync.py -v
"""

import pytest
from unittest.mock import AsyncMock, patch

from sqlalchemy import select

from wallet_share.config import settings
from wallet_share.models import CrmSyncEvent
from wallet_share.schemas.settings import EngineConfig
from wallet_share.services.crm_sync import process_crm_sync_queue, queue_crm_event


WEBHOOK = "https://crm.marksupply.example/hooks/wallet-share"


@pytest.fixture
def config():
    return EngineConfig(crm_webhook_url=WEBHOOK, crm_webhook_secret="s3cret")


async def queue_enrolled(db, tenant, account):
    event = await queue_crm_event(
        db, tenant.id, account.id, "enrolled",
        {"event": "enrolled", "account_id": str(account.id), "account_name": account.name}
    )
    await db.commit()
    return event


class TestCrmSync:

    @pytest.mark.asyncio
    async def test_pending_event_is_sent(self, db, factory, config):
        tenant = await factory.tenant()
        account = await factory.account(tenant)
        event = await queue_enrolled(db, tenant, account)

        with patch("wallet_share.services.crm_sync.fire_webhook", new=AsyncMock()) as fire:
            stats = await process_crm_sync_queue(db, tenant.id, config)

        assert stats == {"sent": 1, "failed": 0, "total": 1}
        fire.assert_awaited_once_with(WEBHOOK, "s3cret", event.payload)
        assert event.status == "sent"
        assert event.attempts == 1
        assert event.sent_at is not None

    @pytest.mark.asyncio
    async def test_event_fails_after_max_attempts(self, db, factory, config):
        tenant = await factory.tenant()
        account = await factory.account(tenant)
        event = await queue_enrolled(db, tenant, account)
        failing = AsyncMock(side_effect=RuntimeError("CRM rejected payload"))

        with patch("wallet_share.services.crm_sync.fire_webhook", new=failing):
            for attempt in range(1, settings.CRM_SYNC_MAX_ATTEMPTS):
                stats = await process_crm_sync_queue(db, tenant.id, config)
                assert stats["failed"] == 1
                assert event.status == "pending"
                assert event.attempts == attempt

            await process_crm_sync_queue(db, tenant.id, config)
            assert event.status == "failed"
            assert event.error_message == "CRM rejected payload"

            # Failed events are no longer picked up
            assert await process_crm_sync_queue(db, tenant.id, config) == {"sent": 0, "failed": 0, "total": 0}

        assert failing.await_count == settings.CRM_SYNC_MAX_ATTEMPTS

    @pytest.mark.asyncio
    async def test_no_webhook_configured(self, db, factory):
        tenant = await factory.tenant()
        account = await factory.account(tenant)
        await queue_enrolled(db, tenant, account)

        with patch.object(settings, "DEFAULT_CRM_WEBHOOK_URL", None), \
                patch("wallet_share.services.crm_sync.fire_webhook", new=AsyncMock()) as fire:
            stats = await process_crm_sync_queue(db, tenant.id, EngineConfig())

        assert stats == {"sent": 0, "failed": 0, "total": 0}
        fire.assert_not_awaited()
        result = await db.execute(select(CrmSyncEvent.status).where(CrmSyncEvent.tenant_id == tenant.id))
        assert result.scalars().all() == ["pending"]

    @pytest.mark.asyncio
    async def test_only_own_tenant_events(self, db, factory, config):
        tenant = await factory.tenant()
        other = await factory.tenant(name="Other Supply")
        await queue_enrolled(db, other, await factory.account(other))

        with patch("wallet_share.services.crm_sync.fire_webhook", new=AsyncMock()) as fire:
            stats = await process_crm_sync_queue(db, tenant.id, config)

        assert stats["total"] == 0
        fire.assert_not_awaited()
