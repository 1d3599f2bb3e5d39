"""
Profile matcher for determining which segment profile applies to an account.

Matching is by segment equality against approved profiles only. When a
segment has several approved profiles the most recently approved wins.
"""
from typing import Dict, List, Optional, Tuple
from uuid import UUID
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
import logging

from wallet_share.models import SegmentProfile, ProfileCategory


logger = logging.getLogger(__name__)


class ProfileMatcher:
    """
    Resolve the approved segment profile for an account.

    Profiles are loaded once per matcher and cached by segment, so a batch
    recompute issues one query per segment instead of one per account.
    """

    def __init__(self, db: AsyncSession, tenant_id: UUID):
        """
        Initialize profile matcher.

        Args:
            db: Database session
            tenant_id: Tenant whose profiles are considered
        """
        self.db = db
        self.tenant_id = tenant_id
        self._cache: Dict[str, Optional[Tuple[SegmentProfile, List[ProfileCategory]]]] = {}

    async def find_profile(
        self,
        segment: Optional[str]
    ) -> Optional[Tuple[SegmentProfile, List[ProfileCategory]]]:
        """
        Find the approved profile for a segment.

        Args:
            segment: Account segment

        Returns:
            (profile, categories) or None when no approved profile exists
        """
        if not segment:
            return None

        if segment in self._cache:
            return self._cache[segment]

        stmt = select(SegmentProfile).where(
            SegmentProfile.tenant_id == self.tenant_id,
            SegmentProfile.segment == segment,
            SegmentProfile.status == "approved"
        ).order_by(
            SegmentProfile.approved_at.desc(),
            SegmentProfile.created_at.desc()
        )
        result = await self.db.execute(stmt)
        profile = result.scalars().first()

        if not profile:
            logger.debug(f"No approved profile for segment '{segment}' in tenant {self.tenant_id}")
            self._cache[segment] = None
            return None

        categories_result = await self.db.execute(
            select(ProfileCategory).where(
                ProfileCategory.tenant_id == self.tenant_id,
                ProfileCategory.profile_id == profile.id
            ).order_by(ProfileCategory.display_order)
        )
        categories = list(categories_result.scalars().all())

        self._cache[segment] = (profile, categories)
        return self._cache[segment]

    def clear(self):
        """Drop cached profiles (they are expired by a session rollback)."""
        self._cache.clear()
