"""
Category taxonomy and segment profile store.

Writes here take effect on the next recompute; persisted metrics are
never rewritten retroactively.
"""
from typing import Any, Dict, List, Optional, Sequence
from uuid import UUID
import logging

from sqlalchemy import select, delete, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from wallet_share.errors import (
    CategoryInUseError, InvalidTransitionError, NotFoundError, ProfileValidationError
)
from wallet_share.models import (
    ProductCategory, Product, ProfileCategory, ProfileReviewLog, SegmentProfile
)
from wallet_share.schemas.profile import (
    ProfileCategoryIn, SegmentProfileCreate, SegmentProfileUpdate
)
from wallet_share.utils.dates import utcnow

logger = logging.getLogger(__name__)


class ProfileStore:
    """CRUD for categories and segment profiles, scoped to one tenant."""

    def __init__(self, db: AsyncSession, tenant_id: UUID):
        self.db = db
        self.tenant_id = tenant_id

    # ========================================================================
    # CATEGORIES
    # ========================================================================

    async def list_categories(self) -> List[ProductCategory]:
        result = await self.db.execute(
            select(ProductCategory)
            .where(ProductCategory.tenant_id == self.tenant_id)
            .order_by(ProductCategory.name)
        )
        return list(result.scalars().all())

    async def get_category(self, category_id: UUID) -> ProductCategory:
        result = await self.db.execute(
            select(ProductCategory).where(
                ProductCategory.tenant_id == self.tenant_id,
                ProductCategory.id == category_id
            )
        )
        category = result.scalar_one_or_none()
        if not category:
            raise NotFoundError(f"Category {category_id} not found")
        return category

    async def create_category(self, name: str, parent_id: Optional[UUID] = None) -> ProductCategory:
        if parent_id is not None:
            await self.get_category(parent_id)

        await self._ensure_unique_name(name)

        category = ProductCategory(tenant_id=self.tenant_id, name=name.strip(), parent_id=parent_id)
        self.db.add(category)
        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            raise ProfileValidationError(f"Category '{name}' already exists", {"name": name})

        logger.info(f"Created category '{category.name}' for tenant {self.tenant_id}")
        return category

    async def rename_category(self, category_id: UUID, name: str) -> ProductCategory:
        """Rename a category that nothing references yet."""
        category = await self.get_category(category_id)

        if await self._category_in_use(category.id):
            raise CategoryInUseError(
                f"Category '{category.name}' is referenced and cannot be changed",
                {"category_id": str(category.id)}
            )

        if name.strip() != category.name:
            await self._ensure_unique_name(name)

        category.name = name.strip()
        await self.db.commit()
        return category

    async def _ensure_unique_name(self, name: str):
        result = await self.db.execute(
            select(ProductCategory.id).where(
                ProductCategory.tenant_id == self.tenant_id,
                ProductCategory.name == name.strip()
            )
        )
        if result.first() is not None:
            raise ProfileValidationError(f"Category '{name}' already exists", {"name": name})

    async def _category_in_use(self, category_id: UUID) -> bool:
        profile_refs = await self.db.execute(
            select(func.count(ProfileCategory.id)).where(
                ProfileCategory.tenant_id == self.tenant_id,
                ProfileCategory.category_id == category_id
            )
        )
        product_refs = await self.db.execute(
            select(func.count(Product.id)).where(
                Product.tenant_id == self.tenant_id,
                Product.category_id == category_id
            )
        )
        return (profile_refs.scalar() or 0) > 0 or (product_refs.scalar() or 0) > 0

    # ========================================================================
    # PROFILES
    # ========================================================================

    async def list_profiles(self, segment: Optional[str] = None) -> List[SegmentProfile]:
        stmt = select(SegmentProfile).where(SegmentProfile.tenant_id == self.tenant_id)
        if segment:
            stmt = stmt.where(SegmentProfile.segment == segment)
        result = await self.db.execute(stmt.order_by(SegmentProfile.segment, SegmentProfile.created_at))
        return list(result.scalars().all())

    async def get_profile(self, profile_id: UUID) -> SegmentProfile:
        result = await self.db.execute(
            select(SegmentProfile).where(
                SegmentProfile.tenant_id == self.tenant_id,
                SegmentProfile.id == profile_id
            )
        )
        profile = result.scalar_one_or_none()
        if not profile:
            raise NotFoundError(f"Segment profile {profile_id} not found")
        return profile

    async def get_profile_categories(self, profile_id: UUID) -> List[ProfileCategory]:
        result = await self.db.execute(
            select(ProfileCategory).where(
                ProfileCategory.tenant_id == self.tenant_id,
                ProfileCategory.profile_id == profile_id
            ).order_by(ProfileCategory.display_order)
        )
        return list(result.scalars().all())

    async def get_profile_detail(self, profile_id: UUID) -> Dict[str, Any]:
        profile = await self.get_profile(profile_id)
        categories = await self.get_profile_categories(profile.id)
        return profile.to_dict(categories)

    async def create_profile(self, data: SegmentProfileCreate, reviewer: str) -> SegmentProfile:
        """Create a draft profile with its category rows."""
        await self._validate_categories(data.categories)

        profile = SegmentProfile(
            tenant_id=self.tenant_id,
            segment=data.segment,
            name=data.name,
            description=data.description,
            min_annual_revenue=data.min_annual_revenue,
            status="draft",
        )
        self.db.add(profile)

        try:
            await self.db.flush()
            self._add_categories(profile.id, data.categories)
            self._log_review(profile.id, reviewer, "created")
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(f"Created segment profile '{profile.name}' ({profile.segment}) by {reviewer}")
        return profile

    async def update_profile(
        self,
        profile_id: UUID,
        data: SegmentProfileUpdate,
        reviewer: str
    ) -> SegmentProfile:
        """
        Adjust a profile. Supplying ``categories`` replaces every category row.
        """
        profile = await self.get_profile(profile_id)

        if data.categories is not None:
            await self._validate_categories(data.categories)

        try:
            for field in ("name", "description", "min_annual_revenue"):
                if field in data.model_fields_set:
                    setattr(profile, field, getattr(data, field))

            if data.categories is not None:
                await self.db.execute(
                    delete(ProfileCategory).where(
                        ProfileCategory.tenant_id == self.tenant_id,
                        ProfileCategory.profile_id == profile.id
                    )
                )
                self._add_categories(profile.id, data.categories)

            profile.updated_at = utcnow()
            self._log_review(profile.id, reviewer, "adjusted", data.notes)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        return profile

    async def approve_profile(self, profile_id: UUID, reviewer: str, notes: Optional[str] = None) -> SegmentProfile:
        """Transition draft -> approved."""
        profile = await self.get_profile(profile_id)
        if profile.status != "draft":
            raise InvalidTransitionError(
                f"Profile {profile_id} is already {profile.status}",
                {"status": profile.status}
            )

        now = utcnow()
        profile.status = "approved"
        profile.approved_by = reviewer
        profile.approved_at = now
        profile.updated_at = now
        self._log_review(profile.id, reviewer, "approved", notes)
        await self.db.commit()

        logger.info(f"Segment profile {profile_id} approved by {reviewer}")
        return profile

    async def delete_profile(self, profile_id: UUID):
        """Delete a profile and its category rows."""
        profile = await self.get_profile(profile_id)
        try:
            await self.db.execute(
                delete(ProfileCategory).where(
                    ProfileCategory.tenant_id == self.tenant_id,
                    ProfileCategory.profile_id == profile.id
                )
            )
            await self.db.execute(
                delete(ProfileReviewLog).where(
                    ProfileReviewLog.tenant_id == self.tenant_id,
                    ProfileReviewLog.profile_id == profile.id
                )
            )
            await self.db.delete(profile)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(f"Deleted segment profile {profile_id}")

    async def get_review_log(self, profile_id: UUID) -> List[ProfileReviewLog]:
        await self.get_profile(profile_id)
        result = await self.db.execute(
            select(ProfileReviewLog).where(
                ProfileReviewLog.tenant_id == self.tenant_id,
                ProfileReviewLog.profile_id == profile_id
            ).order_by(ProfileReviewLog.created_at)
        )
        return list(result.scalars().all())

    # ========================================================================
    # HELPERS
    # ========================================================================

    async def _validate_categories(self, categories: Sequence[ProfileCategoryIn]):
        seen = set()
        for row in categories:
            if row.category_id in seen:
                raise ProfileValidationError(
                    "A category may appear only once per profile",
                    {"category_id": str(row.category_id)}
                )
            seen.add(row.category_id)

        if not seen:
            return

        result = await self.db.execute(
            select(ProductCategory.id).where(
                ProductCategory.tenant_id == self.tenant_id,
                ProductCategory.id.in_(seen)
            )
        )
        known = {row[0] for row in result.all()}
        unknown = seen - known
        if unknown:
            raise ProfileValidationError(
                "Unknown categories in profile",
                {"category_ids": sorted(str(c) for c in unknown)}
            )

    def _add_categories(self, profile_id: UUID, categories: Sequence[ProfileCategoryIn]):
        for order, row in enumerate(categories):
            self.db.add(ProfileCategory(
                tenant_id=self.tenant_id,
                profile_id=profile_id,
                category_id=row.category_id,
                expected_pct=row.expected_pct,
                importance=row.importance,
                is_required=row.is_required,
                notes=row.notes,
                display_order=order,
            ))

    def _log_review(self, profile_id: UUID, reviewer: str, action: str, notes: Optional[str] = None):
        self.db.add(ProfileReviewLog(
            tenant_id=self.tenant_id,
            profile_id=profile_id,
            reviewer=reviewer,
            action=action,
            notes=notes,
        ))
