"""Read access to instruction profiles and profile targets."""

from typing import List, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from models.instruction_profile import InstructionProfile, ProfileTarget


class ProfileStore:
    """Tenant-scoped profile reads. Each call uses its own short-lived session."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def list_targets(self, tenant_id: str) -> List[ProfileTarget]:
        """All profile targets for a tenant, oldest first."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(ProfileTarget).where(ProfileTarget.tenant_id == tenant_id).order_by(ProfileTarget.id)
            )
            return list(result.scalars().all())

    async def get_profile(self, tenant_id: str, profile_id: UUID) -> Optional[InstructionProfile]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(InstructionProfile).where(
                    InstructionProfile.tenant_id == tenant_id,
                    InstructionProfile.id == profile_id,
                )
            )
            return result.scalar_one_or_none()

    async def list_active_profiles(self, tenant_id: str) -> List[InstructionProfile]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(InstructionProfile).where(
                    InstructionProfile.tenant_id == tenant_id,
                    InstructionProfile.is_active.is_(True),
                )
            )
            return list(result.scalars().all())
