"""Read-only lookups against the organization / project / user directory."""
from typing import Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from assetvault.lib.errors import ReferenceNotFoundError
from assetvault.models.directory import Organization, Project, User


class DirectoryService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_organization(self, organization_id: UUID) -> Optional[Organization]:
        result = await self.db.execute(
            select(Organization).where(
                Organization.id == organization_id,
                Organization.is_active == True
            )
        )
        return result.scalar_one_or_none()

    async def get_project(self, project_id: UUID) -> Optional[Project]:
        result = await self.db.execute(
            select(Project).where(
                Project.id == project_id,
                Project.is_active == True
            )
        )
        return result.scalar_one_or_none()

    async def get_user(self, user_id: UUID) -> Optional[User]:
        result = await self.db.execute(
            select(User).where(
                User.id == user_id,
                User.is_active == True
            )
        )
        return result.scalar_one_or_none()

    async def ensure_upload_references(
        self,
        organization_id: UUID,
        project_id: UUID,
        user_id: UUID,
    ) -> None:
        """Organization, project and uploader must exist, and the project must belong to the organization."""
        if not await self.get_organization(organization_id):
            raise ReferenceNotFoundError("Organization not found", organization_id=str(organization_id))
        project = await self.get_project(project_id)
        if not project or project.organization_id != organization_id:
            raise ReferenceNotFoundError("Project not found in organization", project_id=str(project_id))
        if not await self.get_user(user_id):
            raise ReferenceNotFoundError("Uploader not found", user_id=str(user_id))
