"""
Asset Record Store

Persists AssetSnapshots onto the asset row and its version/rendition rows.
Every write touches the asset row, so the optimistic row_version check
covers child-row changes too.
"""
from typing import Any, Dict, Iterable, List, Optional, Tuple
from uuid import UUID

from sqlalchemy import and_, func, or_, select, text, update
from sqlalchemy.ext.asyncio import AsyncSession

from assetvault.lib.database import utcnow
from assetvault.models.asset import Asset, AssetRendition, AssetVersion
from assetvault.services.lifecycle import (
    AccessLevel,
    AssetSnapshot,
    AssetStatus,
    AssetType,
    ContentMetadata,
    Rendition,
    RenditionName,
    VersionEntry,
)

COUNTERS = ("view_count", "download_count")


def to_snapshot(asset: Asset) -> AssetSnapshot:
    """Immutable view of a loaded asset row."""
    return AssetSnapshot(
        id=asset.id,
        organization_id=asset.organization_id,
        project_id=asset.project_id,
        uploaded_by=asset.uploaded_by,
        original_filename=asset.original_filename,
        mime_type=asset.mime_type,
        asset_type=AssetType(asset.asset_type),
        file_size_bytes=asset.file_size_bytes,
        checksum=asset.checksum,
        status=AssetStatus(asset.status),
        storage_provider=asset.storage_provider,
        storage_key=asset.storage_key,
        versions=tuple(
            VersionEntry(
                version_number=v.version_number,
                storage_key=v.storage_key,
                file_size_bytes=v.file_size_bytes,
                created_by=v.created_by,
                created_at=v.created_at,
            )
            for v in sorted(asset.versions, key=lambda v: v.version_number)
        ),
        renditions=tuple(
            Rendition(
                name=RenditionName(r.name),
                storage_key=r.storage_key,
                content_type=r.content_type,
                width=r.width,
                height=r.height,
                file_size_bytes=r.file_size_bytes,
            )
            for r in sorted(asset.renditions, key=lambda r: r.name)
        ),
        metadata=ContentMetadata.from_dict(asset.content_metadata),
        tags=tuple(asset.tags or ()),
        custom_metadata=dict(asset.custom_metadata or {}),
        access=AccessLevel(asset.access),
        processing_error=asset.processing_error,
        processing_lineage=asset.processing_lineage,
        upload_expires_at=asset.upload_expires_at,
        view_count=asset.view_count or 0,
        download_count=asset.download_count or 0,
        deleted_at=asset.deleted_at,
    )


class AssetStore:
    """Service for loading and persisting asset records."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get(self, asset_id: UUID, include_deleted: bool = False) -> Optional[Asset]:
        """Load an asset fresh from the database, bypassing the identity map."""
        query = (
            select(Asset)
            .where(Asset.id == asset_id)
            .execution_options(populate_existing=True)
        )
        if not include_deleted:
            query = query.where(Asset.deleted_at.is_(None))
        result = await self.db.execute(query)
        return result.scalar_one_or_none()

    async def find_live_by_checksum(self, organization_id: UUID, checksum: str) -> Optional[Asset]:
        """Dedup lookup: the non-deleted asset with this checksum, if any."""
        result = await self.db.execute(
            select(Asset).where(
                Asset.organization_id == organization_id,
                Asset.checksum == checksum,
                Asset.deleted_at.is_(None),
            )
        )
        return result.scalar_one_or_none()

    async def insert(self, snapshot: AssetSnapshot, now=None) -> Asset:
        """Add a new asset row with its version ledger; flushes, caller commits."""
        now = now or utcnow()
        asset = Asset(
            id=snapshot.id,
            organization_id=snapshot.organization_id,
            project_id=snapshot.project_id,
            uploaded_by=snapshot.uploaded_by,
            original_filename=snapshot.original_filename,
            mime_type=snapshot.mime_type,
            asset_type=snapshot.asset_type.value,
            file_size_bytes=snapshot.file_size_bytes,
            checksum=snapshot.checksum,
            status=snapshot.status.value,
            storage_provider=snapshot.storage_provider,
            storage_key=snapshot.storage_key,
            upload_expires_at=snapshot.upload_expires_at,
            tags=list(snapshot.tags),
            custom_metadata=dict(snapshot.custom_metadata),
            access=snapshot.access.value,
            view_count=0,
            download_count=0,
            created_at=now,
            updated_at=now,
        )
        asset.versions = [self._version_row(snapshot.id, entry) for entry in snapshot.versions]
        asset.renditions = []
        asset.latest_version = snapshot.latest_version
        self.db.add(asset)
        await self.db.flush()
        return asset

    def write(self, asset: Asset, snapshot: AssetSnapshot) -> None:
        """
        Copy a snapshot onto a loaded row.

        Versions are only ever appended; renditions are upserted by name.
        latest_version is recomputed from the ledger.
        """
        asset.status = snapshot.status.value
        asset.processing_error = snapshot.processing_error
        asset.processing_lineage = snapshot.processing_lineage
        asset.content_metadata = snapshot.metadata.to_dict() if snapshot.metadata else None
        asset.tags = list(snapshot.tags)
        asset.custom_metadata = dict(snapshot.custom_metadata)
        asset.access = snapshot.access.value
        asset.deleted_at = snapshot.deleted_at

        existing_versions = {v.version_number for v in asset.versions}
        for entry in snapshot.versions:
            if entry.version_number not in existing_versions:
                asset.versions.append(self._version_row(asset.id, entry))
        asset.latest_version = max(v.version_number for v in asset.versions)

        rows = {r.name: r for r in asset.renditions}
        for rendition in snapshot.renditions:
            row = rows.get(rendition.name.value)
            if row is None:
                asset.renditions.append(AssetRendition(
                    asset_id=asset.id,
                    name=rendition.name.value,
                    storage_key=rendition.storage_key,
                    content_type=rendition.content_type,
                    width=rendition.width,
                    height=rendition.height,
                    file_size_bytes=rendition.file_size_bytes,
                ))
            else:
                row.storage_key = rendition.storage_key
                row.content_type = rendition.content_type
                row.width = rendition.width
                row.height = rendition.height
                row.file_size_bytes = rendition.file_size_bytes

        # Always UPDATE the asset row so the row_version check applies
        asset.updated_at = utcnow()

    @staticmethod
    def _version_row(asset_id: UUID, entry: VersionEntry) -> AssetVersion:
        return AssetVersion(
            asset_id=asset_id,
            version_number=entry.version_number,
            storage_key=entry.storage_key,
            file_size_bytes=entry.file_size_bytes,
            created_by=entry.created_by,
            created_at=entry.created_at,
        )

    async def increment(self, asset_id: UUID, counter: str) -> None:
        """Atomic `SET counter = counter + 1`; does not bump row_version."""
        if counter not in COUNTERS:
            raise ValueError(f"Unknown counter: {counter}")
        column = getattr(Asset, counter)
        await self.db.execute(
            update(Asset)
            .where(Asset.id == asset_id)
            .values({counter: column + 1})
            .execution_options(synchronize_session=False)
        )

    # --- Queries ---

    def _has_tag(self, tag: str, index: int):
        if self.db.get_bind().dialect.name == "postgresql":
            return Asset.tags.contains([tag])
        param = f"tag_{index}"
        return text(
            f"EXISTS (SELECT 1 FROM json_each(assets.tags) WHERE json_each.value = :{param})"
        ).bindparams(**{param: tag})

    async def list_assets(
        self,
        organization_id: UUID,
        viewer_id: Optional[UUID] = None,
        project_id: Optional[UUID] = None,
        status: Optional[str] = None,
        asset_type: Optional[str] = None,
        access: Optional[str] = None,
        tags: Optional[Iterable[str]] = None,
        search: Optional[str] = None,
        offset: int = 0,
        limit: int = 20,
    ) -> Tuple[List[Asset], int]:
        """
        Page of live assets plus the total matching count, newest first.

        With viewer_id set, private assets of other uploaders are excluded.
        """
        conditions = [
            Asset.organization_id == organization_id,
            Asset.deleted_at.is_(None),
        ]
        if viewer_id is not None:
            conditions.append(or_(
                Asset.uploaded_by == viewer_id,
                Asset.access.in_([AccessLevel.ORGANIZATION.value, AccessLevel.PUBLIC.value]),
            ))
        if project_id:
            conditions.append(Asset.project_id == project_id)
        if status:
            conditions.append(Asset.status == status)
        if asset_type:
            conditions.append(Asset.asset_type == asset_type)
        if access:
            conditions.append(Asset.access == access)
        if search:
            conditions.append(Asset.original_filename.ilike(f"%{search}%"))
        for index, tag in enumerate(tags or ()):
            conditions.append(self._has_tag(tag, index))

        where = and_(*conditions)
        total = (await self.db.execute(
            select(func.count()).select_from(Asset).where(where)
        )).scalar_one()
        result = await self.db.execute(
            select(Asset)
            .where(where)
            .order_by(Asset.created_at.desc(), Asset.id)
            .offset(offset)
            .limit(limit)
        )
        return list(result.scalars().all()), total

    async def analytics(
        self,
        organization_id: UUID,
        project_id: Optional[UUID] = None,
    ) -> Dict[str, Any]:
        """Counts by type and status, bytes stored and total views/downloads of live assets."""
        conditions = [
            Asset.organization_id == organization_id,
            Asset.deleted_at.is_(None),
        ]
        if project_id:
            conditions.append(Asset.project_id == project_id)

        totals = (await self.db.execute(
            select(
                func.count(Asset.id),
                func.coalesce(func.sum(Asset.file_size_bytes), 0),
                func.coalesce(func.sum(Asset.view_count), 0),
                func.coalesce(func.sum(Asset.download_count), 0),
            ).where(*conditions)
        )).one()

        by_type = await self.db.execute(
            select(Asset.asset_type, func.count()).where(*conditions).group_by(Asset.asset_type)
        )
        by_status = await self.db.execute(
            select(Asset.status, func.count()).where(*conditions).group_by(Asset.status)
        )

        return {
            "total_assets": totals[0],
            "storage_used_bytes": int(totals[1]),
            "total_views": int(totals[2]),
            "total_downloads": int(totals[3]),
            "assets_by_type": {name: count for name, count in by_type.all()},
            "assets_by_status": {name: count for name, count in by_status.all()},
        }
