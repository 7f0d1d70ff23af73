import uuid
from sqlalchemy import (
    BigInteger,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    text,
)
from sqlalchemy.orm import relationship

from assetvault.lib.database import Base, JSONVariant, utcnow


class AssetVersion(Base):
    """
    One entry of an asset's append-only version ledger.

    Rows are inserted, never updated or deleted.
    """
    __tablename__ = "asset_versions"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    asset_id = Column(Uuid, ForeignKey("assets.id", ondelete="CASCADE"), nullable=False)
    version_number = Column(Integer, nullable=False)
    storage_key = Column(String(1024), nullable=False)
    file_size_bytes = Column(BigInteger, nullable=False)
    created_by = Column(Uuid, ForeignKey("users.id"), nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("asset_id", "version_number", name="uq_asset_version_number"),
    )


class AssetRendition(Base):
    """Derived artifact (thumbnail_small, thumbnail_large, preview_720p)."""
    __tablename__ = "asset_renditions"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    asset_id = Column(Uuid, ForeignKey("assets.id", ondelete="CASCADE"), nullable=False)
    name = Column(String(50), nullable=False)
    storage_key = Column(String(1024), nullable=False)
    content_type = Column(String(100), nullable=True)
    width = Column(Integer, nullable=True)
    height = Column(Integer, nullable=True)
    file_size_bytes = Column(BigInteger, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("asset_id", "name", name="uq_asset_rendition_name"),
    )


class Asset(Base):
    """
    Uploaded binary asset.

    Status flow: uploading → pending → processing → completed/failed
    (failed → pending only through an explicit retry).
    """
    __tablename__ = "assets"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    organization_id = Column(Uuid, ForeignKey("organizations.id"), nullable=False)
    project_id = Column(Uuid, ForeignKey("projects.id"), nullable=False)
    uploaded_by = Column(Uuid, ForeignKey("users.id"), nullable=False)

    # Content identity
    original_filename = Column(String(255), nullable=False)
    mime_type = Column(String(255), nullable=False)
    asset_type = Column(String(20), nullable=False)  # image, video, document, audio, archive, other
    file_size_bytes = Column(BigInteger, nullable=False)
    checksum = Column(String(200), nullable=False)  # algorithm:hex-digest

    # Lifecycle
    status = Column(String(20), nullable=False, default="uploading")
    processing_error = Column(Text, nullable=True)
    processing_lineage = Column(Uuid, nullable=True)  # current finalize/retry attempt
    upload_expires_at = Column(DateTime, nullable=True)

    # Storage
    storage_provider = Column(String(20), nullable=False)
    storage_key = Column(String(1024), nullable=False)  # version 1 original
    latest_version = Column(Integer, nullable=False, default=1)  # derived from versions

    # Descriptors
    tags = Column(JSONVariant, nullable=False, default=list)
    content_metadata = Column("metadata", JSONVariant, nullable=True)  # { width, height, duration, ... }
    custom_metadata = Column(JSONVariant, nullable=False, default=dict)
    access = Column(String(20), nullable=False, default="private")  # private, organization, public

    # Analytics
    view_count = Column(BigInteger, nullable=False, default=0)
    download_count = Column(BigInteger, nullable=False, default=0)

    deleted_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    # Optimistic concurrency token, bumped on every UPDATE of the row
    row_version = Column(Integer, nullable=False)

    versions = relationship(
        AssetVersion,
        order_by=AssetVersion.version_number,
        lazy="selectin",
        cascade="save-update, merge",
    )
    renditions = relationship(
        AssetRendition,
        order_by=AssetRendition.name,
        lazy="selectin",
        cascade="save-update, merge",
    )

    __mapper_args__ = {"version_id_col": row_version}

    __table_args__ = (
        # Dedup index: one live asset per (organization, checksum)
        Index(
            "uq_assets_org_checksum_live",
            "organization_id",
            "checksum",
            unique=True,
            postgresql_where=text("deleted_at IS NULL"),
            sqlite_where=text("deleted_at IS NULL"),
        ),
        Index("ix_assets_org_project_status", "organization_id", "project_id", "status", "updated_at"),
        Index("ix_assets_org_type", "organization_id", "asset_type", "updated_at"),
        Index("ix_assets_status_updated", "status", "updated_at"),
    )

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None
