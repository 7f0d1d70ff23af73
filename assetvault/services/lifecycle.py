"""
Asset lifecycle state machine.

Pure functions over an immutable AssetSnapshot. Each transition returns a
new snapshot plus the side effects the caller must apply in the same
transaction (jobs to enqueue), so the rules can be exercised without a
database or object store.

Status flow:
    uploading → pending → processing → completed
                    \\           \\
                     → failed ←--
    uploading → failed   (integrity failure at finalize)
    failed → pending     (explicit retry only)
"""
import re
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple
from uuid import UUID

from assetvault.lib.errors import (
    AssetServiceError,
    ChecksumMismatchError,
    FileSizeMismatchError,
    InvalidChecksumError,
    InvalidStateError,
    UploadUrlExpiredError,
    ValidationError,
)


class AssetStatus(str, Enum):
    UPLOADING = "uploading"
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class AssetType(str, Enum):
    IMAGE = "image"
    VIDEO = "video"
    DOCUMENT = "document"
    AUDIO = "audio"
    ARCHIVE = "archive"
    OTHER = "other"


class AccessLevel(str, Enum):
    PRIVATE = "private"
    ORGANIZATION = "organization"
    PUBLIC = "public"


class RenditionName(str, Enum):
    THUMBNAIL_SMALL = "thumbnail_small"
    THUMBNAIL_LARGE = "thumbnail_large"
    PREVIEW_720P = "preview_720p"


class JobKind(str, Enum):
    INGEST = "ingest"
    EXTRACT_METADATA = "extract-metadata"
    GENERATE_THUMBNAILS = "generate-thumbnails"
    TRANSCODE = "transcode"
    CLEANUP = "cleanup"


ALLOWED_TRANSITIONS = {
    AssetStatus.UPLOADING: {AssetStatus.PENDING, AssetStatus.FAILED},
    AssetStatus.PENDING: {AssetStatus.PROCESSING, AssetStatus.FAILED},
    AssetStatus.PROCESSING: {AssetStatus.COMPLETED, AssetStatus.FAILED},
    AssetStatus.COMPLETED: set(),
    AssetStatus.FAILED: {AssetStatus.PENDING},
}

# Statuses in which processing work is outstanding for the current lineage
IN_FLIGHT = (AssetStatus.PENDING, AssetStatus.PROCESSING)

# New versions may be appended to these statuses only
VERSIONABLE = (AssetStatus.COMPLETED, AssetStatus.PENDING)

MAX_TAG_LENGTH = 50

CHECKSUM_DIGEST_LENGTHS = {
    "md5": 32,
    "sha1": 40,
    "sha256": 64,
    "sha512": 128,
}
_HEX = re.compile(r"^[0-9a-f]+$")


# --- Value records ---

@dataclass(frozen=True)
class ContentMetadata:
    """Technical metadata extracted from content; which fields apply depends on the asset type."""
    width: Optional[int] = None
    height: Optional[int] = None
    duration: Optional[float] = None
    codec: Optional[str] = None
    bitrate: Optional[int] = None
    page_count: Optional[int] = None

    def merged(self, other: Optional["ContentMetadata"]) -> "ContentMetadata":
        """Fields set on `other` win; unset fields keep their current value."""
        if other is None:
            return self
        updates = {k: v for k, v in other.to_dict().items()}
        return replace(self, **updates)

    def to_dict(self) -> Dict[str, Any]:
        return {k: v for k, v in self.__dict__.items() if v is not None}

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> Optional["ContentMetadata"]:
        if not data:
            return None
        known = {k: data[k] for k in cls.__dataclass_fields__ if data.get(k) is not None}
        return cls(**known)


@dataclass(frozen=True)
class VersionEntry:
    version_number: int
    storage_key: str
    file_size_bytes: int
    created_by: UUID
    created_at: datetime


@dataclass(frozen=True)
class Rendition:
    name: RenditionName
    storage_key: str
    content_type: Optional[str] = None
    width: Optional[int] = None
    height: Optional[int] = None
    file_size_bytes: Optional[int] = None


@dataclass(frozen=True)
class AssetSnapshot:
    id: UUID
    organization_id: UUID
    project_id: UUID
    uploaded_by: UUID
    original_filename: str
    mime_type: str
    asset_type: AssetType
    file_size_bytes: int
    checksum: str
    status: AssetStatus
    storage_provider: str
    storage_key: str
    versions: Tuple[VersionEntry, ...]
    renditions: Tuple[Rendition, ...] = ()
    metadata: Optional[ContentMetadata] = None
    tags: Tuple[str, ...] = ()
    custom_metadata: Mapping[str, str] = field(default_factory=dict)
    access: AccessLevel = AccessLevel.PRIVATE
    processing_error: Optional[str] = None
    processing_lineage: Optional[UUID] = None
    upload_expires_at: Optional[datetime] = None
    view_count: int = 0
    download_count: int = 0
    deleted_at: Optional[datetime] = None

    @property
    def latest_version(self) -> int:
        return max(v.version_number for v in self.versions)

    @property
    def latest_version_entry(self) -> VersionEntry:
        return max(self.versions, key=lambda v: v.version_number)

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    def rendition(self, name: RenditionName) -> Optional[Rendition]:
        for rendition in self.renditions:
            if rendition.name == name:
                return rendition
        return None

    def version(self, number: int) -> Optional[VersionEntry]:
        for entry in self.versions:
            if entry.version_number == number:
                return entry
        return None


# --- Effects ---

@dataclass(frozen=True)
class EnqueueJob:
    kind: JobKind
    lineage_id: Optional[UUID]
    payload: Dict[str, Any]


@dataclass(frozen=True)
class Transition:
    """
    Result of a state-machine step.

    `error` is raised to the caller after the new snapshot is persisted
    (integrity failures commit `failed` and still report the failure).
    `ignored` marks results that must not touch the asset at all.
    """
    snapshot: AssetSnapshot
    effects: Tuple[EnqueueJob, ...] = ()
    error: Optional[AssetServiceError] = None
    ignored: bool = False

    @property
    def changed(self) -> bool:
        return bool(self.effects) or self.error is not None


@dataclass(frozen=True)
class JobFailure:
    name: str
    message: str
    stack: Optional[str] = None


@dataclass(frozen=True)
class ProcessingOutcome:
    """What a worker reports for one job: artifacts on success, or a failure."""
    metadata: Optional[ContentMetadata] = None
    renditions: Tuple[Rendition, ...] = ()
    follow_up: Tuple[JobKind, ...] = ()
    result: Dict[str, Any] = field(default_factory=dict)
    failure: Optional[JobFailure] = None

    @property
    def succeeded(self) -> bool:
        return self.failure is None

    @classmethod
    def failed(cls, name: str, message: str, stack: Optional[str] = None) -> "ProcessingOutcome":
        return cls(failure=JobFailure(name=name, message=message, stack=stack))


# --- Helpers ---

def derive_asset_type(mime_type: str) -> AssetType:
    """Determine asset type from MIME type."""
    value = mime_type.lower()
    if value.startswith("image/"):
        return AssetType.IMAGE
    if value.startswith("video/"):
        return AssetType.VIDEO
    if value.startswith("audio/"):
        return AssetType.AUDIO
    if "pdf" in value or "document" in value or "text" in value:
        return AssetType.DOCUMENT
    if "zip" in value or "tar" in value or "archive" in value:
        return AssetType.ARCHIVE
    return AssetType.OTHER


EXTENSIONS_BY_MIME = {
    "image/jpeg": ("jpg", "jpeg"),
    "image/png": ("png",),
    "image/gif": ("gif",),
    "image/webp": ("webp",),
    "video/mp4": ("mp4",),
    "video/mpeg": ("mpeg", "mpg"),
    "video/quicktime": ("mov",),
    "audio/mpeg": ("mp3",),
    "audio/wav": ("wav",),
    "application/pdf": ("pdf",),
    "text/plain": ("txt",),
    "application/zip": ("zip",),
    "application/x-tar": ("tar",),
}


def extension_matches(filename: str, mime_type: str) -> bool:
    """Known MIME types must carry one of their extensions; unknown types pass."""
    expected = EXTENSIONS_BY_MIME.get(mime_type.lower())
    if expected is None:
        return True
    return filename.lower().rsplit(".", 1)[-1] in expected


def normalize_checksum(checksum: str) -> str:
    """Validate `algorithm:hex-digest` and return it lower-cased."""
    algorithm, sep, digest = (checksum or "").strip().lower().partition(":")
    expected = CHECKSUM_DIGEST_LENGTHS.get(algorithm)
    if not sep or expected is None or len(digest) != expected or not _HEX.match(digest):
        raise InvalidChecksumError(
            f"Checksum must be algorithm:hex-digest with one of {sorted(CHECKSUM_DIGEST_LENGTHS)}"
        )
    return f"{algorithm}:{digest}"


def checksums_equal(declared: str, actual: str) -> bool:
    try:
        return normalize_checksum(actual) == declared
    except InvalidChecksumError:
        return False


def normalize_tags(tags: Optional[Iterable[str]]) -> Tuple[str, ...]:
    """Trim, drop empties, dedupe (first occurrence wins) and enforce the length limit."""
    result: List[str] = []
    for tag in tags or ():
        cleaned = str(tag).strip()
        if not cleaned:
            continue
        if len(cleaned) > MAX_TAG_LENGTH:
            raise ValidationError(f"Tags must be between 1-{MAX_TAG_LENGTH} characters")
        if cleaned not in result:
            result.append(cleaned)
    return tuple(result)


def job_payload(snapshot: AssetSnapshot) -> Dict[str, Any]:
    """Job input shared by every processing kind."""
    latest = snapshot.latest_version_entry
    return {
        "asset_id": str(snapshot.id),
        "organization_id": str(snapshot.organization_id),
        "project_id": str(snapshot.project_id),
        "storage_key": latest.storage_key,
        "version": latest.version_number,
        "file_size_bytes": latest.file_size_bytes,
        "mime_type": snapshot.mime_type,
        "asset_type": snapshot.asset_type.value,
        "original_filename": snapshot.original_filename,
    }


def all_storage_keys(snapshot: AssetSnapshot) -> List[str]:
    """Original, every version and every rendition key, without duplicates."""
    keys = [snapshot.storage_key]
    keys.extend(v.storage_key for v in snapshot.versions)
    keys.extend(r.storage_key for r in snapshot.renditions)
    return list(dict.fromkeys(keys))


def _move(snapshot: AssetSnapshot, status: AssetStatus, **changes: Any) -> AssetSnapshot:
    if status != snapshot.status and status not in ALLOWED_TRANSITIONS[snapshot.status]:
        raise InvalidStateError(
            f"Cannot move asset from {snapshot.status.value} to {status.value}"
        )
    return replace(snapshot, status=status, **changes)


# --- Transitions ---

def new_asset(
    *,
    asset_id: UUID,
    organization_id: UUID,
    project_id: UUID,
    uploaded_by: UUID,
    original_filename: str,
    mime_type: str,
    file_size_bytes: int,
    checksum: str,
    storage_provider: str,
    storage_key: str,
    upload_expires_at: datetime,
    now: datetime,
    tags: Optional[Iterable[str]] = None,
    access: AccessLevel = AccessLevel.PRIVATE,
    custom_metadata: Optional[Mapping[str, str]] = None,
) -> AssetSnapshot:
    """Asset in `uploading` with its version 1 entry pre-registered."""
    return AssetSnapshot(
        id=asset_id,
        organization_id=organization_id,
        project_id=project_id,
        uploaded_by=uploaded_by,
        original_filename=original_filename.strip(),
        mime_type=mime_type,
        asset_type=derive_asset_type(mime_type),
        file_size_bytes=file_size_bytes,
        checksum=normalize_checksum(checksum),
        status=AssetStatus.UPLOADING,
        storage_provider=storage_provider,
        storage_key=storage_key,
        versions=(
            VersionEntry(
                version_number=1,
                storage_key=storage_key,
                file_size_bytes=file_size_bytes,
                created_by=uploaded_by,
                created_at=now,
            ),
        ),
        tags=normalize_tags(tags),
        custom_metadata=dict(custom_metadata or {}),
        access=AccessLevel(access),
        upload_expires_at=upload_expires_at,
    )


def ensure_upload_window(snapshot: AssetSnapshot, now: datetime) -> None:
    if (
        snapshot.status == AssetStatus.UPLOADING
        and snapshot.upload_expires_at is not None
        and now > snapshot.upload_expires_at
    ):
        raise UploadUrlExpiredError()


def finalize(
    snapshot: AssetSnapshot,
    *,
    actual_checksum: str,
    actual_size: int,
    now: datetime,
    lineage_id: UUID,
    min_size: int,
    max_size: int,
    stored_size: Optional[int] = None,
) -> Transition:
    """
    Verify an upload and queue ingest.

    Once the asset is past `uploading`, a repeat with the same arguments is a
    no-op returning the current snapshot. That includes assets that were
    finalized and later failed in processing; an asset that failed its own
    finalize has no lineage and stays rejected.
    """
    if snapshot.status != AssetStatus.UPLOADING:
        same_args = (
            checksums_equal(snapshot.checksum, actual_checksum)
            and actual_size == snapshot.file_size_bytes
        )
        was_finalized = (
            snapshot.status != AssetStatus.FAILED
            or snapshot.processing_lineage is not None
        )
        if same_args and was_finalized:
            return Transition(snapshot)
        raise InvalidStateError(
            f"Asset is {snapshot.status.value}, not uploading"
        )

    ensure_upload_window(snapshot, now)

    if not checksums_equal(snapshot.checksum, actual_checksum):
        error = ChecksumMismatchError()
        failed = _move(snapshot, AssetStatus.FAILED, processing_error=error.message)
        return Transition(failed, error=error)

    size_ok = (
        actual_size == snapshot.file_size_bytes
        and min_size <= actual_size <= max_size
        and (stored_size is None or stored_size == actual_size)
    )
    if not size_ok:
        error = FileSizeMismatchError(
            f"File size mismatch: declared {snapshot.file_size_bytes}, "
            f"reported {actual_size}"
            + (f", stored {stored_size}" if stored_size is not None else "")
        )
        failed = _move(snapshot, AssetStatus.FAILED, processing_error=error.message)
        return Transition(failed, error=error)

    pending = _move(
        snapshot,
        AssetStatus.PENDING,
        processing_error=None,
        processing_lineage=lineage_id,
    )
    return Transition(
        pending,
        effects=(EnqueueJob(JobKind.INGEST, lineage_id, job_payload(pending)),),
    )


def is_current(snapshot: AssetSnapshot, lineage_id: Optional[UUID]) -> bool:
    """Whether work from `lineage_id` may still change the asset."""
    return (
        not snapshot.is_deleted
        and snapshot.status in IN_FLIGHT
        and snapshot.processing_lineage == lineage_id
    )


def begin_processing(snapshot: AssetSnapshot, lineage_id: Optional[UUID]) -> Transition:
    """Called when a worker picks up a job of the current lineage."""
    if not is_current(snapshot, lineage_id):
        return Transition(snapshot, ignored=True)
    if snapshot.status == AssetStatus.PENDING:
        return Transition(_move(snapshot, AssetStatus.PROCESSING))
    return Transition(snapshot)


def _upsert_renditions(
    current: Tuple[Rendition, ...], produced: Iterable[Rendition]
) -> Tuple[Rendition, ...]:
    by_name = {r.name: r for r in current}
    for rendition in produced:
        by_name[rendition.name] = rendition
    return tuple(by_name[name] for name in sorted(by_name, key=lambda n: n.value))


def apply_success(
    snapshot: AssetSnapshot,
    lineage_id: Optional[UUID],
    outcome: ProcessingOutcome,
) -> Transition:
    """
    Merge one job's artifacts into the asset.

    Follow-up jobs keep the asset in `processing`; with none left it is
    completed.
    """
    if not is_current(snapshot, lineage_id):
        return Transition(snapshot, ignored=True)

    processing = snapshot
    if snapshot.status == AssetStatus.PENDING:
        processing = _move(snapshot, AssetStatus.PROCESSING)

    metadata = snapshot.metadata
    if outcome.metadata is not None:
        metadata = (metadata or ContentMetadata()).merged(outcome.metadata)

    updated = replace(
        processing,
        metadata=metadata,
        renditions=_upsert_renditions(processing.renditions, outcome.renditions),
    )

    if outcome.follow_up:
        effects = tuple(
            EnqueueJob(kind, lineage_id, job_payload(updated))
            for kind in outcome.follow_up
        )
        return Transition(updated, effects=effects)

    completed = _move(updated, AssetStatus.COMPLETED, processing_error=None)
    return Transition(completed)


def apply_failure(
    snapshot: AssetSnapshot,
    lineage_id: Optional[UUID],
    kind: JobKind,
    failure: JobFailure,
) -> Transition:
    """Terminal job failure: asset → failed, earlier artifacts untouched."""
    if not is_current(snapshot, lineage_id):
        return Transition(snapshot, ignored=True)
    failed = _move(
        snapshot,
        AssetStatus.FAILED,
        processing_error=f"{kind.value} failed: {failure.name}: {failure.message}",
    )
    return Transition(failed)


def retry(snapshot: AssetSnapshot, lineage_id: UUID) -> Transition:
    if snapshot.status != AssetStatus.FAILED:
        raise InvalidStateError(
            f"Only failed assets can be retried; asset is {snapshot.status.value}"
        )
    pending = _move(
        snapshot,
        AssetStatus.PENDING,
        processing_error=None,
        processing_lineage=lineage_id,
    )
    return Transition(
        pending,
        effects=(EnqueueJob(JobKind.INGEST, lineage_id, job_payload(pending)),),
    )


def append_version(
    snapshot: AssetSnapshot,
    *,
    storage_key: str,
    file_size_bytes: int,
    created_by: UUID,
    now: datetime,
) -> Transition:
    if snapshot.status not in VERSIONABLE:
        raise InvalidStateError(
            f"Versions can only be added to completed or pending assets; asset is {snapshot.status.value}"
        )
    entry = VersionEntry(
        version_number=snapshot.latest_version + 1,
        storage_key=storage_key,
        file_size_bytes=file_size_bytes,
        created_by=created_by,
        created_at=now,
    )
    return Transition(replace(snapshot, versions=snapshot.versions + (entry,)))


def soft_delete(snapshot: AssetSnapshot, now: datetime) -> Transition:
    deleted = replace(snapshot, deleted_at=now)
    payload = {
        "asset_id": str(snapshot.id),
        "organization_id": str(snapshot.organization_id),
        "storage_keys": all_storage_keys(snapshot),
        "reason": "asset-deleted",
    }
    return Transition(
        deleted,
        effects=(EnqueueJob(JobKind.CLEANUP, None, payload),),
    )


def update_descriptors(
    snapshot: AssetSnapshot,
    *,
    tags: Optional[Iterable[str]] = None,
    access: Optional[AccessLevel] = None,
    custom_metadata: Optional[Mapping[str, str]] = None,
) -> Transition:
    changes: Dict[str, Any] = {}
    if tags is not None:
        changes["tags"] = normalize_tags(tags)
    if access is not None:
        changes["access"] = AccessLevel(access)
    if custom_metadata is not None:
        changes["custom_metadata"] = {**snapshot.custom_metadata, **custom_metadata}
    return Transition(replace(snapshot, **changes))
