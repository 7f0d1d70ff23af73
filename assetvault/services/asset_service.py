"""
Asset Service

Orchestrates the asset lifecycle:
1. Reserve a storage key and hand out a presigned upload URL
2. Verify the upload at finalize time and queue processing
3. Apply worker results (artifacts, follow-up jobs, failures)
4. Versions, retries, soft delete, downloads and reads

Decisions are made by the pure functions in services.lifecycle; this
service loads the asset, asks for a transition and persists it together
with its queued jobs in one transaction. A concurrent write to the same
asset (row_version mismatch) reloads and decides again.
"""
import logging
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple
from uuid import UUID, uuid4

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from assetvault.lib.config import Settings
from assetvault.lib.database import utcnow
from assetvault.lib.errors import (
    AccessDeniedError,
    AssetNotFoundError,
    ConcurrentModificationError,
    DuplicateAssetError,
    FileSizeInvalidError,
    InvalidFileExtensionError,
    JobNotFoundError,
    NotReadyError,
    UploadNotFoundError,
)
from assetvault.lib.security import Caller
from assetvault.models.asset import Asset
from assetvault.models.job import ProcessingJob
from assetvault.services import lifecycle
from assetvault.services.asset_store import AssetStore, to_snapshot
from assetvault.services.authorization import AccessPolicy
from assetvault.services.directory import DirectoryService
from assetvault.services.job_queue import JobQueue
from assetvault.services.lifecycle import (
    AccessLevel,
    AssetSnapshot,
    AssetStatus,
    JobKind,
    ProcessingOutcome,
    Transition,
    VersionEntry,
)
from assetvault.services.storage_service import StorageService

logger = logging.getLogger(__name__)

MAX_CONFLICT_RETRIES = 3


class AssetService:
    """Service for the asset upload, processing and retrieval workflow."""

    def __init__(
        self,
        db: AsyncSession,
        storage: StorageService,
        settings: Settings,
        policy: Optional[AccessPolicy] = None,
    ):
        self.db = db
        self.storage = storage
        self.settings = settings
        self.policy = policy or AccessPolicy()
        self.store = AssetStore(db)
        self.directory = DirectoryService(db)
        self.queue = JobQueue(
            db,
            max_backoff_seconds=settings.max_backoff_seconds,
            visibility_timeout_seconds=settings.job_visibility_timeout_seconds,
        )

    # --- Internals ---

    async def _load(self, asset_id: UUID, include_deleted: bool = False) -> Tuple[Asset, AssetSnapshot]:
        asset = await self.store.get(asset_id, include_deleted=include_deleted)
        if asset is None:
            raise AssetNotFoundError(asset_id=str(asset_id))
        return asset, to_snapshot(asset)

    async def _persist(self, asset: Asset, transition: Transition) -> None:
        """Write the new snapshot and enqueue its jobs in the open transaction."""
        self.store.write(asset, transition.snapshot)
        for effect in transition.effects:
            await self.queue.enqueue(
                effect.kind,
                asset_id=asset.id,
                organization_id=asset.organization_id,
                payload=effect.payload,
                lineage_id=effect.lineage_id,
            )
        await self.db.flush()

    async def _mutate(
        self,
        asset_id: UUID,
        decide: Callable[[AssetSnapshot], Transition],
    ) -> Transition:
        """
        Load, decide, persist and commit, redeciding on a concurrent write.

        A transition that changes nothing is returned without writing.
        """
        for attempt in range(1, MAX_CONFLICT_RETRIES + 1):
            asset, snapshot = await self._load(asset_id)
            transition = decide(snapshot)
            if transition.ignored or (transition.snapshot == snapshot and not transition.changed):
                return transition
            try:
                await self._persist(asset, transition)
                await self.db.commit()
            except (StaleDataError, IntegrityError) as e:
                await self.db.rollback()
                logger.info(
                    "Concurrent write to asset %s (attempt %d): %s",
                    asset_id, attempt, type(e).__name__,
                )
                continue
            return transition
        raise ConcurrentModificationError(asset_id=str(asset_id))

    def _check_size(self, size: int) -> None:
        if not self.settings.min_file_size_bytes <= size <= self.settings.max_file_size_bytes:
            raise FileSizeInvalidError(
                f"File size must be between {self.settings.min_file_size_bytes} "
                f"and {self.settings.max_file_size_bytes} bytes",
            )

    # --- Upload workflow ---

    async def create_upload(
        self,
        caller: Caller,
        organization_id: UUID,
        project_id: UUID,
        original_filename: str,
        mime_type: str,
        file_size_bytes: int,
        checksum: str,
        tags: Optional[Iterable[str]] = None,
        access: AccessLevel = AccessLevel.PRIVATE,
        custom_metadata: Optional[Mapping[str, str]] = None,
    ) -> Dict[str, Any]:
        """
        Reserve an asset in `uploading` and return a presigned PUT URL.

        No processing job is queued until the upload is finalized.
        """
        if organization_id != caller.organization_id:
            raise AccessDeniedError("Cannot upload into another organization")

        await self.directory.ensure_upload_references(organization_id, project_id, caller.user_id)

        if not lifecycle.extension_matches(original_filename, mime_type):
            raise InvalidFileExtensionError()
        self._check_size(file_size_bytes)
        normalized = lifecycle.normalize_checksum(checksum)

        existing = await self.store.find_live_by_checksum(organization_id, normalized)
        if existing:
            raise DuplicateAssetError(asset_id=str(existing.id))

        now = utcnow()
        asset_id = uuid4()
        storage_key = self.storage.original_key(
            organization_id, project_id, asset_id, 1, original_filename,
        )
        upload = await self.storage.create_upload_url(storage_key, mime_type)
        expires_at = now + timedelta(seconds=upload["expires_in"])

        snapshot = lifecycle.new_asset(
            asset_id=asset_id,
            organization_id=organization_id,
            project_id=project_id,
            uploaded_by=caller.user_id,
            original_filename=original_filename,
            mime_type=mime_type,
            file_size_bytes=file_size_bytes,
            checksum=normalized,
            storage_provider=self.storage.provider,
            storage_key=storage_key,
            upload_expires_at=expires_at,
            now=now,
            tags=tags,
            access=access,
            custom_metadata=custom_metadata,
        )

        try:
            await self.store.insert(snapshot, now=now)
            await self.db.commit()
        except IntegrityError:
            # Lost the race on the dedup index
            await self.db.rollback()
            existing = await self.store.find_live_by_checksum(organization_id, normalized)
            if existing:
                raise DuplicateAssetError(asset_id=str(existing.id))
            raise

        logger.info(
            "Created upload for asset %s (%s, %d bytes) in project %s",
            asset_id, mime_type, file_size_bytes, project_id,
        )
        return {
            "asset": snapshot,
            "upload_url": upload["upload_url"],
            "storage_key": storage_key,
            "expires_at": expires_at,
            "expires_in": upload["expires_in"],
        }

    async def finalize_upload(
        self,
        asset_id: UUID,
        checksum: str,
        file_size_bytes: int,
        caller: Caller,
    ) -> AssetSnapshot:
        """
        Verify the uploaded content and queue ingest.

        Integrity failures commit the asset as failed and then raise.
        Repeating a successful finalize returns the current asset.
        """
        now = utcnow()
        _, snapshot = await self._load(asset_id)
        if not self.policy.can_finalize(snapshot, caller):
            raise AccessDeniedError()

        stored_size = None
        if snapshot.status == AssetStatus.UPLOADING:
            lifecycle.ensure_upload_window(snapshot, now)
            if self.settings.verify_uploads:
                head = await self.storage.confirm_upload(snapshot.latest_version_entry.storage_key)
                if head is None:
                    raise UploadNotFoundError(storage_key=snapshot.latest_version_entry.storage_key)
                stored_size = head["size"]

        lineage_id = uuid4()

        def decide(current: AssetSnapshot) -> Transition:
            return lifecycle.finalize(
                current,
                actual_checksum=checksum,
                actual_size=file_size_bytes,
                now=now,
                lineage_id=lineage_id,
                min_size=self.settings.min_file_size_bytes,
                max_size=self.settings.max_file_size_bytes,
                stored_size=stored_size,
            )

        transition = await self._mutate(asset_id, decide)
        if transition.error is not None:
            logger.warning("Finalize of asset %s failed: %s", asset_id, transition.error.code)
            raise transition.error
        if transition.effects:
            logger.info("Finalized asset %s, ingest queued (lineage %s)", asset_id, lineage_id)
        return transition.snapshot

    async def add_version(
        self,
        asset_id: UUID,
        filename: str,
        file_size_bytes: int,
        caller: Caller,
    ) -> Dict[str, Any]:
        """Append version latest+1 and return a presigned PUT URL for it."""
        self._check_size(file_size_bytes)
        now = utcnow()

        def decide(current: AssetSnapshot) -> Transition:
            if not self.policy.can_edit_metadata(current, caller):
                raise AccessDeniedError()
            if not lifecycle.extension_matches(filename, current.mime_type):
                raise InvalidFileExtensionError()
            storage_key = self.storage.original_key(
                current.organization_id,
                current.project_id,
                current.id,
                current.latest_version + 1,
                filename,
            )
            return lifecycle.append_version(
                current,
                storage_key=storage_key,
                file_size_bytes=file_size_bytes,
                created_by=caller.user_id,
                now=now,
            )

        transition = await self._mutate(asset_id, decide)
        snapshot = transition.snapshot
        entry = snapshot.latest_version_entry
        upload = await self.storage.create_upload_url(entry.storage_key, snapshot.mime_type)
        logger.info("Added version %d to asset %s", entry.version_number, asset_id)
        return {
            "asset": snapshot,
            "version_number": entry.version_number,
            "storage_key": entry.storage_key,
            "upload_url": upload["upload_url"],
            "expires_in": upload["expires_in"],
        }

    # --- Processing ---

    async def start_job(self, job_id: UUID) -> bool:
        """
        Called by a worker before running a claimed job.

        Moves the asset pending → processing for the current lineage.
        Returns False (and completes the job as skipped) when the asset was
        deleted or the job belongs to a superseded lineage.
        """
        for _ in range(MAX_CONFLICT_RETRIES):
            job = await self.queue.get_job(job_id)
            if job is None:
                raise JobNotFoundError(job_id=str(job_id))
            if JobKind(job.kind) == JobKind.CLEANUP:
                return True

            asset, snapshot = await self._load(job.asset_id, include_deleted=True)
            transition = lifecycle.begin_processing(snapshot, job.lineage_id)
            if transition.ignored:
                self.queue.complete(
                    job,
                    result={"skipped": True},
                    message="Skipped: asset deleted or processing superseded",
                )
                await self.db.commit()
                logger.info("Skipped %s job %s for asset %s", job.kind, job.id, job.asset_id)
                return False
            if transition.snapshot == snapshot:
                return True
            try:
                await self._persist(asset, transition)
                await self.db.commit()
            except StaleDataError:
                await self.db.rollback()
                continue
            logger.info("Asset %s is processing", job.asset_id)
            return True
        raise ConcurrentModificationError(job_id=str(job_id))

    async def apply_processing_result(
        self,
        job_id: UUID,
        outcome: ProcessingOutcome,
        worker_id: Optional[str] = None,
    ) -> ProcessingJob:
        """
        Settle a job and fold its outcome into the asset, atomically.

        Success merges artifacts and queues follow-ups (or completes the
        asset). Failure is retried per the job's queue; once attempts are
        exhausted the job and the asset are marked failed, exactly once.
        Terminal jobs are left untouched, and so are reports from a
        `worker_id` that no longer holds the claim.
        """
        for attempt in range(1, MAX_CONFLICT_RETRIES + 1):
            job = await self.queue.get_job(job_id)
            if job is None:
                raise JobNotFoundError(job_id=str(job_id))
            if job.is_terminal:
                logger.info("Ignoring result for terminal %s job %s", job.kind, job.id)
                return job
            if worker_id is not None and (job.status != "active" or job.worker_id != worker_id):
                logger.warning(
                    "Ignoring result from worker %s for %s job %s (claimed by %s, %s)",
                    worker_id, job.kind, job.id, job.worker_id, job.status,
                )
                return job

            kind = JobKind(job.kind)
            asset, snapshot = await self._load(job.asset_id, include_deleted=True)

            if outcome.succeeded:
                if kind == JobKind.CLEANUP:
                    transition = Transition(snapshot, ignored=True)
                else:
                    transition = lifecycle.apply_success(snapshot, job.lineage_id, outcome)
                self.queue.complete(
                    job,
                    result=outcome.result,
                    message=(
                        "Job completed; result ignored (asset deleted or processing superseded)"
                        if transition.ignored and kind != JobKind.CLEANUP
                        else "Job completed successfully"
                    ),
                )
            else:
                exhausted = self.queue.register_failure(job, outcome.failure)
                if exhausted and kind != JobKind.CLEANUP:
                    transition = lifecycle.apply_failure(snapshot, job.lineage_id, kind, outcome.failure)
                else:
                    transition = Transition(snapshot, ignored=True)

            try:
                if not transition.ignored:
                    await self._persist(asset, transition)
                await self.db.commit()
            except StaleDataError:
                await self.db.rollback()
                logger.info("Concurrent write to asset %s while settling job %s (attempt %d)",
                            job.asset_id, job_id, attempt)
                continue

            if not transition.ignored:
                new_status = transition.snapshot.status
                if new_status != snapshot.status:
                    log = logger.warning if new_status == AssetStatus.FAILED else logger.info
                    log("Asset %s: %s → %s after %s job %s",
                        job.asset_id, snapshot.status.value, new_status.value, kind.value, job.id)
            return job
        raise ConcurrentModificationError(job_id=str(job_id))

    async def fail_lost_jobs(self, now: Optional[datetime] = None) -> int:
        """
        Fail stale jobs that were on their last attempt.

        Their worker died mid-job, so nobody will report for them; settling
        them as a failure moves the asset to failed like any exhausted job.
        """
        lost = await self.queue.list_lost(now)
        for job in lost:
            logger.warning(
                "Worker %s lost %s job %s on its last attempt (%d/%d)",
                job.worker_id, job.kind, job.id, job.attempts, job.max_attempts,
            )
            await self.apply_processing_result(
                job.id,
                ProcessingOutcome.failed(
                    "WorkerLost", f"Worker {job.worker_id} stopped heartbeating",
                ),
                worker_id=job.worker_id,
            )
        return len(lost)

    async def retry_processing(self, asset_id: UUID, caller: Caller) -> AssetSnapshot:
        """failed → pending with a new lineage and a fresh ingest job."""
        lineage_id = uuid4()

        def decide(current: AssetSnapshot) -> Transition:
            if not self.policy.can_edit_metadata(current, caller):
                raise AccessDeniedError("No permission to retry processing")
            return lifecycle.retry(current, lineage_id)

        transition = await self._mutate(asset_id, decide)
        logger.info("Retrying processing of asset %s (lineage %s)", asset_id, lineage_id)
        return transition.snapshot

    # --- Deletion ---

    async def soft_delete(self, asset_id: UUID, caller: Caller) -> AssetSnapshot:
        """Hide the asset and queue deletion of every stored object."""
        now = utcnow()

        def decide(current: AssetSnapshot) -> Transition:
            if not self.policy.can_delete(current, caller):
                raise AccessDeniedError()
            return lifecycle.soft_delete(current, now)

        transition = await self._mutate(asset_id, decide)
        logger.info("Soft-deleted asset %s", asset_id)
        return transition.snapshot

    # --- Reads ---

    async def get_download_url(
        self,
        asset_id: UUID,
        caller: Caller,
        version: Optional[int] = None,
    ) -> Dict[str, Any]:
        """Presigned GET for the requested (default latest) version of a completed asset."""
        _, snapshot = await self._load(asset_id)
        if not self.policy.can_download(snapshot, caller):
            raise AccessDeniedError()
        if snapshot.status != AssetStatus.COMPLETED:
            raise NotReadyError(status=snapshot.status.value)

        entry = await self._uploaded_version(snapshot, version)

        download = await self.storage.get_download_url(
            entry.storage_key, filename=snapshot.original_filename,
        )
        await self.store.increment(asset_id, "download_count")
        await self.db.commit()
        return {
            "download_url": download["download_url"],
            "expires_in": download["expires_in"],
            "version": entry.version_number,
            "filename": snapshot.original_filename,
        }

    async def _uploaded_version(self, snapshot: AssetSnapshot, version: Optional[int]) -> VersionEntry:
        """
        The requested version, or the newest one whose object is in storage.

        Version 1 was verified at finalize; later versions are registered
        before their bytes arrive, so they are checked with a HEAD.
        """
        if version is not None:
            entry = snapshot.version(version)
            if entry is None:
                raise AssetNotFoundError(f"Version {version} not found", asset_id=str(snapshot.id))
            if entry.version_number > 1 and await self.storage.confirm_upload(entry.storage_key) is None:
                raise NotReadyError(f"Version {version} has not been uploaded yet")
            return entry

        for entry in sorted(snapshot.versions, key=lambda v: v.version_number, reverse=True):
            if entry.version_number == 1:
                return entry
            if await self.storage.confirm_upload(entry.storage_key) is not None:
                return entry
            logger.info("Version %d of asset %s not uploaded yet, skipping", entry.version_number, snapshot.id)
        return min(snapshot.versions, key=lambda v: v.version_number)

    async def get_asset(
        self,
        asset_id: UUID,
        caller: Caller,
        increment_view: bool = False,
    ) -> AssetSnapshot:
        _, snapshot = await self._load(asset_id)
        if not self.policy.can_view(snapshot, caller):
            raise AccessDeniedError()
        if increment_view:
            await self.store.increment(asset_id, "view_count")
            await self.db.commit()
            snapshot = replace(snapshot, view_count=snapshot.view_count + 1)
        return snapshot

    async def list_assets(
        self,
        caller: Caller,
        project_id: Optional[UUID] = None,
        status: Optional[str] = None,
        asset_type: Optional[str] = None,
        access: Optional[str] = None,
        tags: Optional[Iterable[str]] = None,
        search: Optional[str] = None,
        page: int = 1,
        limit: int = 20,
    ) -> Tuple[List[AssetSnapshot], int]:
        """Live assets of the caller's organization that the caller may view."""
        assets, total = await self.store.list_assets(
            organization_id=caller.organization_id,
            viewer_id=None if caller.is_org_admin else caller.user_id,
            project_id=project_id,
            status=status,
            asset_type=asset_type,
            access=access,
            tags=lifecycle.normalize_tags(tags) if tags else None,
            search=search,
            offset=(page - 1) * limit,
            limit=limit,
        )
        return [to_snapshot(asset) for asset in assets], total

    async def update_asset(
        self,
        asset_id: UUID,
        caller: Caller,
        tags: Optional[Iterable[str]] = None,
        access: Optional[AccessLevel] = None,
        custom_metadata: Optional[Mapping[str, str]] = None,
    ) -> AssetSnapshot:
        """Replace tags / access; merge custom metadata key-wise."""
        def decide(current: AssetSnapshot) -> Transition:
            if not self.policy.can_edit_metadata(current, caller):
                raise AccessDeniedError()
            return lifecycle.update_descriptors(
                current, tags=tags, access=access, custom_metadata=custom_metadata,
            )

        transition = await self._mutate(asset_id, decide)
        return transition.snapshot

    async def get_analytics(
        self,
        caller: Caller,
        organization_id: Optional[UUID] = None,
        project_id: Optional[UUID] = None,
    ) -> Dict[str, Any]:
        organization_id = organization_id or caller.organization_id
        if organization_id != caller.organization_id:
            raise AccessDeniedError("Cannot read analytics of another organization")
        return await self.store.analytics(organization_id, project_id)
