"""
Tests for the asset lifecycle state machine.

These run without a database: every transition is a pure function of a
snapshot.
"""
from dataclasses import replace
from datetime import datetime, timedelta
from uuid import uuid4

import pytest

from assetvault.lib.errors import (
    ChecksumMismatchError,
    FileSizeMismatchError,
    InvalidChecksumError,
    InvalidStateError,
    UploadUrlExpiredError,
    ValidationError,
)
from assetvault.services import lifecycle
from assetvault.services.lifecycle import (
    AccessLevel,
    AssetStatus,
    AssetType,
    ContentMetadata,
    JobFailure,
    JobKind,
    ProcessingOutcome,
    Rendition,
    RenditionName,
)

NOW = datetime(2026, 3, 1, 12, 0, 0)
DIGEST = "ab" * 32
CHECKSUM = f"sha256:{DIGEST}"


def make_asset(**overrides):
    asset = lifecycle.new_asset(
        asset_id=uuid4(),
        organization_id=uuid4(),
        project_id=uuid4(),
        uploaded_by=uuid4(),
        original_filename="photo.jpg",
        mime_type="image/jpeg",
        file_size_bytes=2048,
        checksum=CHECKSUM,
        storage_provider="s3",
        storage_key="org/o/proj/p/asset/a/original/v1/photo.jpg",
        upload_expires_at=NOW + timedelta(hours=1),
        now=NOW,
    )
    return replace(asset, **overrides) if overrides else asset


def finalize(asset, **overrides):
    params = dict(
        actual_checksum=CHECKSUM,
        actual_size=2048,
        now=NOW,
        lineage_id=uuid4(),
        min_size=1,
        max_size=10_000,
    )
    params.update(overrides)
    return lifecycle.finalize(asset, **params)


def processing_asset():
    lineage = uuid4()
    pending = finalize(make_asset(), lineage_id=lineage).snapshot
    return lifecycle.begin_processing(pending, lineage).snapshot, lineage


class TestHelpers:

    @pytest.mark.parametrize("mime_type,expected", [
        ("image/png", AssetType.IMAGE),
        ("video/mp4", AssetType.VIDEO),
        ("audio/mpeg", AssetType.AUDIO),
        ("application/pdf", AssetType.DOCUMENT),
        ("text/plain", AssetType.DOCUMENT),
        ("application/vnd.openxmlformats-officedocument.wordprocessingml.document", AssetType.DOCUMENT),
        ("application/zip", AssetType.ARCHIVE),
        ("application/x-tar", AssetType.ARCHIVE),
        ("application/octet-stream", AssetType.OTHER),
    ])
    def test_derive_asset_type(self, mime_type, expected):
        assert lifecycle.derive_asset_type(mime_type) == expected

    def test_extension_matches_known_types(self):
        assert lifecycle.extension_matches("photo.JPEG", "image/jpeg")
        assert not lifecycle.extension_matches("photo.png", "image/jpeg")
        assert not lifecycle.extension_matches("noextension", "application/pdf")

    def test_extension_unchecked_for_unknown_types(self):
        assert lifecycle.extension_matches("data.bin", "application/octet-stream")

    def test_normalize_checksum_lowercases(self):
        assert lifecycle.normalize_checksum(f"SHA256:{DIGEST.upper()}") == CHECKSUM

    @pytest.mark.parametrize("checksum", [
        "",
        DIGEST,
        "sha256:abc",
        "crc32:deadbeef",
        "md5:" + "g" * 32,
        "sha1:" + "a" * 64,
    ])
    def test_normalize_checksum_rejects(self, checksum):
        with pytest.raises(InvalidChecksumError):
            lifecycle.normalize_checksum(checksum)

    def test_normalize_tags(self):
        assert lifecycle.normalize_tags([" sunset ", "beach", "", "sunset", "  "]) == ("sunset", "beach")

    def test_normalize_tags_length_limit(self):
        assert lifecycle.normalize_tags(["x" * 50]) == ("x" * 50,)
        with pytest.raises(ValidationError):
            lifecycle.normalize_tags(["x" * 51])

    def test_metadata_merge_keeps_unset_fields(self):
        base = ContentMetadata(width=100, height=50)
        merged = base.merged(ContentMetadata(codec="h264", width=200))
        assert merged == ContentMetadata(width=200, height=50, codec="h264")

    def test_metadata_from_dict_ignores_unknown_keys(self):
        assert ContentMetadata.from_dict({"width": 1, "colour": "red"}) == ContentMetadata(width=1)
        assert ContentMetadata.from_dict({}) is None


class TestNewAsset:

    def test_starts_uploading_with_first_version(self):
        asset = make_asset()
        assert asset.status == AssetStatus.UPLOADING
        assert asset.latest_version == 1
        assert asset.versions[0].storage_key == asset.storage_key
        assert asset.asset_type == AssetType.IMAGE
        assert asset.access == AccessLevel.PRIVATE


class TestFinalize:

    def test_success_moves_to_pending_with_one_ingest_job(self):
        lineage = uuid4()
        transition = finalize(make_asset(), lineage_id=lineage)

        assert transition.error is None
        assert transition.snapshot.status == AssetStatus.PENDING
        assert transition.snapshot.processing_lineage == lineage
        assert len(transition.effects) == 1
        effect = transition.effects[0]
        assert effect.kind == JobKind.INGEST
        assert effect.lineage_id == lineage
        assert effect.payload["version"] == 1
        assert effect.payload["file_size_bytes"] == 2048

    def test_checksum_comparison_is_case_insensitive(self):
        transition = finalize(make_asset(), actual_checksum=f"SHA256:{DIGEST.upper()}")
        assert transition.snapshot.status == AssetStatus.PENDING

    def test_checksum_mismatch_fails_without_job(self):
        transition = finalize(make_asset(), actual_checksum="sha256:" + "cd" * 32)

        assert isinstance(transition.error, ChecksumMismatchError)
        assert transition.snapshot.status == AssetStatus.FAILED
        assert transition.snapshot.processing_error
        assert transition.effects == ()

    def test_size_mismatch_fails(self):
        transition = finalize(make_asset(), actual_size=2047)
        assert isinstance(transition.error, FileSizeMismatchError)
        assert transition.snapshot.status == AssetStatus.FAILED

    def test_stored_size_mismatch_fails(self):
        transition = finalize(make_asset(), stored_size=100)
        assert isinstance(transition.error, FileSizeMismatchError)
        assert "stored 100" in transition.snapshot.processing_error

    def test_size_outside_limits_fails(self):
        transition = finalize(make_asset(), max_size=1000)
        assert isinstance(transition.error, FileSizeMismatchError)

    def test_expired_window(self):
        with pytest.raises(UploadUrlExpiredError):
            finalize(make_asset(), now=NOW + timedelta(hours=1, seconds=1))

    def test_repeat_is_idempotent(self):
        first = finalize(make_asset())
        again = finalize(first.snapshot, lineage_id=uuid4())

        assert again.snapshot == first.snapshot
        assert again.effects == ()
        assert not again.changed

    def test_repeat_with_different_arguments_rejected(self):
        first = finalize(make_asset())
        with pytest.raises(InvalidStateError):
            finalize(first.snapshot, actual_size=1)

    def test_finalize_after_failure_rejected(self):
        failed = finalize(make_asset(), actual_size=1).snapshot
        with pytest.raises(InvalidStateError):
            finalize(failed)

    def test_repeat_after_processing_failure_is_idempotent(self):
        asset, lineage = processing_asset()
        failed = lifecycle.apply_failure(
            asset, lineage, JobKind.EXTRACT_METADATA, JobFailure("MediaProcessingError", "unreadable"),
        ).snapshot

        again = finalize(failed)

        assert again.snapshot == failed
        assert again.effects == ()
        assert again.error is None

    def test_repeat_after_processing_failure_with_other_arguments_rejected(self):
        asset, lineage = processing_asset()
        failed = lifecycle.apply_failure(
            asset, lineage, JobKind.INGEST, JobFailure("E", "gone"),
        ).snapshot
        with pytest.raises(InvalidStateError):
            finalize(failed, actual_size=1)


class TestProcessing:

    def test_begin_processing_moves_pending_to_processing(self):
        lineage = uuid4()
        pending = finalize(make_asset(), lineage_id=lineage).snapshot
        transition = lifecycle.begin_processing(pending, lineage)
        assert transition.snapshot.status == AssetStatus.PROCESSING

    def test_begin_processing_ignores_other_lineage(self):
        pending = finalize(make_asset()).snapshot
        assert lifecycle.begin_processing(pending, uuid4()).ignored

    def test_success_with_follow_up_stays_processing(self):
        asset, lineage = processing_asset()
        outcome = ProcessingOutcome(
            metadata=ContentMetadata(width=800, height=600),
            follow_up=(JobKind.GENERATE_THUMBNAILS,),
        )
        transition = lifecycle.apply_success(asset, lineage, outcome)

        assert transition.snapshot.status == AssetStatus.PROCESSING
        assert transition.snapshot.metadata == ContentMetadata(width=800, height=600)
        assert [e.kind for e in transition.effects] == [JobKind.GENERATE_THUMBNAILS]
        assert transition.effects[0].lineage_id == lineage

    def test_success_without_follow_up_completes(self):
        asset, lineage = processing_asset()
        thumb = Rendition(RenditionName.THUMBNAIL_SMALL, "k/small.jpg", "image/jpeg", 256, 192, 10)
        transition = lifecycle.apply_success(asset, lineage, ProcessingOutcome(renditions=(thumb,)))

        assert transition.snapshot.status == AssetStatus.COMPLETED
        assert transition.snapshot.rendition(RenditionName.THUMBNAIL_SMALL) == thumb

    def test_rendition_upsert_keeps_others(self):
        asset, lineage = processing_asset()
        small = Rendition(RenditionName.THUMBNAIL_SMALL, "k/small.jpg", width=256)
        large = Rendition(RenditionName.THUMBNAIL_LARGE, "k/large.jpg", width=640)
        asset = replace(asset, renditions=(small, large))

        redone = Rendition(RenditionName.THUMBNAIL_SMALL, "k/small.jpg", width=200)
        transition = lifecycle.apply_success(asset, lineage, ProcessingOutcome(renditions=(redone,)))

        assert transition.snapshot.rendition(RenditionName.THUMBNAIL_SMALL).width == 200
        assert transition.snapshot.rendition(RenditionName.THUMBNAIL_LARGE) == large

    def test_stale_lineage_result_ignored(self):
        asset, _ = processing_asset()
        transition = lifecycle.apply_success(asset, uuid4(), ProcessingOutcome())
        assert transition.ignored
        assert transition.snapshot == asset

    def test_result_for_deleted_asset_ignored(self):
        asset, lineage = processing_asset()
        deleted = lifecycle.soft_delete(asset, NOW).snapshot
        assert lifecycle.apply_success(deleted, lineage, ProcessingOutcome()).ignored

    def test_failure_keeps_artifacts(self):
        asset, lineage = processing_asset()
        asset = replace(asset, metadata=ContentMetadata(width=10, height=10))
        transition = lifecycle.apply_failure(
            asset, lineage, JobKind.GENERATE_THUMBNAILS, JobFailure("MediaProcessingError", "corrupt"),
        )

        assert transition.snapshot.status == AssetStatus.FAILED
        assert transition.snapshot.processing_error == "generate-thumbnails failed: MediaProcessingError: corrupt"
        assert transition.snapshot.metadata == ContentMetadata(width=10, height=10)

    def test_failure_after_completion_ignored(self):
        asset, lineage = processing_asset()
        completed = lifecycle.apply_success(asset, lineage, ProcessingOutcome()).snapshot
        transition = lifecycle.apply_failure(completed, lineage, JobKind.INGEST, JobFailure("E", "late"))
        assert transition.ignored
        assert transition.snapshot.status == AssetStatus.COMPLETED


class TestRetry:

    def test_retry_from_failed(self):
        failed = finalize(make_asset(), actual_size=1).snapshot
        lineage = uuid4()
        transition = lifecycle.retry(failed, lineage)

        assert transition.snapshot.status == AssetStatus.PENDING
        assert transition.snapshot.processing_error is None
        assert transition.snapshot.processing_lineage == lineage
        assert [e.kind for e in transition.effects] == [JobKind.INGEST]

    @pytest.mark.parametrize("status", [
        AssetStatus.UPLOADING, AssetStatus.PENDING, AssetStatus.PROCESSING, AssetStatus.COMPLETED,
    ])
    def test_retry_only_from_failed(self, status):
        with pytest.raises(InvalidStateError):
            lifecycle.retry(make_asset(status=status), uuid4())

    def test_failed_never_moves_to_pending_implicitly(self):
        failed = finalize(make_asset(), actual_size=1).snapshot
        with pytest.raises(InvalidStateError):
            finalize(failed)
        assert lifecycle.begin_processing(failed, failed.processing_lineage).ignored


class TestVersionsAndDeletion:

    def test_append_version(self):
        asset = make_asset(status=AssetStatus.COMPLETED)
        user = uuid4()
        transition = lifecycle.append_version(
            asset, storage_key="k/v2", file_size_bytes=99, created_by=user, now=NOW,
        )
        assert transition.snapshot.latest_version == 2
        assert transition.snapshot.versions[:1] == asset.versions
        assert transition.snapshot.version(2).created_by == user

    @pytest.mark.parametrize("status", [AssetStatus.UPLOADING, AssetStatus.PROCESSING, AssetStatus.FAILED])
    def test_append_version_rejected(self, status):
        with pytest.raises(InvalidStateError):
            lifecycle.append_version(
                make_asset(status=status), storage_key="k", file_size_bytes=1, created_by=uuid4(), now=NOW,
            )

    def test_soft_delete_queues_cleanup_of_every_key(self):
        asset = make_asset(status=AssetStatus.COMPLETED)
        asset = lifecycle.append_version(
            asset, storage_key="k/v2", file_size_bytes=1, created_by=uuid4(), now=NOW,
        ).snapshot
        asset = replace(asset, renditions=(Rendition(RenditionName.THUMBNAIL_SMALL, "k/small.jpg"),))

        transition = lifecycle.soft_delete(asset, NOW)

        assert transition.snapshot.is_deleted
        assert len(transition.effects) == 1
        effect = transition.effects[0]
        assert effect.kind == JobKind.CLEANUP
        assert effect.lineage_id is None
        assert effect.payload["storage_keys"] == [asset.storage_key, "k/v2", "k/small.jpg"]

    def test_update_descriptors_merges_custom_metadata(self):
        asset = make_asset(custom_metadata={"camera": "x100", "author": "a"})
        transition = lifecycle.update_descriptors(
            asset, tags=["new "], access=AccessLevel.ORGANIZATION, custom_metadata={"author": "b"},
        )
        assert transition.snapshot.tags == ("new",)
        assert transition.snapshot.access == AccessLevel.ORGANIZATION
        assert transition.snapshot.custom_metadata == {"camera": "x100", "author": "b"}
