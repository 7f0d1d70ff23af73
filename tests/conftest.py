import hashlib
import os
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional
from uuid import UUID

# Configure the environment before importing app modules.
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key")
os.environ.setdefault("LOG_LEVEL", "WARNING")

import httpx
import pytest
import pytest_asyncio

from assetvault.lib.config import Settings
from assetvault.lib.database import Base, create_engine, create_session_factory
from assetvault.lib.security import ORG_ADMIN_ROLE, Caller
from assetvault.models.directory import Organization, Project, User
from assetvault.services.asset_service import AssetService
from assetvault.services.job_queue import JobQueue
from assetvault.services.lifecycle import ContentMetadata
from assetvault.services.storage_service import StorageService

STORAGE_BASE_URL = "https://storage.test"

JPEG_BYTES = b"\xff\xd8\xff\xe0" + b"fake-jpeg-content" * 64
MP4_BYTES = b"\x00\x00\x00\x18ftypmp42" + b"fake-video-content" * 64


def sha256_of(content: bytes) -> str:
    return "sha256:" + hashlib.sha256(content).hexdigest()


# =============================================================================
# Fakes
# =============================================================================


class FakeObjectStore:
    """In-memory object store with the S3 adapter's interface."""

    def __init__(self):
        self.objects: Dict[str, Dict[str, Any]] = {}
        self.deleted = []
        self.presigned_uploads = []

    def put(self, key: str, content: bytes, content_type: str = "application/octet-stream") -> None:
        """Simulate a client PUT to a presigned URL."""
        self.objects[key] = {"content": content, "content_type": content_type}

    async def presign_upload(self, key: str, content_type: str, expires_in: int) -> str:
        self.presigned_uploads.append(key)
        return f"{STORAGE_BASE_URL}/{key}?X-Amz-Expires={expires_in}&op=put"

    async def presign_download(self, key: str, expires_in: int, filename: Optional[str] = None) -> str:
        return f"{STORAGE_BASE_URL}/{key}"

    async def head(self, key: str) -> Optional[Dict[str, Any]]:
        stored = self.objects.get(key)
        if stored is None:
            return None
        return {
            "size": len(stored["content"]),
            "content_type": stored["content_type"],
            "etag": hashlib.md5(stored["content"]).hexdigest(),
        }

    async def get_bytes(self, key: str) -> bytes:
        if key not in self.objects:
            raise FileNotFoundError(f"File not found: {key}")
        return self.objects[key]["content"]

    async def put_bytes(self, key: str, body: bytes, content_type: str) -> Dict[str, Any]:
        self.put(key, body, content_type)
        return {"key": key, "size": len(body), "content_type": content_type}

    async def delete(self, key: str) -> None:
        self.objects.pop(key, None)
        self.deleted.append(key)

    def transport(self) -> httpx.MockTransport:
        """Serves presigned GETs from the in-memory objects."""
        def handler(request: httpx.Request) -> httpx.Response:
            stored = self.objects.get(request.url.path.lstrip("/"))
            if stored is None:
                return httpx.Response(404)
            return httpx.Response(200, content=stored["content"])
        return httpx.MockTransport(handler)


class FakeMediaProcessor:
    """Stands in for libvips / ffmpeg; records what it was asked to do."""

    def __init__(self):
        self.calls = []

    async def probe_image(self, path: Path) -> ContentMetadata:
        self.calls.append(("probe_image", path.read_bytes()[:4]))
        return ContentMetadata(width=1024, height=768)

    async def probe_document(self, path: Path) -> ContentMetadata:
        self.calls.append(("probe_document", None))
        return ContentMetadata(width=612, height=792, page_count=3)

    async def probe_av(self, path: Path) -> ContentMetadata:
        self.calls.append(("probe_av", None))
        return ContentMetadata(width=1920, height=1080, duration=12.5, codec="h264", bitrate=4_000_000)

    async def thumbnail(self, path: Path, size: int) -> Dict[str, Any]:
        self.calls.append(("thumbnail", size))
        return {"content": b"thumb-%d" % size, "width": size, "height": size * 3 // 4}

    async def transcode_preview(self, source: Path, output: Path, height: int) -> Dict[str, Any]:
        self.calls.append(("transcode_preview", height))
        output.write_bytes(b"preview-" + source.read_bytes()[:16])
        return {"width": 1280, "height": height, "duration": 12.5}


# =============================================================================
# Settings / database
# =============================================================================


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        database_url=f"sqlite+aiosqlite:///{tmp_path}/assets.db",
        jwt_secret_key=os.environ["JWT_SECRET_KEY"],
        storage_provider="s3",
        upload_url_expire_seconds=3600,
        download_url_expire_seconds=300,
        min_file_size_bytes=1,
        max_file_size_bytes=10 * 1024 * 1024,
        verify_uploads=True,
        worker_concurrency=1,
        worker_poll_interval_seconds=0.05,
        job_heartbeat_interval_seconds=60,
        job_visibility_timeout_seconds=300,
        max_backoff_seconds=300,
        log_level="WARNING",
    )


@pytest_asyncio.fixture
async def engine(settings):
    engine = create_engine(settings.database_url)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


# =============================================================================
# Directory and callers
# =============================================================================


@dataclass
class Tenants:
    org_id: UUID
    project_id: UUID
    other_project_id: UUID
    other_org_id: UUID
    foreign_project_id: UUID
    owner: Caller
    member: Caller
    admin: Caller
    outsider: Caller


@pytest_asyncio.fixture
async def tenants(session_factory) -> Tenants:
    async with session_factory() as session:
        org = Organization(name="Acme")
        other_org = Organization(name="Globex")
        session.add_all([org, other_org])
        await session.flush()

        project = Project(organization_id=org.id, name="Launch")
        other_project = Project(organization_id=org.id, name="Archive")
        foreign_project = Project(organization_id=other_org.id, name="Elsewhere")
        owner = User(email="owner@acme.test", name="Owner")
        member = User(email="member@acme.test", name="Member")
        admin = User(email="admin@acme.test", name="Admin")
        outsider = User(email="someone@globex.test", name="Outsider")
        session.add_all([project, other_project, foreign_project, owner, member, admin, outsider])
        await session.commit()

        return Tenants(
            org_id=org.id,
            project_id=project.id,
            other_project_id=other_project.id,
            other_org_id=other_org.id,
            foreign_project_id=foreign_project.id,
            owner=Caller(user_id=owner.id, organization_id=org.id),
            member=Caller(user_id=member.id, organization_id=org.id),
            admin=Caller(user_id=admin.id, organization_id=org.id, roles=frozenset({ORG_ADMIN_ROLE})),
            outsider=Caller(user_id=outsider.id, organization_id=other_org.id),
        )


# =============================================================================
# Storage, services and media
# =============================================================================


@pytest.fixture
def object_store() -> FakeObjectStore:
    return FakeObjectStore()


@pytest_asyncio.fixture
async def storage(object_store, settings):
    async with httpx.AsyncClient(transport=object_store.transport()) as client:
        yield StorageService(object_store, settings, http_client=client)


@pytest.fixture
def media() -> FakeMediaProcessor:
    return FakeMediaProcessor()


@pytest.fixture
def open_service(session_factory, storage, settings):
    """Open an AssetService on its own session: `async with open_service() as service`."""
    @asynccontextmanager
    async def _open():
        async with session_factory() as session:
            yield AssetService(session, storage=storage, settings=settings)
    return _open


@pytest_asyncio.fixture
async def service(open_service):
    async with open_service() as service:
        yield service


@pytest_asyncio.fixture
async def queue(session_factory, settings):
    async with session_factory() as session:
        yield JobQueue(
            session,
            max_backoff_seconds=settings.max_backoff_seconds,
            visibility_timeout_seconds=settings.job_visibility_timeout_seconds,
        )


@pytest.fixture
def upload_asset(service, object_store, tenants):
    """
    Reserve an asset, put its content into storage and optionally finalize it.

    Returns the snapshot after the last step.
    """
    async def _upload(
        content: bytes = JPEG_BYTES,
        filename: str = "photo.jpg",
        mime_type: str = "image/jpeg",
        caller: Optional[Caller] = None,
        finalize: bool = True,
        **kwargs,
    ):
        caller = caller or tenants.owner
        created = await service.create_upload(
            caller,
            organization_id=caller.organization_id,
            project_id=kwargs.pop("project_id", tenants.project_id),
            original_filename=filename,
            mime_type=mime_type,
            file_size_bytes=len(content),
            checksum=sha256_of(content),
            **kwargs,
        )
        object_store.put(created["storage_key"], content, mime_type)
        if not finalize:
            return created["asset"]
        return await service.finalize_upload(
            created["asset"].id,
            checksum=sha256_of(content),
            file_size_bytes=len(content),
            caller=caller,
        )
    return _upload
