"""FastAPI dependencies: authenticated caller and per-request services."""
from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from assetvault.lib.database import get_db
from assetvault.lib.errors import AuthenticationError
from assetvault.lib.security import Caller, caller_from_token
from assetvault.services.asset_service import AssetService
from assetvault.services.job_queue import JobQueue

bearer_scheme = HTTPBearer(auto_error=False)


async def get_current_caller(
    credentials: HTTPAuthorizationCredentials = Depends(bearer_scheme),
) -> Caller:
    """Resolve the bearer token to a Caller, or 401."""
    if credentials is None:
        raise AuthenticationError()
    caller = caller_from_token(credentials.credentials)
    if caller is None:
        raise AuthenticationError("Invalid or expired token")
    return caller


async def get_asset_service(
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> AssetService:
    return AssetService(
        db,
        storage=request.app.state.storage,
        settings=request.app.state.settings,
    )


async def get_job_queue(
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> JobQueue:
    settings = request.app.state.settings
    return JobQueue(
        db,
        max_backoff_seconds=settings.max_backoff_seconds,
        visibility_timeout_seconds=settings.job_visibility_timeout_seconds,
    )
