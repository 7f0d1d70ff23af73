from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import FrozenSet, Optional
from uuid import UUID

from jose import JWTError, jwt

from assetvault.lib.config import settings

ORG_ADMIN_ROLE = "org_admin"


@dataclass(frozen=True)
class Caller:
    """Authenticated identity as supplied by the identity service."""
    user_id: UUID
    organization_id: UUID
    roles: FrozenSet[str] = field(default_factory=frozenset)

    @property
    def is_org_admin(self) -> bool:
        return ORG_ADMIN_ROLE in self.roles


def create_access_token(caller: Caller, expires_delta: Optional[timedelta] = None) -> str:
    """Mint a token for a caller. Used by tooling and tests; production tokens come from the identity service."""
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=15))
    to_encode = {
        "sub": str(caller.user_id),
        "org": str(caller.organization_id),
        "roles": sorted(caller.roles),
        "exp": expire,
        "type": "access",
    }
    return jwt.encode(to_encode, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str) -> Optional[dict]:
    """Decode and validate an access token."""
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret_key,
            algorithms=[settings.jwt_algorithm]
        )
        if payload.get("type") != "access":
            return None
        return payload
    except JWTError:
        return None


def caller_from_token(token: str) -> Optional[Caller]:
    payload = decode_access_token(token)
    if not payload:
        return None
    try:
        return Caller(
            user_id=UUID(payload["sub"]),
            organization_id=UUID(payload["org"]),
            roles=frozenset(payload.get("roles") or ()),
        )
    except (KeyError, ValueError, TypeError):
        return None
