import uuid
from dataclasses import dataclass, field

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from models.enums import UserRole

from .settings import settings

bearer_scheme = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class Actor:
    id: uuid.UUID
    roles: frozenset[UserRole] = field(default_factory=frozenset)

    @property
    def is_admin(self) -> bool:
        return UserRole.ADMIN in self.roles


def decode_http_access_token(token: str) -> Actor:
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except jwt.PyJWTError:
        raise ValueError("Invalid or expired token")

    subject = payload.get("sub")
    if not subject:
        raise ValueError("Token missing user ID")

    roles = set()
    for role in payload.get("roles", []):
        try:
            roles.add(UserRole(role))
        except ValueError:
            continue

    return Actor(id=uuid.UUID(str(subject)), roles=frozenset(roles))


def issue_access_token(actor_id: uuid.UUID, roles: list[UserRole] | None = None) -> str:
    payload = {"sub": str(actor_id), "roles": [role.value for role in roles or []]}
    return jwt.encode(payload, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


async def get_current_actor(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> Actor:
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Not Authenticated"
        )
    try:
        return decode_http_access_token(credentials.credentials)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(e))
