"""Authentication dependencies for API routes.

Provides API Key authentication via the X-API-Key header.
When API_KEY is not configured (empty string), authentication is disabled
to allow development without credentials.

User identity and roles are resolved upstream (the gateway validates the
session and forwards ``X-User-Id``, ``X-Company-Id`` and ``X-User-Roles``).
This module only turns those headers into an ``Actor``.
"""

import secrets
import uuid
from dataclasses import dataclass, field
from typing import Annotated

from fastapi import Depends, Header, HTTPException, Security, status
from fastapi.security import APIKeyHeader

from app.core.config import settings
from app.core.errors import ForbiddenError

_api_key_header = APIKeyHeader(
    name=settings.API_KEY_HEADER,
    auto_error=False,
)


async def verify_api_key(
    api_key: Annotated[str | None, Security(_api_key_header)] = None,
) -> str:
    """Validate the API key from the request header.

    Raises HTTP 401 if the key is missing and HTTP 403 if invalid.
    Returns the validated API key string.

    When ``settings.API_KEY`` is empty, authentication is skipped
    (development mode).
    """
    if not settings.API_KEY:
        return "dev-no-auth"

    if api_key is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing API key",
        )

    if not secrets.compare_digest(api_key, settings.API_KEY):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid API key",
        )

    return api_key


RequireAuth = Depends(verify_api_key)


@dataclass(frozen=True)
class Actor:
    """The pre-validated caller of a dispatch-core operation."""

    user_id: uuid.UUID
    company_id: uuid.UUID
    roles: frozenset[str] = field(default_factory=frozenset)

    @property
    def can_write(self) -> bool:
        return bool(self.roles & settings.write_roles)


def require_write_role(actor: Actor) -> None:
    """Reject actors without a shop-floor write role (e.g. office-only users)."""
    if not actor.can_write:
        raise ForbiddenError("insufficient_role", "Requires one of: " + ", ".join(sorted(settings.write_roles)))


async def get_actor(
    x_user_id: Annotated[str | None, Header()] = None,
    x_company_id: Annotated[str | None, Header()] = None,
    x_user_roles: Annotated[str, Header()] = "",
) -> Actor:
    """Build the Actor from gateway-forwarded identity headers."""
    if not x_user_id or not x_company_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing user context",
        )
    try:
        user_id = uuid.UUID(x_user_id)
        company_id = uuid.UUID(x_company_id)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid user context",
        )
    roles = frozenset(r.strip() for r in x_user_roles.split(",") if r.strip())
    return Actor(user_id=user_id, company_id=company_id, roles=roles)
