"""JWT verification and the authenticated principal.

Tokens are issued by the identity service, not here. A token carries:
- sub: public.users id
- email
- memberships: {tenant_slug: role}
- tenant_slug: optional default tenant for the request
- platform_admin: true for operators allowed to provision tenants

Claims are trusted once the signature and expiry check out.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

from fastapi import HTTPException, status
from jose import JWTError, jwt

from src.condoboard.config import Settings, get_settings
from src.condoboard.models.public import STAFF_ROLES, OrgRole


@dataclass(frozen=True)
class Principal:
    """The caller behind a verified bearer token."""

    user_id: int
    email: str | None = None
    memberships: dict[str, str] = field(default_factory=dict)
    tenant_slug: str | None = None
    platform_admin: bool = False

    def role_in(self, slug: str) -> OrgRole | None:
        role = self.memberships.get(slug)
        try:
            return OrgRole(role) if role is not None else None
        except ValueError:
            return None

    def is_staff_in(self, slug: str) -> bool:
        return self.role_in(slug) in STAFF_ROLES


# ── JWT ─────────────────────────────────────────────────────────────────────


def create_access_token(
    data: dict, expires_delta: timedelta | None = None, settings: Settings | None = None
) -> str:
    """Sign a token with the configured key. Used by scripts and tests."""
    settings = settings or get_settings()
    to_encode = data.copy()
    now = datetime.now(timezone.utc)
    to_encode.update({"iat": now, "exp": now + (expires_delta or timedelta(hours=1))})
    return jwt.encode(to_encode, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def decode_principal(token: str, settings: Settings | None = None) -> Principal:
    """Verify a bearer token and build the Principal from its claims.

    Raises:
        HTTPException(401): Invalid signature, expired or malformed claims.
    """
    settings = settings or get_settings()
    try:
        payload = jwt.decode(token, settings.JWT_SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
    except JWTError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    memberships = payload.get("memberships") or {}
    try:
        user_id = int(payload["sub"])
    except (KeyError, TypeError, ValueError):
        user_id = None
    if user_id is None or not isinstance(memberships, dict):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Malformed token claims",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return Principal(
        user_id=user_id,
        email=payload.get("email"),
        memberships={str(k): str(v) for k, v in memberships.items()},
        tenant_slug=payload.get("tenant_slug"),
        platform_admin=bool(payload.get("platform_admin", False)),
    )


def bearer_token(authorization: str | None) -> str | None:
    if authorization and authorization.startswith("Bearer "):
        return authorization[7:]
    return None
