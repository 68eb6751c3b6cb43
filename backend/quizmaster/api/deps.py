"""Common FastAPI dependencies.

Identity comes from the account service, never from this API:

  - default: clients send X-User-Id / X-User-Role headers
  - AUTH_ENABLED=true: ``Authorization: Bearer <jwt>`` (``sub`` = user id,
    optional ``role`` claim)

A minimal User row is mirrored on first sight so foreign keys hold.
"""

from __future__ import annotations

from typing import Optional

from fastapi import Depends, Header, HTTPException
from sqlalchemy.orm import Session

from quizmaster.core.config import settings
from quizmaster.core.security import safe_decode_token
from quizmaster.db.session import get_db
from quizmaster.models.user import User
from quizmaster.services.user_service import ensure_user_exists


def _normalize_role(role: Optional[str]) -> Optional[str]:
    if not role:
        return None
    r = str(role).strip().lower()
    if r == "user" or r in {str(x).strip().lower() for x in settings.ADMIN_ROLES}:
        return r
    return None


def is_admin(user: Optional[User]) -> bool:
    if user is None:
        return False
    role = str(getattr(user, "role", "") or "").strip().lower()
    return role in {str(x).strip().lower() for x in settings.ADMIN_ROLES}


def _parse_user_id(raw) -> Optional[int]:
    try:
        uid = int(str(raw).strip())
    except (TypeError, ValueError):
        return None
    return uid if uid > 0 else None


def _user_from_bearer(db: Session, authorization: Optional[str]) -> Optional[User]:
    if not authorization:
        return None
    scheme, _, token = str(authorization).partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise HTTPException(status_code=401, detail="Invalid authorization header")

    payload = safe_decode_token(token.strip())
    uid = _parse_user_id(payload.get("sub")) if payload else None
    if uid is None:
        raise HTTPException(status_code=401, detail="Invalid or expired token")

    role = _normalize_role(payload.get("role")) or "user"
    return ensure_user_exists(db, uid, role=role)


def get_current_user_optional(
    db: Session = Depends(get_db),
    x_user_id: Optional[str] = Header(default=None, alias="X-User-Id"),
    x_user_role: Optional[str] = Header(default=None, alias="X-User-Role"),
    authorization: Optional[str] = Header(default=None, alias="Authorization"),
) -> Optional[User]:
    """Return the calling user, or None for anonymous requests."""

    if settings.AUTH_ENABLED:
        return _user_from_bearer(db, authorization)

    if not x_user_id:
        return None

    uid = _parse_user_id(x_user_id)
    if uid is None:
        return None

    role = _normalize_role(x_user_role) or "user"
    return ensure_user_exists(db, uid, role=role)


def require_user(user: Optional[User] = Depends(get_current_user_optional)) -> User:
    if not user:
        raise HTTPException(status_code=401, detail="Not authenticated")
    if not bool(getattr(user, "is_active", True)):
        raise HTTPException(status_code=403, detail="User is inactive")
    return user
