"""Session authentication for portal endpoints.

Supabase JWT-based session auth.

FLOW:
1. User signs in through Supabase Auth on the portal -> receives JWT access_token
2. Portal calls the API with Authorization: Bearer <jwt>
3. JWT is validated by Supabase, uid is mapped to the users profile
4. Returns SessionAuthContext(uid, role, distributor linkage)

SECURITY:
- JWT signature verified by Supabase
- Role comes from the users profile, never from client-supplied metadata
- Deactivated profiles are rejected
"""

import logging
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from datacop_api.context import organization_id_var, user_id_var
from datacop_api.db.models import UserProfile
from datacop_api.db.session import get_db
from datacop_api.roles import ADMIN
from datacop_api.supabase_client import get_supabase_client
from datacop_api.utils.clock import utcnow

logger = logging.getLogger(__name__)

# HTTPBearer scheme for session JWT
session_security = HTTPBearer(auto_error=False, description="Supabase JWT Session Token")


class SessionAuthContext:
    """Authenticated caller for a portal request."""

    def __init__(
        self,
        uid: str,
        role: str,
        email: Optional[str] = None,
        display_name: str = "",
        distributor_id: Optional[str] = None,
        is_distributor_admin: bool = False,
    ):
        self.uid = uid
        self.role = role
        self.email = email
        self.display_name = display_name
        self.distributor_id = distributor_id
        self.is_distributor_admin = is_distributor_admin

    @property
    def is_admin(self) -> bool:
        return self.role == ADMIN

    @classmethod
    def from_profile(cls, profile: UserProfile) -> "SessionAuthContext":
        return cls(
            uid=profile.uid,
            role=profile.role,
            email=profile.email,
            display_name=profile.display_name,
            distributor_id=profile.distributor_id,
            is_distributor_admin=profile.is_distributor_admin,
        )


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def _touch_last_login(db: Session, uid: str) -> None:
    """Record the login time; never blocks authentication."""
    try:
        db.execute(update(UserProfile).where(UserProfile.uid == uid).values(last_login=utcnow()))
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.warning("session.last_login.update_failed", extra={"user_id": uid}, exc_info=True)


async def get_session_auth_context(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(session_security),
    db: Session = Depends(get_db),
) -> SessionAuthContext:
    """Get session authentication context from a Supabase JWT.

    Raises:
        HTTPException: 401 if authentication fails, 403 if the profile is deactivated
    """
    if not credentials:
        raise _unauthorized("Missing Authorization header. Please log in first.")

    try:
        supabase = get_supabase_client()
        # Supabase validates JWT signature and expiration
        user_response = supabase.auth.get_user(credentials.credentials)
    except Exception as e:
        logger.error(f"JWT validation failed: {type(e).__name__}", exc_info=True)
        raise _unauthorized("Session validation failed. Please log in again.")

    if not user_response or not user_response.user:
        raise _unauthorized("Invalid or expired session token. Please log in again.")

    uid = user_response.user.id
    profile = db.get(UserProfile, uid)
    if profile is None:
        logger.warning("session.no_profile", extra={"user_id": uid})
        raise _unauthorized("No portal profile exists for this account.")

    if not profile.active:
        logger.warning("session.inactive_profile", extra={"user_id": uid})
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="This account has been deactivated. Please contact an administrator.",
        )

    _touch_last_login(db, uid)

    user_id_var.set(uid)
    organization_id_var.set(profile.distributor_id or "")

    logger.info("session.auth.success", extra={"user_id": uid, "role": profile.role})
    return SessionAuthContext.from_profile(profile)


def require_admin_role(
    auth: SessionAuthContext = Depends(get_session_auth_context),
) -> SessionAuthContext:
    """Require the platform admin role.

    Raises:
        HTTPException: 403 if not admin
    """
    if not auth.is_admin:
        logger.warning(
            "auth.insufficient_permissions",
            extra={"user_id": auth.uid, "role": auth.role},
        )
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin role required for this operation",
        )
    return auth
