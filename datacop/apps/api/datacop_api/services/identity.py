"""Identity collaborator: authentication accounts behind the portal profiles.

The engine only needs two operations from the identity system: create an
account (email + password) and delete one by uid. Production uses the
Supabase Auth admin API; tests supply an in-memory fake with the same shape.
"""

import logging
from typing import Any, Optional, Protocol

from supabase import Client

from datacop_api.errors import DuplicateEmail, IdentityProviderError

logger = logging.getLogger(__name__)

_DUPLICATE_CODES = {"email_exists", "user_already_exists", "email_address_already_registered"}
_NOT_FOUND_CODES = {"user_not_found"}


class IdentityProvider(Protocol):
    def create_identity(self, email: str, password: str, metadata: Optional[dict[str, Any]] = None) -> str:
        """Create an account and return its uid.

        Raises:
            DuplicateEmail: The identity system already has this email
            IdentityProviderError: Any other failure
        """
        ...

    def delete_identity(self, uid: str) -> bool:
        """Delete an account.

        Returns:
            True if deleted, False if it was already gone

        Raises:
            IdentityProviderError: Deletion failed
        """
        ...


def _error_status(exc: Exception) -> Optional[int]:
    status = getattr(exc, "status", None) or getattr(exc, "status_code", None)
    try:
        return int(status) if status is not None else None
    except (TypeError, ValueError):
        return None


def _error_code(exc: Exception) -> str:
    return str(getattr(exc, "code", "") or "").lower()


def _is_duplicate(exc: Exception) -> bool:
    if _error_code(exc) in _DUPLICATE_CODES:
        return True
    return _error_status(exc) == 422 and "already" in str(exc).lower()


def _is_not_found(exc: Exception) -> bool:
    return _error_code(exc) in _NOT_FOUND_CODES or _error_status(exc) == 404


class SupabaseIdentityProvider:
    """Identity provider backed by Supabase Auth (service-role client)."""

    def __init__(self, client: Client):
        self.client = client

    def create_identity(self, email: str, password: str, metadata: Optional[dict[str, Any]] = None) -> str:
        try:
            response = self.client.auth.admin.create_user(
                {
                    "email": email,
                    "password": password,
                    "email_confirm": True,
                    "user_metadata": metadata or {},
                }
            )
        except Exception as e:
            if _is_duplicate(e):
                raise DuplicateEmail(f"An account already exists for {email}") from e
            logger.error(
                "identity.create.failed",
                extra={"error_type": type(e).__name__, "status": _error_status(e)},
                exc_info=True,
            )
            raise IdentityProviderError("Identity provider rejected account creation") from e

        if not response or not response.user:
            raise IdentityProviderError("Identity provider returned no user")

        logger.info("identity.created", extra={"user_id": response.user.id})
        return response.user.id

    def delete_identity(self, uid: str) -> bool:
        try:
            self.client.auth.admin.delete_user(uid)
        except Exception as e:
            if _is_not_found(e):
                logger.info("identity.delete.already_gone", extra={"user_id": uid})
                return False
            logger.error(
                "identity.delete.failed",
                extra={"user_id": uid, "error_type": type(e).__name__, "status": _error_status(e)},
                exc_info=True,
            )
            raise IdentityProviderError(f"Identity provider failed to delete account {uid}") from e

        logger.info("identity.deleted", extra={"user_id": uid})
        return True
