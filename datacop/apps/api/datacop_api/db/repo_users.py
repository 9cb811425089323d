"""User profile repository."""

from typing import Optional

from sqlalchemy import select

from datacop_api.db.models import UserProfile
from datacop_api.db.repo_base import VersionedRepository
from datacop_api.roles import DISTRIBUTOR


class UserRepository(VersionedRepository[UserProfile]):
    model = UserProfile
    pk_name = "uid"

    def get_by_email(self, email: str) -> Optional[UserProfile]:
        stmt = select(UserProfile).where(UserProfile.email == email.strip().lower())
        return self.db.execute(stmt).scalar_one_or_none()

    def email_exists(self, email: str) -> bool:
        return self.get_by_email(email) is not None

    def list_managers_of(self, uid: str) -> list[UserProfile]:
        """Profiles whose managed_users list contains ``uid``.

        managed_users is a JSON array; containment is evaluated in Python so
        the query stays portable across PostgreSQL and SQLite.
        """
        stmt = select(UserProfile).where(UserProfile.role == DISTRIBUTOR)
        return [p for p in self.db.execute(stmt).scalars() if uid in (p.managed_users or [])]

    def list_by_distributor(self, distributor_id: str) -> list[UserProfile]:
        """Profiles whose distributor_id points at ``distributor_id``."""
        stmt = select(UserProfile).where(UserProfile.distributor_id == distributor_id).order_by(UserProfile.uid)
        return list(self.db.execute(stmt).scalars())
