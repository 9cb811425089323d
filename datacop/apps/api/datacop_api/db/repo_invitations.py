"""Invitation repository."""

from typing import Optional

from sqlalchemy import delete, select

from datacop_api.db.models import Invitation
from datacop_api.db.repo_base import VersionedRepository


class InvitationRepository(VersionedRepository[Invitation]):
    model = Invitation

    def get_by_token(self, token: str) -> Optional[Invitation]:
        stmt = select(Invitation).where(Invitation.token == token)
        return self.db.execute(stmt).scalar_one_or_none()

    def find_pending(self, email: str, inviter_id: str) -> Optional[Invitation]:
        """Return the (at most one) pending invitation for an (email, inviter) pair."""
        stmt = select(Invitation).where(
            Invitation.email == email.strip().lower(),
            Invitation.inviter_id == inviter_id,
            Invitation.pending_slot == 1,
        )
        return self.db.execute(stmt).scalar_one_or_none()

    def list_by_inviter(self, inviter_id: str) -> list[Invitation]:
        stmt = (
            select(Invitation)
            .where(Invitation.inviter_id == inviter_id)
            .order_by(Invitation.created_at.desc())
        )
        return list(self.db.execute(stmt).scalars())

    def delete(self, invitation_id: str, inviter_id: Optional[str] = None) -> bool:
        """Delete an invitation, optionally scoped to its inviter.

        Returns:
            True if a row was removed
        """
        stmt = delete(Invitation).where(Invitation.id == invitation_id)
        if inviter_id is not None:
            stmt = stmt.where(Invitation.inviter_id == inviter_id)
        result = self.db.execute(stmt.execution_options(synchronize_session=False))
        return result.rowcount > 0

    def delete_pending_issued_by(self, inviter_id: str) -> int:
        stmt = delete(Invitation).where(
            Invitation.inviter_id == inviter_id,
            Invitation.status == "pending",
        )
        result = self.db.execute(stmt.execution_options(synchronize_session=False))
        return result.rowcount

    def delete_pending_for_organization(self, organization_id: str) -> int:
        """Drop pending invitations that would join ``organization_id`` on acceptance."""
        stmt = delete(Invitation).where(
            Invitation.organization_id == organization_id,
            Invitation.status == "pending",
        )
        result = self.db.execute(stmt.execution_options(synchronize_session=False))
        return result.rowcount
