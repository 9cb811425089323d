"""Membership between distributor users and their Organization.

An Organization's team_members/admin_members and a user's
distributor_id/is_distributor_admin describe the same fact from two sides.
Every change reads both aggregates, computes the new state and writes both
with version-checked updates in one transaction; a concurrent writer turns
into VersionConflict and the whole read-compute-write cycle is replayed.

Invariants after every commit:
- admin_members ⊆ team_members
- uid ∈ team_members ⇔ user.distributor_id == org.id
- user.is_distributor_admin ⇔ uid ∈ admin_members
"""

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional

from sqlalchemy.orm import Session

from datacop_api.auth.session_auth import SessionAuthContext
from datacop_api.context import organization_id_var
from datacop_api.db.models import Organization, UserProfile, new_id
from datacop_api.db.repo_invitations import InvitationRepository
from datacop_api.db.repo_organizations import OrganizationRepository
from datacop_api.db.repo_users import UserRepository
from datacop_api.db.transaction import VersionConflict, run_in_transaction
from datacop_api.errors import (
    AlreadyMember,
    IneligibleMember,
    NotAMember,
    OrganizationNotFound,
    PermissionDenied,
    UserNotFound,
    ValidationFailed,
)
from datacop_api.roles import DISTRIBUTOR

logger = logging.getLogger(__name__)

ORGANIZATION_EDITABLE_FIELDS = frozenset(
    {"name", "company_name", "address", "contact_email", "contact_phone", "active"}
)


@dataclass(frozen=True)
class MemberView:
    uid: str
    email: str
    display_name: str
    is_admin: bool


def _write_both(
    db: Session,
    org: Organization,
    team: list[str],
    admins: list[str],
    user: Optional[UserProfile],
    user_updates: Optional[dict],
) -> None:
    """Persist the new membership state of both aggregates, version-checked."""
    if not OrganizationRepository(db).update_with_version_check(
        org.id, org.version, {"team_members": team, "admin_members": admins}
    ):
        raise VersionConflict(f"organization {org.id} changed concurrently")
    if user is not None and user_updates is not None:
        if not UserRepository(db).update_with_version_check(user.uid, user.version, user_updates):
            raise VersionConflict(f"user {user.uid} changed concurrently")


class MembershipService:
    """Attach, detach and promote distributor team members."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        *,
        max_attempts: Optional[int] = None,
        base_delay: Optional[float] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.session_factory = session_factory
        self._tx_opts = {"max_attempts": max_attempts, "base_delay": base_delay, "sleep": sleep}

    # ------------------------------------------------------------------
    # In-transaction primitives (also used by AccountProvisioner)
    # ------------------------------------------------------------------

    def attach_in(self, db: Session, org_id: str, uid: str, as_admin: bool = False) -> None:
        org = OrganizationRepository(db).get(org_id)
        if org is None:
            raise OrganizationNotFound(f"Organization {org_id} not found")
        user = UserRepository(db).get(uid)
        if user is None:
            raise UserNotFound(f"User {uid} not found")
        if user.role != DISTRIBUTOR:
            raise IneligibleMember(f"Only distributor accounts can join an organization (role={user.role})")
        if user.distributor_id and user.distributor_id != org_id:
            raise AlreadyMember(f"User {uid} already belongs to organization {user.distributor_id}")

        team = list(org.team_members or [])
        admins = [member for member in (org.admin_members or []) if member != uid]
        if uid not in team:
            team.append(uid)
        if as_admin:
            admins.append(uid)

        if (
            team == list(org.team_members or [])
            and admins == list(org.admin_members or [])
            and user.distributor_id == org_id
            and user.is_distributor_admin == as_admin
        ):
            return

        _write_both(
            db, org, team, admins, user, {"distributor_id": org_id, "is_distributor_admin": as_admin}
        )

    def detach_in(self, db: Session, org_id: str, uid: str) -> bool:
        """Remove ``uid`` from the organization. Returns False if nothing changed."""
        org = OrganizationRepository(db).get(org_id)
        if org is None:
            raise OrganizationNotFound(f"Organization {org_id} not found")
        user = UserRepository(db).get(uid)

        team = [member for member in (org.team_members or []) if member != uid]
        admins = [member for member in (org.admin_members or []) if member != uid]
        org_changed = team != list(org.team_members or []) or admins != list(org.admin_members or [])
        user_linked = user is not None and user.distributor_id == org_id

        if not org_changed and not user_linked:
            return False

        _write_both(
            db,
            org,
            team,
            admins,
            user if user_linked else None,
            {"distributor_id": None, "is_distributor_admin": False} if user_linked else None,
        )
        return True

    def set_admin_in(self, db: Session, org_id: str, uid: str, is_admin: bool) -> bool:
        """Grant or revoke admin rights. Returns False if nothing changed.

        Demoting a non-member is a no-op; promoting one raises NotAMember.
        """
        org = OrganizationRepository(db).get(org_id)
        if org is None:
            raise OrganizationNotFound(f"Organization {org_id} not found")

        team = list(org.team_members or [])
        if uid not in team:
            if is_admin:
                raise NotAMember(f"User {uid} is not a member of organization {org_id}")
            return False

        user = UserRepository(db).get(uid)
        if user is None:
            raise UserNotFound(f"User {uid} not found")

        admins = [member for member in (org.admin_members or []) if member != uid]
        if is_admin:
            admins.append(uid)

        if admins == list(org.admin_members or []) and user.is_distributor_admin == is_admin:
            return False

        _write_both(db, org, team, admins, user, {"is_distributor_admin": is_admin})
        return True

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    def _authorize(self, db: Session, caller: SessionAuthContext, org_id: str) -> Organization:
        """Platform admins manage any organization; org admins manage their own.

        Non-admins get PermissionDenied whether or not the organization exists.
        """
        org = OrganizationRepository(db).get(org_id)
        if caller.is_admin:
            if org is None:
                raise OrganizationNotFound(f"Organization {org_id} not found")
            return org
        if org is None or caller.uid not in (org.admin_members or []):
            logger.warning(
                "membership.permission_denied",
                extra={"user_id": caller.uid, "organization_id": org_id},
            )
            raise PermissionDenied("You are not an administrator of this organization")
        return org

    def _run(self, operation: str, work: Callable[[Session], object]) -> object:
        return run_in_transaction(self.session_factory, work, operation=operation, **self._tx_opts)

    def attach(self, caller: SessionAuthContext, org_id: str, uid: str, as_admin: bool = False) -> None:
        organization_id_var.set(org_id)

        def work(db: Session) -> None:
            self._authorize(db, caller, org_id)
            self.attach_in(db, org_id, uid, as_admin)

        self._run("membership.attach", work)
        logger.info("membership.attached", extra={"member_uid": uid, "as_admin": as_admin})

    def detach(self, caller: SessionAuthContext, org_id: str, uid: str) -> None:
        organization_id_var.set(org_id)

        def work(db: Session) -> bool:
            self._authorize(db, caller, org_id)
            return self.detach_in(db, org_id, uid)

        changed = self._run("membership.detach", work)
        logger.info("membership.detached", extra={"member_uid": uid, "changed": changed})

    def set_admin(self, caller: SessionAuthContext, org_id: str, uid: str, is_admin: bool) -> None:
        organization_id_var.set(org_id)

        def work(db: Session) -> bool:
            self._authorize(db, caller, org_id)
            return self.set_admin_in(db, org_id, uid, is_admin)

        changed = self._run("membership.set_admin", work)
        logger.info(
            "membership.admin_updated",
            extra={"member_uid": uid, "is_admin": is_admin, "changed": changed},
        )

    def list_members(self, caller: SessionAuthContext, org_id: str) -> list[MemberView]:
        """Team of an organization, visible to platform admins and its own members."""

        def work(db: Session) -> list[MemberView]:
            org = OrganizationRepository(db).get(org_id)
            if not caller.is_admin and (org is None or caller.uid not in (org.team_members or [])):
                raise PermissionDenied("You are not a member of this organization")
            if org is None:
                raise OrganizationNotFound(f"Organization {org_id} not found")

            users = UserRepository(db)
            admins = set(org.admin_members or [])
            members = []
            for uid in org.team_members or []:
                profile = users.get(uid)
                if profile is None:
                    logger.warning("membership.dangling_member", extra={"member_uid": uid, "organization_id": org_id})
                    continue
                members.append(
                    MemberView(
                        uid=uid,
                        email=profile.email,
                        display_name=profile.display_name,
                        is_admin=uid in admins,
                    )
                )
            return members

        return self._run("membership.list", work)

    def create_organization(
        self,
        caller: SessionAuthContext,
        name: str,
        company_name: Optional[str] = None,
        address: str = "",
        contact_email: str = "",
        contact_phone: str = "",
    ) -> Organization:
        """Create an empty distributor organization (admin only)."""
        if not caller.is_admin:
            raise PermissionDenied("Only admins can create organizations")
        if not name or not name.strip():
            raise ValidationFailed("Organization name is required")

        def work(db: Session) -> Organization:
            org = Organization(
                id=new_id(),
                name=name.strip(),
                company_name=(company_name or name).strip(),
                address=address,
                contact_email=contact_email,
                contact_phone=contact_phone,
                team_members=[],
                admin_members=[],
            )
            return OrganizationRepository(db).add(org)

        org = self._run("organization.create", work)
        logger.info("organization.created", extra={"organization_id": org.id})
        return org

    def update_organization(self, caller: SessionAuthContext, org_id: str, **changes: Any) -> Organization:
        """Edit an organization's details (admin only).

        Membership lists are not editable here; they change through
        attach/detach/set_admin only.

        Raises:
            PermissionDenied: Caller is not a platform admin
            ValidationFailed: Unknown field or blank name
            OrganizationNotFound: No such organization
        """
        if not caller.is_admin:
            raise PermissionDenied("Only admins can edit organizations")
        unknown = set(changes) - ORGANIZATION_EDITABLE_FIELDS
        if unknown:
            raise ValidationFailed(f"Cannot update organization fields: {', '.join(sorted(unknown))}")
        if any(value is None for value in changes.values()):
            raise ValidationFailed("Organization fields cannot be null")
        for field in ("name", "company_name"):
            if field in changes:
                if not changes[field] or not str(changes[field]).strip():
                    raise ValidationFailed(f"Organization {field} cannot be blank")
                changes[field] = changes[field].strip()
        organization_id_var.set(org_id)

        def work(db: Session) -> Organization:
            orgs = OrganizationRepository(db)
            org = orgs.get(org_id)
            if org is None:
                raise OrganizationNotFound(f"Organization {org_id} not found")
            if changes and not orgs.update_with_version_check(org.id, org.version, changes):
                raise VersionConflict(f"organization {org.id} changed concurrently")
            return org

        org = self._run("organization.update", work)
        logger.info("organization.updated", extra={"fields": sorted(changes)})
        return org

    def delete_organization(self, caller: SessionAuthContext, org_id: str) -> bool:
        """Delete an organization and unlink every user that points at it (admin only).

        Members listed in team_members and users whose distributor_id names
        the organization are both unlinked, pending invitations into it are
        revoked, and the organization row is removed, all in one
        version-checked transaction. Idempotent: returns False when the
        organization is already gone.
        """
        if not caller.is_admin:
            raise PermissionDenied("Only admins can delete organizations")
        organization_id_var.set(org_id)

        def work(db: Session) -> bool:
            orgs = OrganizationRepository(db)
            users = UserRepository(db)
            org = orgs.get(org_id)
            if org is None:
                return False

            linked: dict[str, UserProfile] = {p.uid: p for p in users.list_by_distributor(org_id)}
            for uid in org.team_members or []:
                if uid not in linked:
                    profile = users.get(uid)
                    if profile is not None and profile.distributor_id in (None, org_id):
                        linked[uid] = profile

            for profile in linked.values():
                unlinked = users.update_with_version_check(
                    profile.uid,
                    profile.version,
                    {"distributor_id": None, "is_distributor_admin": False},
                )
                if not unlinked:
                    raise VersionConflict(f"user {profile.uid} changed concurrently")

            revoked = InvitationRepository(db).delete_pending_for_organization(org_id)
            if not orgs.delete_with_version_check(org.id, org.version):
                raise VersionConflict(f"organization {org.id} changed concurrently")
            logger.info(
                "organization.members_unlinked",
                extra={"unlinked": sorted(linked), "invitations_revoked": revoked},
            )
            return True

        deleted = self._run("organization.delete", work)
        logger.info("organization.deleted", extra={"deleted": deleted})
        return deleted
