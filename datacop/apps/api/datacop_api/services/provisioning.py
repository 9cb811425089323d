"""Account provisioning and deprovisioning.

Provisioning spans two systems: the identity provider (not transactional)
and the entity store. The identity is created first; the profile insert,
the caller-supplied claim (invitation acceptance) and the organization
linkage then commit as one database transaction. If that transaction
cannot commit, the identity is deleted again so no orphan account remains.

Deprovisioning runs in the opposite order: the database cleanup commits
first, then the identity is deleted. A failure in the second step is
reported as PartialDeprovision, which is safe to retry.
"""

import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from datacop_api.auth.session_auth import SessionAuthContext
from datacop_api.db.models import Invitation, Organization, UserProfile, new_id
from datacop_api.db.repo_invitations import InvitationRepository
from datacop_api.db.repo_organizations import OrganizationRepository
from datacop_api.db.repo_users import UserRepository
from datacop_api.db.transaction import VersionConflict, run_in_transaction
from datacop_api.errors import (
    DuplicateEmail,
    IdentityProviderError,
    OrganizationNotFound,
    PartialDeprovision,
    PermissionDenied,
    ValidationFailed,
)
from datacop_api.roles import ALL_ROLES, DISTRIBUTOR
from datacop_api.services.identity import IdentityProvider
from datacop_api.services.membership import MembershipService
from datacop_api.utils.clock import Clock, utcnow

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 8

# claim(db, uid) runs first inside the provisioning transaction
Claim = Callable[[Session, str], Invitation]


@dataclass(frozen=True)
class ProvisionResult:
    uid: str
    role: str


@dataclass(frozen=True)
class DeprovisionResult:
    uid: str
    profile_deleted: bool
    identity_deleted: bool


@dataclass(frozen=True)
class _AccountSpec:
    email: str
    display_name: str
    role: str
    created_by: Optional[str]
    organization_id: Optional[str] = None
    new_organization_name: Optional[str] = None
    manager_id: Optional[str] = None


def validate_password(password: str) -> None:
    """Raises ValidationFailed unless the password meets the portal policy."""
    if not password or len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationFailed(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")


class AccountProvisioner:
    """Creates and removes accounts across the identity provider and the store."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        identity: IdentityProvider,
        membership: MembershipService,
        *,
        clock: Clock = utcnow,
        max_attempts: Optional[int] = None,
        base_delay: Optional[float] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.session_factory = session_factory
        self.identity = identity
        self.membership = membership
        self.clock = clock
        self._tx_opts = {"max_attempts": max_attempts, "base_delay": base_delay, "sleep": sleep}

    # ------------------------------------------------------------------
    # Provisioning
    # ------------------------------------------------------------------

    def provision(self, invitation: Invitation, password: str, claim: Optional[Claim] = None) -> ProvisionResult:
        """Create the account an invitation describes.

        Args:
            invitation: Snapshot of the invitation read before provisioning
            password: Initial password for the identity
            claim: Runs first in the transaction; must mark the invitation
                consumed and return its current row, or raise

        Returns:
            ProvisionResult(uid, role)
        """
        validate_password(password)

        def account_for(inv: Invitation) -> _AccountSpec:
            if inv.role == DISTRIBUTOR:
                return _AccountSpec(
                    email=inv.email,
                    display_name=inv.name,
                    role=inv.role,
                    created_by=inv.inviter_id,
                    organization_id=inv.organization_id,
                    new_organization_name=None if inv.organization_id else (inv.company_name or inv.name),
                )
            return _AccountSpec(
                email=inv.email,
                display_name=inv.name,
                role=inv.role,
                created_by=inv.inviter_id,
                manager_id=inv.inviter_id,
            )

        uid = self.identity.create_identity(
            invitation.email,
            password,
            metadata={"display_name": invitation.name, "role": invitation.role},
        )

        def work(db: Session) -> ProvisionResult:
            inv = claim(db, uid) if claim is not None else invitation
            self._insert_account(db, uid, account_for(inv))
            return ProvisionResult(uid=uid, role=inv.role)

        result = self._commit_or_compensate(uid, work, "account.provision")
        logger.info(
            "account.provisioned",
            extra={"user_id": uid, "role": result.role, "invitation_id": invitation.id},
        )
        return result

    def create_direct(
        self,
        caller: SessionAuthContext,
        email: str,
        password: str,
        display_name: str,
        role: str,
        distributor_id: Optional[str] = None,
        new_distributor_name: Optional[str] = None,
    ) -> ProvisionResult:
        """Admin account creation without an invitation.

        Distributor accounts either join ``distributor_id`` or found a new
        organization named ``new_distributor_name`` (defaulting to the
        display name) as its sole admin.
        """
        if not caller.is_admin:
            raise PermissionDenied("Only admins can create accounts directly")
        if role not in ALL_ROLES:
            raise ValidationFailed(f"Unknown role '{role}'")
        if not display_name or not display_name.strip():
            raise ValidationFailed("Display name is required")
        if role != DISTRIBUTOR and (distributor_id or new_distributor_name):
            raise ValidationFailed("Only distributor accounts can be linked to an organization")
        if distributor_id and new_distributor_name:
            raise ValidationFailed("Provide either an existing organization or a new organization name, not both")
        validate_password(password)

        email = email.strip().lower()
        account = _AccountSpec(
            email=email,
            display_name=display_name.strip(),
            role=role,
            created_by=caller.uid,
            organization_id=distributor_id,
            new_organization_name=(
                (new_distributor_name or display_name).strip()
                if role == DISTRIBUTOR and not distributor_id
                else None
            ),
        )

        def precheck(db: Session) -> None:
            if UserRepository(db).email_exists(email):
                raise DuplicateEmail(f"An account already exists for {email}")
            if distributor_id and OrganizationRepository(db).get(distributor_id) is None:
                raise OrganizationNotFound(f"Organization {distributor_id} not found")

        run_in_transaction(self.session_factory, precheck, operation="account.create.precheck", **self._tx_opts)

        uid = self.identity.create_identity(email, password, metadata={"display_name": account.display_name, "role": role})

        def work(db: Session) -> ProvisionResult:
            self._insert_account(db, uid, account)
            return ProvisionResult(uid=uid, role=role)

        result = self._commit_or_compensate(uid, work, "account.create")
        logger.info("account.created", extra={"user_id": uid, "role": role, "created_by": caller.uid})
        return result

    def _insert_account(self, db: Session, uid: str, account: _AccountSpec) -> UserProfile:
        """Insert the profile and link it to its organization or manager."""
        users = UserRepository(db)
        profile = UserProfile(
            uid=uid,
            email=account.email,
            display_name=account.display_name,
            role=account.role,
            active=True,
            managed_users=[],
            created_by=account.created_by,
            created_at=self.clock(),
        )

        if account.new_organization_name:
            org = Organization(
                id=new_id(),
                name=account.new_organization_name,
                company_name=account.new_organization_name,
                contact_email=account.email,
                team_members=[uid],
                admin_members=[uid],
                created_at=self.clock(),
            )
            OrganizationRepository(db).add(org)
            profile.distributor_id = org.id
            profile.is_distributor_admin = True
            users.add(profile)
            logger.info("organization.created", extra={"organization_id": org.id, "founder_uid": uid})
            return profile

        users.add(profile)

        if account.organization_id:
            self.membership.attach_in(db, account.organization_id, uid, as_admin=False)
        elif account.manager_id:
            manager = users.get(account.manager_id)
            if manager is not None and manager.role == DISTRIBUTOR:
                managed = list(manager.managed_users or [])
                if uid not in managed:
                    managed.append(uid)
                    if not users.update_with_version_check(manager.uid, manager.version, {"managed_users": managed}):
                        raise VersionConflict(f"user {manager.uid} changed concurrently")
        return profile

    def _commit_or_compensate(
        self, uid: str, work: Callable[[Session], ProvisionResult], operation: str
    ) -> ProvisionResult:
        try:
            return run_in_transaction(self.session_factory, work, operation=operation, **self._tx_opts)
        except IntegrityError as e:
            self._compensate(uid, operation)
            raise DuplicateEmail("An account already exists for this email") from e
        except Exception:
            self._compensate(uid, operation)
            raise

    def _compensate(self, uid: str, operation: str) -> None:
        """Delete the identity created for a provisioning that did not commit."""
        try:
            self.identity.delete_identity(uid)
            logger.info("account.provision.compensated", extra={"user_id": uid, "operation": operation})
        except IdentityProviderError:
            # Primary error is re-raised by the caller; this leaves an orphan identity
            logger.error(
                "account.provision.compensation_failed",
                extra={"user_id": uid, "operation": operation},
                exc_info=True,
            )

    # ------------------------------------------------------------------
    # Deprovisioning
    # ------------------------------------------------------------------

    def _authorize_deprovision(self, db: Session, caller: SessionAuthContext, target: Optional[UserProfile]) -> None:
        if caller.is_admin:
            return
        if target is not None:
            me = UserRepository(db).get(caller.uid)
            if me is not None and target.uid in (me.managed_users or []):
                return
            if target.distributor_id:
                org = OrganizationRepository(db).get(target.distributor_id)
                if org is not None and caller.uid in (org.admin_members or []):
                    return
        raise PermissionDenied("You cannot delete this account")

    def deprovision(self, caller: SessionAuthContext, uid: str) -> DeprovisionResult:
        """Delete an account and every record that references it.

        Raises:
            PermissionDenied: Caller may not delete this account
            PartialDeprovision: Profile removed but the identity could not be
            IdentityProviderError: Identity deletion failed and no profile was removed
        """

        def work(db: Session) -> bool:
            users = UserRepository(db)
            target = users.get(uid)
            self._authorize_deprovision(db, caller, target)
            if target is None:
                return False

            if target.distributor_id and OrganizationRepository(db).get(target.distributor_id) is not None:
                self.membership.detach_in(db, target.distributor_id, uid)

            for manager in users.list_managers_of(uid):
                remaining = [member for member in manager.managed_users if member != uid]
                if not users.update_with_version_check(manager.uid, manager.version, {"managed_users": remaining}):
                    raise VersionConflict(f"user {manager.uid} changed concurrently")

            revoked = InvitationRepository(db).delete_pending_issued_by(uid)
            # target.version reflects detach_in's bump; anything newer is a concurrent write
            if not users.delete_with_version_check(uid, target.version):
                raise VersionConflict(f"user {uid} changed concurrently")
            logger.info("account.profile_deleted", extra={"target_uid": uid, "invitations_revoked": revoked})
            return True

        profile_deleted = run_in_transaction(
            self.session_factory, work, operation="account.deprovision", **self._tx_opts
        )

        try:
            identity_deleted = self.identity.delete_identity(uid)
        except IdentityProviderError as e:
            if profile_deleted:
                logger.error("account.deprovision.partial", extra={"target_uid": uid})
                raise PartialDeprovision(uid, profile_deleted=True, identity_deleted=False) from e
            raise

        logger.info(
            "account.deprovisioned",
            extra={"target_uid": uid, "profile_deleted": profile_deleted, "identity_deleted": identity_deleted},
        )
        return DeprovisionResult(uid=uid, profile_deleted=profile_deleted, identity_deleted=identity_deleted)
