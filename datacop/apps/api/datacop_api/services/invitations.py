"""Invitation lifecycle: create, verify, accept, resend, cancel.

Invitation states:
    pending --accept--> accepted
    pending --(now >= expires_at)--> expired   (derived, soft)
    pending(expired) --superseded by create--> expired (persisted)
    any --cancel--> deleted

At most one pending invitation exists per (email, inviter_id); the
uq_invitations_one_pending constraint enforces it under concurrent creates.
Acceptance flips pending -> accepted with a conditional, version-checked
UPDATE inside the same transaction that inserts the profile, so a token can
be redeemed at most once.
"""

import logging
import time
from dataclasses import dataclass
from datetime import timedelta
from typing import Callable, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from datacop_api.auth.invitation_tokens import (
    build_invitation_link,
    email_template_for_role,
    generate_invitation_token,
    looks_like_invitation_token,
)
from datacop_api.auth.session_auth import SessionAuthContext
from datacop_api.db.models import Invitation
from datacop_api.db.repo_invitations import InvitationRepository
from datacop_api.db.repo_organizations import OrganizationRepository
from datacop_api.db.repo_users import UserRepository
from datacop_api.db.transaction import VersionConflict, run_in_transaction
from datacop_api.errors import (
    AlreadyConsumed,
    DuplicateEmail,
    DuplicateInvitation,
    ExpiredInvitation,
    InvalidToken,
    InvitationNotFound,
    OrganizationNotFound,
    PermissionDenied,
    TransientStoreError,
    ValidationFailed,
)
from datacop_api.roles import DISTRIBUTOR, INVITABLE_ROLES
from datacop_api.services.email import EmailSender, notify
from datacop_api.services.provisioning import AccountProvisioner, validate_password
from datacop_api.utils.clock import Clock, utcnow

logger = logging.getLogger(__name__)

INVITATION_TTL = timedelta(days=7)

# Fresh tokens tried when an insert hits a unique violation that is not a duplicate invitation
MAX_TOKEN_ATTEMPTS = 3


@dataclass(frozen=True)
class VerifyResult:
    valid: bool
    invitation: Optional[Invitation] = None


@dataclass(frozen=True)
class AccountCreationResult:
    uid: str
    role: str


@dataclass(frozen=True)
class InvitationSummary:
    invitation: Invitation
    status: str


class InvitationService:
    """Token-based invitation lifecycle."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        provisioner: AccountProvisioner,
        email_sender: EmailSender,
        *,
        clock: Clock = utcnow,
        app_base_url: Optional[str] = None,
        max_attempts: Optional[int] = None,
        base_delay: Optional[float] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.session_factory = session_factory
        self.provisioner = provisioner
        self.email_sender = email_sender
        self.clock = clock
        self.app_base_url = app_base_url
        self._tx_opts = {"max_attempts": max_attempts, "base_delay": base_delay, "sleep": sleep}

    def _run(self, operation: str, work):
        return run_in_transaction(self.session_factory, work, operation=operation, **self._tx_opts)

    # ------------------------------------------------------------------
    # create
    # ------------------------------------------------------------------

    def invite(
        self,
        caller: SessionAuthContext,
        email: str,
        name: str,
        role: str,
        company_name: Optional[str] = None,
        organization_id: Optional[str] = None,
    ) -> Invitation:
        """Create an invitation on behalf of an authenticated caller.

        Admins may invite any role into any organization. Distributor admins
        may invite installers and users, and distributors into their own
        organization only.
        """
        if caller.is_admin:
            inviter_company = None
        elif caller.role == DISTRIBUTOR and caller.is_distributor_admin and caller.distributor_id:
            if role == DISTRIBUTOR:
                organization_id = caller.distributor_id
            elif organization_id:
                raise ValidationFailed("Only distributor invitations can target an organization")

            def company(db: Session) -> Optional[str]:
                org = OrganizationRepository(db).get(caller.distributor_id)
                return org.company_name if org is not None else None

            inviter_company = self._run("invitation.inviter_company", company)
        else:
            raise PermissionDenied("You are not allowed to send invitations")

        return self.create(
            email=email,
            name=name,
            role=role,
            inviter_id=caller.uid,
            inviter_name=caller.display_name or caller.email or caller.uid,
            inviter_company=inviter_company,
            company_name=company_name,
            organization_id=organization_id,
        )

    def create(
        self,
        email: str,
        name: str,
        role: str,
        inviter_id: str,
        inviter_name: str,
        inviter_company: Optional[str] = None,
        company_name: Optional[str] = None,
        organization_id: Optional[str] = None,
    ) -> Invitation:
        """Create a pending invitation and email its link.

        Raises:
            ValidationFailed: Bad role, missing name/email, or inconsistent organization fields
            DuplicateEmail: An account already exists for the email
            DuplicateInvitation: A live pending invitation exists for (email, inviter)
            OrganizationNotFound: organization_id does not exist
        """
        email = (email or "").strip().lower()
        if "@" not in email:
            raise ValidationFailed("A valid email address is required")
        if not name or not name.strip():
            raise ValidationFailed("Invitee name is required")
        if role not in INVITABLE_ROLES:
            raise ValidationFailed(f"Role must be one of {', '.join(INVITABLE_ROLES)}")
        if role == DISTRIBUTOR and not organization_id and not (company_name and company_name.strip()):
            raise ValidationFailed("Distributor invitations need a company name or an organization")
        if role != DISTRIBUTOR and organization_id:
            raise ValidationFailed("Only distributor invitations can target an organization")

        def work(db: Session) -> Invitation:
            now = self.clock()
            if UserRepository(db).email_exists(email):
                raise DuplicateEmail(f"An account already exists for {email}")
            if organization_id and OrganizationRepository(db).get(organization_id) is None:
                raise OrganizationNotFound(f"Organization {organization_id} not found")

            invitations = InvitationRepository(db)
            existing = invitations.find_pending(email, inviter_id)
            if existing is not None:
                if not existing.is_expired(now):
                    raise DuplicateInvitation(f"A pending invitation for {email} already exists")
                superseded = invitations.update_with_version_check(
                    existing.id,
                    existing.version,
                    {"status": "expired", "pending_slot": None},
                    extra_conditions={"status": "pending"},
                )
                if not superseded:
                    raise VersionConflict(f"invitation {existing.id} changed concurrently")
                logger.info("invitation.superseded", extra={"invitation_id": existing.id})

            invitation = Invitation(
                email=email,
                name=name.strip(),
                role=role,
                company_name=company_name.strip() if company_name else None,
                organization_id=organization_id,
                inviter_id=inviter_id,
                inviter_name=inviter_name,
                inviter_company=inviter_company,
                token=generate_invitation_token(),
                status="pending",
                pending_slot=1,
                created_at=now,
                expires_at=now + INVITATION_TTL,
            )
            return invitations.add(invitation)

        invitation = None
        for _ in range(MAX_TOKEN_ATTEMPTS):
            try:
                invitation = self._run("invitation.create", work)
                break
            except IntegrityError:
                # Lost a race for the pending slot, or (vanishingly rarely) a token collision
                if self._has_live_pending(email, inviter_id):
                    raise DuplicateInvitation(f"A pending invitation for {email} already exists")
                logger.warning("invitation.create.unique_retry", extra={"inviter_id": inviter_id})

        if invitation is None:
            raise TransientStoreError("Could not allocate a unique invitation; retry later")

        logger.info(
            "invitation.created",
            extra={"invitation_id": invitation.id, "role": role, "inviter_id": inviter_id},
        )
        self._send(invitation)
        return invitation

    def _has_live_pending(self, email: str, inviter_id: str) -> bool:
        def work(db: Session) -> bool:
            existing = InvitationRepository(db).find_pending(email, inviter_id)
            return existing is not None and not existing.is_expired(self.clock())

        return self._run("invitation.lookup_pending", work)

    def _send(self, invitation: Invitation) -> bool:
        variables = {
            "invitee_name": invitation.name,
            "inviter_name": invitation.inviter_name,
            "inviter_company": invitation.inviter_company or "",
            "company_name": invitation.company_name or "",
            "role": invitation.role,
            "invitation_link": build_invitation_link(invitation.token, invitation.role, self.app_base_url),
            "expires_at": invitation.expires_at.isoformat(),
        }
        return notify(self.email_sender, email_template_for_role(invitation.role), invitation.email, variables)

    # ------------------------------------------------------------------
    # verify / accept
    # ------------------------------------------------------------------

    def verify(self, token: str) -> VerifyResult:
        """Read-only validity check: exists, pending and not expired."""
        if not looks_like_invitation_token(token):
            return VerifyResult(valid=False)

        def work(db: Session) -> Optional[Invitation]:
            return InvitationRepository(db).get_by_token(token)

        invitation = self._run("invitation.verify", work)
        if invitation is None:
            return VerifyResult(valid=False)
        valid = invitation.status == "pending" and not invitation.is_expired(self.clock())
        return VerifyResult(valid=valid, invitation=invitation)

    @staticmethod
    def _check_redeemable(invitation: Optional[Invitation], now) -> Invitation:
        if invitation is None:
            raise InvalidToken("Invitation token is invalid")
        if invitation.status == "expired":
            raise ExpiredInvitation("This invitation has expired")
        if invitation.status != "pending":
            raise AlreadyConsumed("This invitation has already been used")
        if invitation.is_expired(now):
            raise ExpiredInvitation("This invitation has expired")
        return invitation

    def accept(self, token: str, password: str) -> AccountCreationResult:
        """Redeem a token: create the account and consume the invitation atomically.

        Raises:
            ValidationFailed: Password too short
            InvalidToken: Unknown token (or cancelled invitation)
            AlreadyConsumed: Already accepted, including by a concurrent accept
            ExpiredInvitation: now >= expires_at; the invitation stays pending
            DuplicateEmail: An account for the email already exists
        """
        validate_password(password)
        if not looks_like_invitation_token(token):
            raise InvalidToken("Invitation token is invalid")

        def read(db: Session) -> Invitation:
            invitation = self._check_redeemable(InvitationRepository(db).get_by_token(token), self.clock())
            if UserRepository(db).email_exists(invitation.email):
                raise DuplicateEmail(f"An account already exists for {invitation.email}")
            return invitation

        snapshot = self._run("invitation.accept.read", read)

        def claim(db: Session, uid: str) -> Invitation:
            invitations = InvitationRepository(db)
            now = self.clock()
            current = self._check_redeemable(invitations.get(snapshot.id), now)
            claimed = invitations.update_with_version_check(
                current.id,
                current.version,
                {"status": "accepted", "accepted_at": now, "accepted_uid": uid, "pending_slot": None},
                extra_conditions={"status": "pending"},
            )
            if not claimed:
                raise VersionConflict(f"invitation {current.id} changed concurrently")
            return current

        try:
            result = self.provisioner.provision(snapshot, password, claim=claim)
        except DuplicateEmail:
            # A concurrent accept of the same token created the identity first
            if self._is_accepted(snapshot.id):
                raise AlreadyConsumed("This invitation has already been used")
            raise

        logger.info(
            "invitation.accepted",
            extra={"invitation_id": snapshot.id, "user_id": result.uid, "role": result.role},
        )
        return AccountCreationResult(uid=result.uid, role=result.role)

    def _is_accepted(self, invitation_id: str) -> bool:
        def work(db: Session) -> bool:
            invitation = InvitationRepository(db).get(invitation_id)
            return invitation is not None and invitation.status == "accepted"

        return self._run("invitation.lookup_status", work)

    # ------------------------------------------------------------------
    # resend / cancel / list
    # ------------------------------------------------------------------

    def resend(self, caller: SessionAuthContext, invitation_id: str) -> Invitation:
        """Restart the 7-day window and email the same link again.

        Raises:
            InvitationNotFound: Missing, or not owned by a non-admin caller
            AlreadyConsumed: Invitation is no longer pending
        """

        def work(db: Session) -> Invitation:
            invitations = InvitationRepository(db)
            invitation = invitations.get(invitation_id)
            if invitation is None or (not caller.is_admin and invitation.inviter_id != caller.uid):
                raise InvitationNotFound("Invitation not found")
            if invitation.status != "pending":
                raise AlreadyConsumed("Only pending invitations can be resent")

            now = self.clock()
            refreshed = invitations.update_with_version_check(
                invitation.id,
                invitation.version,
                {"created_at": now, "expires_at": now + INVITATION_TTL},
                extra_conditions={"status": "pending"},
            )
            if not refreshed:
                raise VersionConflict(f"invitation {invitation.id} changed concurrently")
            return invitation

        invitation = self._run("invitation.resend", work)
        logger.info("invitation.resent", extra={"invitation_id": invitation.id})
        self._send(invitation)
        return invitation

    def cancel(self, caller: SessionAuthContext, invitation_id: str) -> bool:
        """Delete an invitation. Idempotent; returns whether a row was removed."""

        def work(db: Session) -> bool:
            scope = None if caller.is_admin else caller.uid
            return InvitationRepository(db).delete(invitation_id, inviter_id=scope)

        deleted = self._run("invitation.cancel", work)
        logger.info("invitation.cancelled", extra={"invitation_id": invitation_id, "deleted": deleted})
        return deleted

    def list_for_inviter(self, inviter_id: str) -> list[InvitationSummary]:
        """Invitations sent by ``inviter_id``, newest first, with derived status."""

        def work(db: Session) -> list[Invitation]:
            return InvitationRepository(db).list_by_inviter(inviter_id)

        invitations = self._run("invitation.list", work)
        now = self.clock()
        return [InvitationSummary(invitation=inv, status=inv.effective_status(now)) for inv in invitations]
