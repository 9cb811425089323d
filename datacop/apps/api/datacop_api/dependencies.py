"""FastAPI dependency providers for services and their collaborators.

Each collaborator has its own provider so tests can swap it with
``app.dependency_overrides`` (in-memory store, fake identity provider,
recording email sender, frozen clock).
"""

from fastapi import Depends

from datacop_api.config.env import get_app_base_url, get_email_service_token, get_email_service_url
from datacop_api.db.session import SessionFactory, get_session_factory
from datacop_api.services.access import CatalogQuery
from datacop_api.services.email import EmailSender, HttpEmailSender, LoggingEmailSender
from datacop_api.services.identity import IdentityProvider, SupabaseIdentityProvider
from datacop_api.services.invitations import InvitationService
from datacop_api.services.membership import MembershipService
from datacop_api.services.provisioning import AccountProvisioner
from datacop_api.supabase_client import get_supabase_admin_client
from datacop_api.utils.clock import Clock, utcnow


def get_identity_provider() -> IdentityProvider:
    return SupabaseIdentityProvider(get_supabase_admin_client())


def get_email_sender() -> EmailSender:
    url = get_email_service_url()
    if url:
        return HttpEmailSender(url, token=get_email_service_token())
    return LoggingEmailSender()


def get_clock() -> Clock:
    return utcnow


def get_membership_service(
    session_factory: SessionFactory = Depends(get_session_factory),
) -> MembershipService:
    return MembershipService(session_factory)


def get_account_provisioner(
    session_factory: SessionFactory = Depends(get_session_factory),
    identity: IdentityProvider = Depends(get_identity_provider),
    membership: MembershipService = Depends(get_membership_service),
    clock: Clock = Depends(get_clock),
) -> AccountProvisioner:
    return AccountProvisioner(session_factory, identity, membership, clock=clock)


def get_invitation_service(
    session_factory: SessionFactory = Depends(get_session_factory),
    provisioner: AccountProvisioner = Depends(get_account_provisioner),
    email_sender: EmailSender = Depends(get_email_sender),
    clock: Clock = Depends(get_clock),
) -> InvitationService:
    return InvitationService(
        session_factory,
        provisioner,
        email_sender,
        clock=clock,
        app_base_url=get_app_base_url(),
    )


def get_catalog_query(
    session_factory: SessionFactory = Depends(get_session_factory),
) -> CatalogQuery:
    return CatalogQuery(session_factory)
