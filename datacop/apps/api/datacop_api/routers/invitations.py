"""Invitation endpoints.

AUTHENTICATION:
- create / list / resend / cancel: Supabase session (admin or distributor admin)
- verify / accept: anonymous; the invitation token is the credential

SECURITY:
- Token returned once at creation so the inviter can share the link
- Resend/cancel on someone else's invitation answer 404 (stealth)
"""

import logging

from fastapi import APIRouter, Depends, Query, Response, status

from datacop_api.auth.session_auth import SessionAuthContext, get_session_auth_context
from datacop_api.dependencies import get_invitation_service
from datacop_api.schemas import (
    AccountResponse,
    InvitationAcceptRequest,
    InvitationCreateRequest,
    InvitationCreateResponse,
    InvitationItem,
    InvitationListResponse,
    InvitationVerifyResponse,
)
from datacop_api.services.invitations import InvitationService

router = APIRouter(prefix="/invitations", tags=["invitations"])
logger = logging.getLogger(__name__)


@router.post("", status_code=status.HTTP_201_CREATED, response_model=InvitationCreateResponse)
def create_invitation(
    request: InvitationCreateRequest,
    auth: SessionAuthContext = Depends(get_session_auth_context),
    service: InvitationService = Depends(get_invitation_service),
) -> InvitationCreateResponse:
    """Invite someone to create an account with a fixed role.

    Returns 409 if the email already has an account or a live pending
    invitation from the same inviter.
    """
    if request.inviter_id and request.inviter_id != auth.uid:
        logger.warning(
            "invitation.inviter_mismatch",
            extra={"user_id": auth.uid, "claimed_inviter_id": request.inviter_id},
        )

    invitation = service.invite(
        auth,
        email=request.email,
        name=request.name,
        role=request.role,
        company_name=request.company_name,
        organization_id=request.organization_id,
    )
    return InvitationCreateResponse(invitation_id=invitation.id, token=invitation.token)


@router.get("", response_model=InvitationListResponse)
def list_invitations(
    auth: SessionAuthContext = Depends(get_session_auth_context),
    service: InvitationService = Depends(get_invitation_service),
) -> InvitationListResponse:
    """Invitations sent by the caller, newest first (tokens omitted)."""
    summaries = service.list_for_inviter(auth.uid)
    items = [
        InvitationItem(
            id=s.invitation.id,
            email=s.invitation.email,
            name=s.invitation.name,
            role=s.invitation.role,
            status=s.status,
            company_name=s.invitation.company_name,
            organization_id=s.invitation.organization_id,
            created_at=s.invitation.created_at,
            expires_at=s.invitation.expires_at,
            accepted_at=s.invitation.accepted_at,
        )
        for s in summaries
    ]
    return InvitationListResponse(invitations=items)


@router.get("/verify", response_model=InvitationVerifyResponse, response_model_exclude_none=True)
def verify_invitation(
    token: str = Query(..., min_length=1),
    service: InvitationService = Depends(get_invitation_service),
) -> InvitationVerifyResponse:
    """Check whether a token can still be redeemed. Never changes state."""
    result = service.verify(token)
    if not result.valid:
        return InvitationVerifyResponse(valid=False)
    return InvitationVerifyResponse(
        valid=True,
        role=result.invitation.role,
        email=result.invitation.email,
        name=result.invitation.name,
    )


@router.post("/accept", response_model=AccountResponse)
def accept_invitation(
    request: InvitationAcceptRequest,
    service: InvitationService = Depends(get_invitation_service),
) -> AccountResponse:
    """Redeem a token and create the account (410 expired, 409 consumed)."""
    result = service.accept(request.token, request.password)
    return AccountResponse(uid=result.uid, role=result.role)


@router.post("/{invitation_id}/resend", status_code=status.HTTP_204_NO_CONTENT)
def resend_invitation(
    invitation_id: str,
    auth: SessionAuthContext = Depends(get_session_auth_context),
    service: InvitationService = Depends(get_invitation_service),
) -> Response:
    service.resend(auth, invitation_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.delete("/{invitation_id}", status_code=status.HTTP_204_NO_CONTENT)
def cancel_invitation(
    invitation_id: str,
    auth: SessionAuthContext = Depends(get_session_auth_context),
    service: InvitationService = Depends(get_invitation_service),
) -> Response:
    service.cancel(auth, invitation_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
