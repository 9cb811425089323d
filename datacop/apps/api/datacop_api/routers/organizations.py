"""Distributor organization and team-membership endpoints.

Platform admins manage every organization; an organization's admin
members manage their own team. Anyone else gets 403 whether or not the
organization exists.
"""

from fastapi import APIRouter, Depends, Response, status

from datacop_api.auth.session_auth import SessionAuthContext, get_session_auth_context, require_admin_role
from datacop_api.db.models import Organization
from datacop_api.dependencies import get_membership_service
from datacop_api.schemas import (
    MemberAddRequest,
    MemberAdminUpdateRequest,
    MemberItem,
    MemberListResponse,
    OrganizationCreateRequest,
    OrganizationResponse,
    OrganizationUpdateRequest,
)
from datacop_api.services.membership import MembershipService

router = APIRouter(prefix="/organizations", tags=["organizations"])


def _organization_response(org: Organization) -> OrganizationResponse:
    return OrganizationResponse(
        id=org.id,
        name=org.name,
        company_name=org.company_name,
        address=org.address,
        contact_email=org.contact_email,
        contact_phone=org.contact_phone,
        active=org.active,
        team_members=list(org.team_members or []),
        admin_members=list(org.admin_members or []),
        created_at=org.created_at,
    )


@router.post("", status_code=status.HTTP_201_CREATED, response_model=OrganizationResponse)
def create_organization(
    request: OrganizationCreateRequest,
    auth: SessionAuthContext = Depends(require_admin_role),
    service: MembershipService = Depends(get_membership_service),
) -> OrganizationResponse:
    org = service.create_organization(
        auth,
        name=request.name,
        company_name=request.company_name,
        address=request.address,
        contact_email=request.contact_email,
        contact_phone=request.contact_phone,
    )
    return _organization_response(org)


@router.patch("/{org_id}", response_model=OrganizationResponse)
def update_organization(
    org_id: str,
    request: OrganizationUpdateRequest,
    auth: SessionAuthContext = Depends(require_admin_role),
    service: MembershipService = Depends(get_membership_service),
) -> OrganizationResponse:
    """Edit contact details, address, name or the active flag."""
    org = service.update_organization(auth, org_id, **request.model_dump(exclude_unset=True))
    return _organization_response(org)


@router.delete("/{org_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_organization(
    org_id: str,
    auth: SessionAuthContext = Depends(require_admin_role),
    service: MembershipService = Depends(get_membership_service),
) -> Response:
    """Delete the organization after unlinking every member. Idempotent."""
    service.delete_organization(auth, org_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{org_id}/members", response_model=MemberListResponse)
def list_members(
    org_id: str,
    auth: SessionAuthContext = Depends(get_session_auth_context),
    service: MembershipService = Depends(get_membership_service),
) -> MemberListResponse:
    members = service.list_members(auth, org_id)
    return MemberListResponse(
        members=[
            MemberItem(uid=m.uid, email=m.email, display_name=m.display_name, is_admin=m.is_admin)
            for m in members
        ]
    )


@router.post("/{org_id}/members", status_code=status.HTTP_204_NO_CONTENT)
def add_member(
    org_id: str,
    request: MemberAddRequest,
    auth: SessionAuthContext = Depends(get_session_auth_context),
    service: MembershipService = Depends(get_membership_service),
) -> Response:
    service.attach(auth, org_id, request.uid, as_admin=request.as_admin)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.delete("/{org_id}/members/{uid}", status_code=status.HTTP_204_NO_CONTENT)
def remove_member(
    org_id: str,
    uid: str,
    auth: SessionAuthContext = Depends(get_session_auth_context),
    service: MembershipService = Depends(get_membership_service),
) -> Response:
    service.detach(auth, org_id, uid)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.patch("/{org_id}/members/{uid}", status_code=status.HTTP_204_NO_CONTENT)
def update_member_admin(
    org_id: str,
    uid: str,
    request: MemberAdminUpdateRequest,
    auth: SessionAuthContext = Depends(get_session_auth_context),
    service: MembershipService = Depends(get_membership_service),
) -> Response:
    service.set_admin(auth, org_id, uid, request.is_admin)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
