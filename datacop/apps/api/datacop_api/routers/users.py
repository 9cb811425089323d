"""Account endpoints: admin direct creation and cascading deletion."""

from fastapi import APIRouter, Depends, Response, status

from datacop_api.auth.session_auth import SessionAuthContext, get_session_auth_context, require_admin_role
from datacop_api.dependencies import get_account_provisioner
from datacop_api.schemas import AccountResponse, UserCreateRequest
from datacop_api.services.provisioning import AccountProvisioner

router = APIRouter(prefix="/users", tags=["users"])


@router.post("", status_code=status.HTTP_201_CREATED, response_model=AccountResponse)
def create_user(
    request: UserCreateRequest,
    auth: SessionAuthContext = Depends(require_admin_role),
    provisioner: AccountProvisioner = Depends(get_account_provisioner),
) -> AccountResponse:
    """Create an account without an invitation (admin only)."""
    result = provisioner.create_direct(
        auth,
        email=request.email,
        password=request.password,
        display_name=request.display_name,
        role=request.role,
        distributor_id=request.distributor_id,
        new_distributor_name=request.new_distributor_name,
    )
    return AccountResponse(uid=result.uid, role=result.role)


@router.delete("/{uid}", status_code=status.HTTP_204_NO_CONTENT)
def delete_user(
    uid: str,
    auth: SessionAuthContext = Depends(get_session_auth_context),
    provisioner: AccountProvisioner = Depends(get_account_provisioner),
) -> Response:
    """Delete an account, its memberships and the invitations it issued.

    Allowed for admins, the distributor managing the account, and admins of
    the account's organization.
    """
    provisioner.deprovision(auth, uid)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
