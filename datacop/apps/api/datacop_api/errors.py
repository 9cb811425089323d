"""Typed error taxonomy for the invitation & membership engine.

Every error a caller can observe is a DatacopError subclass carrying its
HTTP status and RFC 9457 problem type. Raw store or SDK exceptions are
translated before they leave a service.
"""

from typing import Optional

PROBLEM_BASE_URI = "https://api.datacop.naosk.com/problems"


class DatacopError(Exception):
    """Base class for all domain errors."""

    status_code: int = 500
    code: str = "internal-error"
    title: str = "Internal Server Error"

    def __init__(self, detail: Optional[str] = None):
        self.detail = detail or self.title
        super().__init__(self.detail)

    @property
    def error_type(self) -> str:
        return f"{PROBLEM_BASE_URI}/{self.code}"


# ----------------------------------------------------------------------------
# Invitation lifecycle
# ----------------------------------------------------------------------------


class InvalidToken(DatacopError):
    status_code = 404
    code = "invalid-token"
    title = "Invitation Token Not Found"


class ExpiredInvitation(DatacopError):
    status_code = 410
    code = "expired-invitation"
    title = "Invitation Expired"


class AlreadyConsumed(DatacopError):
    status_code = 409
    code = "already-consumed"
    title = "Invitation Already Consumed"


class DuplicateEmail(DatacopError):
    status_code = 409
    code = "duplicate-email"
    title = "Account Already Exists"


class DuplicateInvitation(DatacopError):
    status_code = 409
    code = "duplicate-invitation"
    title = "Pending Invitation Already Exists"


class InvitationNotFound(DatacopError):
    status_code = 404
    code = "invitation-not-found"
    title = "Invitation Not Found"


# ----------------------------------------------------------------------------
# Membership
# ----------------------------------------------------------------------------


class AlreadyMember(DatacopError):
    status_code = 409
    code = "already-member"
    title = "User Belongs To Another Organization"


class NotAMember(DatacopError):
    status_code = 409
    code = "not-a-member"
    title = "User Is Not A Team Member"


class IneligibleMember(DatacopError):
    status_code = 409
    code = "ineligible-member"
    title = "User Cannot Join An Organization"


class MembershipConflict(DatacopError):
    status_code = 409
    code = "membership-conflict"
    title = "Concurrent Modification Conflict"


class OrganizationNotFound(DatacopError):
    status_code = 404
    code = "organization-not-found"
    title = "Organization Not Found"


class UserNotFound(DatacopError):
    status_code = 404
    code = "user-not-found"
    title = "User Not Found"


# ----------------------------------------------------------------------------
# Access / catalog
# ----------------------------------------------------------------------------


class PermissionDenied(DatacopError):
    status_code = 403
    code = "permission-denied"
    title = "Forbidden"


class EntityNotFound(DatacopError):
    status_code = 404
    code = "entity-not-found"
    title = "Not Found"


class ValidationFailed(DatacopError):
    status_code = 422
    code = "validation-error"
    title = "Request Validation Failed"


# ----------------------------------------------------------------------------
# Infrastructure
# ----------------------------------------------------------------------------


class TransientStoreError(DatacopError):
    status_code = 503
    code = "transient-store-error"
    title = "Service Unavailable"


class IdentityProviderError(DatacopError):
    status_code = 502
    code = "identity-provider-error"
    title = "Identity Provider Error"


class PartialDeprovision(DatacopError):
    """Profile deleted but the identity could not be; retrying is safe."""

    status_code = 500
    code = "partial-deprovision"
    title = "Account Partially Deleted"

    def __init__(self, uid: str, profile_deleted: bool, identity_deleted: bool, detail: Optional[str] = None):
        self.uid = uid
        self.profile_deleted = profile_deleted
        self.identity_deleted = identity_deleted
        super().__init__(
            detail
            or f"Account {uid} partially deleted "
            f"(profile_deleted={profile_deleted}, identity_deleted={identity_deleted}); retry the deletion"
        )
