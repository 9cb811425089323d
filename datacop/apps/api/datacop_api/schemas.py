"""Pydantic schemas for API requests/responses.

JSON bodies are camelCase on the wire (``inviterId``, ``asAdmin``); Python
code uses snake_case field names.
"""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field
from pydantic.alias_generators import to_camel

from datacop_api.roles import InvitableRole, RoleName


class CamelModel(BaseModel):
    """Base model serializing to camelCase and accepting either spelling."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


# ============================================================================
# Invitations
# ============================================================================


class InvitationCreateRequest(CamelModel):
    """Request body for POST /invitations."""

    email: EmailStr
    name: str = Field(..., min_length=1, max_length=200)
    role: InvitableRole
    company_name: Optional[str] = Field(default=None, max_length=200)
    organization_id: Optional[str] = None
    # Accepted for compatibility; the inviter is always the authenticated caller
    inviter_id: Optional[str] = None


class InvitationCreateResponse(CamelModel):
    invitation_id: str
    token: str


class InvitationVerifyResponse(CamelModel):
    valid: bool
    role: Optional[str] = None
    email: Optional[str] = None
    name: Optional[str] = None


class InvitationAcceptRequest(CamelModel):
    """Request body for POST /invitations/accept."""

    token: str = Field(..., min_length=1)
    password: str = Field(..., min_length=8, max_length=256)


class AccountResponse(CamelModel):
    uid: str
    role: str


class InvitationItem(CamelModel):
    """One row of GET /invitations (token omitted)."""

    id: str
    email: str
    name: str
    role: str
    status: str
    company_name: Optional[str] = None
    organization_id: Optional[str] = None
    created_at: datetime
    expires_at: datetime
    accepted_at: Optional[datetime] = None


class InvitationListResponse(CamelModel):
    invitations: list[InvitationItem]


# ============================================================================
# Organizations / membership
# ============================================================================


class OrganizationCreateRequest(CamelModel):
    name: str = Field(..., min_length=1, max_length=200)
    company_name: Optional[str] = Field(default=None, max_length=200)
    address: str = ""
    contact_email: str = ""
    contact_phone: str = ""


class OrganizationUpdateRequest(CamelModel):
    """Request body for PATCH /organizations/{orgId}; omitted fields are unchanged."""

    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    company_name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    address: Optional[str] = None
    contact_email: Optional[str] = None
    contact_phone: Optional[str] = None
    active: Optional[bool] = None


class OrganizationResponse(CamelModel):
    id: str
    name: str
    company_name: str
    address: str
    contact_email: str
    contact_phone: str
    active: bool
    team_members: list[str]
    admin_members: list[str]
    created_at: datetime


class MemberAddRequest(CamelModel):
    uid: str = Field(..., min_length=1)
    as_admin: bool = False


class MemberAdminUpdateRequest(CamelModel):
    is_admin: bool


class MemberItem(CamelModel):
    uid: str
    email: str
    display_name: str
    is_admin: bool


class MemberListResponse(CamelModel):
    members: list[MemberItem]


# ============================================================================
# Users
# ============================================================================


class UserCreateRequest(CamelModel):
    """Request body for POST /users (admin direct creation)."""

    email: EmailStr
    password: str = Field(..., min_length=8, max_length=256)
    display_name: str = Field(..., min_length=1, max_length=200)
    role: RoleName
    distributor_id: Optional[str] = None
    new_distributor_name: Optional[str] = Field(default=None, max_length=200)


# ============================================================================
# Catalog
# ============================================================================


class CatalogEntity(CamelModel):
    """Catalog entity as returned to a caller allowed to see it.

    Domain columns beyond the common ones are passed through in ``attributes``.
    """

    id: str
    name: str
    description: str
    access_roles: list[str]
    created_at: datetime
    attributes: dict[str, Any] = Field(default_factory=dict)


class CatalogListResponse(CamelModel):
    items: list[CatalogEntity]


class AccessRolesUpdateRequest(CamelModel):
    access_roles: list[RoleName] = Field(..., min_length=1)


# ============================================================================
# Health
# ============================================================================


class HealthResponse(BaseModel):
    """Health check response model."""

    status: str
    version: str
    services: dict[str, str]


# ============================================================================
# RFC 9457 Problem Details
# ============================================================================


class ProblemDetail(BaseModel):
    """RFC 9457 Problem Details for HTTP API errors.

    RFC 9457: detail can be either a string or a structured object (dict).
    """

    type: str = Field(..., description="URI reference identifying the problem type")
    title: str = Field(..., description="Short, human-readable summary")
    status: int = Field(..., description="HTTP status code")
    detail: str | dict[str, Any] = Field(..., description="Human-readable explanation or structured error details")
    instance: Optional[str] = Field(None, description="URI reference identifying the specific occurrence")
