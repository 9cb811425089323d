"""SQLAlchemy ORM Models for Datacop."""

import uuid
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import BIGINT, BOOLEAN, JSON, TEXT, Index, Integer, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, validates

from datacop_api.db.types import UTCDateTime
from datacop_api.roles import ALL_ROLES, INVITABLE_ROLES, validate_role
from datacop_api.utils.clock import utcnow


def new_id() -> str:
    """Generate a record id (UUID v4 string)."""
    return str(uuid.uuid4())


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


class Invitation(Base):
    """Invitation to create an account with a fixed role.

    ``status`` is pending until accepted; an expired invitation stays pending
    in storage (soft expiry) unless a newer one for the same
    (email, inviter_id) supersedes it. ``pending_slot`` is 1 while pending and
    NULL otherwise, so the unique constraint allows exactly one pending
    invitation per pair.
    """

    __tablename__ = "invitations"

    id: Mapped[str] = mapped_column(TEXT, primary_key=True, default=new_id)
    email: Mapped[str] = mapped_column(TEXT, nullable=False)
    name: Mapped[str] = mapped_column(TEXT, nullable=False)
    role: Mapped[str] = mapped_column(TEXT, nullable=False)
    company_name: Mapped[Optional[str]] = mapped_column(TEXT, nullable=True)
    organization_id: Mapped[Optional[str]] = mapped_column(TEXT, nullable=True)

    inviter_id: Mapped[str] = mapped_column(TEXT, nullable=False)
    inviter_name: Mapped[str] = mapped_column(TEXT, nullable=False)
    inviter_company: Mapped[Optional[str]] = mapped_column(TEXT, nullable=True)

    token: Mapped[str] = mapped_column(TEXT, nullable=False, unique=True)
    status: Mapped[str] = mapped_column(TEXT, nullable=False, default="pending")
    pending_slot: Mapped[Optional[int]] = mapped_column(Integer, nullable=True, default=1)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    expires_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    accepted_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    accepted_uid: Mapped[Optional[str]] = mapped_column(TEXT, nullable=True)

    # Optimistic locking
    version: Mapped[int] = mapped_column(BIGINT, nullable=False, default=0)

    __table_args__ = (
        UniqueConstraint("email", "inviter_id", "pending_slot", name="uq_invitations_one_pending"),
        Index("idx_invitations_inviter_created", "inviter_id", "created_at"),
    )

    @validates("role")
    def _validate_role(self, key: str, value: str) -> str:
        return validate_role(value, INVITABLE_ROLES)

    @validates("email")
    def _normalize_email(self, key: str, value: str) -> str:
        return value.strip().lower()

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at

    def effective_status(self, now: datetime) -> str:
        """Status with soft expiry applied (pending past expires_at → expired)."""
        if self.status == "pending" and self.is_expired(now):
            return "expired"
        return self.status


class UserProfile(Base):
    """Portal profile linked 1:1 to an authentication identity (uid)."""

    __tablename__ = "users"

    uid: Mapped[str] = mapped_column(TEXT, primary_key=True)
    email: Mapped[str] = mapped_column(TEXT, nullable=False, unique=True)
    display_name: Mapped[str] = mapped_column(TEXT, nullable=False)
    role: Mapped[str] = mapped_column(TEXT, nullable=False)
    active: Mapped[bool] = mapped_column(BOOLEAN, nullable=False, default=True)

    # Membership linkage; only distributors carry distributor_id
    distributor_id: Mapped[Optional[str]] = mapped_column(TEXT, nullable=True)
    is_distributor_admin: Mapped[bool] = mapped_column(BOOLEAN, nullable=False, default=False)

    # Sub-accounts owned directly by a distributor (installers/users it invited)
    managed_users: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    created_by: Mapped[Optional[str]] = mapped_column(TEXT, nullable=True)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    last_login: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)

    version: Mapped[int] = mapped_column(BIGINT, nullable=False, default=0)

    __table_args__ = (Index("idx_users_distributor", "distributor_id"),)

    @validates("role")
    def _validate_role(self, key: str, value: str) -> str:
        return validate_role(value, ALL_ROLES)

    @validates("email")
    def _normalize_email(self, key: str, value: str) -> str:
        return value.strip().lower()


class Organization(Base):
    """Distributor account aggregate.

    Invariants: admin_members ⊆ team_members, and every uid in team_members
    has UserProfile.distributor_id == id. Both lists are only rewritten by
    MembershipService inside a version-checked transaction.
    """

    __tablename__ = "organizations"

    id: Mapped[str] = mapped_column(TEXT, primary_key=True, default=new_id)
    name: Mapped[str] = mapped_column(TEXT, nullable=False)
    company_name: Mapped[str] = mapped_column(TEXT, nullable=False)
    address: Mapped[str] = mapped_column(TEXT, nullable=False, default="")
    contact_email: Mapped[str] = mapped_column(TEXT, nullable=False, default="")
    contact_phone: Mapped[str] = mapped_column(TEXT, nullable=False, default="")
    active: Mapped[bool] = mapped_column(BOOLEAN, nullable=False, default=True)

    team_members: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    admin_members: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)

    version: Mapped[int] = mapped_column(BIGINT, nullable=False, default=0)


# ============================================================================
# Access-controlled catalog entities
# ============================================================================


class AccessControlled:
    """Mixin for catalog entities carrying an explicit access-role set.

    'admin' must always be present; assignments that drop it are rejected at
    the ORM boundary.
    """

    id: Mapped[str] = mapped_column(TEXT, primary_key=True, default=new_id)
    name: Mapped[str] = mapped_column(TEXT, nullable=False)
    description: Mapped[str] = mapped_column(TEXT, nullable=False, default="")
    access_roles: Mapped[list[str]] = mapped_column(JSON, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)

    @validates("access_roles")
    def _validate_access_roles(self, key: str, value: Any) -> list[str]:
        roles = list(value or [])
        for role in roles:
            validate_role(role)
        if "admin" not in roles:
            raise ValueError("access_roles must contain 'admin'")
        return roles


class Category(AccessControlled, Base):
    __tablename__ = "categories"


class ProductType(AccessControlled, Base):
    __tablename__ = "product_types"


class Language(AccessControlled, Base):
    __tablename__ = "languages"

    code: Mapped[str] = mapped_column(TEXT, nullable=False)
    is_default: Mapped[bool] = mapped_column(BOOLEAN, nullable=False, default=False)


class Product(AccessControlled, Base):
    __tablename__ = "products"

    reference: Mapped[Optional[str]] = mapped_column(TEXT, nullable=True)
    category_id: Mapped[Optional[str]] = mapped_column(TEXT, nullable=True)
    product_type_id: Mapped[Optional[str]] = mapped_column(TEXT, nullable=True)


class Document(AccessControlled, Base):
    __tablename__ = "documents"

    file_url: Mapped[str] = mapped_column(TEXT, nullable=False)
    file_type: Mapped[str] = mapped_column(TEXT, nullable=False)
    file_size: Mapped[int] = mapped_column(BIGINT, nullable=False, default=0)
    version: Mapped[str] = mapped_column(TEXT, nullable=False, default="1.0")
    uploaded_by: Mapped[Optional[str]] = mapped_column(TEXT, nullable=True)
    category_id: Mapped[Optional[str]] = mapped_column(TEXT, nullable=True)
    product_type_id: Mapped[Optional[str]] = mapped_column(TEXT, nullable=True)
    language_id: Mapped[Optional[str]] = mapped_column(TEXT, nullable=True)
    product_id: Mapped[Optional[str]] = mapped_column(TEXT, nullable=True)


# URL segment → model, for the RBAC query layer
CATALOG_MODELS: dict[str, type[AccessControlled]] = {
    "categories": Category,
    "product-types": ProductType,
    "languages": Language,
    "products": Product,
    "documents": Document,
}
