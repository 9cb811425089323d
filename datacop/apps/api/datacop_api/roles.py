"""Portal roles and access-role set handling."""

from typing import Iterable, Literal

ADMIN = "admin"
USER = "user"
DISTRIBUTOR = "distributor"
INSTALLER = "installer"

# Canonical order used when persisting access_roles
ALL_ROLES: tuple[str, ...] = (ADMIN, USER, DISTRIBUTOR, INSTALLER)
INVITABLE_ROLES: tuple[str, ...] = (INSTALLER, USER, DISTRIBUTOR)

RoleName = Literal["admin", "user", "distributor", "installer"]
InvitableRole = Literal["installer", "user", "distributor"]


def validate_role(role: str, allowed: Iterable[str] = ALL_ROLES) -> str:
    """Return ``role`` if it is one of ``allowed``.

    Raises:
        ValueError: Unknown role
    """
    allowed = tuple(allowed)
    if role not in allowed:
        raise ValueError(f"Unknown role {role!r}; expected one of {', '.join(allowed)}")
    return role


def normalize_access_roles(roles: Iterable[str], *, add_admin: bool = True) -> list[str]:
    """Validate and canonicalize an access-role set.

    Duplicates collapse and the result follows ALL_ROLES order. With
    ``add_admin`` the admin role is added when absent; without it a set
    lacking admin is rejected.

    Raises:
        ValueError: Unknown role, or admin missing and ``add_admin`` is False
    """
    requested = set()
    for role in roles:
        requested.add(validate_role(role))

    if ADMIN not in requested:
        if not add_admin:
            raise ValueError("access_roles must contain 'admin'")
        requested.add(ADMIN)

    return [role for role in ALL_ROLES if role in requested]
