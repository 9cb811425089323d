"""Invitation token generation and link building.

Token format: inv_{base64url(32 random bytes)}

- 256 bits from the OS CSPRNG (secrets), far above the 128-bit floor
- Stored as-is: resend must deliver the same link again, so the token is
  a lookup key rather than a one-way secret (uniqueness is enforced by the
  invitations.token unique index)
- Never logged; the JSON log sanitizer redacts inv_* values
"""

import base64
import secrets
from urllib.parse import urlencode

from datacop_api.config.env import get_app_base_url
from datacop_api.roles import DISTRIBUTOR, INSTALLER

TOKEN_PREFIX = "inv_"
TOKEN_BYTES = 32

ACCEPT_PATH = "/accept-invitation"


def generate_invitation_token() -> str:
    """Generate a new invitation token.

    Returns:
        str: inv_ + 43 base64url characters (no padding)
    """
    raw = secrets.token_bytes(TOKEN_BYTES)
    return TOKEN_PREFIX + base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def looks_like_invitation_token(value: str) -> bool:
    """Cheap shape check used before touching the store."""
    return bool(value) and value.startswith(TOKEN_PREFIX) and len(value) > len(TOKEN_PREFIX)


def build_invitation_link(token: str, role: str, base_url: str | None = None) -> str:
    """Build the link embedded in the invitation email."""
    base = (base_url or get_app_base_url()).rstrip("/")
    return f"{base}{ACCEPT_PATH}?{urlencode({'token': token, 'role': role})}"


def email_template_for_role(role: str) -> str:
    """Email template type for an invitation role."""
    if role == INSTALLER:
        return "installer_invitation"
    if role == DISTRIBUTOR:
        return "distributor_invitation"
    return "user_invitation"
