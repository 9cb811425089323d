"""Request context management for observability.

Context variables carry per-request identifiers across async boundaries so
the JSON log formatter can attach them to every record.
"""

from contextvars import ContextVar

# Request ID - unique per HTTP request
request_id_var: ContextVar[str] = ContextVar("request_id", default="")

# Authenticated caller (profile uid) for the current request
user_id_var: ContextVar[str] = ContextVar("user_id", default="")

# Organization touched by the current membership operation
organization_id_var: ContextVar[str] = ContextVar("organization_id", default="")
