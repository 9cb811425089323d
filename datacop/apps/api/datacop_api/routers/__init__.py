"""HTTP routers. Thin: parse, authorize the session, call a service."""
