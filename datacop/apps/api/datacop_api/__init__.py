"""Datacop API: invitation, membership and access-control engine."""

__version__ = "0.3.0"
