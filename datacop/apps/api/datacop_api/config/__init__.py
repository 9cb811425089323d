"""Runtime configuration helpers."""
