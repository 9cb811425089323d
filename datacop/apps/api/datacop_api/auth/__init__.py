"""Authentication: session JWTs and invitation tokens."""
