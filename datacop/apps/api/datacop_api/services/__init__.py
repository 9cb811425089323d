"""Stateless domain services; routers stay thin."""
