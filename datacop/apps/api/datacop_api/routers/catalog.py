"""Catalog read endpoints filtered by the caller's role.

Entities outside the caller's access roles are never serialized; a hidden
entity answers 404 exactly like a missing one.
"""

from typing import Any

from fastapi import APIRouter, Depends
from sqlalchemy import inspect

from datacop_api.auth.session_auth import SessionAuthContext, get_session_auth_context, require_admin_role
from datacop_api.db.models import AccessControlled
from datacop_api.dependencies import get_catalog_query
from datacop_api.schemas import AccessRolesUpdateRequest, CatalogEntity, CatalogListResponse
from datacop_api.services.access import CatalogQuery

router = APIRouter(prefix="/catalog", tags=["catalog"])

_COMMON_FIELDS = frozenset({"id", "name", "description", "access_roles", "created_at"})


def _entity_response(entity: AccessControlled) -> CatalogEntity:
    attributes: dict[str, Any] = {
        attr.key: getattr(entity, attr.key)
        for attr in inspect(entity).mapper.column_attrs
        if attr.key not in _COMMON_FIELDS
    }
    return CatalogEntity(
        id=entity.id,
        name=entity.name,
        description=entity.description,
        access_roles=list(entity.access_roles),
        created_at=entity.created_at,
        attributes=attributes,
    )


@router.get("/{kind}", response_model=CatalogListResponse)
def list_entities(
    kind: str,
    auth: SessionAuthContext = Depends(get_session_auth_context),
    query: CatalogQuery = Depends(get_catalog_query),
) -> CatalogListResponse:
    return CatalogListResponse(items=[_entity_response(e) for e in query.list_visible(kind, auth.role)])


@router.get("/{kind}/{entity_id}", response_model=CatalogEntity)
def get_entity(
    kind: str,
    entity_id: str,
    auth: SessionAuthContext = Depends(get_session_auth_context),
    query: CatalogQuery = Depends(get_catalog_query),
) -> CatalogEntity:
    return _entity_response(query.get_visible(kind, entity_id, auth.role))


@router.put("/{kind}/{entity_id}/access-roles", response_model=CatalogEntity)
def update_access_roles(
    kind: str,
    entity_id: str,
    request: AccessRolesUpdateRequest,
    auth: SessionAuthContext = Depends(require_admin_role),
    query: CatalogQuery = Depends(get_catalog_query),
) -> CatalogEntity:
    """Replace the role set; the set must keep 'admin' (422 otherwise)."""
    return _entity_response(query.set_access_roles(kind, entity_id, request.access_roles, auth.role))
