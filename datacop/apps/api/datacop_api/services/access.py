"""Role-based visibility for catalog entities.

``is_visible`` is the single predicate; ``CatalogQuery`` applies it at the
query boundary so entities a role may not see are never serialized. An
invisible entity is reported exactly like a missing one (404).
"""

import logging
import time
from typing import Callable, Iterable, Optional, Sequence, TypeVar

from sqlalchemy import select
from sqlalchemy.orm import Session

from datacop_api.db.models import CATALOG_MODELS, AccessControlled
from datacop_api.db.transaction import run_in_transaction
from datacop_api.errors import EntityNotFound, PermissionDenied, ValidationFailed
from datacop_api.roles import ADMIN, normalize_access_roles

logger = logging.getLogger(__name__)

EntityT = TypeVar("EntityT", bound=AccessControlled)


def is_visible(access_roles: Optional[Iterable[str]], requester_role: Optional[str]) -> bool:
    """True iff ``requester_role`` is in ``access_roles``. Pure and total."""
    if not access_roles or not requester_role:
        return False
    return requester_role in access_roles


def list_visible(entities: Iterable[EntityT], requester_role: Optional[str]) -> list[EntityT]:
    """Keep only the entities ``requester_role`` may see, preserving order."""
    return [entity for entity in entities if is_visible(entity.access_roles, requester_role)]


def _model_for(kind: str) -> type[AccessControlled]:
    model = CATALOG_MODELS.get(kind)
    if model is None:
        raise EntityNotFound(f"Unknown catalog collection '{kind}'")
    return model


class CatalogQuery:
    """Server-side RBAC query layer over the catalog tables.

    access_roles is a JSON array, so the predicate is applied in Python on
    the rows loaded here rather than in SQL; nothing unfiltered leaves this
    class.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        *,
        max_attempts: Optional[int] = None,
        base_delay: Optional[float] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.session_factory = session_factory
        self._tx_opts = {"max_attempts": max_attempts, "base_delay": base_delay, "sleep": sleep}

    def list_visible(self, kind: str, requester_role: str) -> Sequence[AccessControlled]:
        model = _model_for(kind)

        def work(db: Session) -> list[AccessControlled]:
            rows = db.execute(select(model).order_by(model.name)).scalars()
            return list_visible(rows, requester_role)

        return run_in_transaction(self.session_factory, work, operation="catalog.list", **self._tx_opts)

    def get_visible(self, kind: str, entity_id: str, requester_role: str) -> AccessControlled:
        """Fetch one entity.

        Raises:
            EntityNotFound: Missing, or not visible to ``requester_role``
        """
        model = _model_for(kind)

        def work(db: Session) -> AccessControlled:
            entity = db.get(model, entity_id)
            if entity is None or not is_visible(entity.access_roles, requester_role):
                raise EntityNotFound(f"{kind} entity not found")
            return entity

        return run_in_transaction(self.session_factory, work, operation="catalog.get", **self._tx_opts)

    def set_access_roles(
        self, kind: str, entity_id: str, roles: Iterable[str], requester_role: str
    ) -> AccessControlled:
        """Replace an entity's access-role set (admin only).

        Raises:
            PermissionDenied: Caller is not an admin
            ValidationFailed: Unknown role, or the set drops admin
            EntityNotFound: No such entity
        """
        if requester_role != ADMIN:
            raise PermissionDenied("Only admins can change access roles")

        model = _model_for(kind)
        try:
            normalized = normalize_access_roles(roles, add_admin=False)
        except ValueError as e:
            raise ValidationFailed(str(e)) from e

        def work(db: Session) -> AccessControlled:
            entity = db.get(model, entity_id)
            if entity is None:
                raise EntityNotFound(f"{kind} entity not found")
            entity.access_roles = normalized
            db.flush()
            return entity

        entity = run_in_transaction(self.session_factory, work, operation="catalog.set_access_roles", **self._tx_opts)
        logger.info(
            "catalog.access_roles.updated",
            extra={"kind": kind, "entity_id": entity_id, "access_roles": normalized},
        )
        return entity
