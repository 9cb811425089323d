"""Shared repository helpers for version-checked aggregates."""

from typing import Any, Generic, Optional, TypeVar

from sqlalchemy import delete, update
from sqlalchemy.orm import Session

ModelT = TypeVar("ModelT")


class VersionedRepository(Generic[ModelT]):
    """Base repository for models with a primary key and a ``version`` column.

    Every write that depends on a previous read goes through
    ``update_with_version_check`` so a concurrent writer turns into a
    zero-row update instead of a lost update.
    """

    model: type[ModelT]
    pk_name: str = "id"

    def __init__(self, db: Session):
        self.db = db

    def get(self, pk: str) -> Optional[ModelT]:
        return self.db.get(self.model, pk)

    def add(self, obj: ModelT) -> ModelT:
        """Stage a new row and flush so later queries in the unit of work see it."""
        self.db.add(obj)
        self.db.flush()
        return obj

    def update_with_version_check(
        self,
        pk: str,
        expected_version: int,
        updates: dict[str, Any],
        extra_conditions: Optional[dict[str, Any]] = None,
    ) -> bool:
        """Conditional UPDATE ... WHERE pk AND version = expected_version.

        Args:
            pk: Primary key value
            expected_version: Version read earlier in this transaction
            updates: Column values to set (version is bumped automatically)
            extra_conditions: Additional equality conditions (None means IS NULL)

        Returns:
            True if exactly one row was updated, False on version/condition mismatch
        """
        pk_col = getattr(self.model, self.pk_name)
        version_col = getattr(self.model, "version")

        stmt = update(self.model).where(pk_col == pk, version_col == expected_version)
        for column, value in (extra_conditions or {}).items():
            col = getattr(self.model, column)
            stmt = stmt.where(col.is_(None) if value is None else col == value)

        values = dict(updates)
        values["version"] = expected_version + 1
        stmt = stmt.values(**values).execution_options(synchronize_session="fetch")

        result = self.db.execute(stmt)
        return result.rowcount == 1

    def delete_with_version_check(self, pk: str, expected_version: int) -> bool:
        """Conditional DELETE ... WHERE pk AND version = expected_version.

        Returns:
            True if the row was deleted, False if it changed or is already gone
        """
        pk_col = getattr(self.model, self.pk_name)
        version_col = getattr(self.model, "version")

        stmt = (
            delete(self.model)
            .where(pk_col == pk, version_col == expected_version)
            .execution_options(synchronize_session=False)
        )
        result = self.db.execute(stmt)
        return result.rowcount == 1
