"""
Table / column existence checks that return results instead of raising.

Scanners ask the probe first and treat an unusable table as "count 0,
exists false" rather than catching driver errors from a failed SELECT.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

import sqlalchemy as sa

from app.core.exceptions import SchemaDriftError
from app.models import db

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TableProbe:
    table: str
    exists: bool
    missing_columns: tuple[str, ...] = field(default=())

    @property
    def usable(self) -> bool:
        return self.exists and not self.missing_columns

    def as_error(self) -> SchemaDriftError:
        return SchemaDriftError(self.table, list(self.missing_columns))


class SchemaProbe:
    """Snapshot of the live schema, built from one ``sa.inspect`` pass."""

    def __init__(self, engine=None):
        insp = sa.inspect(engine if engine is not None else db.engine)
        self._tables: set[str] = set(insp.get_table_names())
        self._columns: dict[str, set[str]] = {}
        self._inspector = insp

    def has_table(self, table: str) -> bool:
        return table in self._tables

    def columns(self, table: str) -> set[str]:
        if table not in self._tables:
            return set()
        if table not in self._columns:
            self._columns[table] = {c["name"] for c in self._inspector.get_columns(table)}
        return self._columns[table]

    def probe(self, table: str, required: list[str] | tuple[str, ...] = ()) -> TableProbe:
        if not self.has_table(table):
            logger.warning("Schema drift: table %s does not exist", table, extra={"table": table})
            return TableProbe(table=table, exists=False)
        present = self.columns(table)
        missing = tuple(c for c in required if c not in present)
        if missing:
            logger.warning(
                "Schema drift: %s is missing columns %s", table, ", ".join(missing),
                extra={"table": table},
            )
        return TableProbe(table=table, exists=True, missing_columns=missing)


def quote(name: str) -> str:
    """Quote an identifier for raw SQL built from registry names."""
    return '"' + str(name).replace('"', '""') + '"'
