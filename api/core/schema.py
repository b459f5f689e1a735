"""
Static table/column definitions shared by the database handle and the gateway.

The same `Schema` instance must be given to `core.db.create_database` and to
`gateway.register_gateway`; cube members are checked against it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Iterable, Mapping


@dataclass(frozen=True)
class Column:
    name: str
    type: str = "text"


@dataclass(frozen=True)
class Table:
    name: str
    columns: tuple[Column, ...]

    def has_column(self, name: str) -> bool:
        return any(c.name == name for c in self.columns)


@dataclass(frozen=True)
class Schema:
    tables: Mapping[str, Table] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "tables", MappingProxyType(dict(self.tables)))

    @classmethod
    def from_tables(cls, tables: Iterable[Table]) -> "Schema":
        mapping: dict[str, Table] = {}
        for table in tables:
            if table.name in mapping:
                raise ValueError(f"Duplicate table in schema: {table.name}")
            mapping[table.name] = table
        return cls(tables=mapping)

    def table(self, name: str) -> Table | None:
        return self.tables.get(name)

    def has_column(self, table: str, column: str) -> bool:
        t = self.tables.get(table)
        return t is not None and t.has_column(column)
