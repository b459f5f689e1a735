"""
Pluggable query engines, selected by an `engine_kind` string.
"""

from __future__ import annotations

from typing import Mapping

from core.db import DatabaseHandle
from core.schema import Schema
from cubes.models import CubeDefinition

from .base import EngineFactory, QueryEngine
from .postgres import PostgresQueryEngine

_ENGINES: dict[str, EngineFactory] = {"postgres": PostgresQueryEngine}


def register_engine(kind: str, factory: EngineFactory) -> None:
    kind = (kind or "").strip()
    if not kind:
        raise ValueError("Engine kind is empty.")
    _ENGINES[kind] = factory


def available_engines() -> list[str]:
    return sorted(_ENGINES)


def create_query_engine(
    kind: str,
    *,
    cubes: Mapping[str, CubeDefinition],
    db: DatabaseHandle,
    schema: Schema,
) -> QueryEngine:
    factory = _ENGINES.get(kind)
    if factory is None:
        raise ValueError(f"Unknown engine kind {kind!r}; available: {available_engines()}")
    return factory(cubes=cubes, db=db, schema=schema)


__all__ = [
    "EngineFactory",
    "PostgresQueryEngine",
    "QueryEngine",
    "available_engines",
    "create_query_engine",
    "register_engine",
]
