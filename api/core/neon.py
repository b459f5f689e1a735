"""
Neon serverless SQL-over-HTTP client helpers.

Used endpoint:
- POST https://api.<host-domain>/sql
    headers: Neon-Connection-String, Neon-Raw-Text-Output, Neon-Array-Mode
    body:    {"query": "...", "params": [...]}
    ->       {"fields": [{"name": ..., "dataTypeID": ...}], "rows": [[...], ...]}
"""

from __future__ import annotations

import json
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Callable
from urllib.parse import urlsplit

import httpx


# Neon failures are explicit and separable from other runtime errors.
class NeonError(RuntimeError):
    pass


def _parse_bool(raw: str) -> bool:
    return raw in ("t", "true")


# Postgres type OIDs -> text decoders. Anything else stays a string.
_DECODERS: dict[int, Callable[[str], Any]] = {
    16: _parse_bool,
    20: int,
    21: int,
    23: int,
    26: int,
    700: float,
    701: float,
    1700: Decimal,
    114: json.loads,
    3802: json.loads,
}


def sql_endpoint(connection_string: str) -> str:
    """
    Map a Neon connection host to its HTTP SQL endpoint.

    `ep-cool-name-123.eu-central-1.aws.neon.tech` ->
    `https://api.eu-central-1.aws.neon.tech/sql`
    """
    host = urlsplit(connection_string).hostname or ""
    if not host:
        raise NeonError("Neon connection string has no host.")
    _, _, domain = host.partition(".")
    return f"https://api.{domain or host}/sql"


def _encode_param(value: Any) -> Any:
    if value is None or isinstance(value, (str, bool, int, float)):
        return value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (list, dict)):
        return json.dumps(value)
    return str(value)


def decode_rows(data: dict[str, Any]) -> list[dict[str, Any]]:
    fields = data.get("fields")
    rows = data.get("rows")
    if not isinstance(fields, list) or not isinstance(rows, list):
        raise NeonError("Neon returned a malformed result.")

    names = [str(f.get("name")) for f in fields]
    decoders = [_DECODERS.get(int(f.get("dataTypeID") or 0)) for f in fields]

    out: list[dict[str, Any]] = []
    for row in rows:
        record: dict[str, Any] = {}
        for name, decode, raw in zip(names, decoders, row):
            if raw is None or decode is None:
                record[name] = raw
            else:
                try:
                    record[name] = decode(raw)
                except (ValueError, ArithmeticError) as exc:
                    raise NeonError(f"Cannot decode column {name!r}.") from exc
        out.append(record)
    return out


async def run_query(
    client: httpx.AsyncClient,
    *,
    connection_string: str,
    sql: str,
    params: list[Any],
) -> list[dict[str, Any]]:
    """
    Run one parameterized statement and return rows as dicts.
    """
    resp = await client.post(
        sql_endpoint(connection_string),
        headers={
            "Neon-Connection-String": connection_string,
            "Neon-Raw-Text-Output": "true",
            "Neon-Array-Mode": "true",
        },
        json={"query": sql, "params": [_encode_param(p) for p in params]},
    )

    if resp.status_code != 200:
        # Neon echoes a JSON error with a message; keep it short.
        body = resp.text[:500]
        raise NeonError(f"Neon query failed: {resp.status_code} {body}")

    data: dict[str, Any] = resp.json()
    return decode_rows(data)
