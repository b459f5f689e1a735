"""Gateway routes, registration checks and tenant isolation over HTTP."""

from __future__ import annotations

import asyncio
import json

import httpx
import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from core.schema import Schema
from cubes import CubeDefinition, Join, Measure, organisation_filter, schema
from gateway import register_gateway
from gateway.service import ClientDisconnected, run_until_disconnected
from main import create_app

from conftest import TENANT_FIXTURE_ENGINE, FakeHandle

ORG_1 = {"X-Organisation-Id": "1", "X-User-Id": "10"}
ORG_2 = {"X-Organisation-Id": "2", "X-User-Id": "20"}


@pytest.fixture
def client(config, handle, resolver):
    app = create_app(config, db=handle, resolve_security_context=resolver)
    with TestClient(app) as test_client:
        yield test_client


class TestMeta:
    def test_lists_cubes_in_registration_order(self, client) -> None:
        resp = client.get("/cubejs-api/v1/meta")
        assert resp.status_code == 200
        cubes = resp.json()["cubes"]
        assert [c["name"] for c in cubes] == ["Employees", "Departments", "Productivity"]
        employees = cubes[0]
        assert {"name": "Employees.count", "title": "Total Employees", "type": "count"} in employees["measures"]
        assert employees["joins"] == ["Departments", "Productivity"]

    def test_does_not_need_security_context(self, client, resolver) -> None:
        client.get("/cubejs-api/v1/meta")
        assert resolver.contexts == []


class TestLoad:
    def test_post_load(self, client, handle) -> None:
        handle.rows = [{"Employees.count": 4}]
        resp = client.post(
            "/cubejs-api/v1/load",
            json={"query": {"measures": ["Employees.count"]}},
            headers=ORG_2,
        )
        assert resp.status_code == 200
        body = resp.json()
        assert body["data"] == [{"Employees.count": 4}]
        assert body["query"]["measures"] == ["Employees.count"]
        assert body["annotation"]["measures"]["Employees.count"]["title"] == "Employee Analytics Total Employees"

        sql, args = handle.calls[0]
        assert args[0] == 2

    def test_bare_query_body_is_accepted(self, client, handle) -> None:
        resp = client.post("/cubejs-api/v1/load", json={"measures": ["Employees.count"]}, headers=ORG_1)
        assert resp.status_code == 200
        assert len(handle.calls) == 1

    def test_get_load(self, client, handle) -> None:
        query = json.dumps({"dimensions": ["Departments.name"]})
        resp = client.get("/cubejs-api/v1/load", params={"query": query}, headers=ORG_1)
        assert resp.status_code == 200
        assert len(handle.calls) == 1

    def test_get_load_without_query(self, client) -> None:
        resp = client.get("/cubejs-api/v1/load", headers=ORG_1)
        assert resp.status_code == 400
        assert resp.json() == {"error": "validation_error", "message": "Missing 'query' parameter."}

    def test_unknown_cube_is_client_error_before_engine(self, client, handle) -> None:
        resp = client.post(
            "/cubejs-api/v1/load",
            json={"query": {"measures": ["Payroll.total"]}},
            headers=ORG_1,
        )
        assert resp.status_code == 400
        assert resp.json() == {"error": "validation_error", "message": "Cube 'Payroll' not found."}
        assert handle.calls == []

    def test_sum_across_has_many_join_is_client_error(self, client, handle) -> None:
        resp = client.post(
            "/cubejs-api/v1/load",
            json={"query": {"measures": ["Employees.totalSalary", "Productivity.totalLinesOfCode"]}},
            headers=ORG_1,
        )
        assert resp.status_code == 400
        assert resp.json()["error"] == "validation_error"
        assert "Employees.totalSalary" in resp.json()["message"]
        assert handle.calls == []

    def test_invalid_json_body(self, client, handle) -> None:
        resp = client.post(
            "/cubejs-api/v1/load",
            content=b"{nope",
            headers={**ORG_1, "Content-Type": "application/json"},
        )
        assert resp.status_code == 400
        assert handle.calls == []

    def test_missing_identity_is_401_and_nothing_runs(self, client, handle) -> None:
        resp = client.post("/cubejs-api/v1/load", json={"measures": ["Employees.count"]})
        assert resp.status_code == 401
        assert resp.json()["error"] == "authentication_error"
        assert handle.calls == []

    def test_engine_failure_is_generic_500(self, client, handle, caplog) -> None:
        handle.error = RuntimeError("relation \"employees\" does not exist")
        resp = client.post("/cubejs-api/v1/load", json={"measures": ["Employees.count"]}, headers=ORG_1)
        assert resp.status_code == 500
        assert resp.json() == {"error": "engine_error", "message": "Query execution failed."}
        assert "does not exist" not in resp.text
        assert "query_failed" in caplog.text

    def test_resolver_runs_once_per_request(self, client, resolver) -> None:
        for headers in (ORG_1, ORG_2, ORG_1):
            client.post("/cubejs-api/v1/load", json={"measures": ["Employees.count"]}, headers=headers)
        assert [c.organisation_id for c in resolver.contexts] == [1, 2, 1]
        assert resolver.contexts[0] is not resolver.contexts[2]


class TestSqlAndDryRun:
    def test_sql_preview_does_not_execute(self, client, handle) -> None:
        resp = client.post("/cubejs-api/v1/sql", json={"query": {"measures": ["Employees.count"]}}, headers=ORG_2)
        assert resp.status_code == 200
        text, params = resp.json()["sql"]["sql"]
        assert '"Employees"."organisation_id" = $1' in text
        assert params[0] == "2"
        assert handle.calls == []

    def test_get_sql(self, client) -> None:
        query = json.dumps({"measures": ["Departments.count"]})
        resp = client.get("/cubejs-api/v1/sql", params={"query": query}, headers=ORG_1)
        assert resp.status_code == 200

    def test_dry_run(self, client, handle) -> None:
        resp = client.post(
            "/cubejs-api/v1/dry-run",
            json={"query": {"measures": ["Employees.count"], "dimensions": ["Departments.name"]}},
            headers=ORG_1,
        )
        assert resp.status_code == 200
        body = resp.json()
        assert body["queryType"] == "regularQuery"
        assert body["cubes"] == ["Employees", "Departments"]
        assert handle.calls == []


class TestTenantIsolation:
    async def test_concurrent_requests_see_only_their_tenant(self, config, resolver) -> None:
        config = config.model_copy(update={"engine_kind": TENANT_FIXTURE_ENGINE})
        app = create_app(config, db=FakeHandle(), resolve_security_context=resolver)
        query = {"query": {"dimensions": ["Employees.name"]}}

        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
            responses = await asyncio.gather(
                *[
                    client.post("/cubejs-api/v1/load", json=query, headers=headers)
                    for headers in (ORG_1, ORG_2, ORG_1, ORG_2)
                ]
            )

        names = [sorted(row["Employees.name"] for row in r.json()["data"]) for r in responses]
        assert names[0] == names[2] == ["Ada", "Alan"]
        assert names[1] == names[3] == ["Barbara", "Edsger", "Grace"]
        assert len(resolver.contexts) == 4


class TestRegistration:
    def _register(self, **overrides):
        kwargs = dict(
            cubes=[],
            db=FakeHandle(),
            schema=schema,
            resolve_security_context=lambda request: None,
            engine_kind="postgres",
        )
        kwargs.update(overrides)
        return register_gateway(FastAPI(), **kwargs)

    def test_schema_mismatch(self) -> None:
        with pytest.raises(ValueError, match="different schema"):
            self._register(db=FakeHandle(bound_schema=Schema()))

    def test_duplicate_cube_names(self) -> None:
        cube = CubeDefinition(name="A", table="employees", security_filter=organisation_filter())
        with pytest.raises(ValueError, match="Duplicate cube"):
            self._register(cubes=[cube, cube])

    def test_unknown_table(self) -> None:
        cube = CubeDefinition(name="A", table="payroll", security_filter=organisation_filter())
        with pytest.raises(ValueError, match="unknown table"):
            self._register(cubes=[cube])

    def test_unknown_column(self) -> None:
        cube = CubeDefinition(
            name="A",
            table="employees",
            security_filter=organisation_filter(),
            measures=(Measure("total", "sum", "bonus"),),
        )
        with pytest.raises(ValueError, match="unknown columns"):
            self._register(cubes=[cube])

    def test_join_to_unregistered_cube(self) -> None:
        cube = CubeDefinition(
            name="A",
            table="employees",
            security_filter=organisation_filter(),
            joins=(Join("B", "belongsTo", (("department_id", "id"),)),),
        )
        with pytest.raises(ValueError, match="unregistered cube"):
            self._register(cubes=[cube])

    def test_unknown_engine_kind(self) -> None:
        with pytest.raises(ValueError, match="Unknown engine kind"):
            self._register(engine_kind="mystery")

    def test_returns_service_with_cube_names(self) -> None:
        a = CubeDefinition(name="A", table="employees", security_filter=organisation_filter())
        b = CubeDefinition(name="B", table="departments", security_filter=organisation_filter())
        service = self._register(cubes=[b, a])
        assert service.cube_names == ["B", "A"]


class _Request:
    def __init__(self, gone: bool) -> None:
        self._gone = gone
        self.url = httpx.URL("http://test/cubejs-api/v1/load")

    async def is_disconnected(self) -> bool:
        return self._gone


class TestDisconnect:
    async def test_in_flight_query_is_cancelled_when_client_leaves(self) -> None:
        cancelled = asyncio.Event()

        async def slow_query():
            try:
                await asyncio.sleep(10)
            except asyncio.CancelledError:
                cancelled.set()
                raise

        with pytest.raises(ClientDisconnected):
            await run_until_disconnected(_Request(gone=True), slow_query(), poll_s=0.01)
        await asyncio.wait_for(cancelled.wait(), timeout=1)

    async def test_result_is_returned_while_connected(self) -> None:
        async def quick_query():
            await asyncio.sleep(0.02)
            return [{"Employees.count": 1}]

        rows = await run_until_disconnected(_Request(gone=False), quick_query(), poll_s=0.005)
        assert rows == [{"Employees.count": 1}]
