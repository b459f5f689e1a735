"""
Demo schema: employees, departments and daily productivity per organisation.
"""

from __future__ import annotations

from core.schema import Column, Schema, Table

employees = Table(
    name="employees",
    columns=(
        Column("id", "integer"),
        Column("name", "text"),
        Column("email", "text"),
        Column("active", "boolean"),
        Column("department_id", "integer"),
        Column("organisation_id", "integer"),
        Column("salary", "real"),
        Column("created_at", "timestamp"),
    ),
)

departments = Table(
    name="departments",
    columns=(
        Column("id", "integer"),
        Column("name", "text"),
        Column("organisation_id", "integer"),
        Column("budget", "real"),
        Column("created_at", "timestamp"),
    ),
)

productivity = Table(
    name="productivity",
    columns=(
        Column("id", "integer"),
        Column("employee_id", "integer"),
        Column("department_id", "integer"),
        Column("date", "timestamp"),
        Column("lines_of_code", "integer"),
        Column("pull_requests", "integer"),
        Column("live_deployments", "integer"),
        Column("days_off", "boolean"),
        Column("happiness_index", "integer"),
        Column("organisation_id", "integer"),
        Column("created_at", "timestamp"),
    ),
)

schema = Schema.from_tables([employees, departments, productivity])
