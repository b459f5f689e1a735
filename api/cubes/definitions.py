"""
Demo cube set served by the default deployment.
"""

from __future__ import annotations

from .models import CubeDefinition, Dimension, Join, Measure, organisation_filter

employees_cube = CubeDefinition(
    name="Employees",
    title="Employee Analytics",
    table="employees",
    security_filter=organisation_filter(),
    measures=(
        Measure("count", "count", title="Total Employees"),
        Measure("activeCount", "countDistinct", "id", title="Distinct Employees"),
        Measure("totalSalary", "sum", "salary", title="Total Salary"),
        Measure("avgSalary", "avg", "salary", title="Average Salary"),
        Measure("minSalary", "min", "salary"),
        Measure("maxSalary", "max", "salary"),
    ),
    dimensions=(
        Dimension("id", "number", "id", primary_key=True),
        Dimension("name", "string", "name", title="Employee Name"),
        Dimension("email", "string", "email"),
        Dimension("active", "boolean", "active"),
        Dimension("departmentId", "number", "department_id"),
        Dimension("createdAt", "time", "created_at", title="Hired"),
    ),
    joins=(
        Join("Departments", "belongsTo", (("department_id", "id"),)),
        Join("Productivity", "hasMany", (("id", "employee_id"),)),
    ),
)

departments_cube = CubeDefinition(
    name="Departments",
    title="Department Analytics",
    table="departments",
    security_filter=organisation_filter(),
    measures=(
        Measure("count", "count", title="Total Departments"),
        Measure("totalBudget", "sum", "budget", title="Total Budget"),
        Measure("avgBudget", "avg", "budget", title="Average Budget"),
    ),
    dimensions=(
        Dimension("id", "number", "id", primary_key=True),
        Dimension("name", "string", "name", title="Department Name"),
        Dimension("createdAt", "time", "created_at"),
    ),
    joins=(
        Join("Employees", "hasMany", (("id", "department_id"),)),
    ),
)

productivity_cube = CubeDefinition(
    name="Productivity",
    title="Productivity Analytics",
    table="productivity",
    security_filter=organisation_filter(),
    measures=(
        Measure("recordCount", "count", title="Records"),
        Measure("totalLinesOfCode", "sum", "lines_of_code", title="Lines of Code"),
        Measure("avgLinesOfCode", "avg", "lines_of_code"),
        Measure("totalPullRequests", "sum", "pull_requests", title="Pull Requests"),
        Measure("totalDeployments", "sum", "live_deployments", title="Live Deployments"),
        Measure("avgHappinessIndex", "avg", "happiness_index", title="Happiness"),
    ),
    dimensions=(
        Dimension("id", "number", "id", primary_key=True),
        Dimension("employeeId", "number", "employee_id"),
        Dimension("departmentId", "number", "department_id"),
        Dimension("date", "time", "date"),
        Dimension("isDayOff", "boolean", "days_off", title="Day Off"),
        Dimension("happinessIndex", "number", "happiness_index"),
    ),
    joins=(
        Join("Employees", "belongsTo", (("employee_id", "id"),)),
        Join("Departments", "belongsTo", (("department_id", "id"),)),
    ),
)

all_cubes: tuple[CubeDefinition, ...] = (employees_cube, departments_cube, productivity_cube)
