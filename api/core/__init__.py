"""
Shared, cross-cutting code for the server.

`core/` holds the small building blocks every feature uses (settings,
database handles, schema types, logging). Keep cube definitions in `cubes/`,
query translation in `engine/` and HTTP wiring in `gateway/`.
"""
