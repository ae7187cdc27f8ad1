# backend/mrodb/__init__.py
"""
MRO portal backend.

Tenant-scoped records for an aviation maintenance organisation: flights,
technical publications, safety reports, audits and stock. Each feature
lives in mrodb/apps/<app>/ with its models, services and router;
`mrodb.models` registers every table and `mrodb.main` wires the routers.
"""
