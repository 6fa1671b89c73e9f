"""
Database provisioning, migrations, and seeding.

Runtime request handling lives in the services. This package owns the startup gate:
- Alembic migrations config
- Schema provisioning with a production fallback to direct creation
- Idempotent reference-data seeding
- The startup sequence composing both
"""
