"""
MManage Backend — Application Package Initializer
==================================================

What: Marks the `mmanage` directory as a Python package.
Who:  Imported by uvicorn (`mmanage.main:app`), Alembic and pytest.

Architecture Note:

    ┌─────────────────────────────────────┐
    │           Routes (API Layer)        │  ← HTTP concerns only
    ├─────────────────────────────────────┤
    │         Services (Business Logic)   │  ← users CRUD, password hashing
    ├─────────────────────────────────────┤
    │       Models & Schemas (Data)       │  ← SQLAlchemy ORM + Pydantic
    ├─────────────────────────────────────┤
    │        Database (Primary store)     │  ← Async SQLAlchemy sessions
    └─────────────────────────────────────┘
                      │
                      ▼  backup(table, record), fire-and-forget
    ┌─────────────────────────────────────┐
    │   Backup replication (Cassandra)    │  ← mmanage.backup
    └─────────────────────────────────────┘

    The backup subsystem sits beside the request path: services hand it a
    just-created record and return immediately; the copy reaches Cassandra
    later, or never, without affecting the HTTP response.
"""

__version__ = "1.0.0"
