"""
Prayer API Backend: Application Package Initializer
=====================================================

What: Marks the `prayer_api` directory as a Python package.
Who:  Imported by uvicorn (`prayer_api.main:app`), Alembic and pytest.

Architecture Note:
    The backend is layered the same way top to bottom:

    ┌─────────────────────────────────────┐
    │           Routes (API Layer)        │  ← HTTP concerns only
    ├─────────────────────────────────────┤
    │  Services (Participation Store,     │  ← state transitions, fan-out
    │  Topic Catalog, Notifications)      │
    ├─────────────────────────────────────┤
    │       Models & Schemas (Data)       │  ← SQLAlchemy ORM + Pydantic
    ├─────────────────────────────────────┤
    │        Database (Persistence)       │  ← Async SQLAlchemy sessions
    └─────────────────────────────────────┘

    The Participation Store is the only layer holding state-transition rules.
    Everything above it maps HTTP to store calls; everything below it is
    plumbing for the durable store, which owns all concurrency guarantees.
"""

__version__ = "2.0.0"
