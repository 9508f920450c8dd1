"""
Billow Backend — Application Package Initializer
=================================================

What: Marks the `app` directory as a Python package.
Why:  Enables module imports like `from app.config import settings`.
Who:  Used implicitly by Python's import system and explicitly by Alembic, pytest, and uvicorn.

Architecture Note:
    The backend is split into thin layers:

    ┌─────────────────────────────────────┐
    │           Routes (API Layer)        │  ← HTTP concerns only
    ├─────────────────────────────────────┤
    │   HomeService (read-through cache,  │  ← Orchestration
    │   image path revision, pagination)  │
    ├──────────────────┬──────────────────┤
    │  HomeStore (SQL) │  HomeCache (Redis)│ ← Persistence / cache
    └──────────────────┴──────────────────┘

    Routes translate HTTP into service calls. The service owns the cache-aside
    contract; the store never touches the cache and the cache never touches
    the store.
"""

__version__ = "1.0.0"
