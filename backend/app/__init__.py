"""
Affirmly Backend — Application Package Initializer
===================================================

What: Marks the `app` directory as a Python package.
Why:  Enables module imports like `from app.config import settings`.
Who:  Used implicitly by Python's import system and explicitly by Alembic, pytest, and uvicorn.

Architecture Note:
    This backend follows a layered architecture:

    ┌─────────────────────────────────────┐
    │           Routes (API Layer)        │  ← HTTP concerns, auth dependency
    ├─────────────────────────────────────┤
    │         Services (Business Logic)   │  ← Subscription lifecycle, broadcasts
    ├─────────────────────────────────────┤
    │   Gateways (Stripe, Firebase)       │  ← External collaborators
    ├─────────────────────────────────────┤
    │       Models & Schemas (Data)       │  ← SQLAlchemy ORM + Pydantic
    ├─────────────────────────────────────┤
    │        Database (Persistence)       │  ← Async SQLAlchemy sessions
    └─────────────────────────────────────┘

    Services never reach for a global session or a global "current user":
    the session and the authenticated identity are passed in on every call.
"""

__version__ = "1.0.0"
