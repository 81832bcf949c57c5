"""
Study Portal Backend — Application Package Initializer
========================================================

What: Marks the `studyportal` directory as a Python package.
Who:  Used by uvicorn (studyportal.main:app), Alembic and pytest.

Architecture Note:

    ┌─────────────────────────────────────┐
    │           Routes (API Layer)        │  ← HTTP concerns only
    ├─────────────────────────────────────┤
    │   DocumentService (façade)          │  ← store routing, fallback
    ├──────────────┬──────────────────────┤
    │  LocalStore  │  PrimaryStoreClient  │  ← JSON snapshot / SQLAlchemy
    ├──────────────┴──────────────────────┤
    │ ConnectionMonitor + Reconciliation  │  ← background recovery
    └─────────────────────────────────────┘
"""

__version__ = "1.0.0"
