"""Core primitives: errors, logging, settings, timestamps, id namespacing, ORM.

Architecture::

    errors.py       Structured error hierarchy (UsageSpineError, TransientError)
    logging.py      structlog configuration and context helpers
    settings.py     UsageSpineSettings (pydantic-settings)
    timestamps.py   UTC helpers (stdlib-only)
    namespace.py    Per-user identifier namespacing (UUIDv5)
    orm/            SQLAlchemy 2.0 tables, engine and session factory
"""
