"""
Database compatibility layer.

Column types that behave the same on SQLite (dev, tests) and PostgreSQL (prod):
- GUID: native UUID on PostgreSQL, CHAR(36) text on SQLite
- JSONType: JSONB on PostgreSQL, JSON on SQLite
"""

import uuid

from sqlalchemy import JSON, String, TypeDecorator
from sqlalchemy.dialects import postgresql


def _as_uuid(value) -> uuid.UUID:
    return value if isinstance(value, uuid.UUID) else uuid.UUID(str(value))


class GUID(TypeDecorator):
    """UUID column; values always come back as uuid.UUID."""

    impl = String(36)
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(postgresql.UUID(as_uuid=True))
        return dialect.type_descriptor(String(36))

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        value = _as_uuid(value)
        return value if dialect.name == "postgresql" else str(value)

    def process_result_value(self, value, dialect):
        return None if value is None else _as_uuid(value)


class JSONType(TypeDecorator):
    """JSON document column (thresholds, escalation rules, event details)."""

    impl = JSON
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(postgresql.JSONB)
        return dialect.type_descriptor(JSON)
