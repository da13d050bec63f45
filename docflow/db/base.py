"""
Declarative base for the workflow tables.

Each table lives in its own module under ``docflow/db/models/`` and
subclasses ``Base``; the package ``__init__`` imports them all so
``Base.metadata.create_all`` builds the full schema.
"""

from sqlalchemy import Column, DateTime
from sqlalchemy.orm import DeclarativeBase

from docflow.graph.models import utcnow


class Base(DeclarativeBase):
    """Base class for all ORM models."""
    pass


def audit_timestamp(*, index: bool = False, touch: bool = False) -> Column:
    """UTC timestamp column; ``touch`` also refreshes it on every UPDATE."""
    return Column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow if touch else None,
        nullable=False,
        index=index,
    )
