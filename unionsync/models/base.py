"""
SQLAlchemy 2.0 async DeclarativeBase for Union Sync.

All models inherit from this Base. Constraint names follow a fixed convention
so the ORM metadata and the Alembic migrations agree on index names.
"""

from sqlalchemy import MetaData
from sqlalchemy.orm import DeclarativeBase

NAMING_CONVENTION = {
    "ix": "ix_%(table_name)s_%(column_0_name)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "pk": "pk_%(table_name)s",
}


class Base(DeclarativeBase):
    """Base class for all Union Sync database models."""

    metadata = MetaData(naming_convention=NAMING_CONVENTION)
