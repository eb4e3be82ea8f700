"""
Declarative base and shared mixins for all models.
"""

from datetime import datetime
from typing import Any, Dict

from sqlalchemy import DateTime
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """SQLAlchemy declarative base."""


class BaseModel(Base):
    """Abstract base model with serialization helpers."""

    __abstract__ = True

    def to_dict(self) -> Dict[str, Any]:
        """Convert model columns to a dictionary."""
        return {
            column.name: getattr(self, column.key)
            for column in self.__table__.columns
        }


class TimestampMixin:
    """Adds created/updated timestamps (naive UTC)."""

    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=datetime.utcnow,
        comment="Row creation time (UTC)"
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
        comment="Last update time (UTC)"
    )
