from datetime import datetime
from sqlalchemy import Column, DateTime, func
from sqlalchemy.orm import Mapped, declared_attr

from relay.core.database import Base


class TimestampMixin:
    """Mixin for adding bookkeeping timestamp fields to models."""

    @declared_attr
    def created_at(cls) -> Mapped[datetime]:
        return Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    @declared_attr
    def updated_at(cls) -> Mapped[datetime]:
        return Column(
            DateTime(timezone=True),
            server_default=func.now(),
            onupdate=func.now(),
            nullable=False
        )


class BaseModel(Base, TimestampMixin):
    """Base model class with common functionality."""

    __abstract__ = True
