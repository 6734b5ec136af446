"""
Base model class for all SQLAlchemy models in the vet-scheduling package.

This module provides the declarative base shared by the booking tables,
including an integer primary key, audit timestamps and common utility
methods.

Timestamps are filled on the Python side so that freshly flushed rows can
be read back without a refresh round-trip inside an async session.

Example:
    >>> from vet_scheduling.models.base import BaseModel
    >>> from sqlalchemy.orm import Mapped, mapped_column
    >>> from sqlalchemy import String

    >>> class MyModel(BaseModel):
    ...     __tablename__ = "my_table"
    ...     name: Mapped[str] = mapped_column(String(100))

    >>> instance = MyModel(name="Test")
    >>> data = instance.to_dict()
    >>> print(data['name'])  # "Test"
"""

import enum
from datetime import date, datetime, time
from typing import Any, Dict, TypeVar

from sqlalchemy import DateTime, Integer
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.sql import func

# Type variable for model classes
T = TypeVar("T", bound="BaseModel")


def _now() -> datetime:
    return datetime.now().replace(microsecond=0)


class Base(DeclarativeBase):
    """
    Base declarative class for all SQLAlchemy models.

    Every table of the scheduling schema is registered on ``Base.metadata``,
    which Alembic and the test fixtures use to build the schema.
    """


class BaseModel(Base):
    """
    Abstract base model class providing common functionality for all entities.

    - **Integer Primary Keys**: Ids are exposed to staff screens and URLs
    - **Audit Fields**: Creation and modification times
    - **Utility Methods**: Dictionary conversion and bulk field updates

    Attributes:
        id (int): Primary key, database generated
        created_at (datetime): When the record was created (clinic-local)
        updated_at (datetime): When the record was last updated (clinic-local)

    Note:
        This is an abstract base class and cannot be instantiated directly.
        All concrete models must define a __tablename__ attribute.
    """

    __abstract__ = True

    id: Mapped[int] = mapped_column(
        Integer,
        primary_key=True,
        autoincrement=True,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        default=_now,
        server_default=func.now(),
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        default=_now,
        onupdate=_now,
        server_default=func.now(),
    )

    def __repr__(self) -> str:
        """
        Return string representation of the model instance.

        Returns:
            String in format: <ModelName(id=42)>
        """
        return f"<{self.__class__.__name__}(id={self.id})>"

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert model instance to dictionary representation.

        Converts all column values to JSON-serializable types:
        - datetime, date and time objects to ISO format strings
        - Enum members to their values
        - Other types remain unchanged

        Returns:
            Dictionary with column names as keys and serialized values.
        """
        result = {}
        for column in self.__table__.columns:
            value = getattr(self, column.key)
            if isinstance(value, (datetime, date, time)):
                result[column.key] = value.isoformat()
            elif isinstance(value, enum.Enum):
                result[column.key] = value.value
            else:
                result[column.key] = value
        return result

    @classmethod
    def get_table_name(cls) -> str:
        """Get the database table name for this model."""
        return cls.__tablename__

    def update_fields(self, **kwargs) -> None:
        """
        Update multiple fields on the model instance in a single operation.

        Args:
            **kwargs: Field names as keys and new values as values.
                     Only existing model attributes can be updated.

        Raises:
            AttributeError: If any field name doesn't exist on the model.

        Note:
            This method only modifies the instance. You must commit the
            transaction to persist changes to the database.
        """
        for field, value in kwargs.items():
            if hasattr(self, field):
                setattr(self, field, value)
            else:
                raise AttributeError(
                    f"'{self.__class__.__name__}' has no attribute '{field}'"
                )
