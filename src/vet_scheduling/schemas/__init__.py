"""
Pydantic schemas for request validation and response serialization.
"""

from typing import Any, Iterable, List, Type, TypeVar

from pydantic import BaseModel, ValidationError

from ..exceptions import SchemaValidationException, format_validation_errors
from .appointment import (
    AppointmentEdit,
    AppointmentItem,
    AppointmentListQuery,
    AppointmentPage,
    AppointmentRead,
    CompletionItem,
    GroupEditItem,
    GroupRead,
)
from .draft import DraftCartGroup, DraftGroupItem, DraftItem, DraftRead
from .results import (
    AppointmentResult,
    BatchResult,
    ConversionResult,
    DayAvailability,
    DraftSaveResult,
    GroupResult,
    ReminderResult,
    SweepResult,
    TimeSlot,
)

SchemaT = TypeVar("SchemaT", bound=BaseModel)


def parse_model(schema: Type[SchemaT], data: Any) -> SchemaT:
    """
    Coerce a dict (or an instance) into ``schema``.

    Raises:
        SchemaValidationException: If the data does not fit the schema
    """
    if isinstance(data, schema):
        return data
    try:
        return schema.model_validate(data)
    except ValidationError as e:
        raise SchemaValidationException(
            f"Invalid {schema.__name__}",
            schema_name=schema.__name__,
            validation_errors=format_validation_errors(e.errors()),
        )


def parse_items(schema: Type[SchemaT], items: Iterable[Any]) -> List[SchemaT]:
    """Coerce every posted row into ``schema``."""
    return [parse_model(schema, item) for item in items or []]


__all__ = [
    "AppointmentEdit",
    "AppointmentItem",
    "AppointmentListQuery",
    "AppointmentPage",
    "AppointmentRead",
    "AppointmentResult",
    "BatchResult",
    "CompletionItem",
    "ConversionResult",
    "DayAvailability",
    "DraftCartGroup",
    "DraftGroupItem",
    "DraftItem",
    "DraftRead",
    "DraftSaveResult",
    "GroupEditItem",
    "GroupRead",
    "GroupResult",
    "ReminderResult",
    "SweepResult",
    "TimeSlot",
    "parse_items",
    "parse_model",
]
