import enum
import uuid

from sqlalchemy import Enum


def new_id() -> str:
    return str(uuid.uuid4())


def enum_column_type(enum_cls: type[enum.Enum], length: int = 32) -> Enum:
    """Portable enum column that stores each member's value as a plain string."""
    return Enum(
        enum_cls,
        native_enum=False,
        length=length,
        validate_strings=True,
        values_callable=lambda members: [m.value for m in members],
    )
