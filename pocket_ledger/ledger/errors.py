"""
Ledger Errors

Raised by ledger operations BEFORE any state change. A caller that
catches one of these can assume the ledger is exactly as it was.
"""

from typing import Any, TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as SchemaError


ModelT = TypeVar("ModelT", bound=BaseModel)


class LedgerError(Exception):
    """Base exception for ledger operations."""
    pass


class ValidationError(LedgerError):
    """Input is malformed (bad amount, bad transfer references, blank name)."""
    pass


class NotFoundError(LedgerError):
    """A referenced account, transaction, budget or tag doesn't exist."""
    pass


class ConflictError(LedgerError):
    """The operation would create a duplicate (budget per period, tag id)."""
    pass


def describe_schema_error(error: SchemaError) -> str:
    """One-line summary of a pydantic validation failure."""
    parts = []
    for item in error.errors():
        location = ".".join(str(part) for part in item["loc"])
        message = item["msg"].removeprefix("Value error, ")
        parts.append(f"{location}: {message}" if location else message)
    return "; ".join(parts)


def coerce(model_cls: type[ModelT], value: Any) -> ModelT:
    """
    Accept a model instance or a plain dict and return a validated model.

    Raises:
        ValidationError: If the data doesn't fit the schema
    """
    if isinstance(value, model_cls):
        return value
    if isinstance(value, BaseModel):
        value = value.model_dump()
    try:
        return model_cls.model_validate(value)
    except SchemaError as e:
        raise ValidationError(describe_schema_error(e)) from e
