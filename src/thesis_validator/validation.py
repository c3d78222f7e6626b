"""Input coercion helpers shared by the stores."""

from collections.abc import Mapping
from typing import Any, TypeVar

import pydantic
from pydantic import BaseModel

from thesis_validator.errors import ValidationError

ModelT = TypeVar("ModelT", bound=BaseModel)


def parse_input(schema: type[ModelT], data: ModelT | Mapping[str, Any]) -> ModelT:
    """
    Coerce caller input into a validated schema instance.

    Args:
        schema: Pydantic model class describing the input.
        data: Either an instance of ``schema`` or a mapping of raw fields.

    Returns:
        A validated ``schema`` instance.

    Raises:
        ValidationError: If the input does not satisfy the schema.
    """
    if isinstance(data, schema):
        return data
    try:
        return schema.model_validate(dict(data))
    except pydantic.ValidationError as e:
        raise ValidationError(
            message=f"Invalid {schema.__name__}",
            details={
                "errors": [
                    {"field": ".".join(str(p) for p in err["loc"]), "message": err["msg"]}
                    for err in e.errors()
                ]
            },
        ) from e


def require_unit_interval(name: str, value: float) -> float:
    """Reject scores outside [0, 1]."""
    if not 0.0 <= value <= 1.0:
        raise ValidationError(
            message=f"{name} must be between 0 and 1",
            details={"field": name, "value": value},
        )
    return value
