"""Validation wrapper layer between public operations and persistence.

Validates dicts against Pydantic models and converts failures into the
core's ``ValidationFailed`` error, so callers see one error taxonomy no
matter which layer rejected the input.

Usage::

    from sideline.validation import validate_payload
    from sideline.models import IntervalCreate

    request = validate_payload(data, IntervalCreate, {"match_id": m, "operation": "create_interval"})
"""

import logging
import warnings

from pydantic import BaseModel, ValidationError

from sideline.exceptions import ValidationFailed

logger = logging.getLogger(__name__)


def format_validation_error(error: ValidationError) -> str:
    """Flatten a pydantic error into ``field: message; field: message``."""
    parts = []
    for item in error.errors():
        location = ".".join(str(p) for p in item.get("loc", ())) or "payload"
        message = item.get("msg", "invalid value")
        # model_validator errors arrive as "Value error, <our message>"
        if message.startswith("Value error, "):
            message = message[len("Value error, "):]
        parts.append(f"{location}: {message}")
    return "; ".join(parts)


def validate_payload(
    data: dict,
    model_cls: type[BaseModel],
    context: dict,
) -> BaseModel:
    """Validate a dict against a Pydantic model.

    Args:
        data: Dict of field values to validate.  Keys the caller did not
            send must be absent, not None, for partial models.
        model_cls: Pydantic model class (e.g. IntervalCreate).
        context: Dict with ``match_id`` and ``operation`` for logging
            and for the raised error.

    Returns:
        The validated model instance.

    Raises:
        ValidationFailed: If the payload does not satisfy the model.
    """
    match_id = context.get("match_id")
    operation = context.get("operation")

    try:
        with warnings.catch_warnings(record=True) as caught:
            warnings.simplefilter("always")
            model = model_cls.model_validate(data)
    except ValidationError as e:
        message = format_validation_error(e)
        logger.info(
            "Rejected %s for %s (match %s): %s",
            model_cls.__name__,
            operation,
            match_id,
            message,
        )
        raise ValidationFailed(message, match_id=match_id, operation=operation) from e

    for w in caught:
        logger.warning(
            "Validation warning for %s (match %s): %s",
            model_cls.__name__,
            match_id,
            w.message,
        )

    return model


def require_minute(minute: float, context: dict) -> float:
    """Point-in-time queries take a non-negative match minute."""
    try:
        value = float(minute)
    except (TypeError, ValueError):
        value = float("nan")
    if not value >= 0:
        raise ValidationFailed(
            f"minute must be a non-negative number, got {minute!r}",
            match_id=context.get("match_id"),
            operation=context.get("operation"),
        )
    return value
