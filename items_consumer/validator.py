from __future__ import annotations

from typing import Any, Mapping

import pydantic

from items_consumer.errors import ValidationError, Violation
from items_consumer.models import ItemEvent


def _field_name(loc: tuple[Any, ...]) -> str:
    return ".".join(str(p) for p in loc) if loc else "<root>"


def validate_event(record: Mapping[str, Any]) -> ItemEvent:
    """
    Validate a decoded payload into an ItemEvent.

    Every violation is reported at once (not only the first one found).
    """
    try:
        return ItemEvent.model_validate(dict(record))
    except pydantic.ValidationError as e:
        violations = [
            Violation(field=_field_name(tuple(err.get("loc") or ())), message=str(err.get("msg") or "invalid"))
            for err in e.errors()
        ]
        raise ValidationError(violations) from e
