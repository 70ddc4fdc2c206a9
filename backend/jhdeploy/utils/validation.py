"""Constraint checking for view-model payloads"""

from typing import Any, Dict, List, Optional, Type, Union

from pydantic import BaseModel, ValidationError


class Violation(BaseModel):
    """A single constraint violation"""

    field: str
    message: str
    value: Any = None


def collect_violations(
    model: Union[Type[BaseModel], BaseModel], payload: Optional[Dict[str, Any]] = None
) -> List[Violation]:
    """Validate a payload against a view-model and list every violation.

    Args:
        model: Model class, or an instance whose current field values are re-checked
        payload: Field values keyed by field name or alias (ignored for instances)

    Returns:
        Violations found; empty when the payload is valid
    """
    if isinstance(model, BaseModel):
        payload = model.model_dump()
        model = type(model)

    try:
        model.model_validate(payload or {})
    except ValidationError as e:
        return [
            Violation(
                field=".".join(str(part) for part in error["loc"]) or "__root__",
                message=error["msg"],
                value=error.get("input"),
            )
            for error in e.errors()
        ]
    return []
