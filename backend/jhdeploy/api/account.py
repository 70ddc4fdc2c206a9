"""Account view-model validation endpoints"""

from typing import Any, Dict

from fastapi import APIRouter, Body, HTTPException

from jhdeploy.models.pipeline_schemas import ValidationReport, ViolationEntry
from jhdeploy.models.user_schemas import AdminUserDTO, PasswordChangeDTO, UserDTO
from jhdeploy.utils.validation import collect_violations

router = APIRouter(tags=["account"])

VIEW_MODELS = {
    "admin-user": AdminUserDTO,
    "user": UserDTO,
    "password-change": PasswordChangeDTO,
}


@router.post("/validate/{kind}", response_model=ValidationReport)
async def validate_payload(kind: str, payload: Dict[str, Any] = Body(...)):
    """Check a payload against one of the account view-models"""
    model = VIEW_MODELS.get(kind)
    if model is None:
        raise HTTPException(
            status_code=404,
            detail=f"Unknown view-model '{kind}'. Expected one of: {', '.join(VIEW_MODELS)}",
        )

    violations = collect_violations(model, payload)
    return ValidationReport(
        model=model.__name__,
        valid=not violations,
        violations=[ViolationEntry(field=v.field, message=v.message) for v in violations],
    )
