"""
Error envelope shared by every router: `{code, message, details?}`.
"""
from typing import Any, Optional
from pydantic import BaseModel, Field


class FieldError(BaseModel):
    field: str = Field(examples=["body"])
    message: str
    type: str


class ErrorResponse(BaseModel):
    code: str = Field(examples=["PATIENT_NOT_FOUND"])
    message: str
    details: Optional[dict[str, Any]] = None


class ValidationErrors(BaseModel):
    errors: list[FieldError]


class ValidationErrorResponse(ErrorResponse):
    """422 body. `details.errors` lists one entry per rejected field."""
    code: str = Field(default="VALIDATION_ERROR", examples=["VALIDATION_ERROR"])
    details: ValidationErrors
