# assessment_engine/core/response.py
import traceback
from typing import Any, Dict, List, Literal, Optional

from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from assessment_engine.core.config import settings
from assessment_engine.core.exceptions import AssessmentError


class FieldError(BaseModel):
    """One rejected request field"""
    field: Optional[str] = None
    message: str


class ResponseModel(BaseModel):
    status: Literal["success", "error"]
    msg: str
    data: Optional[Any] = None


class ErrorResponseModel(ResponseModel):
    """Error envelope; ``error_code`` is what attempt clients map back to exceptions"""
    status: Literal["error"] = "error"
    error_code: str
    fields: Optional[List[FieldError]] = None
    debug_info: Optional[Dict[str, Any]] = None


def _json(model: BaseModel, status_code: int) -> JSONResponse:
    return JSONResponse(
        status_code=status_code, content=jsonable_encoder(model.model_dump(exclude_none=True))
    )


def success_response(
    msg: str = "OK", data: Any = None, status_code: int = 200
) -> JSONResponse:
    """Create a success response"""
    return _json(ResponseModel(status="success", msg=msg, data=data), status_code)


def error_response(
    msg: str,
    data: Any = None,
    status_code: int = 400,
    error_code: Optional[str] = None,
    fields: Optional[List[FieldError]] = None,
) -> JSONResponse:
    if error_code is None:
        return _json(ResponseModel(status="error", msg=msg, data=data), status_code)

    debug_info = None
    if settings.DEBUG and status_code >= 500:
        debug_info = {"traceback": traceback.format_exc(), "environment": settings.ENVIRONMENT}
    model = ErrorResponseModel(
        msg=msg, error_code=error_code, data=data, fields=fields, debug_info=debug_info
    )
    return _json(model, status_code)


def assessment_error_response(exc: AssessmentError) -> JSONResponse:
    """Render a domain error with its own status and error_code.

    ``data`` is passed through only when it is already plain JSON; ORM rows
    attached for in-process callers never leave the service.
    """
    data = exc.data if isinstance(exc.data, (dict, list, str, int, float)) else None
    return error_response(
        exc.message, data=data, status_code=exc.status_code, error_code=exc.error_code
    )


def validation_error_response(
    errors: List[Dict[str, Any]], status_code: int = 422
) -> JSONResponse:
    """Request body or parameter errors, one entry per rejected field"""
    fields = []
    for err in errors:
        loc = [str(x) for x in err.get("loc", []) if x != "body"]
        fields.append(FieldError(field=".".join(loc) or None, message=err.get("msg", "Invalid value")))

    return error_response(
        msg="Invalid request parameters",
        fields=fields,
        status_code=status_code,
        error_code="INVALID_REQUEST",
    )
