"""FastAPI dependencies and Result -> HTTP response mapping."""

from fastapi import Request
from fastapi.responses import JSONResponse

from tableorders.domain import ErrorKind, Result
from tableorders.manager import OrderTableManager

STATUS_BY_KIND = {
    ErrorKind.VALIDATION_ERROR: 400,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.CONFLICT: 409,
    ErrorKind.INFRA_ERROR: 503,
}


def get_manager(request: Request) -> OrderTableManager:
    """Manager bound to the app's storage (set in create_app)."""
    return request.app.state.manager


def result_response(result: Result, success_status: int = 200) -> JSONResponse:
    """Serialize a Result, choosing the HTTP status from its error kind."""
    if result.success:
        status_code = success_status
    else:
        status_code = STATUS_BY_KIND.get(result.kind, 400)
    return JSONResponse(status_code=status_code, content=result.model_dump(mode="json"))
