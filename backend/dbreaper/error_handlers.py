"""
Error handling for the API

Maps reaper errors onto HTTP responses:
- InvalidInputError -> 400
- QueryExecutionError -> 422 (rolled back, nothing changed)
- ExportError -> 502 (rows reaped, backup table kept)
- ToolUnavailableError -> 503
"""
import logging
from fastapi import Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from sqlalchemy.exc import SQLAlchemyError, OperationalError

from dbreaper.reaper.errors import (
    ExportError,
    InvalidInputError,
    QueryExecutionError,
    ReaperError,
    ToolUnavailableError,
)

logger = logging.getLogger(__name__)


class APIError(Exception):
    """Base class for API exceptions"""

    def __init__(
        self,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        error_code: str = "INTERNAL_ERROR"
    ):
        self.message = message
        self.status_code = status_code
        self.error_code = error_code
        super().__init__(self.message)


class NotFoundError(APIError):
    """Resource not found"""

    def __init__(self, message: str = "Resource not found"):
        super().__init__(
            message=message,
            status_code=status.HTTP_404_NOT_FOUND,
            error_code="NOT_FOUND"
        )


REAPER_ERROR_STATUS = {
    InvalidInputError: (status.HTTP_400_BAD_REQUEST, "INVALID_INPUT"),
    QueryExecutionError: (status.HTTP_422_UNPROCESSABLE_ENTITY, "QUERY_EXECUTION_FAILED"),
    ExportError: (status.HTTP_502_BAD_GATEWAY, "EXPORT_FAILED"),
    ToolUnavailableError: (status.HTTP_503_SERVICE_UNAVAILABLE, "TOOL_UNAVAILABLE"),
}


async def api_error_handler(request: Request, exc: APIError) -> JSONResponse:
    """Handle custom API exceptions"""
    logger.error(f"API error: {exc.error_code} - {exc.message}")

    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": exc.error_code,
            "message": exc.message,
            "path": request.url.path
        }
    )


async def reaper_error_handler(request: Request, exc: ReaperError) -> JSONResponse:
    """Handle reaper exceptions"""
    status_code, error_code = status.HTTP_500_INTERNAL_SERVER_ERROR, "REAPER_ERROR"
    for error_type, mapping in REAPER_ERROR_STATUS.items():
        if isinstance(exc, error_type):
            status_code, error_code = mapping
            break

    content = {
        "error": error_code,
        "message": str(exc),
        "path": request.url.path
    }
    if isinstance(exc, ExportError):
        content["rows_reaped"] = exc.rows_reaped
        content["backup_table_name"] = exc.backup_table_name
        content["exit_status"] = exc.exit_status

    logger.error(f"Reaper error: {error_code} - {exc}")
    return JSONResponse(status_code=status_code, content=content)


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Handle request validation errors"""
    errors = exc.errors()
    logger.warning(f"Validation error: {errors}")

    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "error": "VALIDATION_ERROR",
            "message": "Request validation failed",
            "details": [{"loc": list(e.get("loc", [])), "msg": e.get("msg")} for e in errors],
            "path": request.url.path
        }
    )


async def sqlalchemy_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    """Handle SQLAlchemy database errors"""
    logger.error(f"Database error: {str(exc)}", exc_info=True)

    if isinstance(exc, OperationalError):
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={
                "error": "DATABASE_UNAVAILABLE",
                "message": "Database is currently unavailable",
                "path": request.url.path
            }
        )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": "DATABASE_ERROR",
            "message": "An unexpected database error occurred",
            "path": request.url.path
        }
    )


def register_error_handlers(app):
    """Register all error handlers with the FastAPI app"""
    app.add_exception_handler(APIError, api_error_handler)
    app.add_exception_handler(ReaperError, reaper_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(SQLAlchemyError, sqlalchemy_error_handler)
