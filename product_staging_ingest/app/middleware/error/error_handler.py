import traceback
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from ...core.exceptions import StagingIngestError
from ...utils.logging import get_logger

logger = get_logger("product_staging_ingest.error_handler")


class IngestErrorHandler:
    """Class to setup error handlers for Product Staging Ingest."""

    @staticmethod
    def setup_error_handlers(app: FastAPI) -> None:
        """Setup error handlers for the FastAPI application."""

        @app.exception_handler(StarletteHTTPException)
        async def http_exception_handler(  # type: ignore
            request: Request, exc: StarletteHTTPException
        ) -> JSONResponse:
            """Handle HTTP exceptions."""

            return IngestErrorHandler._create_error_response(
                request=request,
                status_code=exc.status_code,
                error_type="http_error",
                message=str(exc.detail),
            )

        @app.exception_handler(StagingIngestError)
        async def ingest_error_handler(  # type: ignore
            request: Request, exc: StagingIngestError
        ) -> JSONResponse:
            """Handle ingest errors that escape to the HTTP surface."""

            logger.error(
                "Ingest error while serving request",
                extra={
                    "path": request.url.path,
                    "exception_type": type(exc).__name__,
                    "exception_message": exc.message,
                    "event_type": "ingest_error",
                },
            )
            return IngestErrorHandler._create_error_response(
                request=request,
                status_code=500,
                error_type="ingest_error",
                message=exc.message,
                details={key: str(value) for key, value in exc.details.items()},
            )

        @app.exception_handler(Exception)
        async def general_exception_handler(  # type: ignore
            request: Request, exc: Exception
        ) -> JSONResponse:
            """Handle all uncaught exceptions."""

            logger.error(
                "Unhandled exception occurred",
                extra={
                    "path": request.url.path,
                    "method": request.method,
                    "exception_type": type(exc).__name__,
                    "exception_message": str(exc),
                    "traceback": traceback.format_exc(),
                    "event_type": "unhandled_exception",
                },
                exc_info=True,
            )

            return IngestErrorHandler._create_error_response(
                request=request,
                status_code=500,
                error_type="internal_server_error",
                message="An internal server error occurred",
                details={"exception_type": type(exc).__name__},
            )

    @staticmethod
    def _create_error_response(
        request: Request,
        status_code: int,
        error_type: str,
        message: str,
        details: Optional[Dict[str, Any]] = None,
    ) -> JSONResponse:
        """Create a standardized error response."""

        error_response: Dict[str, Any] = {
            "error": {
                "type": error_type,
                "message": message,
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "path": request.url.path,
                "method": request.method,
            }
        }

        if details:
            error_response["error"]["details"] = details

        if status_code < 500:
            logger.warning(
                f"Client error: {error_type}",
                extra={
                    "status_code": status_code,
                    "error_type": error_type,
                    "path": request.url.path,
                    "method": request.method,
                    "event_type": "client_error",
                },
            )

        return JSONResponse(status_code=status_code, content=error_response)


def setup_ingest_error_handling(app: FastAPI) -> None:
    """Setup error handling for Product Staging Ingest."""

    error_handler = IngestErrorHandler()
    error_handler.setup_error_handlers(app)
