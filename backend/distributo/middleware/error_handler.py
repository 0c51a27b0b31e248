"""Global error handler middleware."""
import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from distributo.errors import DistributoError
from distributo.schemas.common import ErrorDetail

logger = structlog.get_logger()


def setup_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(DistributoError)
    async def distributo_error_handler(request: Request, exc: DistributoError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.warning("upstream_error", path=request.url.path, code=exc.code, detail=exc.detail)
        return JSONResponse(
            status_code=exc.status_code,
            content=ErrorDetail(
                title=type(exc).__name__,
                status=exc.status_code,
                detail=exc.detail,
                code=exc.code,
            ).model_dump(exclude_none=True),
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(_request: Request, exc: Exception) -> JSONResponse:
        logger.error("unhandled_exception", error=str(exc), exc_info=True)
        return JSONResponse(
            status_code=500,
            content={
                "type": "about:blank",
                "title": "Internal Server Error",
                "status": 500,
                "detail": "An unexpected error occurred.",
            },
        )
