"""Map engine errors onto JSON HTTP responses."""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from src.core.errors import EngineError, RateLimitedError, to_error_response


logger = logging.getLogger(__name__)


async def engine_error_handler(request: Request, exc: EngineError) -> JSONResponse:
    response = to_error_response(exc)
    content = {"success": False, **response.model_dump(mode="json")}
    headers: dict[str, str] = {}

    if isinstance(exc, RateLimitedError):
        content["retryAfter"] = exc.retry_after
        headers["Retry-After"] = str(exc.retry_after_seconds)
        headers["X-RateLimit-Limit"] = str(exc.limit)

    log_context = {"path": request.url.path, "code": response.code, "category": exc.category.value}
    if exc.status_code >= 500:
        logger.error("request_failed", extra=log_context)
    else:
        logger.info("request_rejected", extra=log_context)

    return JSONResponse(status_code=exc.status_code, content=content, headers=headers)


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(EngineError, engine_error_handler)  # type: ignore[arg-type]
