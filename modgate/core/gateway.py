"""FastAPI app entry."""

from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from modgate.adapters.openai_compat.router import (
    chat_completions,
    chat_completions_options,
    router as openai_router,
)
from modgate.adapters.openai_compat.upstream import close_upstream_async_client
from modgate.config.moderation_policy import load_policy
from modgate.config.settings import settings
from modgate.core.error_normalizer import INTERNAL_ERROR_MESSAGE
from modgate.core.models import ErrorDetail, ErrorEnvelope
from modgate.util.log_payload import mask_for_log
from modgate.util.logger import logger


app = FastAPI(title=settings.app_name)
app.include_router(openai_router, prefix="/v1")
# 兼容原部署路径
app.add_api_route("/api/completions", chat_completions, methods=["POST"])
app.add_api_route("/api/completions", chat_completions_options, methods=["OPTIONS"])


def _envelope_response(status_code: int, message: str, error_type: str, code: str | int) -> JSONResponse:
    envelope = ErrorEnvelope(error=ErrorDetail(message=message, type=error_type, code=code))
    return JSONResponse(status_code=status_code, content=envelope.to_payload())


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    logger.warning("http error method=%s path=%s status=%s", request.method, request.url.path, exc.status_code)
    message = "Method not allowed" if exc.status_code == 405 else str(exc.detail)
    response = _envelope_response(exc.status_code, message, "invalid_request_error", exc.status_code)
    if exc.headers:
        response.headers.update(exc.headers)
    return response


@app.middleware("http")
async def last_resort_error_middleware(request: Request, call_next):
    try:
        return await call_next(request)
    except Exception:  # pragma: no cover - fail-safe
        logger.exception("gateway unhandled exception path=%s", request.url.path)
        return _envelope_response(500, INTERNAL_ERROR_MESSAGE, "internal_error", 500)


@app.get("/health")
def health() -> dict:
    logger.info("health check")
    return {"status": "ok"}


@app.on_event("startup")
async def startup_checks() -> None:
    load_policy()
    if not settings.auth_key:
        logger.warning("auth key is not configured, inbound calls are not authenticated")
    logger.info(
        "gateway ready moderation_url=%s moderation_model=%s moderation_key=%s relay_url=%s relay_key=%s",
        settings.first_provider_url,
        settings.first_provider_model,
        mask_for_log(settings.first_provider_key),
        settings.second_provider_url,
        mask_for_log(settings.second_provider_key),
    )


@app.on_event("shutdown")
async def shutdown_cleanup() -> None:
    await close_upstream_async_client()


# CORS 需在最外层，保证错误响应同样带跨域头
if settings.enable_cors:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["POST", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
    )
