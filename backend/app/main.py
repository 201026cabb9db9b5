import os
import logging
import time
from contextlib import asynccontextmanager
from uuid import uuid4

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from app.api.admin import router as admin_router
from app.api.auth import router as auth_router
from app.api.forum import router as forum_router
from app.api.realtime import router as realtime_router
from app.core.api_response import error_response_payload, get_request_id
from app.core.container import build_forum_services
from app.core.errors import ForumError, NotFoundError, PermissionDeniedError, UpstreamError, ValidationError
from app.core.forum_settings import load_forum_settings
from app.core.metrics import increment_counter, prometheus_text
from app.db.base import Base
from app.db.session import SessionLocal, engine
from app.services.forum import seed_categories

logger = logging.getLogger(__name__)
if not logging.getLogger().handlers:
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )

FORUM_ERROR_STATUS: dict[type[ForumError], tuple[int, str]] = {
    ValidationError: (400, "validation_error"),
    PermissionDeniedError: (403, "forbidden"),
    NotFoundError: (404, "not_found"),
    UpstreamError: (502, "upstream_error"),
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = load_forum_settings()
    app.state.forum = build_forum_services(settings)
    if os.getenv("DB_AUTO_CREATE", "false").strip().lower() in {"1", "true", "yes", "on"}:
        Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        seed_categories(db)
    finally:
        db.close()
    if not settings.guild_id or not settings.bot_token:
        logger.warning("discord_not_configured badges and admin access will use local data only")

    yield


app = FastAPI(title="Forum API", lifespan=lifespan)
app.include_router(auth_router)
app.include_router(forum_router)
app.include_router(admin_router)
app.include_router(realtime_router)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def request_context_middleware(request: Request, call_next):
    request_id = request.headers.get("X-Request-ID") or uuid4().hex
    request.state.request_id = request_id
    started_at = time.perf_counter()
    response = await call_next(request)
    duration_ms = (time.perf_counter() - started_at) * 1000
    response.headers["X-Request-ID"] = request_id
    if request.url.path != "/metrics/prometheus":
        increment_counter(
            "http_requests_total",
            method=request.method.upper(),
            path=request.url.path,
            status=str(response.status_code),
        )
    logger.info(
        "http_request request_id=%s method=%s path=%s status=%s duration_ms=%.2f",
        request_id,
        request.method,
        request.url.path,
        response.status_code,
        duration_ms,
    )
    return response


@app.exception_handler(ForumError)
async def forum_error_handler(request: Request, exc: ForumError):
    status_code, code = 500, "internal_error"
    for error_type, mapping in FORUM_ERROR_STATUS.items():
        if isinstance(exc, error_type):
            status_code, code = mapping
            break
    if isinstance(exc, UpstreamError):
        logger.warning("upstream_error request_id=%s error=%s", get_request_id(request), exc)
    increment_counter(
        "http_errors_total",
        code=str(status_code),
        path=request.url.path,
        method=request.method.upper(),
    )
    return JSONResponse(
        status_code=status_code,
        content=error_response_payload(request, code=code, message=str(exc) or "Please try again."),
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    detail = exc.detail
    message = detail if isinstance(detail, str) else "Request failed"
    increment_counter(
        "http_errors_total",
        code=str(exc.status_code),
        path=request.url.path,
        method=request.method.upper(),
    )
    return JSONResponse(
        status_code=exc.status_code,
        content=error_response_payload(
            request,
            code=f"http_{exc.status_code}",
            message=message,
            details=detail,
        ),
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    increment_counter(
        "http_errors_total",
        code="422",
        path=request.url.path,
        method=request.method.upper(),
    )
    return JSONResponse(
        status_code=422,
        content=error_response_payload(
            request,
            code="validation_error",
            message="Please check the form and try again.",
            details=exc.errors(),
        ),
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    increment_counter(
        "http_errors_total",
        code="500",
        path=request.url.path,
        method=request.method.upper(),
    )
    logger.exception("Unhandled error request_id=%s", get_request_id(request), exc_info=exc)
    return JSONResponse(
        status_code=500,
        content=error_response_payload(
            request,
            code="internal_error",
            message="Internal server error",
        ),
    )


@app.get("/health")
def health(request: Request):
    return {"ok": True, "status": "ok", "request_id": get_request_id(request)}


@app.get("/metrics/prometheus")
def metrics_prometheus():
    return PlainTextResponse(content=prometheus_text(), media_type="text/plain; version=0.0.4; charset=utf-8")


def run() -> None:
    import uvicorn

    uvicorn.run("app.main:app", host="0.0.0.0", port=load_forum_settings().port)


if __name__ == "__main__":
    run()
