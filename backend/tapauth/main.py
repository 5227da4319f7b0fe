# backend/tapauth/main.py

import logging
import time
import uuid
from typing import Any, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from tapauth.core.config import settings
from tapauth.core.errors import (
    AuthServiceError,
    install_request_id_logging,
    log_exception_with_context,
)
from tapauth.core.request_context import (
    clear_db_metrics,
    get_db_metrics_snapshot,
    get_request_id,
    reset_db_metrics,
    set_request_id,
)

# --- Logging setup ---
# The record factory guarantees `request_id` exists on every record (third-party
# loggers included); the filter fills in the real value inside a request.
_old_factory = logging.getLogRecordFactory()


def _record_factory(*args, **kwargs):
    record = _old_factory(*args, **kwargs)
    if not hasattr(record, "request_id"):
        record.request_id = "-"
    return record


logging.setLogRecordFactory(_record_factory)

logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(levelname)s %(name)s request_id=%(request_id)s %(message)s",
)
install_request_id_logging()

logger = logging.getLogger("tapauth")

enable_docs = bool(settings.enable_docs)
logger.info("Startup: environment=%s enable_docs=%s", settings.environment, enable_docs)

db_backend = (settings.database_url or "").split(":", 1)[0] or "unknown"
logger.info("DB backend detected: %s", db_backend)

SLOW_HTTP_MS = 1500

app = FastAPI(
    title="TapCanvas Auth API",
    openapi_url="/api/v1/openapi.json" if enable_docs else None,
    docs_url="/api/v1/docs" if enable_docs else None,
    redoc_url="/api/v1/redoc" if enable_docs else None,
)


def _get_request_id(request: Request) -> str:
    incoming = request.headers.get("x-request-id") or request.headers.get("x-correlation-id")
    if incoming and incoming.strip():
        return incoming.strip()[:128]
    return uuid.uuid4().hex


def _client_ip(request: Request) -> str:
    xff = request.headers.get("x-forwarded-for")
    if xff:
        first = xff.split(",")[0].strip()
        if first:
            return first
    return request.client.host if request.client else "unknown"


def _rid_from_request(request: Request) -> str:
    rid = getattr(request.state, "request_id", None)
    if isinstance(rid, str) and rid.strip():
        return rid
    rid2 = get_request_id()
    if rid2 and rid2 != "-":
        return rid2
    return uuid.uuid4().hex


def _error_payload(code: str, message: str, request_id: str, extra: Optional[dict] = None) -> dict:
    """
    Standardized error contract:
    - success/error for the web client
    - code/message/request_id (stable)
    - detail {code, message} for older parsers
    """
    payload: dict[str, Any] = {
        "success": False,
        "error": message,
        "code": code,
        "message": message,
        "request_id": request_id,
        "detail": {"code": code, "message": message},
    }
    if extra:
        payload.update(extra)
    return payload


def _json_error(status_code: int, payload: dict, request_id: str, headers: Optional[dict] = None) -> JSONResponse:
    resp = JSONResponse(status_code=status_code, content=payload, headers=headers)
    resp.headers["X-Request-ID"] = request_id
    return resp


@app.exception_handler(AuthServiceError)
async def auth_service_error_handler(request: Request, exc: AuthServiceError):
    request_id = _rid_from_request(request)
    if exc.status_code >= 500:
        logger.error("auth_error code=%s path=%s message=%s", exc.code.value, request.url.path, exc.message)
    else:
        logger.info("auth_error code=%s path=%s", exc.code.value, request.url.path)
    return _json_error(
        exc.status_code,
        _error_payload(
            code=exc.code.value,
            message=exc.message,
            request_id=request_id,
            extra={"detail": exc.to_detail()},
        ),
        request_id,
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    request_id = _rid_from_request(request)
    code = f"HTTP_{exc.status_code}"

    if isinstance(exc.detail, dict):
        msg = exc.detail.get("message")
        if not isinstance(msg, str) or not msg.strip():
            msg = "Request failed."
        merged_detail: dict[str, Any] = {"code": code, "message": msg}
        merged_detail.update(exc.detail)
        payload = _error_payload(code=code, message=msg, request_id=request_id, extra={"detail": merged_detail})
    else:
        msg = exc.detail if isinstance(exc.detail, str) else "Request failed."
        payload = _error_payload(code=code, message=msg, request_id=request_id)

    return _json_error(exc.status_code, payload, request_id, headers=getattr(exc, "headers", None))


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    request_id = _rid_from_request(request)
    return _json_error(
        400,
        _error_payload(
            code="VALIDATION_ERROR",
            message="请求参数错误",
            request_id=request_id,
            extra={"errors": jsonable_encoder(exc.errors())},
        ),
        request_id,
    )


# --- Observability middleware: request id + timing + structured logs ---
@app.middleware("http")
async def request_observability(request: Request, call_next):
    request_id = _get_request_id(request)
    request.state.request_id = request_id
    set_request_id(request_id)
    reset_db_metrics()

    start = time.perf_counter()
    status_code = 500

    try:
        response = await call_next(request)
        status_code = getattr(response, "status_code", 200) or 200
        response.headers["X-Request-ID"] = request_id
        return response

    except Exception as e:
        if isinstance(e, (HTTPException, RequestValidationError, AuthServiceError)):
            raise

        log_exception_with_context(
            "Unhandled error",
            extra={"method": request.method, "path": request.url.path, "error": type(e).__name__},
        )

        # No traceback in the body: it can carry emails and codes
        return _json_error(
            500,
            _error_payload(code="INTERNAL_ERROR", message="Internal Server Error", request_id=request_id),
            request_id,
        )

    finally:
        duration_ms = (time.perf_counter() - start) * 1000.0
        m = get_db_metrics_snapshot()

        log_fn = logger.warning if duration_ms >= float(SLOW_HTTP_MS) else logger.info
        log_fn(
            "req request_id=%s method=%s path=%s status=%s duration_ms=%.2f db_total_ms=%.2f db_q=%s db_slowest_ms=%.2f ip=%s",
            request_id,
            request.method,
            request.url.path,
            status_code,
            duration_ms,
            m["db_total_ms"],
            m["db_query_count"],
            m["db_slowest_ms"],
            _client_ip(request),
        )

        clear_db_metrics()
        set_request_id(None)


# --- CORS setup ---
allowed = settings.origins_list()
logger.info("CORS allow_origins=%s", allowed)

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# --- Routers ---
from tapauth.api.v1 import auth, health  # noqa: E402

app.include_router(auth.router, prefix="/api/v1")
app.include_router(health.router, prefix="/api/v1")


@app.get("/", include_in_schema=False)
def root():
    return {"status": "TapCanvas auth API is running. See /api/v1/health."}
