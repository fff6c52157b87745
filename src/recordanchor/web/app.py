"""
FastAPI application factory.

    uvicorn recordanchor.web.app:app

or, with explicit wiring (tests):

    app = create_app(AnchorRuntime(settings, ledger=InMemoryLedger()))
"""

from __future__ import annotations

import logging
import uuid
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from recordanchor import __version__
from recordanchor.core.runtime import AnchorRuntime
from recordanchor.protocol.enums import ErrorCode
from recordanchor.protocol.errors import AnchorError
from recordanchor.utils.logging import configure_logging
from recordanchor.web.routes import router

logger = logging.getLogger("recordanchor.web")


_STATUS_BY_CODE = {
    ErrorCode.RECORD_ENCODING_ERROR: 400,
    ErrorCode.UNSUPPORTED_ALGORITHM: 400,
    ErrorCode.RECORD_NOT_FOUND: 404,
    ErrorCode.BATCH_NOT_FOUND: 404,
    ErrorCode.INVALID_REQUEST: 422,
    ErrorCode.LEDGER_REJECTED: 502,
    ErrorCode.TRANSIENT_LEDGER_ERROR: 503,
    ErrorCode.COMMIT_FAILED: 503,
    ErrorCode.STORAGE_ERROR: 503,
    ErrorCode.INVARIANT_VIOLATION: 500,
    ErrorCode.INTERNAL_ERROR: 500,
}


def status_for(code: ErrorCode) -> int:
    return _STATUS_BY_CODE.get(code, 500)


def error_body(code: str, message: str, req_uuid: str) -> dict:
    return {"error": {"type": code, "message": message, "req_uuid": req_uuid}}


def _error_response(request: Request, status: int, code: str, message: str) -> JSONResponse:
    req_uuid = str(uuid.uuid4())
    if status >= 500:
        logger.error(
            "%s %s failed [%s] %s: %s",
            request.method, request.url.path, req_uuid, code, message,
        )
    else:
        logger.info(
            "%s %s rejected [%s] %s: %s",
            request.method, request.url.path, req_uuid, code, message,
        )
    return JSONResponse(status_code=status, content=error_body(code, message, req_uuid))


async def anchor_error_handler(request: Request, exc: AnchorError) -> JSONResponse:
    return _error_response(request, status_for(exc.code), exc.code.value, str(exc))


async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    response = _error_response(request, exc.status_code, ErrorCode.HTTP_ERROR.value, str(exc.detail))
    if exc.headers:
        response.headers.update(exc.headers)
    return response


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    problems = "; ".join(
        f"{'.'.join(str(part) for part in err.get('loc', ()))}: {err.get('msg', 'invalid')}"
        for err in exc.errors()
    )
    code = ErrorCode.INVALID_REQUEST
    return _error_response(request, status_for(code), code.value, problems or "Invalid request")


def create_app(runtime: Optional[AnchorRuntime] = None) -> FastAPI:
    runtime = runtime or AnchorRuntime()
    configure_logging(runtime.settings.runtime.log_level)

    app = FastAPI(
        title="recordanchor",
        version=__version__,
        description="Merkle batch anchoring and inclusion proofs",
    )
    app.state.runtime = runtime
    app.add_exception_handler(AnchorError, anchor_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.include_router(router)
    return app


def __getattr__(name: str):
    # Lazily built so importing this module never reads the environment.
    if name == "app":
        application = create_app()
        globals()["app"] = application
        return application
    raise AttributeError(name)
