# backend/app/exception_handlers.py
from __future__ import annotations

import logging

import httpx
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from .domain.errors import (
    AnalysisError,
    ConcurrencyConflict,
    NotFoundError,
    PermissionDeniedError,
    TranscriptionError,
    TrustEngineError,
    ValidationError,
)

log = logging.getLogger(__name__)

_STATUS_BY_ERROR: list[tuple[type[TrustEngineError], int]] = [
    (ValidationError, 400),
    (PermissionDeniedError, 403),
    (NotFoundError, 404),
    (ConcurrencyConflict, 409),
    (TranscriptionError, 502),
    (AnalysisError, 502),
]


def status_for(exc: TrustEngineError) -> int:
    for cls, code in _STATUS_BY_ERROR:
        if isinstance(exc, cls):
            return code
    return 500


async def trust_engine_error_handler(request: Request, exc: TrustEngineError) -> JSONResponse:
    code = status_for(exc)
    if code >= 500:
        log.error("service error in %s: %s", request.url.path, exc, exc_info=True)
    elif code == 409:
        log.warning("conflict in %s: %s", request.url.path, exc)
    return JSONResponse(
        status_code=code,
        content={"error": type(exc).__name__, "message": str(exc)},
    )


async def upstream_error_handler(request: Request, exc: httpx.HTTPError) -> JSONResponse:
    log.error("upstream call failed in %s: %s: %s", request.url.path, type(exc).__name__, exc)
    return JSONResponse(
        status_code=502,
        content={"error": "UpstreamError", "message": f"{type(exc).__name__}: {exc}"},
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(TrustEngineError, trust_engine_error_handler)
    app.add_exception_handler(httpx.HTTPError, upstream_error_handler)
