from __future__ import annotations

import logging
import re
from time import perf_counter
from uuid import uuid4

from fastapi import FastAPI, Request

from taskhub.core.config import settings

REQUEST_ID_HEADER = "X-Request-ID"
_REQUEST_ID_RE = re.compile(r"^[A-Za-z0-9._-]{1,128}$")
_LOG = logging.getLogger("taskhub.http")


def request_id_from_header(raw: str | None) -> str:
    value = str(raw or "").strip()
    if not value or not _REQUEST_ID_RE.fullmatch(value):
        return uuid4().hex
    return value


def install_request_logging(app: FastAPI) -> None:
    """Tag every response with a request id and write one access-log line for it.

    Requests slower than ``SLOW_REQUEST_MS`` are logged as warnings so expensive
    work package queries stand out.
    """

    @app.middleware("http")
    async def _request_logging_middleware(request: Request, call_next):
        request_id = request_id_from_header(request.headers.get(REQUEST_ID_HEADER))
        request.state.request_id = request_id
        started_at = perf_counter()

        response = await call_next(request)

        response.headers["X-Content-Type-Options"] = "nosniff"
        # Query results depend on the caller's permissions; never cache them.
        response.headers["Cache-Control"] = "no-store"
        response.headers[REQUEST_ID_HEADER] = request_id

        duration_ms = (perf_counter() - started_at) * 1000.0
        slow = settings.SLOW_REQUEST_MS > 0 and duration_ms >= settings.SLOW_REQUEST_MS
        _LOG.log(
            logging.WARNING if slow else logging.INFO,
            "%s %s status=%s duration_ms=%.2f request_id=%s%s",
            request.method,
            request.url.path,
            response.status_code,
            duration_ms,
            request_id,
            " slow=true" if slow else "",
        )
        return response
