"""HTTP mapping for the cart errors protean's handlers do not cover.

protean answers validation errors with 400, missing objects with 404 and
invalid state with 409. Redemption conflicts are ``InvalidOperationError``
subclasses, which protean answers with 422, so they get a 409 of their own.
"""

import structlog
from fastapi import Request
from fastapi.responses import JSONResponse

from cartstream.exceptions import ConflictError, reason_for

logger = structlog.get_logger(__name__)


async def conflict_error_handler(request: Request, exc: ConflictError) -> JSONResponse:
    logger.info("Request rejected", path=request.url.path, status_code=409, reason=reason_for(exc))
    return JSONResponse(status_code=409, content={"error": str(exc)})
