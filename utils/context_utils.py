"""
Request Context Utilities

Helpers shared by the routers: extracting the authenticated principal id
from the bearer token and turning a DispatchResult into an HTTP response.

The transport knows nothing about roles or tenants. It hands
the principal id to the dispatcher, which resolves and authorizes it.
"""

import logging

from fastapi import HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from middleware.jwt_auth import (
    JWTVerificationError,
    extract_bearer_token,
    verify_internal_jwt,
)
from services.command_dispatcher import CommandDispatcher, DispatchResult, get_command_dispatcher

logger = logging.getLogger(__name__)


def get_principal_id(request: Request) -> str:
    """
    FastAPI dependency returning the caller's principal id.

    Args:
        request: Incoming request carrying ``Authorization: Bearer <jwt>``

    Returns:
        The verified ``user_id`` claim

    Raises:
        HTTPException: 401 if the token is missing or invalid
    """
    token = extract_bearer_token(request.headers.get("Authorization"))
    if token is None:
        logger.warning(f"Missing bearer token: path={request.url.path}")
        raise HTTPException(
            status_code=401,
            detail={"code": "AUTH_REQUIRED", "message": "Bearer token required"},
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        claims = verify_internal_jwt(token)
    except JWTVerificationError as e:
        logger.warning(f"Token rejected: path={request.url.path}, code={e.code}")
        raise HTTPException(
            status_code=401,
            detail={"code": e.code, "message": e.message},
            headers={"WWW-Authenticate": "Bearer"},
        )

    return claims.user_id


def get_dispatcher() -> CommandDispatcher:
    """FastAPI dependency returning the process-wide dispatcher."""
    return get_command_dispatcher()


def dispatch_response(result: DispatchResult) -> JSONResponse:
    """
    Map a DispatchResult onto an HTTP response.

    COMPLETED -> 200 with the handler body, VALIDATION_FAILED -> 422,
    FORBIDDEN -> 403, HANDLER_FAILED -> the error's own status.
    """
    headers = {"X-Correlation-ID": result.correlation_id}

    if result.ok:
        return JSONResponse(status_code=200, content=jsonable_encoder(result.body), headers=headers)

    return JSONResponse(
        status_code=result.status_code,
        content=result.error_dict(),
        headers=headers,
    )
