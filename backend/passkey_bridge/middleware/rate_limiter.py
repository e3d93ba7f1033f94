"""Per-client rate limiting for ceremony endpoints using slowapi."""

from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from starlette.requests import Request
from starlette.responses import JSONResponse

from passkey_bridge.config import settings


def _get_user_or_ip(request: Request) -> str:
    """Use the bearer token's subject as the key, fall back to client IP.

    Challenge and authentication requests are mostly anonymous, so most
    traffic is keyed by address.
    """
    auth = request.headers.get("authorization", "")
    if auth.startswith("Bearer "):
        from fastapi import HTTPException

        from passkey_bridge.api.dependencies import verify_token
        try:
            return verify_token(auth.split(" ", 1)[1])["sub"]
        except HTTPException:
            pass
    return get_remote_address(request)


limiter = Limiter(key_func=_get_user_or_ip, enabled=settings.rate_limit_enabled)

CEREMONY_LIMIT = f"{settings.rate_limit_ceremony}/minute"


def rate_limit_exceeded_handler(_request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return a JSON envelope when rate limit is exceeded."""
    return JSONResponse(
        status_code=429,
        content={
            "status": "error",
            "data": None,
            "errors": [{"code": "RATE_LIMITED", "message": str(exc.detail), "field": None}],
            "meta": {},
        },
    )
