import logging
from typing import Any

import httpx
from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse
from pydantic import ValidationError as PydanticValidationError

from shared.auth import VerifiedUser

logger = logging.getLogger("gateway")

# IMPORTANT: DO NOT include "/" here, it makes everything public.
PUBLIC_PREFIXES = (
    "/api/auth/login",
    "/api/auth/register",
    "/health",
    "/docs",
    "/redoc",
    "/openapi.json",
)

# Root exact path should be public:
PUBLIC_EXACT = ("/",)


def _is_public(path: str) -> bool:
    if path in PUBLIC_EXACT:
        return True
    return any(path.startswith(p) for p in PUBLIC_PREFIXES)


async def verify_token(auth_service_url: str, token: str) -> VerifiedUser:
    """
    Verify token via auth-service and normalize returned payload.
    REQUIRED: sub, email. Role defaults to visitor when the service omits it.
    """
    try:
        async with httpx.AsyncClient(timeout=5.0) as client:
            r = await client.post(f"{auth_service_url}/auth/verify", json={"token": token})
    except httpx.RequestError as e:
        logger.error("Auth service error: %s", e)
        raise HTTPException(status_code=503, detail="Authentication service unavailable")

    try:
        data: Any = r.json()
    except ValueError:
        data = r.text

    if r.status_code != 200:
        detail = "Invalid or expired token"
        if isinstance(data, dict):
            detail = data.get("detail") or data.get("message") or detail
        elif isinstance(data, str) and data.strip():
            detail = data
        raise HTTPException(status_code=401, detail=detail)

    payload = data
    if isinstance(payload, dict) and "user" in payload and isinstance(payload["user"], dict):
        payload = payload["user"]

    if not isinstance(payload, dict):
        raise HTTPException(status_code=401, detail="Invalid token payload")

    if not payload.get("sub"):
        raise HTTPException(status_code=401, detail="Token missing sub")
    if not payload.get("email"):
        raise HTTPException(status_code=401, detail="Token missing email")

    try:
        return VerifiedUser(
            sub=str(payload["sub"]),
            email=str(payload["email"]),
            role=payload.get("role") or "visitor",
            is_approved=bool(payload.get("is_approved", payload.get("isApproved", True))),
            level=payload.get("level"),
        )
    except PydanticValidationError:
        raise HTTPException(status_code=401, detail="Invalid token payload")


async def auth_middleware(request: Request, call_next):
    # Let CORS preflight pass through (no auth here)
    if request.method == "OPTIONS":
        return await call_next(request)

    if _is_public(request.url.path):
        return await call_next(request)

    auth_header = request.headers.get("Authorization", "")
    if not auth_header.lower().startswith("bearer "):
        return JSONResponse(
            status_code=status.HTTP_401_UNAUTHORIZED,
            content={"detail": "Not authorized, no token"},
        )

    token = auth_header.split(" ", 1)[1].strip()
    if not token:
        return JSONResponse(
            status_code=status.HTTP_401_UNAUTHORIZED,
            content={"detail": "Not authorized, empty token"},
        )

    settings = request.app.state.settings
    try:
        request.state.user = await verify_token(settings.auth_service_url, token)
    except HTTPException as e:
        return JSONResponse(status_code=e.status_code, content={"detail": e.detail})

    return await call_next(request)
