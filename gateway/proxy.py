import logging
from typing import Any, Optional

import httpx
from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import JSONResponse, Response

logger = logging.getLogger("gateway")

# DO NOT FORWARD hop-by-hop headers (esp. content-length)
HOP_BY_HOP_HEADERS = {
    "host",
    "content-length",
    "transfer-encoding",
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "te",
    "trailers",
    "upgrade",
}


def _copy_headers(request: Request) -> dict[str, str]:
    return {k: v for k, v in request.headers.items() if k.lower() not in HOP_BY_HOP_HEADERS}


async def forward(
    *,
    base_url: str,
    path: str,
    method: str,
    request: Request,
    json_body: Optional[dict[str, Any]] = None,
    timeout: float = 30.0,
) -> Response:
    """Relay a request to the auth service and hand its answer back unchanged."""
    target_url = f"{base_url}{path}"
    try:
        async with httpx.AsyncClient(timeout=timeout, follow_redirects=False) as client:
            kwargs: dict[str, Any] = {
                "method": method,
                "url": target_url,
                "headers": _copy_headers(request),
                "params": request.query_params,
            }
            if json_body is not None:
                kwargs["json"] = json_body
            elif method.upper() in ("POST", "PUT", "PATCH"):
                body = await request.body()
                if body:
                    kwargs["content"] = body
            resp = await client.request(**kwargs)
    except httpx.TimeoutException:
        logger.error("Timeout calling auth service: %s", target_url)
        raise HTTPException(status_code=504, detail="Authentication service timeout")
    except httpx.RequestError as e:
        logger.error("Error calling auth service: %s (%s)", target_url, e)
        raise HTTPException(status_code=503, detail="Authentication service unavailable")

    content_type = resp.headers.get("content-type", "") or ""
    if "application/json" in content_type.lower():
        data = resp.json() if resp.text else None
        return JSONResponse(status_code=resp.status_code, content=data)

    return Response(
        content=resp.content,
        status_code=resp.status_code,
        media_type=content_type.split(";")[0] if content_type else None,
    )


def build_auth_router(settings) -> APIRouter:
    router = APIRouter(prefix="/auth", tags=["Authentication"])

    @router.post("/login", operation_id="auth_login")
    async def auth_login(request: Request):
        return await forward(base_url=settings.auth_service_url, path="/auth/login", method="POST", request=request)

    @router.post("/register", operation_id="auth_register")
    async def auth_register(request: Request):
        return await forward(base_url=settings.auth_service_url, path="/auth/register", method="POST", request=request)

    # authenticated: the middleware has already verified the bearer token
    @router.put("/password", operation_id="auth_change_password")
    async def auth_change_password(request: Request):
        return await forward(base_url=settings.auth_service_url, path="/auth/password", method="PUT", request=request)

    return router
