from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse
from typing import Optional
import logging
import time
import httpx

from slowapi import Limiter
from slowapi.util import get_remote_address

from storefront.shared.app_factory import create_service_app, get_http_client, get_limiter
from storefront.shared.config import GatewaySettings, get_settings

logger = logging.getLogger(__name__)

# Inbound prefix -> (settings attribute holding the upstream base URL, upstream prefix)
ROUTES = {
    "/api/products": ("PRODUCT_SERVICE_URL", "/api/products"),
    "/api/users": ("USER_SERVICE_URL", "/api/users"),
    "/api/auth": ("USER_SERVICE_URL", "/api/users"),
    "/api/cart": ("CART_SERVICE_URL", "/api/cart"),
    "/api/orders": ("ORDER_SERVICE_URL", "/api/orders"),
    "/api/payments": ("PAYMENT_SERVICE_URL", ""),
    "/api/inventory": ("INVENTORY_SERVICE_URL", ""),
}

PROXY_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE"]

# Not meaningful once the body has been buffered and re-encoded, or set again by our own server
EXCLUDED_RESPONSE_HEADERS = {
    "content-length", "content-encoding", "transfer-encoding", "connection", "date", "server",
}

# --- Proxy Logic ---

async def forward_request(request: Request, service_url: str, path: str) -> Response:
    settings = get_settings(request)
    client = get_http_client(request)

    headers = dict(request.headers)
    headers.pop("host", None)
    headers.pop("content-length", None)

    if request.client:
        forwarded = headers.get("x-forwarded-for")
        headers["x-forwarded-for"] = f"{forwarded}, {request.client.host}" if forwarded else request.client.host

    request_id = getattr(request.state, "request_id", None)
    if request_id:
        headers["x-request-id"] = request_id

    url = f"{service_url}{path}"
    if request.url.query:
        url += f"?{request.url.query}"

    start_time = time.time()
    logger.info("Calling Downstream Service", extra={
        "target": service_url,
        "path": path,
        "method": request.method,
        "request_id": request_id
    })

    try:
        resp = await client.request(
            method=request.method,
            url=url,
            headers=headers,
            content=await request.body(),
            timeout=httpx.Timeout(settings.PROXY_TIMEOUT, pool=settings.PROXY_IDLE_TIMEOUT),
        )
    except httpx.TimeoutException:
        logger.warning("Downstream Call Timed Out", extra={"target": service_url, "path": path, "request_id": request_id})
        return JSONResponse(status_code=504, content={"message": "Upstream timed out"})
    except httpx.RequestError as exc:
        logger.warning(
            f"Downstream Service Unreachable: {exc}",
            extra={"target": service_url, "path": path, "request_id": request_id},
        )
        return JSONResponse(status_code=502, content={"message": "Service unreachable"})

    duration = (time.time() - start_time) * 1000
    logger.info("Downstream Call Completed", extra={
        "target": service_url,
        "path": path,
        "status_code": resp.status_code,
        "duration_ms": round(duration, 2),
        "request_id": request_id
    })

    return Response(
        content=resp.content,
        status_code=resp.status_code,
        headers={k: v for k, v in resp.headers.items() if k.lower() not in EXCLUDED_RESPONSE_HEADERS},
    )

def make_proxy(limiter: Limiter, prefix: str, service_url: str, upstream_prefix: str):
    async def proxy(request: Request):
        path = request.path_params.get("path", "")
        suffix = f"/{path}" if path else ""
        return await forward_request(request, service_url, f"{upstream_prefix}{suffix}")

    # slowapi keys limits by function name
    proxy.__name__ = f"{prefix.rsplit('/', 1)[-1]}_proxy"
    return limiter.limit("100/minute")(proxy)


def create_app(
    settings: Optional[GatewaySettings] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> FastAPI:
    settings = settings or GatewaySettings()
    app = create_service_app(
        settings, "API Gateway", transport=transport, use_database=False, rate_limit_key=get_remote_address
    )
    limiter = get_limiter(app)

    for prefix, (setting_name, upstream_prefix) in ROUTES.items():
        service_url = getattr(settings, setting_name)
        if not service_url:
            # Left unrouted; requests fall through to the default 404
            logger.info(f"No upstream configured for {prefix}")
            continue
        proxy = make_proxy(limiter, prefix, service_url.rstrip("/"), upstream_prefix)
        app.add_api_route(prefix, proxy, methods=PROXY_METHODS, include_in_schema=False)
        app.add_api_route(f"{prefix}/{{path:path}}", proxy, methods=PROXY_METHODS, include_in_schema=False)

    return app

app = create_app()
