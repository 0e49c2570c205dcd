import logging
from contextlib import asynccontextmanager

import httpx
from fastapi import APIRouter, FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from ..config import get_env_float, get_env_str
from .models import Coordinate, RouteQuery


logger = logging.getLogger("roommap.route_proxy")

route_router = APIRouter()

ROUTE_UPSTREAM_ORIGIN = get_env_str("ROOMMAP_ROUTE_UPSTREAM", "https://router.project-osrm.org")
ROUTE_PROFILE = get_env_str("ROOMMAP_ROUTE_PROFILE", "driving")
ROUTE_TIMEOUT_SEC = get_env_float("ROOMMAP_ROUTE_TIMEOUT_SEC", 15.0, 1.0, 120.0)


@asynccontextmanager
async def route_proxy_lifespan(app: FastAPI):
    timeout = httpx.Timeout(connect=5.0, read=ROUTE_TIMEOUT_SEC, write=10.0, pool=5.0)
    limits = httpx.Limits(max_connections=100, max_keepalive_connections=20, keepalive_expiry=45.0)
    app.state.route_http_client = httpx.AsyncClient(
        timeout=timeout,
        limits=limits,
        follow_redirects=True,
        http2=True,
    )
    try:
        yield
    finally:
        client = getattr(app.state, "route_http_client", None)
        if client is not None:
            await client.aclose()


def format_coordinates(*points: Coordinate) -> str:
    """OSRM 坐标格式为 lng,lat，多个点以分号分隔。"""
    return ";".join(f"{point.lng},{point.lat}" for point in points)


def build_route_url(query: RouteQuery, origin: str = ROUTE_UPSTREAM_ORIGIN, profile: str = ROUTE_PROFILE) -> str:
    base = origin.rstrip("/")
    return f"{base}/route/v1/{profile}/{format_coordinates(query.start, query.end)}"


def _error(message: str, status_code: int, detail: str | None = None) -> JSONResponse:
    body = {
        "status": "error",
        "message": message,
    }
    if detail is not None:
        body["detail"] = detail
    return JSONResponse(body, status_code=status_code)


@route_router.post("/api/locations/route")
async def compute_route(request: Request) -> JSONResponse:
    """
    路线计算入口。

    只负责校验请求、转发到上游路线引擎，并原样返回上游的路线载荷；
    路线算法本身对本服务是黑盒。
    """
    try:
        payload = await request.json()
    except ValueError:
        return _error("invalid json body", 422)

    try:
        query = RouteQuery.model_validate(payload)
    except ValidationError as e:
        return _error("invalid route query", 422, str(e))

    client: httpx.AsyncClient | None = getattr(request.app.state, "route_http_client", None)
    if client is None:
        return _error("route proxy client not initialized", 503)

    upstream_url = build_route_url(query)
    try:
        upstream_response = await client.get(
            upstream_url,
            params={"overview": "full", "geometries": "geojson"},
        )
        upstream_response.raise_for_status()
        data = upstream_response.json()
    except httpx.TimeoutException as e:
        logger.warning("Route upstream timeout url=%s: %s", upstream_url, e)
        return _error("route upstream timeout", 504, str(e))
    except httpx.HTTPStatusError as e:
        logger.warning("Route upstream status error url=%s: %s", upstream_url, e)
        return _error("route upstream http status error", 502, str(e))
    except httpx.HTTPError as e:
        logger.warning("Route upstream http error url=%s: %s", upstream_url, e)
        return _error("route upstream http error", 502, str(e))
    except ValueError as e:
        logger.warning("Route upstream returned malformed payload url=%s: %s", upstream_url, e)
        return _error("route upstream malformed payload", 502, str(e))

    if not isinstance(data, dict) or data.get("code") != "Ok":
        code = data.get("code") if isinstance(data, dict) else None
        logger.info("No route available start=%s end=%s code=%s", query.start, query.end, code)
        return _error("no route available", 502, str(code))

    return JSONResponse(data)
