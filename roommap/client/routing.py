import logging
from typing import Any, Optional

import httpx

from ..config import get_env_float, get_env_str


logger = logging.getLogger("roommap.routing")

ROUTE_PATH = "/api/locations/route"


class RouteUnavailable(Exception):
    """路线服务未能给出路线（网络错误、非成功状态码、载荷无法解析）。"""


class RoutingService:
    """路线服务接口：给定起点/终点坐标返回不透明的路线载荷。"""

    async def compute_route(self, start: dict, end: dict) -> Any:
        raise NotImplementedError


class HttpRoutingService(RoutingService):
    """
    通过 ``POST {base_url}/api/locations/route`` 请求路线。

    每次触发只请求一次，不做重试或退避。
    """

    def __init__(
        self,
        base_url: str,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 15.0,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._owns_client = client is None
        self.client = client if client is not None else httpx.AsyncClient(timeout=timeout)

    @classmethod
    def from_env(cls) -> "HttpRoutingService":
        return cls(
            get_env_str("ROOMMAP_ROUTING_BASE_URL", "http://localhost:8765"),
            timeout=get_env_float("ROOMMAP_ROUTING_TIMEOUT_SEC", 15.0, 1.0, 120.0),
        )

    async def compute_route(self, start: dict, end: dict) -> Any:
        url = self.base_url + ROUTE_PATH
        body = {
            "start": {"lat": start["lat"], "lng": start["lng"]},
            "end": {"lat": end["lat"], "lng": end["lng"]},
        }
        logger.debug("POST %s start=%s end=%s", url, body["start"], body["end"])
        try:
            response = await self.client.post(url, json=body)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as e:
            raise RouteUnavailable(f"routing service returned {e.response.status_code}") from e
        except httpx.HTTPError as e:
            raise RouteUnavailable(f"routing service request failed: {e!r}") from e
        except ValueError as e:
            raise RouteUnavailable("routing service returned a malformed payload") from e

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()
