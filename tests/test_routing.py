"""Tests for the HTTP Routing Service client."""

import json

import httpx
import pytest

from roommap.client.routing import HttpRoutingService, RouteUnavailable


START = {"lat": 10.0, "lng": 10.0}
END = {"lat": 20.0, "lng": 20.0}


def service_for(handler) -> HttpRoutingService:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return HttpRoutingService("http://routing.local/", client=client)


class TestHttpRoutingService:
    @pytest.mark.asyncio
    async def test_posts_start_and_end_and_returns_payload(self) -> None:
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, json={"routes": [{"distance": 10}]})

        route = await service_for(handler).compute_route(START, END)

        assert route == {"routes": [{"distance": 10}]}
        assert requests[0].method == "POST"
        assert str(requests[0].url) == "http://routing.local/api/locations/route"
        assert json.loads(requests[0].content) == {"start": START, "end": END}

    @pytest.mark.asyncio
    async def test_error_status_is_unavailable(self) -> None:
        service = service_for(lambda request: httpx.Response(502, json={"status": "error"}))
        with pytest.raises(RouteUnavailable):
            await service.compute_route(START, END)

    @pytest.mark.asyncio
    async def test_network_error_is_unavailable(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(RouteUnavailable):
            await service_for(handler).compute_route(START, END)

    @pytest.mark.asyncio
    async def test_malformed_payload_is_unavailable(self) -> None:
        service = service_for(lambda request: httpx.Response(200, content=b"<html>"))
        with pytest.raises(RouteUnavailable):
            await service.compute_route(START, END)

    @pytest.mark.asyncio
    async def test_single_attempt_per_call(self) -> None:
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(503)

        with pytest.raises(RouteUnavailable):
            await service_for(handler).compute_route(START, END)
        assert len(calls) == 1

    def test_base_url_comes_from_environment(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("ROOMMAP_ROUTING_BASE_URL", "https://routes.example.com/")
        service = HttpRoutingService.from_env()
        assert service.base_url == "https://routes.example.com"
