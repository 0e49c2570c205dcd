import asyncio
import json
from typing import Any, Dict, List, Optional, Tuple

import pytest
from starlette.websockets import WebSocketState

from roommap.client.routing import RouteUnavailable, RoutingService
from roommap.client.transport import TransportChannel, TransportClosed


class FakeWebSocket:
    """Records every text frame; can be switched into a failing state."""

    def __init__(self) -> None:
        self.sent: List[dict] = []
        self.client_state = WebSocketState.CONNECTED
        self.application_state = WebSocketState.CONNECTED
        self.fail_sends = False
        self.close_code: Optional[int] = None

    async def close(self, code: int = 1000) -> None:
        self.close_code = code
        self.client_state = WebSocketState.DISCONNECTED
        self.application_state = WebSocketState.DISCONNECTED

    async def send_text(self, text: str) -> None:
        if self.fail_sends:
            raise RuntimeError("socket is gone")
        self.sent.append(json.loads(text))

    def rosters(self) -> List[dict]:
        return [message for message in self.sent if message.get("type") == "rosterUpdate"]

    def last_member_ids(self) -> set:
        return {member["userId"] for member in self.rosters()[-1]["members"]}


class StalledWebSocket(FakeWebSocket):
    """send_text never completes, like a peer that stopped reading."""

    async def send_text(self, text: str) -> None:
        await asyncio.sleep(3600)


class FakeTransport(TransportChannel):
    def __init__(self, connection_id: str = "me") -> None:
        super().__init__()
        self.next_id = connection_id
        self.emitted: List[Tuple[str, dict]] = []
        self.connect_calls = 0
        self.refuse = False
        self._connected = False

    @property
    def connected(self) -> bool:
        return self._connected

    async def connect(self) -> None:
        if self._connected:
            return
        if self.refuse:
            raise TransportClosed("refused")
        self.connect_calls += 1
        self._connected = True
        self.connection_id = self.next_id

    async def emit(self, event: str, payload: Optional[dict] = None) -> None:
        if not self._connected:
            raise TransportClosed("not connected")
        self.emitted.append((event, dict(payload or {})))

    async def close(self) -> None:
        self._connected = False
        self.connection_id = None

    def drop(self) -> None:
        self._connected = False
        self.connection_id = None
        self.dispatch("disconnect", {})

    def roster(self, room_id: str, rev: int, members: List[dict]) -> None:
        self.dispatch("rosterUpdate", {"type": "rosterUpdate", "roomId": room_id, "rev": rev, "members": members})

    def events(self, name: str) -> List[dict]:
        return [payload for event, payload in self.emitted if event == name]


class ControlledRoutingService(RoutingService):
    """Each call parks on a future the test resolves explicitly."""

    def __init__(self) -> None:
        self.calls: List[Tuple[dict, dict]] = []
        self.pending: List[asyncio.Future] = []

    async def compute_route(self, start: dict, end: dict) -> Any:
        future = asyncio.get_running_loop().create_future()
        self.calls.append((dict(start), dict(end)))
        self.pending.append(future)
        return await future

    def succeed(self, index: int, route: Any) -> None:
        self.pending[index].set_result(route)

    def fail(self, index: int, error: Optional[Exception] = None) -> None:
        self.pending[index].set_exception(error or RouteUnavailable("no route"))


def member(user_id: str, lat: Optional[float], lng: Optional[float]) -> Dict[str, Any]:
    return {"userId": user_id, "lat": lat, "lng": lng, "lastUpdated": 1.0}


async def settle() -> None:
    for _ in range(5):
        await asyncio.sleep(0)


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def routing() -> ControlledRoutingService:
    return ControlledRoutingService()
