import asyncio
import json
import logging
from typing import Callable, Dict, List, Optional

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException


logger = logging.getLogger("roommap.transport")

Handler = Callable[[dict], None]


class TransportClosed(Exception):
    """传输通道未连接或已断开。"""


class TransportChannel:
    """
    客户端与协调服务之间的持久双向通道。

    - ``emit`` 发送事件；
    - ``subscribe`` 注册某类事件的处理函数，返回可重复调用的退订函数；
    - 连接丢失时本地派发 ``disconnect`` 事件。
    """

    def __init__(self) -> None:
        self.connection_id: Optional[str] = None
        self._handlers: Dict[str, List[Handler]] = {}

    @property
    def connected(self) -> bool:
        raise NotImplementedError

    async def connect(self) -> None:
        raise NotImplementedError

    async def emit(self, event: str, payload: Optional[dict] = None) -> None:
        raise NotImplementedError

    async def close(self) -> None:
        raise NotImplementedError

    def subscribe(self, event: str, handler: Handler) -> Callable[[], None]:
        self._handlers.setdefault(event, []).append(handler)

        def unsubscribe() -> None:
            handlers = self._handlers.get(event)
            if handlers and handler in handlers:
                handlers.remove(handler)

        return unsubscribe

    def dispatch(self, event: str, payload: dict) -> None:
        for handler in list(self._handlers.get(event, [])):
            try:
                handler(payload)
            except Exception as e:
                logger.exception("Error in %s handler: %s", event, e)


class WebSocketTransport(TransportChannel):
    """基于 websockets 的传输实现，消息格式为 ``{"type": event, ...payload}``。"""

    WELCOME_TIMEOUT_SEC = 10.0

    def __init__(self, server_url: str) -> None:
        super().__init__()
        self.server_url = server_url
        self.websocket = None
        self._reader: Optional[asyncio.Task] = None

    @property
    def connected(self) -> bool:
        return self.websocket is not None and self.connection_id is not None

    async def connect(self) -> None:
        """建立连接并等待服务端分配连接ID；已连接时直接复用。"""
        if self.connected:
            return
        try:
            self.websocket = await websockets.connect(self.server_url)
            raw = await asyncio.wait_for(self.websocket.recv(), timeout=self.WELCOME_TIMEOUT_SEC)
            welcome = json.loads(raw)
        except (OSError, WebSocketException, asyncio.TimeoutError, json.JSONDecodeError) as e:
            await self._drop_socket()
            raise TransportClosed(f"cannot connect to {self.server_url}: {e!r}") from e

        if not isinstance(welcome, dict) or welcome.get("type") != "welcome" or not welcome.get("userId"):
            await self._drop_socket()
            raise TransportClosed(f"unexpected handshake from {self.server_url}: {welcome!r}")

        self.connection_id = str(welcome["userId"])
        logger.info("Connected to %s as %s", self.server_url, self.connection_id)
        self._reader = asyncio.create_task(self._read_loop(self.websocket))

    async def emit(self, event: str, payload: Optional[dict] = None) -> None:
        if not self.connected:
            raise TransportClosed("transport is not connected")
        message = {"type": event}
        if payload:
            message.update(payload)
        try:
            await self.websocket.send(json.dumps(message, separators=(",", ":")))
        except ConnectionClosed as e:
            raise TransportClosed(f"connection closed while sending {event}") from e

    async def _read_loop(self, websocket) -> None:
        try:
            async for raw in websocket:
                try:
                    data = json.loads(raw)
                except json.JSONDecodeError as e:
                    logger.debug("Error decoding JSON message: %s", e)
                    continue
                if not isinstance(data, dict):
                    continue
                event = data.get("type")
                if isinstance(event, str):
                    self.dispatch(event, data)
        except ConnectionClosed as e:
            logger.warning("Connection to %s lost: %s", self.server_url, e)
        finally:
            if self.websocket is websocket:
                self.websocket = None
                self.connection_id = None
                self.dispatch("disconnect", {})

    async def _drop_socket(self) -> None:
        websocket = self.websocket
        self.websocket = None
        self.connection_id = None
        if websocket is not None:
            try:
                await websocket.close()
            except WebSocketException:
                pass

    async def close(self) -> None:
        reader = self._reader
        self._reader = None
        websocket = self.websocket
        await self._drop_socket()
        if websocket is not None:
            logger.info("Closed connection to %s", self.server_url)
        if reader is not None:
            try:
                await reader
            except asyncio.CancelledError:
                pass
