import asyncio
import json
import logging
from typing import Awaitable, Callable, Dict, Optional

from starlette.websockets import WebSocket

from ..config import get_env_float
from .state import RoomRegistry


logger = logging.getLogger("roommap.broadcaster")


def websocket_state_label(ws: WebSocket) -> str:
    try:
        client_state = getattr(getattr(ws, "client_state", None), "name", str(getattr(ws, "client_state", None)))
        app_state = getattr(getattr(ws, "application_state", None), "name", str(getattr(ws, "application_state", None)))
        return f"client={client_state},app={app_state}"
    except Exception:
        return "client=unknown,app=unknown"


def websocket_is_connected(ws: WebSocket) -> bool:
    client_state = getattr(getattr(ws, "client_state", None), "name", "")
    app_state = getattr(getattr(ws, "application_state", None), "name", "")
    return client_state == "CONNECTED" and app_state == "CONNECTED"


def encode_message(message: dict) -> str:
    return json.dumps(message, separators=(",", ":"))


class MemberChannel:
    """
    单连接的有序下发通道。

    所有待发消息进入 FIFO 队列，由唯一的写协程按序发送，
    保证同一成员收到的快照顺序与产生顺序一致。
    """

    def __init__(
        self,
        member_id: str,
        websocket: WebSocket,
        on_failure: Callable[[str], Awaitable[None]],
        send_timeout: float,
    ) -> None:
        self.member_id = member_id
        self.websocket = websocket
        self.send_timeout = send_timeout
        self.closed = False
        self.pending = 0
        self._on_failure = on_failure
        self._queue: asyncio.Queue = asyncio.Queue()
        self._writer = asyncio.create_task(self._drain_queue(), name=f"roommap-writer-{member_id}")

    def push(self, message: str) -> None:
        if self.closed:
            return
        self.pending += 1
        self._queue.put_nowait(message)

    def _done(self) -> None:
        self.pending -= 1
        self._queue.task_done()

    async def join(self) -> None:
        await self._queue.join()

    async def _drain_queue(self) -> None:
        while True:
            message = await self._queue.get()
            try:
                if self.closed:
                    continue
                if not websocket_is_connected(self.websocket):
                    logger.debug(
                        f"Skip send to disconnected websocket member={self.member_id} "
                        f"state=({websocket_state_label(self.websocket)})"
                    )
                    await self._fail()
                    continue
                await asyncio.wait_for(self.websocket.send_text(message), timeout=self.send_timeout)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning(
                    f"Error sending to member={self.member_id} "
                    f"state=({websocket_state_label(self.websocket)}): {e!r}"
                )
                await self._fail()
            finally:
                self._done()

    async def _fail(self) -> None:
        if self.closed:
            return
        self.closed = True
        await self._close_socket()
        await self._on_failure(self.member_id)

    async def _close_socket(self) -> None:
        """主动关闭失效连接，使接收循环以 WebSocketDisconnect 结束，客户端重新加入。"""
        try:
            await asyncio.wait_for(self.websocket.close(code=1011), timeout=self.send_timeout)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.debug(f"Error closing websocket member={self.member_id}: {e!r}")

    def discard_pending(self) -> None:
        while True:
            try:
                self._queue.get_nowait()
            except asyncio.QueueEmpty:
                return
            self._done()

    async def close(self) -> None:
        self.closed = True
        self.discard_pending()
        self._writer.cancel()
        if self._writer is asyncio.current_task():
            # 写协程自身触发的关闭：在下一个挂起点退出。
            return
        try:
            await self._writer
        except asyncio.CancelledError:
            pass


class Broadcaster:
    """
    广播编排层。

    业务职责：
    - 管理连接通道（注册 / 注销）；
    - 把 加入 / 位置上报 / 离开 / 断线 转换为注册表变更；
    - 把变更后的房间快照扇出给该房间的全部当前成员（含变更发起者）。

    注册表变更与入队之间没有挂起点，因此每个成员看到的快照序列单调不减。
    """

    SEND_TIMEOUT_SEC = 10.0

    def __init__(self, registry: RoomRegistry) -> None:
        self.registry = registry
        self.channels: Dict[str, MemberChannel] = {}
        self.SEND_TIMEOUT_SEC = get_env_float("ROOMMAP_SEND_TIMEOUT_SEC", self.SEND_TIMEOUT_SEC, 0.5, 300.0)

    def register(self, member_id: str, websocket: WebSocket) -> MemberChannel:
        channel = MemberChannel(member_id, websocket, self.handle_disconnect, self.SEND_TIMEOUT_SEC)
        self.channels[member_id] = channel
        return channel

    def send_to(self, member_id: str, message: dict) -> bool:
        channel = self.channels.get(member_id)
        if channel is None or channel.closed:
            return False
        channel.push(encode_message(message))
        return True

    def publish(self, snapshot: Optional[dict]) -> None:
        """向快照内全部成员入队 rosterUpdate。"""
        if snapshot is None:
            return
        message = encode_message({
            "type": "rosterUpdate",
            "roomId": snapshot["roomId"],
            "rev": snapshot["rev"],
            "members": snapshot["members"],
        })
        for member in snapshot["members"]:
            channel = self.channels.get(member["userId"])
            if channel is None:
                continue
            channel.push(message)

    def handle_join(self, member_id: str, room_id: str) -> Optional[dict]:
        if member_id not in self.channels:
            # 通道已注销的连接不能再进入注册表。
            logger.debug("Join from member %s without a channel ignored", member_id)
            return None
        previous_room = self.registry.room_of(member_id)
        if previous_room is not None and previous_room != room_id:
            # 先让旧房间收到“成员已离开”的快照，再加入新房间。
            self.publish(self.registry.leave(member_id))
        snapshot = self.registry.join(room_id, member_id)
        self.publish(snapshot)
        return snapshot

    def handle_location(self, member_id: str, lat: float, lng: float) -> Optional[dict]:
        snapshot = self.registry.update_location(member_id, lat, lng)
        self.publish(snapshot)
        return snapshot

    def handle_leave(self, member_id: str) -> Optional[dict]:
        snapshot = self.registry.leave(member_id)
        self.publish(snapshot)
        return snapshot

    async def handle_disconnect(self, member_id: str) -> None:
        """传输层断开：注销通道并执行隐式离开。可重复调用。"""
        channel = self.channels.pop(member_id, None)
        self.handle_leave(member_id)
        if channel is not None:
            await channel.close()

    async def drain(self) -> None:
        """等待所有已入队消息写出（或被丢弃）。发送失败引发的二次扇出也一并等待。"""
        while True:
            busy = [channel for channel in self.channels.values() if channel.pending > 0]
            if not busy:
                return
            for channel in busy:
                await channel.join()

    async def close_all(self) -> None:
        for member_id in list(self.channels.keys()):
            await self.handle_disconnect(member_id)
