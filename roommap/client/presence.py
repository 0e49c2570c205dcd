import logging
from typing import Callable, List, Optional

from .geolocation import UNSUPPORTED, GeolocationError, GeolocationOptions, Geolocator, acquire_position
from .models import Member, parse_roster
from .transport import TransportChannel, TransportClosed


logger = logging.getLogger("roommap.presence")

RosterCallback = Callable[[List[Member]], None]
Notifier = Callable[[str], None]

LOCATION_NOTICE = "Location permission denied. Please allow location access."
UNSUPPORTED_NOTICE = "Geolocation is not supported by your browser."
CONNECTION_NOTICE = "Unable to reach the room server."


def log_notice(message: str) -> None:
    logger.warning("Notice: %s", message)


class PresenceClient:
    """
    单客户端的在场逻辑。

    业务职责：
    - 加入房间并监听花名册广播；
    - 房间内时上报本地位置，未加入时静默丢弃；
    - 以服务端快照整体替换本地花名册（替换而不是合并），按 rev 丢弃旧快照与重复快照。
    """

    def __init__(
        self,
        transport: TransportChannel,
        geolocator: Optional[Geolocator] = None,
        notify: Optional[Notifier] = None,
        geolocation_options: Optional[GeolocationOptions] = None,
    ) -> None:
        self.transport = transport
        self.geolocator = geolocator
        self.notify = notify or log_notice
        self.geolocation_options = geolocation_options or GeolocationOptions()

        self.room_id: Optional[str] = None
        self.joined = False
        self.members: List[Member] = []
        self.last_rev = 0
        self.location_notice: Optional[str] = None

        self._callbacks: List[RosterCallback] = []
        self._roster_unsubscribe: Optional[Callable[[], None]] = None
        self._disconnect_unsubscribe: Optional[Callable[[], None]] = None

    @property
    def self_id(self) -> Optional[str]:
        return self.transport.connection_id

    def on_roster_update(self, callback: RosterCallback) -> Callable[[], None]:
        self._callbacks.append(callback)

        def unsubscribe() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return unsubscribe

    async def join_room(self, room_id: str) -> bool:
        """
        加入房间并做一次定位。

        返回是否成功上报了位置。定位失败（拒绝授权 / 超时）只提示一次，
        不自动重试；此时仍保持在房间内并继续接收花名册。
        """
        if not isinstance(room_id, str) or not room_id.strip():
            raise ValueError("room id must be a non-blank string")
        if self.joined and self.room_id == room_id and self.transport.connected:
            return False

        self.location_notice = None
        try:
            await self.transport.connect()
            self._listen()
            # 先切换本地房间状态再发送 join，确保第一份快照不会被当作外来房间丢弃。
            self.room_id = room_id
            self.members = []
            self.last_rev = 0
            self.joined = True
            await self.transport.emit("join", {"roomId": room_id})
        except TransportClosed as e:
            logger.warning("Cannot join room %r: %s", room_id, e)
            self.joined = False
            self.notify(CONNECTION_NOTICE)
            return False
        logger.info("Joined room %r as %s", room_id, self.self_id)

        return await self.locate_and_report()

    async def locate_and_report(self) -> bool:
        """定位一次并上报；失败时转换为一次性提示。"""
        try:
            position = await acquire_position(self.geolocator, self.geolocation_options)
        except GeolocationError as e:
            logger.info("Geolocation failed (%s): %s", e.code, e)
            notice = UNSUPPORTED_NOTICE if e.code == UNSUPPORTED else LOCATION_NOTICE
            self.location_notice = notice
            self.notify(notice)
            return False
        return await self.report_location(position.lat, position.lng)

    async def report_location(self, lat: float, lng: float) -> bool:
        if not self.joined or not self.transport.connected:
            logger.debug("Dropping location update while not in a room")
            return False
        try:
            await self.transport.emit("locationUpdate", {"lat": lat, "lng": lng})
        except TransportClosed as e:
            logger.warning("Location update not sent: %s", e)
            return False
        return True

    def _listen(self) -> None:
        if self._roster_unsubscribe is None:
            self._roster_unsubscribe = self.transport.subscribe("rosterUpdate", self._handle_roster)
        if self._disconnect_unsubscribe is None:
            self._disconnect_unsubscribe = self.transport.subscribe("disconnect", self._handle_disconnect)

    def stop_listening(self) -> None:
        """退订花名册广播。可重复调用，未订阅时也安全。"""
        for attr in ("_roster_unsubscribe", "_disconnect_unsubscribe"):
            unsubscribe = getattr(self, attr)
            if unsubscribe is not None:
                unsubscribe()
                setattr(self, attr, None)

    def _handle_roster(self, message: dict) -> None:
        if not self.joined or message.get("roomId") != self.room_id:
            logger.debug("Ignoring roster for room %r (current %r)", message.get("roomId"), self.room_id)
            return
        rev = message.get("rev")
        if not isinstance(rev, int) or rev <= self.last_rev:
            logger.debug("Ignoring stale roster rev=%r last=%d", rev, self.last_rev)
            return
        self.last_rev = rev
        self.members = parse_roster(message.get("members"))
        self._emit_roster()

    def _handle_disconnect(self, message: dict) -> None:
        # 连接已丢失：服务端已隐式离开，重连后按全新加入处理。
        logger.warning("Transport lost while in room %r", self.room_id)
        self.joined = False
        self.last_rev = 0
        self.members = []
        self._emit_roster()

    def _emit_roster(self) -> None:
        members = list(self.members)
        for callback in list(self._callbacks):
            try:
                callback(members)
            except Exception as e:
                logger.exception("Error in roster callback: %s", e)

    async def leave_room(self) -> None:
        self.stop_listening()
        was_joined = self.joined
        self.joined = False
        self.room_id = None
        self.members = []
        self.last_rev = 0
        if was_joined and self.transport.connected:
            try:
                await self.transport.emit("leave")
            except TransportClosed as e:
                logger.debug("Leave not sent: %s", e)

    async def close(self) -> None:
        await self.leave_room()
        await self.transport.close()
