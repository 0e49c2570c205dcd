from typing import Any, List, Optional

from .geolocation import Geolocator
from .models import Member, with_self_flag
from .presence import Notifier, PresenceClient
from .route_coordinator import RouteCoordinator
from .routing import RoutingService
from .transport import TransportChannel


class RoomSession:
    """
    单个客户端的房间会话：把在场逻辑与路线协调器接在一起。

    花名册每次更新都会转交给路线协调器，由它判断是否需要重新请求路线。
    传输通道与路线服务由调用方注入。
    """

    def __init__(
        self,
        transport: TransportChannel,
        routing_service: RoutingService,
        geolocator: Optional[Geolocator] = None,
        notify: Optional[Notifier] = None,
    ) -> None:
        self.presence = PresenceClient(transport, geolocator, notify)
        self.routes = RouteCoordinator(routing_service)
        self.presence.on_roster_update(self._on_roster)

    def _on_roster(self, members: List[Member]) -> None:
        # 重连后连接ID会变化，每次都以当前连接ID为准。
        self.routes.self_id = self.presence.self_id
        self.routes.update_roster(members)

    async def join(self, room_id: str) -> bool:
        located = await self.presence.join_room(room_id)
        self.routes.set_self_id(self.presence.self_id)
        return located

    def select(self, member_id: Optional[str]) -> None:
        self.routes.select(member_id)

    @property
    def room_id(self) -> Optional[str]:
        return self.presence.room_id

    @property
    def self_id(self) -> Optional[str]:
        return self.presence.self_id

    @property
    def members(self) -> List[dict]:
        return with_self_flag(self.presence.members, self.presence.self_id)

    @property
    def selected_member_id(self) -> Optional[str]:
        return self.routes.target_id

    @property
    def route(self) -> Optional[Any]:
        return self.routes.route

    @property
    def loading(self) -> bool:
        return self.routes.loading

    async def close(self) -> None:
        await self.presence.close()
        self.routes.select(None)
        await self.routes.wait_idle()
