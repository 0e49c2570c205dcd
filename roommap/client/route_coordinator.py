import asyncio
import itertools
import logging
from typing import Any, Callable, List, Optional, Set

from .models import (
    ROUTE_FAILED,
    ROUTE_SUCCEEDED,
    ROUTE_SUPERSEDED,
    Member,
    RouteRequest,
    find_member,
)
from .routing import RouteUnavailable, RoutingService


logger = logging.getLogger("roommap.route_coordinator")

Listener = Callable[["RouteCoordinator"], None]


class RouteCoordinator:
    """
    路线请求协调器（每个客户端一个实例）。

    触发条件：选中目标变化，或 自己 / 目标 的坐标在花名册中变化。
    - 未选中目标、或在花名册中找不到可定位的自己/目标：清空路线与加载态，不发请求；
    - 否则分配新的 requestId，旧请求标记为 superseded，进入加载态并请求路线服务。

    只有 requestId 仍为当前活动请求的结果才会被应用；到达顺序无关。
    不取消在途的网络请求，过期结果到达后直接丢弃。
    """

    def __init__(self, routing_service: RoutingService, self_id: Optional[str] = None) -> None:
        self.routing_service = routing_service
        self.self_id = self_id
        self.target_id: Optional[str] = None
        self.roster: List[Member] = []

        self.route: Optional[Any] = None
        self.loading = False
        self.active_request: Optional[RouteRequest] = None
        self.history: List[RouteRequest] = []

        self._request_ids = itertools.count(1)
        self._trigger_key: Optional[tuple] = None
        self._tasks: Set[asyncio.Task] = set()
        self._listeners: List[Listener] = []

    def on_change(self, listener: Listener) -> Callable[[], None]:
        """注册路线 / 加载态变化的监听，返回退订函数。"""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def select(self, target_id: Optional[str]) -> None:
        self.target_id = target_id
        self.evaluate()

    def set_self_id(self, self_id: Optional[str]) -> None:
        self.self_id = self_id
        self.evaluate()

    def update_roster(self, members: List[Member]) -> None:
        self.roster = list(members)
        self.evaluate()

    def _current_key(self) -> Optional[tuple]:
        if self.target_id is None:
            return None
        me = find_member(self.roster, self.self_id)
        target = find_member(self.roster, self.target_id)
        if me is None or target is None or not me.located or not target.located:
            return None
        return (self.target_id, me.lat, me.lng, target.lat, target.lng)

    def evaluate(self) -> None:
        key = self._current_key()
        if key == self._trigger_key:
            return
        self._trigger_key = key
        if key is None:
            self._clear()
            return
        target_id, self_lat, self_lng, target_lat, target_lng = key
        self._issue(
            target_id,
            {"lat": self_lat, "lng": self_lng},
            {"lat": target_lat, "lng": target_lng},
        )

    def _supersede_active(self) -> None:
        previous = self.active_request
        if previous is not None and not previous.terminal:
            previous.status = ROUTE_SUPERSEDED
            logger.debug("Route request %d superseded", previous.requestId)
        self.active_request = None

    def _clear(self) -> None:
        self._supersede_active()
        changed = self.route is not None or self.loading
        self.route = None
        self.loading = False
        if changed:
            self._notify()

    def _issue(self, target_id: str, start: dict, end: dict) -> None:
        self._supersede_active()
        request = RouteRequest(
            requestId=next(self._request_ids),
            start=start,
            end=end,
            targetId=target_id,
        )
        self.active_request = request
        self.history.append(request)
        self.loading = True
        logger.debug("Route request %d issued start=%s end=%s", request.requestId, start, end)
        self._notify()

        task = asyncio.create_task(self._run(request))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _is_latest(self, request: RouteRequest) -> bool:
        return self.active_request is not None and self.active_request.requestId == request.requestId

    async def _run(self, request: RouteRequest) -> None:
        try:
            route = await self.routing_service.compute_route(request.start, request.end)
        except RouteUnavailable as e:
            self._apply_failure(request, str(e))
            return
        except Exception as e:
            logger.exception("Unexpected routing failure for request %d: %s", request.requestId, e)
            self._apply_failure(request, repr(e))
            return
        self._apply_success(request, route)

    def _apply_success(self, request: RouteRequest, route: Any) -> None:
        if not self._is_latest(request):
            logger.debug("Discarding result of superseded route request %d", request.requestId)
            return
        request.status = ROUTE_SUCCEEDED
        request.route = route
        self.route = route
        self.loading = False
        self._notify()

    def _apply_failure(self, request: RouteRequest, reason: str) -> None:
        if not self._is_latest(request):
            logger.debug("Discarding failure of superseded route request %d", request.requestId)
            return
        logger.info("No route available for request %d: %s", request.requestId, reason)
        request.status = ROUTE_FAILED
        self.route = None
        self.loading = False
        self._notify()

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self)
            except Exception as e:
                logger.exception("Error in route listener: %s", e)

    async def wait_idle(self) -> None:
        """等待所有在途请求结束（含已被替代的请求）。"""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
