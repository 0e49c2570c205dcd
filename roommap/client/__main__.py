"""
命令行客户端示例 - 加入房间、上报固定位置、打印花名册与路线状态

用法：
    python -m roommap.client abc --lat 10 --lng 10
    python -m roommap.client abc --lat 20 --lng 20 --follow <userId>
"""

import argparse
import asyncio
from typing import List, Optional

from ..config import get_env_str
from .geolocation import StaticGeolocator
from .models import Member
from .route_coordinator import RouteCoordinator
from .routing import HttpRoutingService
from .session import RoomSession
from .transport import WebSocketTransport


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="roommap.client", description="Join a room and share a fixed location.")
    parser.add_argument("room", help="room id (case- and whitespace-sensitive)")
    parser.add_argument("--server", default=get_env_str("ROOMMAP_SERVER_URL", "ws://localhost:8765/ws"))
    parser.add_argument("--routing", default=get_env_str("ROOMMAP_ROUTING_BASE_URL", "http://localhost:8765"))
    parser.add_argument("--lat", type=float, default=None)
    parser.add_argument("--lng", type=float, default=None)
    parser.add_argument("--follow", default=None, help="userId of the member to route to")
    return parser


def describe_roster(members: List[Member], self_id: Optional[str]) -> str:
    lines = [f"Roster ({len(members)} members):"]
    for member in members:
        marker = "*" if member.userId == self_id else " "
        where = f"{member.lat:.5f},{member.lng:.5f}" if member.located else "unknown"
        lines.append(f" {marker} {member.userId} @ {where}")
    return "\n".join(lines)


def describe_route(coordinator: RouteCoordinator) -> str:
    if coordinator.loading:
        return "Route: loading..."
    if coordinator.route is None:
        return "Route: none"
    routes = coordinator.route.get("routes") if isinstance(coordinator.route, dict) else None
    if routes:
        first = routes[0]
        return f"Route: {first.get('distance')} m, {first.get('duration')} s"
    return "Route: available"


async def main(args: argparse.Namespace) -> None:
    geolocator = None
    if args.lat is not None and args.lng is not None:
        geolocator = StaticGeolocator(args.lat, args.lng)

    routing = HttpRoutingService(args.routing)
    session = RoomSession(
        WebSocketTransport(args.server),
        routing,
        geolocator=geolocator,
        notify=lambda message: print(f"[notice] {message}"),
    )
    session.presence.on_roster_update(lambda members: print(describe_roster(members, session.self_id)))
    session.routes.on_change(lambda coordinator: print(describe_route(coordinator)))

    try:
        await session.join(args.room)
        print(f"Joined room {args.room!r} as {session.self_id}")
        if args.follow:
            session.select(args.follow)
        while True:
            await asyncio.sleep(3600)
    finally:
        await session.close()
        await routing.aclose()


if __name__ == "__main__":
    try:
        asyncio.run(main(build_parser().parse_args()))
    except KeyboardInterrupt:
        print("\nDisconnected")
