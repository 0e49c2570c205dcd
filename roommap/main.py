import json
import logging
import time
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from .config import get_env_float, get_env_int, get_env_str
from .server.broadcaster import Broadcaster
from .server.models import JoinData, LocationData
from .server.route_proxy import route_proxy_lifespan, route_router
from .server.state import RoomRegistry


def configure_logging() -> None:
    if logging.getLogger().handlers:
        return

    level_name = get_env_str("ROOMMAP_LOG_LEVEL", "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


configure_logging()
logger = logging.getLogger("roommap.main")

# 进程级单例：承载房间内存态与广播能力。
registry = RoomRegistry()
broadcaster = Broadcaster(registry)


@asynccontextmanager
async def lifespan(app: FastAPI):
    async with route_proxy_lifespan(app):
        try:
            yield
        finally:
            await broadcaster.close_all()


# HTTP/WS 入口层：仅做协议收发与调度，不承载房间状态逻辑。
app = FastAPI(lifespan=lifespan)
app.include_router(route_router)


@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    """
    成员主通道。

    职责：
    1) 为连接分配一次性的成员ID（重连即换新ID）；
    2) 处理 join / locationUpdate / leave / ping；
    3) 连接断开时执行隐式离开并向房间剩余成员广播。
    """
    await websocket.accept()
    member_id = uuid.uuid4().hex
    broadcaster.register(member_id, websocket)
    broadcaster.send_to(member_id, {"type": "welcome", "userId": member_id})
    logger.info("Client %s connected", member_id)

    try:
        while True:
            raw_text = await websocket.receive_text()
            try:
                data = json.loads(raw_text)
            except json.JSONDecodeError as e:
                logger.debug("Error decoding JSON message from %s: %s", member_id, e)
                continue

            if not isinstance(data, dict):
                logger.debug("Ignoring non-object message from %s", member_id)
                continue

            message_type = data.get("type")

            if message_type == "join":
                try:
                    join = JoinData.model_validate(data)
                except ValidationError as e:
                    logger.warning("Invalid join from %s: %s", member_id, e.errors())
                    continue
                broadcaster.handle_join(member_id, join.roomId)
                continue

            if message_type == "locationUpdate":
                try:
                    location = LocationData.model_validate(data)
                except ValidationError as e:
                    logger.warning("Invalid locationUpdate from %s: %s", member_id, e.errors())
                    continue
                broadcaster.handle_location(member_id, location.lat, location.lng)
                continue

            if message_type == "leave":
                broadcaster.handle_leave(member_id)
                continue

            if message_type in ("ping", "health"):
                broadcaster.send_to(member_id, {
                    "type": "pong",
                    "serverTime": time.time(),
                })
                continue

            logger.debug("Unsupported message type %r from %s", message_type, member_id)

    except WebSocketDisconnect:
        pass
    except Exception as e:
        logger.exception("Error handling member message: %s", e)
    finally:
        await broadcaster.handle_disconnect(member_id)
        logger.info("Client %s disconnected", member_id)


@app.get("/health")
async def health_check():
    """健康检查：用于探活。"""
    return JSONResponse({"status": "ok"})


@app.get("/snapshot")
async def snapshot():
    """调试快照：返回全部房间与连接状态。"""
    return JSONResponse({
        "server_time": time.time(),
        "rooms": registry.build_overview(),
        "connections": list(broadcaster.channels.keys()),
        "connections_count": len(broadcaster.channels),
        "revision": registry.revision,
    })


def run() -> None:
    import uvicorn

    uvicorn.run(
        app,
        host=get_env_str("ROOMMAP_HOST", "0.0.0.0"),
        port=get_env_int("ROOMMAP_PORT", 8765, 1, 65535),
        ws_ping_interval=get_env_float("ROOMMAP_WS_PING_INTERVAL_SEC", 20.0, 1.0, 600.0),
        ws_ping_timeout=get_env_float("ROOMMAP_WS_PING_TIMEOUT_SEC", 20.0, 1.0, 600.0),
        ws_per_message_deflate=True,
    )


if __name__ == "__main__":
    run()
