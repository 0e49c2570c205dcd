import logging
import time
from typing import Dict, Optional


logger = logging.getLogger("roommap.registry")


class RoomRegistry:
    """
    房间注册表：服务端唯一的成员/位置内存态。

    业务职责：
    - 维护 房间 -> 成员 的映射，以及 成员 -> 所在房间 的反向索引；
    - 房间在首次加入时惰性创建，成员集合为空时立即删除；
    - 每次成功变更都推进全局版本号，并返回该房间的完整快照供广播层下发。

    所有变更方法都是同步的（中间没有 await），在单事件循环内天然串行，
    同一房间的两次变更不会交错。
    """

    def __init__(self) -> None:
        # room_id -> {"rev": int, "members": {member_id: member_node}}
        self.rooms: Dict[str, dict] = {}
        # member_id -> room_id
        self.member_rooms: Dict[str, str] = {}
        self.revision = 0

    def next_revision(self) -> int:
        """全局版本号递增。客户端按 rev 丢弃旧快照或重复快照。"""
        self.revision += 1
        return self.revision

    @staticmethod
    def build_member_node(member_id: str, current_time: float) -> dict:
        return {
            "userId": member_id,
            "lat": None,
            "lng": None,
            "lastUpdated": current_time,
        }

    def room_of(self, member_id: str) -> Optional[str]:
        return self.member_rooms.get(member_id)

    def snapshot(self, room_id: str) -> Optional[dict]:
        """构建房间快照（成员列表为副本，调用方可自由序列化）。"""
        room = self.rooms.get(room_id)
        if room is None:
            return None
        return {
            "roomId": room_id,
            "rev": room["rev"],
            "members": [dict(node) for node in room["members"].values()],
        }

    def join(self, room_id: str, member_id: str, current_time: Optional[float] = None) -> dict:
        """
        成员加入房间。

        - 若成员已在其他房间，先从旧房间移除；
        - 重复加入同一房间不会产生重复条目，已上报的位置保留；
        - 返回加入后的房间快照。
        """
        now = time.time() if current_time is None else current_time
        previous_room = self.member_rooms.get(member_id)
        if previous_room is not None and previous_room != room_id:
            self.leave(member_id)

        room = self.rooms.get(room_id)
        if room is None:
            room = {"rev": 0, "members": {}}
            self.rooms[room_id] = room
            logger.info("Room %r created", room_id)

        if member_id not in room["members"]:
            room["members"][member_id] = self.build_member_node(member_id, now)
            self.member_rooms[member_id] = room_id
            logger.info("Member %s joined room %r (members=%d)", member_id, room_id, len(room["members"]))
        else:
            logger.debug("Duplicate join ignored member=%s room=%r", member_id, room_id)

        room["rev"] = self.next_revision()
        return self.snapshot(room_id)

    def update_location(
        self,
        member_id: str,
        lat: float,
        lng: float,
        current_time: Optional[float] = None,
    ) -> Optional[dict]:
        """更新成员坐标。成员不在任何房间时返回 None（上报早于加入或晚于离开）。"""
        room_id = self.member_rooms.get(member_id)
        if room_id is None:
            logger.debug("Location update from member %s without a room ignored", member_id)
            return None

        room = self.rooms[room_id]
        node = room["members"][member_id]
        node["lat"] = float(lat)
        node["lng"] = float(lng)
        node["lastUpdated"] = time.time() if current_time is None else current_time
        room["rev"] = self.next_revision()
        return self.snapshot(room_id)

    def leave(self, member_id: str) -> Optional[dict]:
        """
        成员离开所在房间。

        返回剩余成员的快照；成员未知或房间因此变空（随即删除）时返回 None。
        """
        room_id = self.member_rooms.pop(member_id, None)
        if room_id is None:
            logger.debug("Leave for unknown member %s ignored", member_id)
            return None

        room = self.rooms.get(room_id)
        if room is None:
            return None

        room["members"].pop(member_id, None)
        logger.info("Member %s left room %r (members=%d)", member_id, room_id, len(room["members"]))
        if not room["members"]:
            del self.rooms[room_id]
            logger.info("Room %r removed (empty)", room_id)
            return None

        room["rev"] = self.next_revision()
        return self.snapshot(room_id)

    def build_overview(self) -> dict:
        """调试总览：全部房间及其成员。"""
        return {
            room_id: {
                "rev": room["rev"],
                "members": [dict(node) for node in room["members"].values()],
            }
            for room_id, room in self.rooms.items()
        }
