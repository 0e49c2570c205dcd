import re
from typing import Optional
from urllib.parse import quote, unquote


ROOM_PATH_PATTERN = re.compile(r"room/([^/]+)")


def room_id_from_path(path: str) -> Optional[str]:
    """
    从 URL 路径中提取房间号（``/room/<id>``），并做 URL 解码。

    房间号区分大小写、保留空白；解码后为空或纯空白时返回 None。
    """
    if not isinstance(path, str):
        return None
    match = ROOM_PATH_PATTERN.search(path)
    if match is None:
        return None
    room_id = unquote(match.group(1))
    if not room_id.strip():
        return None
    return room_id


def normalize_room_input(text: str) -> Optional[str]:
    """创建房间表单的输入：去掉首尾空白，空输入返回 None。"""
    if not isinstance(text, str):
        return None
    room_id = text.strip()
    return room_id or None


def room_path(room_id: str) -> str:
    return "/room/" + quote(room_id, safe="")


def room_url(origin: str, room_id: str) -> str:
    return origin.rstrip("/") + room_path(room_id)
