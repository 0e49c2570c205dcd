from typing import Any, Iterable, List, Optional

from pydantic import BaseModel, ConfigDict, Field


ROUTE_PENDING = "pending"
ROUTE_SUCCEEDED = "succeeded"
ROUTE_FAILED = "failed"
ROUTE_SUPERSEDED = "superseded"


class Member(BaseModel):
    """房间成员的本地只读投影（以服务端快照为准）。"""
    userId: str = Field(..., description="连接ID")
    lat: Optional[float] = Field(None, description="纬度，尚未上报时为空")
    lng: Optional[float] = Field(None, description="经度，尚未上报时为空")
    lastUpdated: Optional[float] = Field(None, description="服务端最后更新时间(秒)")

    model_config = ConfigDict(extra="ignore", frozen=True)

    @property
    def located(self) -> bool:
        return self.lat is not None and self.lng is not None

    @property
    def coordinate(self) -> Optional[dict]:
        if not self.located:
            return None
        return {"lat": self.lat, "lng": self.lng}


class RouteRequest(BaseModel):
    """一次路线请求。只有最新发出的请求才能更新界面状态。"""
    requestId: int
    start: dict
    end: dict
    targetId: str
    status: str = ROUTE_PENDING
    route: Optional[Any] = None

    @property
    def terminal(self) -> bool:
        return self.status in (ROUTE_SUCCEEDED, ROUTE_FAILED)


def parse_roster(raw_members: Any) -> List[Member]:
    """把 rosterUpdate 的成员数组解析为 Member 列表，跳过无法识别的条目。"""
    if not isinstance(raw_members, list):
        return []
    members = []
    for item in raw_members:
        if not isinstance(item, dict):
            continue
        try:
            members.append(Member.model_validate(item))
        except ValueError:
            continue
    return members


def find_member(members: Iterable[Member], member_id: Optional[str]) -> Optional[Member]:
    if member_id is None:
        return None
    for member in members:
        if member.userId == member_id:
            return member
    return None


def with_self_flag(members: Iterable[Member], self_id: Optional[str]) -> List[dict]:
    """渲染层使用的成员列表：按连接ID相等判断 isMe。"""
    return [
        {**member.model_dump(), "isMe": self_id is not None and member.userId == self_id}
        for member in members
    ]
