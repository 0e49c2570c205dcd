from pydantic import BaseModel, ConfigDict, Field, field_validator


class JoinData(BaseModel):
    """加入房间请求（房间号区分大小写，已由前端做 URL 解码）。"""
    roomId: str = Field(..., min_length=1, max_length=256, description="房间ID")

    model_config = ConfigDict(extra="ignore")

    @field_validator("roomId")
    @classmethod
    def reject_blank(cls, value: str) -> str:
        # 仅拒绝纯空白；首尾空白属于房间号的一部分，不做 strip。
        if not value.strip():
            raise ValueError("roomId must not be blank")
        return value


class LocationData(BaseModel):
    """位置上报模型。"""
    lat: float = Field(..., ge=-90, le=90, description="纬度")
    lng: float = Field(..., ge=-180, le=180, description="经度")

    model_config = ConfigDict(extra="ignore", allow_inf_nan=False)


class Coordinate(BaseModel):
    lat: float = Field(..., ge=-90, le=90, description="纬度")
    lng: float = Field(..., ge=-180, le=180, description="经度")

    model_config = ConfigDict(extra="ignore", allow_inf_nan=False)


class RouteQuery(BaseModel):
    """路线计算请求体：起点与终点坐标。"""
    start: Coordinate
    end: Coordinate

    model_config = ConfigDict(extra="ignore")
