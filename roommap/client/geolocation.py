import asyncio
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


PERMISSION_DENIED = "permission_denied"
POSITION_UNAVAILABLE = "position_unavailable"
TIMEOUT = "timeout"
UNSUPPORTED = "unsupported"


class GeolocationError(Exception):
    def __init__(self, code: str, message: str = "") -> None:
        super().__init__(message or code)
        self.code = code


class GeolocationOptions(BaseModel):
    """定位参数：默认高精度、不使用缓存位置、最多等待 5 秒。"""
    enable_high_accuracy: bool = True
    maximum_age_ms: int = Field(default=0, ge=0)
    timeout_ms: int = Field(default=5000, gt=0)

    model_config = ConfigDict(frozen=True)


class Position(BaseModel):
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)
    accuracy: Optional[float] = Field(None, ge=0, description="精度半径(米)")


class Geolocator:
    """定位来源接口。实现方在失败时抛出 GeolocationError。"""

    async def get_current_position(self, options: GeolocationOptions) -> Position:
        raise NotImplementedError


class StaticGeolocator(Geolocator):
    """固定坐标的定位来源（命令行客户端、模拟器使用）。"""

    def __init__(self, lat: float, lng: float, accuracy: Optional[float] = None) -> None:
        self.position = Position(lat=lat, lng=lng, accuracy=accuracy)

    async def get_current_position(self, options: GeolocationOptions) -> Position:
        return self.position


async def acquire_position(geolocator: Optional[Geolocator], options: GeolocationOptions) -> Position:
    """
    单次定位，等待时间受 options.timeout_ms 约束。

    超时统一转换为 GeolocationError(TIMEOUT)；没有可用定位来源时抛出 UNSUPPORTED；
    定位来源的其他异常转换为 POSITION_UNAVAILABLE。
    """
    if geolocator is None:
        raise GeolocationError(UNSUPPORTED, "Geolocation is not supported.")
    try:
        return await asyncio.wait_for(
            geolocator.get_current_position(options),
            timeout=options.timeout_ms / 1000.0,
        )
    except asyncio.TimeoutError as e:
        raise GeolocationError(TIMEOUT, "Timed out waiting for a location fix.") from e
    except GeolocationError:
        raise
    except Exception as e:
        raise GeolocationError(POSITION_UNAVAILABLE, f"Location source failed: {e!r}") from e
