"""位置情報用のモデル定義"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from ..utils.geo import is_valid_coordinate


@dataclass(frozen=True)
class Coordinate:
    """座標（不変）"""
    latitude: float
    longitude: float

    def __post_init__(self):
        if not is_valid_coordinate(self.latitude, self.longitude):
            raise ValueError(f"無効な座標です: ({self.latitude}, {self.longitude})")


@dataclass(frozen=True)
class ResolvedLocation:
    """名前などの付加情報を持つ位置情報"""
    coordinate: Coordinate
    name: Optional[str] = None
    country: Optional[str] = None
    region: Optional[str] = None
    timezone: Optional[str] = None

    @property
    def latitude(self) -> float:
        return self.coordinate.latitude

    @property
    def longitude(self) -> float:
        return self.coordinate.longitude


class PermissionStatus(Enum):
    """位置情報の権限状態"""
    UNDETERMINED = 'undetermined'
    DENIED = 'denied'
    GRANTED = 'granted'


@dataclass(frozen=True)
class PermissionState:
    """権限状態と再リクエスト可否"""
    status: PermissionStatus
    can_ask_again: bool

    @property
    def granted(self) -> bool:
        return self.status is PermissionStatus.GRANTED

    @property
    def requires_settings(self) -> bool:
        """再度プロンプトを出せないため、システム設定へ誘導する必要があるか"""
        return not self.granted and not self.can_ask_again


@dataclass(frozen=True)
class GeocodingResult:
    """地名検索の候補"""
    name: str
    latitude: float
    longitude: float
    country: Optional[str] = None
    country_code: Optional[str] = None
    admin1: Optional[str] = None
    admin2: Optional[str] = None
    population: Optional[int] = None
    timezone: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'GeocodingResult':
        return cls(
            name=data.get('name', ''),
            latitude=data['latitude'],
            longitude=data['longitude'],
            country=data.get('country'),
            country_code=data.get('country_code'),
            admin1=data.get('admin1'),
            admin2=data.get('admin2'),
            population=data.get('population'),
            timezone=data.get('timezone'),
        )

    def to_resolved_location(self) -> ResolvedLocation:
        return ResolvedLocation(
            coordinate=Coordinate(self.latitude, self.longitude),
            name=self.name,
            country=self.country,
            region=self.admin1,  # 州・県
            timezone=self.timezone,
        )
