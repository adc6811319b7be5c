"""天気データ用のモデル定義"""

from dataclasses import dataclass, field
from datetime import datetime, date
from typing import Any, Dict, Optional, Tuple

from .location import ResolvedLocation


@dataclass(frozen=True)
class ForecastParams:
    """予報APIに要求するフィールドと単位"""
    current: Tuple[str, ...] = ()
    hourly: Tuple[str, ...] = ()
    daily: Tuple[str, ...] = ()
    timezone: Optional[str] = 'auto'
    temperature_unit: Optional[str] = 'celsius'
    wind_speed_unit: Optional[str] = 'kmh'
    precipitation_unit: Optional[str] = 'mm'


DEFAULT_FORECAST_PARAMS = ForecastParams(
    current=(
        'temperature_2m',
        'relative_humidity_2m',
        'apparent_temperature',
        'is_day',
        'precipitation',
        'weather_code',
        'cloud_cover',
        'pressure_msl',
        'wind_speed_10m',
        'wind_direction_10m',
    ),
    hourly=(
        'temperature_2m',
        'relative_humidity_2m',
        'precipitation_probability',
        'precipitation',
        'weather_code',
        'wind_speed_10m',
        'wind_direction_10m',
    ),
    daily=(
        'weather_code',
        'temperature_2m_max',
        'temperature_2m_min',
        'apparent_temperature_max',
        'apparent_temperature_min',
        'sunrise',
        'sunset',
        'precipitation_sum',
        'precipitation_probability_max',
        'wind_speed_10m_max',
        'wind_direction_10m_dominant',
    ),
)


@dataclass(frozen=True)
class CachedEntry:
    """キャッシュされた生のAPIレスポンス"""
    payload: Dict[str, Any]
    fetched_at: float


@dataclass(frozen=True)
class WeatherCondition:
    """天気コードの対応表エントリ"""
    description: str
    icon: str
    day_icon: Optional[str] = None
    night_icon: Optional[str] = None


@dataclass(frozen=True)
class CurrentConditions:
    """現在の天気"""
    temperature: Optional[int]
    feels_like: Optional[int]
    humidity: Optional[float]
    description: str
    icon: str
    wind_speed: Optional[int]
    wind_direction: Optional[float]
    pressure: Optional[int]
    cloud_cover: Optional[float]
    is_day: bool
    weather_code: int = 0


@dataclass(frozen=True)
class HourlyForecast:
    """1時間ごとの予報"""
    time: datetime
    temperature: Optional[int]
    precipitation: Optional[float]
    precipitation_probability: Optional[float]
    wind_speed: Optional[int]
    icon: str


@dataclass(frozen=True)
class DailyForecast:
    """日ごとの予報"""
    date: date
    weather_code: int
    max_temp: Optional[int]
    min_temp: Optional[int]
    description: str
    icon: str
    precipitation_sum: Optional[float]
    precipitation_probability: Optional[float]
    sunrise: Optional[datetime]
    sunset: Optional[datetime]


@dataclass(frozen=True)
class ForecastSnapshot:
    """変換済みの天気情報（不変）"""
    location: ResolvedLocation
    current: CurrentConditions
    hourly: Tuple[HourlyForecast, ...] = field(default_factory=tuple)
    daily: Tuple[DailyForecast, ...] = field(default_factory=tuple)
    last_updated: datetime = field(default_factory=datetime.now)
