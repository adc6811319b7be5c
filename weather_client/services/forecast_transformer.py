"""
予報データ変換

生の予報レスポンスを現在・1時間ごと・日ごとのスナップショットに変換する
"""

import math
from datetime import datetime, date, timedelta
from typing import Any, Dict, List, Optional, Tuple

from ..models.location import ResolvedLocation
from ..models.weather import (
    CurrentConditions,
    DailyForecast,
    ForecastSnapshot,
    HourlyForecast,
)
from ..models.weather_codes import get_weather_condition
from .forecast_client import WeatherAPIInvalidResponseError

MAX_HOURLY_ENTRIES = 24
MAX_DAILY_ENTRIES = 7


def resolve_condition(code: Any, is_day: bool) -> Tuple[str, str]:
    """
    天気コードから説明とアイコンを取得

    夜間かつ夜用アイコンが定義されている場合のみ夜用アイコンを使う。

    Returns:
        (説明, アイコン)
    """
    condition = get_weather_condition(code)

    icon = condition.icon
    if is_day and condition.day_icon:
        icon = condition.day_icon
    elif not is_day and condition.night_icon:
        icon = condition.night_icon

    return condition.description, icon


def _round(value: Any) -> Optional[int]:
    """四捨五入（0.5は切り上げ）"""
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(math.floor(float(value) + 0.5))
    except (TypeError, ValueError, OverflowError):
        return None


def _safe_float(value: Any) -> Optional[float]:
    """安全にfloat値に変換"""
    if value is None or value == '' or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (ValueError, TypeError):
        return None


def _parse_datetime(value: Any) -> Optional[datetime]:
    if not isinstance(value, str) or not value:
        return None
    try:
        return datetime.fromisoformat(value.replace('Z', '+00:00'))
    except ValueError:
        return None


def _parse_date(value: Any) -> Optional[date]:
    parsed = _parse_datetime(value)
    return parsed.date() if parsed else None


def _series_value(block: Dict[str, List[Any]], field_name: str, index: int) -> Any:
    values = block.get(field_name) or []
    return values[index] if index < len(values) else None


def _weather_code(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def _transform_current(data: Dict[str, Any]) -> CurrentConditions:
    current = data.get('current')
    if not isinstance(current, dict):
        raise WeatherAPIInvalidResponseError("Current weather data not available")

    is_day = current.get('is_day') == 1
    code = _weather_code(current.get('weather_code'))
    description, icon = resolve_condition(code, is_day)

    return CurrentConditions(
        temperature=_round(current.get('temperature_2m')),
        feels_like=_round(current.get('apparent_temperature')),
        humidity=_safe_float(current.get('relative_humidity_2m')),
        description=description,
        icon=icon,
        wind_speed=_round(current.get('wind_speed_10m')),
        wind_direction=_safe_float(current.get('wind_direction_10m')),
        pressure=_round(current.get('pressure_msl')),
        cloud_cover=_safe_float(current.get('cloud_cover')),
        is_day=is_day,
        weather_code=code,
    )


def _chronological_indices(times: List[Any]) -> List[int]:
    """時刻順に並べたインデックス（解析できない時刻は除外）"""
    parsed = [(t, i) for i, t in enumerate(_parse_datetime(v) for v in times) if t is not None]
    parsed.sort(key=lambda item: (item[0].replace(tzinfo=None), item[1]))
    return [i for _, i in parsed]


def _transform_hourly(data: Dict[str, Any]) -> Tuple[HourlyForecast, ...]:
    hourly = data.get('hourly')
    if not isinstance(hourly, dict):
        return ()

    times = hourly.get('time') or []
    entries = []

    for i in _chronological_indices(times)[:MAX_HOURLY_ENTRIES]:
        # 1時間ごとの予報では昼夜を区別しない
        _, icon = resolve_condition(_series_value(hourly, 'weather_code', i), True)

        entries.append(HourlyForecast(
            time=_parse_datetime(times[i]),
            temperature=_round(_series_value(hourly, 'temperature_2m', i)),
            precipitation=_safe_float(_series_value(hourly, 'precipitation', i)),
            precipitation_probability=_safe_float(_series_value(hourly, 'precipitation_probability', i)),
            wind_speed=_round(_series_value(hourly, 'wind_speed_10m', i)),
            icon=icon,
        ))

    return tuple(entries)


def _transform_daily(data: Dict[str, Any]) -> Tuple[DailyForecast, ...]:
    daily = data.get('daily')
    if not isinstance(daily, dict):
        return ()

    times = daily.get('time') or []
    entries = []

    for i in _chronological_indices(times)[:MAX_DAILY_ENTRIES]:
        code = _weather_code(_series_value(daily, 'weather_code', i))
        description, icon = resolve_condition(code, True)

        entries.append(DailyForecast(
            date=_parse_date(times[i]),
            weather_code=code,
            max_temp=_round(_series_value(daily, 'temperature_2m_max', i)),
            min_temp=_round(_series_value(daily, 'temperature_2m_min', i)),
            description=description,
            icon=icon,
            precipitation_sum=_safe_float(_series_value(daily, 'precipitation_sum', i)),
            precipitation_probability=_safe_float(_series_value(daily, 'precipitation_probability_max', i)),
            sunrise=_parse_datetime(_series_value(daily, 'sunrise', i)),
            sunset=_parse_datetime(_series_value(daily, 'sunset', i)),
        ))

    return tuple(entries)


def transform(payload: Dict[str, Any], location: ResolvedLocation, now: Optional[datetime] = None) -> ForecastSnapshot:
    """
    生の予報データをスナップショットに変換

    Args:
        payload: 検証済みの予報レスポンス
        location: 予報対象の位置情報
        now: スナップショットの作成時刻（省略時は現在時刻）

    Returns:
        不変のスナップショット

    Raises:
        WeatherAPIInvalidResponseError: current ブロックがない場合
    """
    return ForecastSnapshot(
        location=location,
        current=_transform_current(payload),
        hourly=_transform_hourly(payload),
        daily=_transform_daily(payload),
        last_updated=now or datetime.now(),
    )


def is_weather_data_stale(last_updated: datetime, max_age: timedelta, now: Optional[datetime] = None) -> bool:
    """データが max_age より古いかどうか"""
    now = now or datetime.now()
    return (now - last_updated) > max_age
