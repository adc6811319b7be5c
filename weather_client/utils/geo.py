"""座標計算ユーティリティ"""

import math

EARTH_RADIUS_KM = 6371.0


def is_valid_coordinate(latitude, longitude) -> bool:
    """
    座標の妥当性を検証

    Args:
        latitude: 緯度
        longitude: 経度

    Returns:
        有限値かつ範囲内（緯度-90〜90、経度-180〜180）の場合True
    """
    for value in (latitude, longitude):
        # boolはintのサブクラスなので明示的に除外
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return False
        if not math.isfinite(value):
            return False

    return -90 <= latitude <= 90 and -180 <= longitude <= 180


def calculate_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    2点間の大圏距離を計算（haversine公式）

    Returns:
        距離（km）
    """
    d_lat = math.radians(lat2 - lat1)
    d_lon = math.radians(lon2 - lon1)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lon / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_KM * c


def format_coordinate(latitude: float, longitude: float) -> str:
    """座標を表示名の代わりとなる文字列に整形"""
    return f"{latitude:.4f}, {longitude:.4f}"
