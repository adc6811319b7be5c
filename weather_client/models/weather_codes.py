"""Open-Meteo (WMO) 天気コードの対応表"""

from typing import Dict, Optional, Tuple

from .weather import WeatherCondition

CLEAR_SKY_CODE = 0

WEATHER_CODES: Dict[int, WeatherCondition] = {
    0: WeatherCondition('Clear sky', '☀️', day_icon='☀️', night_icon='🌙'),
    1: WeatherCondition('Mainly clear', '🌤️', day_icon='🌤️', night_icon='🌙'),
    2: WeatherCondition('Partly cloudy', '⛅', day_icon='⛅', night_icon='☁️'),
    3: WeatherCondition('Overcast', '☁️'),
    45: WeatherCondition('Fog', '🌫️'),
    48: WeatherCondition('Depositing rime fog', '🌫️'),
    51: WeatherCondition('Light drizzle', '🌦️'),
    53: WeatherCondition('Moderate drizzle', '🌦️'),
    55: WeatherCondition('Dense drizzle', '🌧️'),
    56: WeatherCondition('Light freezing drizzle', '🌨️'),
    57: WeatherCondition('Dense freezing drizzle', '🌨️'),
    61: WeatherCondition('Slight rain', '🌦️'),
    63: WeatherCondition('Moderate rain', '🌧️'),
    65: WeatherCondition('Heavy rain', '🌧️'),
    66: WeatherCondition('Light freezing rain', '🌨️'),
    67: WeatherCondition('Heavy freezing rain', '🌨️'),
    71: WeatherCondition('Slight snow fall', '🌨️'),
    73: WeatherCondition('Moderate snow fall', '❄️'),
    75: WeatherCondition('Heavy snow fall', '❄️'),
    77: WeatherCondition('Snow grains', '🌨️'),
    80: WeatherCondition('Slight rain showers', '🌦️'),
    81: WeatherCondition('Moderate rain showers', '🌧️'),
    82: WeatherCondition('Violent rain showers', '⛈️'),
    85: WeatherCondition('Slight snow showers', '🌨️'),
    86: WeatherCondition('Heavy snow showers', '❄️'),
    95: WeatherCondition('Thunderstorm', '⛈️'),
    96: WeatherCondition('Thunderstorm with slight hail', '⛈️'),
    99: WeatherCondition('Thunderstorm with heavy hail', '⛈️'),
}

# 天気コードのグループ
WEATHER_CODE_GROUPS: Dict[str, Tuple[int, ...]] = {
    'clear': (0, 1),
    'cloudy': (2, 3),
    'fog': (45, 48),
    'drizzle': (51, 53, 55, 56, 57),
    'rain': (61, 63, 65, 66, 67, 80, 81, 82),
    'snow': (71, 73, 75, 77, 85, 86),
    'thunderstorm': (95, 96, 99),
}


def get_weather_condition(code) -> WeatherCondition:
    """天気コードから対応表エントリを取得（未知のコードは快晴扱い）"""
    try:
        return WEATHER_CODES.get(int(code), WEATHER_CODES[CLEAR_SKY_CODE])
    except (TypeError, ValueError):
        return WEATHER_CODES[CLEAR_SKY_CODE]


def get_weather_code_group(code: int) -> Optional[str]:
    """天気コードが属するグループ名を取得"""
    for group, codes in WEATHER_CODE_GROUPS.items():
        if code in codes:
            return group
    return None
