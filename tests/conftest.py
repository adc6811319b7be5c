"""
pytest設定ファイル

全テストで共通して使用されるフィクスチャとセットアップを定義します。
"""

import os
from datetime import datetime, timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from weather_client.models.location import Coordinate, ResolvedLocation


class FakeClock:
    """テスト用の時計（time.time と datetime.now の両方の形で使える）"""

    def __init__(self, start: datetime = datetime(2024, 1, 15, 12, 0, 0)):
        self.current = start

    def now(self) -> datetime:
        return self.current

    def time(self) -> float:
        return self.current.timestamp()

    def advance(self, seconds: float = 0, **kwargs) -> None:
        self.current += timedelta(seconds=seconds, **kwargs)


def build_forecast_payload(hours: int = 48, days: int = 10, **current_overrides):
    """Open-Meteo形式の予報レスポンスを作成"""
    start = datetime(2024, 1, 15, 0, 0)
    hourly_times = [(start + timedelta(hours=i)).strftime('%Y-%m-%dT%H:%M') for i in range(hours)]
    daily_times = [(start.date() + timedelta(days=i)).isoformat() for i in range(days)]

    current = {
        'time': '2024-01-15T12:00',
        'temperature_2m': 22.0,
        'relative_humidity_2m': 45,
        'apparent_temperature': 21.4,
        'is_day': 1,
        'precipitation': 0.0,
        'weather_code': 0,
        'cloud_cover': 10,
        'pressure_msl': 1013.2,
        'wind_speed_10m': 12.5,
        'wind_direction_10m': 180,
    }
    current.update(current_overrides)

    return {
        'latitude': 52.52,
        'longitude': 13.419998,
        'timezone': 'Europe/Berlin',
        'current': current,
        'hourly': {
            'time': hourly_times,
            'temperature_2m': [20.0 + (i % 5) for i in range(hours)],
            'relative_humidity_2m': [50] * hours,
            'precipitation_probability': [10] * hours,
            'precipitation': [0.0] * hours,
            'weather_code': [0] * hours,
            'wind_speed_10m': [10.0] * hours,
            'wind_direction_10m': [180] * hours,
        },
        'daily': {
            'time': daily_times,
            'weather_code': [3] * days,
            'temperature_2m_max': [25.0] * days,
            'temperature_2m_min': [15.0] * days,
            'sunrise': [f'{d}T07:00' for d in daily_times],
            'sunset': [f'{d}T17:00' for d in daily_times],
            'precipitation_sum': [0.0] * days,
            'precipitation_probability_max': [20] * days,
        },
    }


@pytest.fixture
def fake_clock():
    """固定時刻から始まるテスト用の時計"""
    return FakeClock()


@pytest.fixture
def make_payload():
    """予報レスポンスを作成する関数"""
    return build_forecast_payload


@pytest.fixture
def forecast_payload():
    """モック用の予報データ（ベルリン、快晴、22°C）"""
    return build_forecast_payload()


@pytest.fixture
def berlin_location():
    """ベルリンの位置情報"""
    return ResolvedLocation(Coordinate(52.52, 13.41), name='Berlin', country='Germany', region='Berlin')


@pytest.fixture
def mock_session():
    """モック用のaiohttpセッション"""
    session = MagicMock()
    session.closed = False
    return session


def _make_response(status: int = 200, json_data=None, headers=None):
    response = AsyncMock()
    response.status = status
    response.headers = headers or {}
    response.json.return_value = json_data
    return response


@pytest.fixture
def make_response():
    """モック用のレスポンスを作成する関数"""
    return _make_response


@pytest.fixture(autouse=True)
def setup_test_environment():
    """テスト環境のセットアップ"""
    # テスト用の環境変数を設定
    original_env = {}
    test_env = {
        'TESTING': 'true',
        'LOG_LEVEL': 'ERROR',
    }

    for key, value in test_env.items():
        original_env[key] = os.environ.get(key)
        os.environ[key] = value

    yield

    # 環境変数を復元
    for key, value in original_env.items():
        if value is None:
            os.environ.pop(key, None)
        else:
            os.environ[key] = value


def pytest_configure(config):
    """pytest設定"""
    # カスタムマーカーの登録
    config.addinivalue_line(
        "markers", "unit: mark test as a unit test"
    )
    config.addinivalue_line(
        "markers", "integration: mark test as an integration test"
    )
    config.addinivalue_line(
        "markers", "slow: mark test as slow running"
    )


def pytest_collection_modifyitems(config, items):
    """テスト収集時の処理"""
    # ディレクトリに応じてマーカーを自動追加
    for item in items:
        if "integration" in str(item.fspath):
            item.add_marker(pytest.mark.integration)
        elif "unit" in str(item.fspath):
            item.add_marker(pytest.mark.unit)


@pytest.fixture
def suppress_logs():
    """ログ出力を抑制"""
    import logging
    logging.disable(logging.CRITICAL)
    yield
    logging.disable(logging.NOTSET)
