"""
天気クライアント全体の統合テスト

HTTPはモック化し、位置情報の取得から予報の反映、アラート評価までを通して確認します。
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from weather_client.app import WeatherApp
from weather_client.models.alert import AlertType
from weather_client.models.location import Coordinate, GeocodingResult, PermissionStatus
from weather_client.services.error_reporting import ErrorType
from weather_client.services.location_providers import (
    ReverseGeocoder,
    StaticPermissionProvider,
    StaticPositionProvider,
)
from weather_client.services.refresh_scheduler import RefreshStatus

BERLIN = Coordinate(52.52, 13.41)


@pytest.fixture
def geocoder():
    geocoder = MagicMock(spec=ReverseGeocoder)
    geocoder.reverse_geocode = AsyncMock(return_value={'city': 'Berlin', 'country': 'Germany'})
    return geocoder


@pytest.fixture
def app_factory(mock_session, geocoder):
    """HTTPセッションをモックに差し替えたWeatherAppを作成する関数"""
    mock_session.close = AsyncMock()

    def _create(**kwargs):
        kwargs.setdefault('position_provider', StaticPositionProvider(BERLIN))
        kwargs.setdefault('reverse_geocoder', geocoder)
        app = WeatherApp(**kwargs)
        app.forecast_client.session = mock_session
        app.search_index.session = mock_session
        return app

    with patch('weather_client.app.setup_logging'):
        yield _create


@pytest.mark.asyncio
async def test_current_location_to_snapshot(app_factory, mock_session, make_response, forecast_payload):
    """現在位置の取得から予報の反映まで"""
    mock_session.get.return_value.__aenter__.return_value = make_response(200, forecast_payload)

    async with app_factory() as app:
        assert app.is_running
        result = await app.locate_and_refresh()

        assert result.status is RefreshStatus.APPLIED
        snapshot = app.refresh_scheduler.snapshot
        assert snapshot.location.name == 'Berlin'
        assert snapshot.current.temperature == 22
        assert snapshot.current.description == 'Clear sky'
        assert snapshot.current.icon == '☀️'
        assert len(snapshot.hourly) == 24
        assert len(snapshot.daily) == 7
        assert not app.refresh_scheduler.is_stale

        # 2回目の更新はキャッシュから返る
        await app.refresh_scheduler.refresh()
        assert mock_session.get.call_count == 1

    assert not app.is_running
    assert not app.scheduler.running


@pytest.mark.asyncio
async def test_alerts_are_raised_from_snapshot(app_factory, mock_session, make_response, make_payload):
    """反映したスナップショットからアラートが生成される"""
    payload = make_payload(temperature_2m=36.2, weather_code=95)
    mock_session.get.return_value.__aenter__.return_value = make_response(200, payload)

    async with app_factory() as app:
        await app.locate_and_refresh()

        alert_types = {alert.type for alert in app.alert_engine.active_alerts}
        assert alert_types == {AlertType.TEMPERATURE, AlertType.GENERAL}


@pytest.mark.asyncio
async def test_permission_denied(app_factory, mock_session):
    """権限がない場合は取得せずに失敗を返す"""
    denied = StaticPermissionProvider(PermissionStatus.DENIED, can_ask_again=False)

    async with app_factory(permission_provider=denied) as app:
        result = await app.locate_and_refresh()

        assert result.status is RefreshStatus.FAILED
        assert result.error.type is ErrorType.PERMISSION
        assert app.location_error.code == 'PERMISSION_DENIED'
        mock_session.get.assert_not_called()


@pytest.mark.asyncio
async def test_select_search_result(app_factory, mock_session, make_response, forecast_payload):
    """検索候補の選択で予報を更新する"""
    mock_session.get.return_value.__aenter__.return_value = make_response(200, forecast_payload)
    result = GeocodingResult(name='Paris', latitude=48.85341, longitude=2.3488, country='France',
                             admin1='Île-de-France')

    async with app_factory() as app:
        refresh = await app.select_search_result(result)

        assert refresh.status is RefreshStatus.APPLIED
        assert app.refresh_scheduler.last_location.name == 'Paris'
        _, kwargs = mock_session.get.call_args
        assert kwargs['params']['latitude'] == '48.85341'


@pytest.mark.asyncio
async def test_watch_refreshes_on_location_change(app_factory, mock_session, make_response, forecast_payload):
    """連続測位の位置更新で予報を再取得する"""
    mock_session.get.return_value.__aenter__.return_value = make_response(200, forecast_payload)

    async with app_factory() as app:
        assert await app.start_watching()
        await asyncio.sleep(0.05)

        assert app.refresh_scheduler.snapshot is not None
        assert app.refresh_scheduler.snapshot.location.name == 'Berlin'

        app.stop_watching()
        assert not app.location_resolver.is_watching


@pytest.mark.asyncio
async def test_server_error_is_reported(app_factory, mock_session, make_response):
    """サーバーエラーは型付きの失敗として返る"""
    mock_session.get.return_value.__aenter__.return_value = make_response(503)

    async with app_factory() as app:
        result = await app.locate_and_refresh()

        assert result.status is RefreshStatus.FAILED
        assert result.error.type is ErrorType.API
        assert result.error.retryable is True
        assert app.refresh_scheduler.snapshot is None
        assert app.forecast_client.cache_size == 0
