"""
RefreshSchedulerのユニットテスト

最後に発行した取得だけが状態に反映されることを中心に確認します。
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from weather_client.models.location import Coordinate, ResolvedLocation
from weather_client.services.error_reporting import ErrorReporter, ErrorSink, WEATHER_ERROR_MESSAGES
from weather_client.services.forecast_client import WeatherAPIServerError, WeatherAPITimeoutError
from weather_client.services.refresh_scheduler import (
    AUTO_REFRESH_JOB_ID,
    RefreshScheduler,
    RefreshStatus,
)

PARIS = ResolvedLocation(Coordinate(48.8534, 2.3488), name='Paris')


@pytest.fixture
def error_sink():
    sink = MagicMock(spec=ErrorSink)
    sink.append_breadcrumb = AsyncMock()
    sink.report_error = AsyncMock()
    sink.load_breadcrumbs = AsyncMock(return_value=[])
    return sink


@pytest.fixture
def forecast_client(forecast_payload):
    client = MagicMock()
    client.fetch = AsyncMock(return_value=forecast_payload)
    return client


@pytest.fixture
def scheduler(forecast_client, error_sink, fake_clock):
    return RefreshScheduler(
        forecast_client,
        alert_engine=MagicMock(),
        error_reporter=ErrorReporter(error_sink, max_breadcrumbs=10),
        stale_threshold=3600,
        auto_refresh_interval=600,
        max_retries=2,
        retry_delay=0,
        clock=fake_clock.now,
    )


class TestFetchForLocation:
    """取得と反映のテスト"""

    @pytest.mark.asyncio
    async def test_applies_snapshot(self, scheduler, berlin_location, fake_clock):
        listener = MagicMock()
        scheduler.add_listener(listener)

        result = await scheduler.fetch_for_location(berlin_location)

        assert result.status is RefreshStatus.APPLIED
        assert scheduler.snapshot is result.snapshot
        assert scheduler.snapshot.current.temperature == 22
        assert scheduler.last_updated == fake_clock.now()
        assert scheduler.last_location == berlin_location
        assert scheduler.error is None
        assert scheduler.is_loading is False
        scheduler.alert_engine.process.assert_called_once_with(result.snapshot)
        listener.assert_called_once_with(result.snapshot)

    @pytest.mark.asyncio
    async def test_latest_request_wins(self, scheduler, forecast_client, make_payload, berlin_location):
        """先に発行した取得が後から完了しても反映されない"""
        gate = asyncio.Event()

        async def fake_fetch(coordinate, params):
            if coordinate == berlin_location.coordinate:
                await gate.wait()
                return make_payload(temperature_2m=10)
            return make_payload(temperature_2m=20)

        forecast_client.fetch.side_effect = fake_fetch

        first = asyncio.ensure_future(scheduler.fetch_for_location(berlin_location))
        await asyncio.sleep(0)
        second = await scheduler.fetch_for_location(PARIS)
        gate.set()
        first_result = await first

        assert second.status is RefreshStatus.APPLIED
        assert first_result.status is RefreshStatus.SUPERSEDED
        assert scheduler.snapshot.location == PARIS
        assert scheduler.snapshot.current.temperature == 20
        scheduler.alert_engine.process.assert_called_once()

    @pytest.mark.asyncio
    async def test_superseded_failure_is_not_an_error(self, scheduler, forecast_client, forecast_payload,
                                                      berlin_location, error_sink):
        """置き換えられた取得の失敗はエラーとして扱わない"""
        gate = asyncio.Event()

        async def fake_fetch(coordinate, params):
            if coordinate == berlin_location.coordinate:
                await gate.wait()
                raise WeatherAPITimeoutError("timed out")
            return forecast_payload

        forecast_client.fetch.side_effect = fake_fetch

        first = asyncio.ensure_future(scheduler.fetch_for_location(berlin_location))
        await asyncio.sleep(0)
        await scheduler.fetch_for_location(PARIS)
        gate.set()

        assert (await first).status is RefreshStatus.SUPERSEDED
        assert scheduler.error is None
        error_sink.report_error.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_failure_returns_typed_error(self, scheduler, forecast_client, berlin_location, error_sink):
        forecast_client.fetch.side_effect = WeatherAPIServerError("Weather API error (HTTP 503)", status_code=503)

        result = await scheduler.fetch_for_location(berlin_location)

        assert result.status is RefreshStatus.FAILED
        assert result.error.message == WEATHER_ERROR_MESSAGES['SERVER_ERROR']
        assert result.error.retryable is True
        assert scheduler.error == result.error
        assert scheduler.snapshot is None
        assert scheduler.is_loading is False
        error_sink.report_error.assert_awaited_once()

        report = error_sink.report_error.call_args[0][0]
        assert report.breadcrumbs[-1].category == 'network'

    @pytest.mark.asyncio
    async def test_failure_keeps_previous_snapshot(self, scheduler, forecast_client, berlin_location):
        applied = await scheduler.fetch_for_location(berlin_location)
        forecast_client.fetch.side_effect = WeatherAPITimeoutError("timed out")

        result = await scheduler.fetch_for_location(berlin_location)

        assert result.status is RefreshStatus.FAILED
        assert scheduler.snapshot is applied.snapshot

    @pytest.mark.asyncio
    async def test_listener_error_does_not_fail_refresh(self, scheduler, berlin_location):
        scheduler.add_listener(MagicMock(side_effect=RuntimeError("listener failed")))

        result = await scheduler.fetch_for_location(berlin_location)

        assert result.status is RefreshStatus.APPLIED

    @pytest.mark.asyncio
    async def test_clear_discards_in_flight(self, scheduler, forecast_client, forecast_payload, berlin_location):
        gate = asyncio.Event()

        async def fake_fetch(coordinate, params):
            await gate.wait()
            return forecast_payload

        forecast_client.fetch.side_effect = fake_fetch

        pending = asyncio.ensure_future(scheduler.fetch_for_location(berlin_location))
        await asyncio.sleep(0)
        scheduler.clear()
        gate.set()

        assert (await pending).status is RefreshStatus.SUPERSEDED
        assert scheduler.snapshot is None
        assert scheduler.last_location is None

    @pytest.mark.asyncio
    async def test_cancelled_fetch_resets_loading(self, scheduler, forecast_client, forecast_payload,
                                                  berlin_location, fake_clock):
        """取得タスクがキャンセルされても読み込み中のまま残らない"""
        await scheduler.fetch_for_location(berlin_location)
        gate = asyncio.Event()

        async def fake_fetch(coordinate, params):
            await gate.wait()
            return forecast_payload

        forecast_client.fetch.side_effect = fake_fetch
        pending = asyncio.ensure_future(scheduler.fetch_for_location(berlin_location))
        await asyncio.sleep(0)
        assert scheduler.is_loading

        pending.cancel()
        await asyncio.wait({pending})

        assert pending.cancelled()
        assert not scheduler.is_loading

        # 自動更新が止まらない
        forecast_client.fetch.side_effect = None
        fake_clock.advance(seconds=601)
        result = await scheduler.auto_refresh_tick()
        assert result.status is RefreshStatus.APPLIED


class TestRefreshAndRetry:
    """手動更新とリトライのテスト"""

    @pytest.mark.asyncio
    async def test_refresh_without_location(self, scheduler, forecast_client):
        result = await scheduler.refresh()

        assert result.status is RefreshStatus.FAILED
        assert result.error.message == 'No location available for refresh'
        forecast_client.fetch.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_refresh_uses_last_location(self, scheduler, forecast_client, berlin_location):
        await scheduler.fetch_for_location(berlin_location)
        result = await scheduler.refresh()

        assert result.status is RefreshStatus.APPLIED
        assert forecast_client.fetch.await_count == 2

    @pytest.mark.asyncio
    async def test_retry_limit(self, scheduler, forecast_client, forecast_payload, berlin_location):
        forecast_client.fetch.side_effect = WeatherAPITimeoutError("timed out")
        await scheduler.fetch_for_location(berlin_location)

        assert (await scheduler.retry()).status is RefreshStatus.FAILED
        assert (await scheduler.retry()).status is RefreshStatus.FAILED
        limited = await scheduler.retry()

        assert limited.status is RefreshStatus.FAILED
        assert limited.error.retryable is False
        assert forecast_client.fetch.await_count == 3

        # 成功するとリトライ回数はリセットされる
        forecast_client.fetch.side_effect = None
        forecast_client.fetch.return_value = forecast_payload
        assert (await scheduler.refresh()).status is RefreshStatus.APPLIED
        assert (await scheduler.retry()).status is RefreshStatus.APPLIED

    @pytest.mark.asyncio
    async def test_retry_waits_for_delay(self, forecast_client, berlin_location, fake_clock):
        scheduler = RefreshScheduler(forecast_client, retry_delay=1.5, max_retries=3, clock=fake_clock.now)
        await scheduler.fetch_for_location(berlin_location)

        with patch('asyncio.sleep', new_callable=AsyncMock) as mock_sleep:
            await scheduler.retry()

        mock_sleep.assert_awaited_once_with(1.5)


class TestStaleness:
    """鮮度判定と自動更新のテスト"""

    @pytest.mark.asyncio
    async def test_is_stale(self, scheduler, berlin_location, fake_clock):
        assert scheduler.is_stale

        await scheduler.fetch_for_location(berlin_location)
        assert not scheduler.is_stale

        fake_clock.advance(minutes=61)
        assert scheduler.is_stale

    @pytest.mark.asyncio
    async def test_auto_refresh_tick(self, scheduler, forecast_client, berlin_location, fake_clock):
        assert await scheduler.auto_refresh_tick() is None

        await scheduler.fetch_for_location(berlin_location)
        fake_clock.advance(seconds=300)
        assert await scheduler.auto_refresh_tick() is None
        assert forecast_client.fetch.await_count == 1

        fake_clock.advance(seconds=301)
        result = await scheduler.auto_refresh_tick()

        assert result.status is RefreshStatus.APPLIED
        assert forecast_client.fetch.await_count == 2

    def test_scheduler_job(self, scheduler):
        aps = MagicMock()
        aps.get_job.return_value = MagicMock()

        scheduler.start(aps)
        kwargs = aps.add_job.call_args.kwargs
        assert kwargs['id'] == AUTO_REFRESH_JOB_ID
        assert kwargs['trigger'].interval.total_seconds() == 600

        scheduler.stop()
        aps.remove_job.assert_called_once_with(AUTO_REFRESH_JOB_ID)
