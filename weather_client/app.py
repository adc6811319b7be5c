"""天気クライアントのメインエントリーポイント"""

import logging
from typing import Optional

from apscheduler.executors.asyncio import AsyncIOExecutor
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from .config import Config, config
from .models.location import Coordinate, GeocodingResult
from .services.alert_engine import AlertRuleEngine
from .services.error_reporting import ErrorReporter, ErrorSink
from .services.forecast_client import ForecastClient
from .services.location_providers import (
    NullReverseGeocoder,
    PermissionProvider,
    PositionProvider,
    ReverseGeocoder,
    StaticPermissionProvider,
    StaticPositionProvider,
)
from .services.location_resolver import LocationError, LocationResolver
from .services.location_search import LocationSearchIndex
from .services.refresh_scheduler import RefreshResult, RefreshScheduler, RefreshStatus
from .utils.logging import setup_logging

logger = logging.getLogger(__name__)


class WeatherApp:
    """各サービスを組み立て、ライフサイクルを管理するアプリケーション"""

    def __init__(
        self,
        cfg: Optional[Config] = None,
        permission_provider: Optional[PermissionProvider] = None,
        position_provider: Optional[PositionProvider] = None,
        reverse_geocoder: Optional[ReverseGeocoder] = None,
        error_sink: Optional[ErrorSink] = None,
    ):
        """
        WeatherAppの初期化

        プロバイダーを省略した場合は設定の固定座標を使う（デバイスのない環境向け）。
        """
        self.config = cfg or config

        if position_provider is None:
            coordinate = None
            if self.config.DEFAULT_LATITUDE is not None and self.config.DEFAULT_LONGITUDE is not None:
                coordinate = Coordinate(self.config.DEFAULT_LATITUDE, self.config.DEFAULT_LONGITUDE)
            position_provider = StaticPositionProvider(coordinate)

        self.scheduler = AsyncIOScheduler(
            jobstores={'default': MemoryJobStore()},
            executors={'default': AsyncIOExecutor()},
            job_defaults={'coalesce': True, 'max_instances': 1},
        )

        self.error_reporter = ErrorReporter(error_sink, self.config.MAX_BREADCRUMBS)
        self.forecast_client = ForecastClient(
            base_url=self.config.FORECAST_BASE_URL,
            request_timeout=self.config.request_timeout,
            cache_ttl=self.config.cache_ttl,
        )
        self.location_resolver = LocationResolver(
            permission_provider or StaticPermissionProvider(),
            position_provider,
            reverse_geocoder or NullReverseGeocoder(),
        )
        self.search_index = LocationSearchIndex(
            base_url=self.config.GEOCODING_BASE_URL,
            debounce=self.config.search_debounce,
            result_count=self.config.SEARCH_RESULT_COUNT,
            language=self.config.SEARCH_LANGUAGE,
            request_timeout=self.config.request_timeout,
        )
        self.alert_engine = AlertRuleEngine(sweep_interval=self.config.alert_sweep_interval)
        self.refresh_scheduler = RefreshScheduler(
            self.forecast_client,
            alert_engine=self.alert_engine,
            error_reporter=self.error_reporter,
            stale_threshold=self.config.stale_threshold,
            auto_refresh_interval=self.config.auto_refresh_interval,
            max_retries=self.config.MAX_RETRIES,
            retry_delay=self.config.retry_delay,
        )

        self.location_error: Optional[LocationError] = None
        self._is_running = False

    @property
    def is_running(self) -> bool:
        return self._is_running

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.stop()

    async def start(self) -> None:
        """設定を検証してセッションとスケジューラーを開始"""
        if self._is_running:
            return

        setup_logging(self.config)

        try:
            self.config.validate()
            logger.info("設定の検証が完了しました")
        except ValueError as e:
            logger.error(f"設定の検証に失敗しました: {e}")
            raise

        await self.forecast_client.start_session()
        await self.search_index.start_session()
        await self.error_reporter.load_breadcrumbs()

        self.scheduler.start()
        self.alert_engine.start(self.scheduler)
        self.refresh_scheduler.start(self.scheduler)
        self._is_running = True
        logger.info(f"天気クライアントを開始しました: {self.config.get_environment_info()}")

    async def stop(self) -> None:
        """ジョブを解除し、セッションと位置情報の監視を終了"""
        if not self._is_running:
            return

        self.refresh_scheduler.stop()
        self.alert_engine.stop()
        self.scheduler.shutdown(wait=False)

        await self.location_resolver.close()
        await self.search_index.close()
        await self.forecast_client.close_session()
        self._is_running = False
        logger.info("天気クライアントを停止しました")

    async def locate_and_refresh(self) -> RefreshResult:
        """現在位置を取得して予報を更新"""
        await self.error_reporter.add_breadcrumb('user_action', 'Requested current location')
        try:
            location = await self.location_resolver.get_current_location()
        except LocationError as e:
            logger.warning(f"現在位置を取得できませんでした: {e.code} - {e.message}")
            self.location_error = e
            app_error = await self.error_reporter.report_exception(e, source='LocationResolver')
            return RefreshResult(RefreshStatus.FAILED, error=app_error)

        self.location_error = None
        return await self.refresh_scheduler.fetch_for_location(location)

    async def select_search_result(self, result: GeocodingResult) -> RefreshResult:
        """検索候補を選択して予報を更新"""
        location = self.search_index.to_resolved_location(result)
        self.search_index.clear_results()
        await self.error_reporter.add_breadcrumb(
            'user_action', f"Selected location {location.name}",
            data={'latitude': location.latitude, 'longitude': location.longitude},
        )
        return await self.refresh_scheduler.fetch_for_location(location)

    def _on_location_error(self, error: LocationError) -> None:
        logger.warning(f"位置情報の監視でエラーが発生しました: {error.code} - {error.message}")
        self.location_error = error

    async def start_watching(self) -> bool:
        """位置が変わるたびに予報を更新する"""
        return await self.location_resolver.watch(
            self.refresh_scheduler.on_location_changed, self._on_location_error
        )

    def stop_watching(self) -> None:
        self.location_resolver.stop_watch()
