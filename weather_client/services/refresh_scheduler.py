"""
天気情報の更新スケジューラー

最後に発行したリクエストの結果だけを状態に反映する。古いリクエストの結果は
エラーとして扱わずに破棄する。フォアグラウンドの自動更新はAPSchedulerで行う。
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, List, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from ..config import config
from ..models.location import ResolvedLocation
from ..models.weather import DEFAULT_FORECAST_PARAMS, ForecastParams, ForecastSnapshot
from ..utils.cancellation import CancellationSource, CancellationToken
from ..utils.logging import ContextLogger
from .alert_engine import AlertRuleEngine
from .error_reporting import AppError, ErrorReporter, ErrorSeverity, ErrorType
from .forecast_client import ForecastClient
from .forecast_transformer import is_weather_data_stale, transform

logger = logging.getLogger(__name__)

AUTO_REFRESH_JOB_ID = 'weather_auto_refresh'


class RefreshStatus(Enum):
    """1回の更新の結果"""
    APPLIED = 'applied'
    SUPERSEDED = 'superseded'
    FAILED = 'failed'


@dataclass(frozen=True)
class RefreshResult:
    status: RefreshStatus
    snapshot: Optional[ForecastSnapshot] = None
    error: Optional[AppError] = None


@dataclass(frozen=True)
class RefreshState:
    last_updated: Optional[datetime]
    in_flight_token: Optional[CancellationToken]


class RefreshScheduler:
    """スナップショットの鮮度を管理し、予報の再取得を行うサービス"""

    def __init__(
        self,
        forecast_client: ForecastClient,
        alert_engine: Optional[AlertRuleEngine] = None,
        error_reporter: Optional[ErrorReporter] = None,
        params: ForecastParams = DEFAULT_FORECAST_PARAMS,
        transformer: Callable = transform,
        stale_threshold: Optional[float] = None,
        auto_refresh_interval: Optional[float] = None,
        max_retries: Optional[int] = None,
        retry_delay: Optional[float] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        """
        RefreshSchedulerの初期化

        Args:
            forecast_client: 予報APIクライアント
            alert_engine: 反映したスナップショットを評価するアラートエンジン
            error_reporter: エラー報告サービス
            params: 要求するフィールド
            transformer: 生データをスナップショットに変換する関数
            stale_threshold: 古いとみなすまでの時間（秒）
            auto_refresh_interval: 自動更新の間隔（秒）
            max_retries: 連続して許可する手動リトライの回数
            retry_delay: リトライ前の待ち時間（秒）
            clock: 現在時刻を返す関数
        """
        self.forecast_client = forecast_client
        self.alert_engine = alert_engine
        self.error_reporter = error_reporter or ErrorReporter()
        self.params = params
        self.transformer = transformer
        self.stale_threshold = timedelta(
            seconds=stale_threshold if stale_threshold is not None else config.stale_threshold
        )
        self.auto_refresh_interval = timedelta(
            seconds=auto_refresh_interval if auto_refresh_interval is not None else config.auto_refresh_interval
        )
        self.max_retries = max_retries if max_retries is not None else config.MAX_RETRIES
        self.retry_delay = retry_delay if retry_delay is not None else config.retry_delay
        self._clock = clock
        self._log = ContextLogger(logger)

        self._tokens = CancellationSource()
        self._snapshot: Optional[ForecastSnapshot] = None
        self._last_location: Optional[ResolvedLocation] = None
        self._last_updated: Optional[datetime] = None
        self._error: Optional[AppError] = None
        self._is_loading = False
        self._retry_count = 0
        self._listeners: List[Callable[[ForecastSnapshot], None]] = []
        self._scheduler: Optional[AsyncIOScheduler] = None

    @property
    def snapshot(self) -> Optional[ForecastSnapshot]:
        return self._snapshot

    @property
    def last_location(self) -> Optional[ResolvedLocation]:
        return self._last_location

    @property
    def last_updated(self) -> Optional[datetime]:
        return self._last_updated

    @property
    def error(self) -> Optional[AppError]:
        return self._error

    @property
    def is_loading(self) -> bool:
        return self._is_loading

    @property
    def state(self) -> RefreshState:
        token = self._tokens.current
        return RefreshState(
            last_updated=self._last_updated,
            in_flight_token=token if token is not None and self._is_loading else None,
        )

    @property
    def is_stale(self) -> bool:
        """表示用の鮮度判定（自動更新とは独立）"""
        if self._last_updated is None:
            return True
        return is_weather_data_stale(self._last_updated, self.stale_threshold, self._clock())

    def add_listener(self, listener: Callable[[ForecastSnapshot], None]) -> None:
        """スナップショット反映時に呼ばれるリスナーを登録"""
        self._listeners.append(listener)

    async def fetch_for_location(self, location: ResolvedLocation) -> RefreshResult:
        """
        位置情報の予報を取得して状態に反映

        新しいトークンを発行するため、処理中の取得の結果は反映されなくなる。

        Returns:
            反映・破棄・失敗のいずれかを示す結果（例外は送出しない）
        """
        token = self._tokens.issue()
        self._last_location = location
        self._is_loading = True
        self._error = None

        log = self._log.with_context(
            token=token.token_id, latitude=location.latitude, longitude=location.longitude
        )

        try:
            return await self._fetch_and_commit(location, token, log)
        finally:
            # キャンセルされた場合も読み込み中のまま残さない
            if token.is_current:
                self._is_loading = False

    async def _fetch_and_commit(
        self, location: ResolvedLocation, token: CancellationToken, log: ContextLogger
    ) -> RefreshResult:
        log.debug(f"天気情報の取得を開始します: {location.name}")
        await self.error_reporter.add_breadcrumb(
            'network', f"Fetching weather for {location.name or 'location'}",
            data={'latitude': location.latitude, 'longitude': location.longitude},
        )

        try:
            payload = await self.forecast_client.fetch(location.coordinate, self.params)
            snapshot = self.transformer(payload, location, self._clock())
        except Exception as e:
            if not token.is_current:
                log.debug(f"置き換えられた取得のエラーを破棄しました: {e}")
                return RefreshResult(RefreshStatus.SUPERSEDED)

            log.warning(f"天気情報の取得に失敗しました: {e}")
            app_error = await self.error_reporter.report_exception(e, source='RefreshScheduler')
            # 報告中に新しい取得が始まっていれば、その状態を上書きしない
            if not token.is_current:
                return RefreshResult(RefreshStatus.SUPERSEDED)
            self._error = app_error
            self._is_loading = False
            return RefreshResult(RefreshStatus.FAILED, error=app_error)

        if not token.is_current:
            log.debug("置き換えられた取得の結果を破棄しました")
            return RefreshResult(RefreshStatus.SUPERSEDED)

        self._snapshot = snapshot
        self._last_updated = self._clock()
        self._is_loading = False
        self._retry_count = 0
        log.info(f"天気情報を更新しました: {location.name} {snapshot.current.temperature}°C")

        if self.alert_engine is not None:
            self.alert_engine.process(snapshot)

        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception as e:
                logger.error(f"スナップショットのリスナーでエラーが発生しました: {e}", exc_info=True)

        return RefreshResult(RefreshStatus.APPLIED, snapshot=snapshot)

    async def on_location_changed(self, location: ResolvedLocation) -> RefreshResult:
        """位置が変わったときの再取得"""
        return await self.fetch_for_location(location)

    def _no_location_result(self) -> RefreshResult:
        error = AppError(
            type=ErrorType.LOCATION,
            severity=ErrorSeverity.LOW,
            message='No location available for refresh',
            retryable=False,
            source='RefreshScheduler',
        )
        self._error = error
        return RefreshResult(RefreshStatus.FAILED, error=error)

    async def refresh(self) -> RefreshResult:
        """最後の位置情報で手動更新"""
        if self._last_location is None:
            return self._no_location_result()
        return await self.fetch_for_location(self._last_location)

    async def retry(self) -> RefreshResult:
        """
        呼び出し側が指示したリトライ

        リトライ間隔を待ってから最後の位置情報で再取得する。自動では繰り返さない。
        連続リトライが上限に達した場合は取得せずに失敗を返す。
        """
        if self._last_location is None:
            return self._no_location_result()

        if self._retry_count >= self.max_retries:
            error = AppError(
                type=ErrorType.API,
                severity=ErrorSeverity.MEDIUM,
                message='Retry limit reached. Please try again later.',
                retryable=False,
                source='RefreshScheduler',
            )
            self._error = error
            return RefreshResult(RefreshStatus.FAILED, error=error)

        self._retry_count += 1
        logger.info(f"天気情報の取得をリトライします ({self._retry_count}/{self.max_retries})")
        if self.retry_delay > 0:
            await asyncio.sleep(self.retry_delay)
        return await self.fetch_for_location(self._last_location)

    async def auto_refresh_tick(self) -> Optional[RefreshResult]:
        """
        自動更新のチェック

        スナップショットが自動更新間隔より古ければ再取得する。
        取得中の場合は何もしない。
        """
        if self._snapshot is None or self._last_updated is None or self._is_loading:
            return None

        if not is_weather_data_stale(self._last_updated, self.auto_refresh_interval, self._clock()):
            return None

        logger.info("古くなった天気情報を自動更新します")
        return await self.refresh()

    def clear(self) -> None:
        """状態をリセット（処理中の取得は反映されなくなる）"""
        self._tokens.cancel()
        self._snapshot = None
        self._last_location = None
        self._last_updated = None
        self._error = None
        self._is_loading = False
        self._retry_count = 0

    def start(self, scheduler: AsyncIOScheduler) -> None:
        """自動更新ジョブをスケジューラーに登録"""
        self._scheduler = scheduler
        scheduler.add_job(
            func=self.auto_refresh_tick,
            trigger=IntervalTrigger(seconds=self.auto_refresh_interval.total_seconds()),
            id=AUTO_REFRESH_JOB_ID,
            name='Weather auto refresh',
            replace_existing=True,
        )
        logger.info(f"自動更新を {self.auto_refresh_interval.total_seconds()}秒間隔でスケジュールしました")

    def stop(self) -> None:
        """自動更新ジョブを解除"""
        if self._scheduler is not None and self._scheduler.get_job(AUTO_REFRESH_JOB_ID):
            self._scheduler.remove_job(AUTO_REFRESH_JOB_ID)
        self._scheduler = None
