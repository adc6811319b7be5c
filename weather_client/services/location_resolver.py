"""
位置情報サービス

権限の状態管理、現在位置の取得、連続測位、逆ジオコーディングを提供する
"""

import asyncio
import inspect
import logging
from typing import Any, Callable, Dict, Optional, Set

from ..models.location import Coordinate, PermissionState, PermissionStatus, ResolvedLocation
from ..utils.cancellation import CancellationSource, CancellationToken
from ..utils.geo import format_coordinate
from .location_providers import (
    Accuracy,
    PermissionProvider,
    PositionProvider,
    PositionProviderError,
    ReverseGeocoder,
    NullReverseGeocoder,
    WatchOptions,
    WatchSubscription,
)

DEFAULT_LOCATION_NAME = 'Current Location'
UNKNOWN_LOCATION_NAME = 'Unknown Location'


class LocationError(Exception):
    """位置情報関連のエラー"""
    def __init__(self, code: str, message: str):
        super().__init__(message)
        self.code = code
        self.message = message


class PermissionDeniedError(LocationError):
    """位置情報の権限がない"""
    def __init__(self, message: str = 'Location permission is required'):
        super().__init__('PERMISSION_DENIED', message)


class LocationUnavailableError(LocationError):
    """位置情報を取得できない"""
    pass


class LocationTimeoutError(LocationError):
    """測位がタイムアウトした"""
    def __init__(self, message: str = 'Location request timed out. Please try again.'):
        super().__init__('TIMEOUT', message)


class GeocodingError(LocationError):
    """逆ジオコーディングの失敗（致命的ではない）"""
    def __init__(self, message: str):
        super().__init__('GEOCODING_ERROR', message)


class LocationResolver:
    """位置情報の取得と追跡を行うサービス"""

    # 1回測位の設定
    POSITION_ACCURACY = Accuracy.HIGH
    POSITION_TIMEOUT = 10.0  # 秒
    POSITION_MIN_DISTANCE = 10.0  # メートル

    # 連続測位の設定
    WATCH_OPTIONS = WatchOptions(accuracy=Accuracy.HIGH, time_interval=30.0, distance_interval=50.0)

    def __init__(
        self,
        permission_provider: PermissionProvider,
        position_provider: PositionProvider,
        reverse_geocoder: Optional[ReverseGeocoder] = None,
        position_timeout: Optional[float] = None,
    ):
        """
        LocationResolverの初期化

        Args:
            permission_provider: 権限プロバイダー
            position_provider: 測位プロバイダー
            reverse_geocoder: 逆ジオコーダー（省略時は常に結果なし）
            position_timeout: 1回測位のタイムアウト（秒）
        """
        self.logger = logging.getLogger(__name__)
        self.permission_provider = permission_provider
        self.position_provider = position_provider
        self.reverse_geocoder = reverse_geocoder or NullReverseGeocoder()
        self.position_timeout = position_timeout if position_timeout is not None else self.POSITION_TIMEOUT

        # 権限状態は明示的な check / request でのみ更新する
        self._permission_state = PermissionState(PermissionStatus.UNDETERMINED, can_ask_again=True)

        # 連続測位はインスタンスごとに最大1つ
        self._watch_subscription: Optional[WatchSubscription] = None
        self._watch_source = CancellationSource()
        self._watch_tasks: Set[asyncio.Task] = set()

    @property
    def permission_state(self) -> PermissionState:
        return self._permission_state

    @property
    def is_watching(self) -> bool:
        return self._watch_subscription is not None

    async def check_permission(self) -> PermissionState:
        """
        現在の権限状態を確認

        Returns:
            権限状態（プロバイダーのエラー時は再リクエスト不可の拒否扱い）
        """
        try:
            state = await self.permission_provider.check_foreground_permission()
        except Exception as e:
            self.logger.error(f"位置情報の権限確認に失敗しました: {e}")
            state = PermissionState(PermissionStatus.DENIED, can_ask_again=False)

        self._permission_state = state
        return state

    async def request_permission(self) -> PermissionState:
        """
        位置情報の権限をリクエスト

        再リクエストできない場合はプロンプトを出さずに現在の状態を返す。
        呼び出し側は PermissionState.requires_settings を見てシステム設定へ誘導する。

        Returns:
            リクエスト後の権限状態
        """
        state = await self.check_permission()
        if state.granted:
            return state

        if not state.can_ask_again:
            self.logger.info("位置情報の権限を再リクエストできません。システム設定への誘導が必要です")
            return state

        try:
            state = await self.permission_provider.request_foreground_permission()
        except Exception as e:
            self.logger.error(f"位置情報の権限リクエストに失敗しました: {e}")
            state = PermissionState(PermissionStatus.DENIED, can_ask_again=False)

        self._permission_state = state
        self.logger.info(f"位置情報の権限状態: {state.status.value} (再リクエスト可: {state.can_ask_again})")
        return state

    async def reverse_geocode(self, latitude: float, longitude: float) -> Optional[Dict[str, Optional[str]]]:
        """
        座標から読みやすい住所を取得（ベストエフォート）

        Returns:
            {'name', 'country', 'region'} の辞書、取得できない場合はNone
        """
        try:
            place = await self.reverse_geocoder.reverse_geocode(latitude, longitude)
        except Exception as e:
            error = GeocodingError(f"逆ジオコーディングに失敗しました: {e}")
            self.logger.warning(f"{error} ({format_coordinate(latitude, longitude)})")
            return None

        if not place:
            return None

        return {
            'name': place.get('name') or place.get('city') or place.get('district')
                    or place.get('subregion') or UNKNOWN_LOCATION_NAME,
            'country': place.get('country') or None,
            'region': place.get('region') or None,
        }

    async def _resolve(self, coordinate: Coordinate, placeholder: str) -> ResolvedLocation:
        address = await self.reverse_geocode(coordinate.latitude, coordinate.longitude)
        if address is None:
            return ResolvedLocation(coordinate=coordinate, name=placeholder)

        return ResolvedLocation(
            coordinate=coordinate,
            name=address['name'] or placeholder,
            country=address['country'],
            region=address['region'],
        )

    async def get_current_location(self) -> ResolvedLocation:
        """
        現在位置を取得

        Returns:
            逆ジオコーディング済みの位置情報（失敗時は仮の名前）

        Raises:
            PermissionDeniedError: 権限がない場合（測位は行わない）
            LocationTimeoutError: 測位がタイムアウトした場合
            LocationUnavailableError: 測位できない場合
        """
        state = await self.check_permission()
        if not state.granted:
            raise PermissionDeniedError()

        try:
            coordinate = await asyncio.wait_for(
                self.position_provider.get_current_position(
                    self.POSITION_ACCURACY, self.position_timeout, self.POSITION_MIN_DISTANCE
                ),
                timeout=self.position_timeout,
            )
        except asyncio.TimeoutError:
            self.logger.warning("現在位置の取得がタイムアウトしました")
            raise LocationTimeoutError()
        except PositionProviderError as e:
            self.logger.error(f"現在位置の取得に失敗しました: {e.code}")
            raise self._map_provider_error(e)
        except Exception as e:
            self.logger.error(f"現在位置の取得中に予期しないエラーが発生しました: {e}")
            raise LocationUnavailableError(
                'UNKNOWN', 'An unexpected error occurred while getting your location.'
            )

        location = await self._resolve(coordinate, DEFAULT_LOCATION_NAME)
        self.logger.info(f"現在位置を取得しました: {location.name} ({format_coordinate(location.latitude, location.longitude)})")
        return location

    def _map_provider_error(self, error: PositionProviderError) -> LocationError:
        if error.code == PositionProviderError.TIMEOUT:
            return LocationTimeoutError()
        if error.code == PositionProviderError.SERVICES_DISABLED:
            return LocationUnavailableError(
                'SERVICES_DISABLED',
                'Location services are disabled. Please enable them in your device settings.'
            )
        if error.code == PositionProviderError.UNAVAILABLE:
            return LocationUnavailableError(
                'UNAVAILABLE', 'Location is temporarily unavailable. Please try again.'
            )
        return LocationUnavailableError('UNKNOWN', 'Unable to get your location. Please try again.')

    async def get_location_details(self, latitude: float, longitude: float) -> ResolvedLocation:
        """座標の位置情報を取得（住所がなければ座標文字列を名前にする）"""
        coordinate = Coordinate(latitude, longitude)
        return await self._resolve(coordinate, format_coordinate(latitude, longitude))

    async def watch(
        self,
        on_update: Callable[[ResolvedLocation], Any],
        on_error: Callable[[LocationError], Any],
    ) -> bool:
        """
        連続測位を開始

        既存の測位は停止してから開始する。各位置は逆ジオコーディングしてから
        on_update に渡す。停止後や置き換え後に届いた位置は破棄する。

        Args:
            on_update: 位置更新時のコールバック（同期・非同期どちらでも可）
            on_error: エラー時のコールバック

        Returns:
            開始できた場合True
        """
        self.stop_watch()

        state = await self.check_permission()
        if not state.granted:
            on_error(PermissionDeniedError())
            return False

        token = self._watch_source.issue()

        def _on_position(coordinate: Coordinate) -> None:
            if not token.is_current:
                return
            task = asyncio.get_running_loop().create_task(
                self._deliver_position(coordinate, token, on_update, on_error)
            )
            self._watch_tasks.add(task)
            task.add_done_callback(self._watch_tasks.discard)

        try:
            self._watch_subscription = self.position_provider.watch_position(self.WATCH_OPTIONS, _on_position)
        except Exception as e:
            self.logger.error(f"位置情報の監視を開始できませんでした: {e}")
            self._watch_source.cancel()
            on_error(LocationUnavailableError('WATCH_ERROR', 'Unable to start location monitoring'))
            return False

        self.logger.info("位置情報の監視を開始しました")
        return True

    async def _deliver_position(
        self,
        coordinate: Coordinate,
        token: CancellationToken,
        on_update: Callable[[ResolvedLocation], Any],
        on_error: Callable[[LocationError], Any],
    ) -> None:
        """1件の位置更新を逆ジオコーディングして通知"""
        try:
            location = await self._resolve(coordinate, DEFAULT_LOCATION_NAME)

            # 逆ジオコーディング中に監視が停止・置き換えられた場合は破棄
            if not token.is_current:
                return

            result = on_update(location)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            self.logger.error(f"位置更新の処理中にエラーが発生しました: {e}")
            if token.is_current:
                on_error(LocationError('PROCESSING_ERROR', 'Error processing location update'))

    def stop_watch(self) -> None:
        """連続測位を停止（何度呼んでもよい）"""
        self._watch_source.cancel()
        if self._watch_subscription is not None:
            self._watch_subscription.stop()
            self._watch_subscription = None
            self.logger.info("位置情報の監視を停止しました")

    async def close(self) -> None:
        """監視を停止し、処理中の位置更新を待たずに破棄する"""
        self.stop_watch()
        for task in list(self._watch_tasks):
            task.cancel()
        if self._watch_tasks:
            await asyncio.gather(*self._watch_tasks, return_exceptions=True)
        self._watch_tasks.clear()
