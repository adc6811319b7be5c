"""
予報APIクライアント

Open-Meteo予報APIから生の予報データを取得し、検証してキャッシュする
"""

import asyncio
import json
import time
from typing import Any, Callable, Dict, Optional

import aiohttp
from aiohttp import ClientError

from ..config import config
from ..models.location import Coordinate, ResolvedLocation
from ..models.weather import CachedEntry, ForecastParams, DEFAULT_FORECAST_PARAMS
from ..utils.geo import is_valid_coordinate
from .http_session import HTTPSessionService


class WeatherAPIError(Exception):
    """予報API関連のエラー"""
    def __init__(self, message: str, status_code: Optional[int] = None, retry_after: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code
        self.retry_after = retry_after


class WeatherAPINetworkError(WeatherAPIError):
    """ネットワークエラー"""
    pass


class WeatherAPITimeoutError(WeatherAPIError):
    """タイムアウトエラー"""
    pass


class WeatherAPIServerError(WeatherAPIError):
    """サーバーがエラーステータスを返した"""
    def __init__(self, message: str, status_code: int, retry_after: Optional[int] = None):
        super().__init__(message, status_code=status_code, retry_after=retry_after)


class WeatherAPIRateLimitError(WeatherAPIError):
    """レート制限エラー"""
    pass


class WeatherAPIInvalidResponseError(WeatherAPIError):
    """レスポンスの形式が不正"""
    pass


def make_cache_key(coordinate: Coordinate, params: ForecastParams) -> str:
    """
    キャッシュキーを生成

    座標は小数点以下4桁に丸め、フィールドの並び順には依存しない。
    """
    def _fmt(value: float) -> str:
        # -0.0000 と 0.0000 を同一視する
        return f"{round(value, 4) + 0.0:.4f}"

    key = {
        'lat': _fmt(coordinate.latitude),
        'lon': _fmt(coordinate.longitude),
        'current': ','.join(sorted(set(params.current))),
        'hourly': ','.join(sorted(set(params.hourly))),
        'daily': ','.join(sorted(set(params.daily))),
        'timezone': params.timezone or '',
        'units': [
            params.temperature_unit or '',
            params.wind_speed_unit or '',
            params.precipitation_unit or '',
        ],
    }
    return json.dumps(key, sort_keys=True)


def build_query_params(coordinate: Coordinate, params: ForecastParams) -> Dict[str, str]:
    """APIリクエストのクエリパラメータを構築（空の項目は省略）"""
    query = {
        'latitude': str(coordinate.latitude),
        'longitude': str(coordinate.longitude),
    }

    if params.current:
        query['current'] = ','.join(params.current)
    if params.hourly:
        query['hourly'] = ','.join(params.hourly)
    if params.daily:
        query['daily'] = ','.join(params.daily)
    if params.timezone:
        query['timezone'] = params.timezone
    if params.temperature_unit:
        query['temperature_unit'] = params.temperature_unit
    if params.wind_speed_unit:
        query['wind_speed_unit'] = params.wind_speed_unit
    if params.precipitation_unit:
        query['precipitation_unit'] = params.precipitation_unit

    return query


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _validate_series_block(data: Dict[str, Any], block_name: str) -> None:
    """hourly / daily ブロックの並列配列の長さが揃っているか検証"""
    block = data[block_name]
    if not isinstance(block, dict):
        raise WeatherAPIInvalidResponseError(f"不正なレスポンスです: {block_name} がオブジェクトではありません")

    times = block.get('time')
    if not isinstance(times, list):
        raise WeatherAPIInvalidResponseError(f"不正なレスポンスです: {block_name}.time がありません")

    for field_name, values in block.items():
        if not isinstance(values, list):
            raise WeatherAPIInvalidResponseError(
                f"不正なレスポンスです: {block_name}.{field_name} が配列ではありません"
            )
        if len(values) != len(times):
            raise WeatherAPIInvalidResponseError(
                f"不正なレスポンスです: {block_name}.{field_name} の要素数が一致しません "
                f"({len(values)} != {len(times)})"
            )


def validate_forecast_response(data: Any, params: Optional[ForecastParams] = None) -> None:
    """
    予報レスポンスを検証

    params に current フィールドが指定されている場合は current ブロックを必須とする。

    Raises:
        WeatherAPIInvalidResponseError: 形式が不正な場合
    """
    if not isinstance(data, dict):
        raise WeatherAPIInvalidResponseError("不正なレスポンスです: オブジェクトではありません")

    if not _is_number(data.get('latitude')) or not _is_number(data.get('longitude')):
        raise WeatherAPIInvalidResponseError("不正なレスポンスです: 座標がありません")

    if params is not None and params.current and data.get('current') is None:
        raise WeatherAPIInvalidResponseError("不正なレスポンスです: current がありません")

    if 'current' in data and data['current'] is not None and not isinstance(data['current'], dict):
        raise WeatherAPIInvalidResponseError("不正なレスポンスです: current がオブジェクトではありません")

    for block_name in ('hourly', 'daily'):
        if data.get(block_name) is not None:
            _validate_series_block(data, block_name)


class ForecastClient(HTTPSessionService):
    """Open-Meteo予報APIクライアント"""

    def __init__(
        self,
        base_url: Optional[str] = None,
        request_timeout: Optional[float] = None,
        cache_ttl: Optional[float] = None,
        session: Optional[aiohttp.ClientSession] = None,
        clock: Callable[[], float] = time.time,
    ):
        """
        ForecastClientの初期化

        Args:
            base_url: 予報APIのURL
            request_timeout: リクエストのタイムアウト（秒）
            cache_ttl: キャッシュの有効期間（秒）
            session: 共有するaiohttpセッション（省略時は自前で作成）
            clock: 現在時刻（UNIX秒）を返す関数
        """
        super().__init__(
            request_timeout=request_timeout if request_timeout is not None else config.request_timeout,
            session=session,
        )
        self.base_url = base_url or config.FORECAST_BASE_URL
        self.cache_ttl = cache_ttl if cache_ttl is not None else config.cache_ttl
        self._clock = clock

        # キャッシュは ForecastClient のみが更新する
        self._cache: Dict[str, CachedEntry] = {}

    def _is_entry_valid(self, entry: CachedEntry) -> bool:
        return (self._clock() - entry.fetched_at) < self.cache_ttl

    def _get_from_cache(self, cache_key: str) -> Optional[Dict[str, Any]]:
        """キャッシュからデータを取得"""
        entry = self._cache.get(cache_key)
        if entry is not None and self._is_entry_valid(entry):
            self.logger.debug(f"キャッシュからデータを取得: {cache_key}")
            return entry.payload
        return None

    def _set_cache(self, cache_key: str, data: Dict[str, Any]) -> None:
        """データをキャッシュに保存（既存のエントリは置き換え）"""
        self._cache[cache_key] = CachedEntry(payload=data, fetched_at=self._clock())
        self.logger.debug(f"データをキャッシュに保存: {cache_key}")

    @property
    def cache_size(self) -> int:
        return len(self._cache)

    def clear_cache(self) -> None:
        """キャッシュを全て削除"""
        self._cache.clear()

    def clean_expired_cache(self) -> int:
        """
        期限切れのキャッシュを削除

        Returns:
            削除したエントリ数
        """
        expired = [key for key, entry in self._cache.items() if not self._is_entry_valid(entry)]
        for key in expired:
            del self._cache[key]
        if expired:
            self.logger.debug(f"期限切れキャッシュを削除しました: {len(expired)}件")
        return len(expired)

    async def _make_request(self, query: Dict[str, str]) -> Any:
        """
        HTTPリクエストを実行

        リトライは行わない。再試行するかどうかは呼び出し側が判断する。

        Args:
            query: クエリパラメータ

        Returns:
            APIレスポンスのJSONデータ

        Raises:
            WeatherAPIError: API呼び出しに失敗した場合
        """
        if self.session is None or self.session.closed:
            await self.start_session()

        try:
            self.logger.debug(f"APIリクエスト開始: {self.base_url} {query}")

            async with self.session.get(self.base_url, params=query) as response:
                # レスポンスヘッダーからレート制限情報を取得
                retry_after = None
                if 'Retry-After' in response.headers:
                    try:
                        retry_after = int(response.headers['Retry-After'])
                    except ValueError:
                        pass

                if response.status == 200:
                    try:
                        data = await response.json()
                    except (json.JSONDecodeError, aiohttp.ContentTypeError) as e:
                        self.logger.error(f"JSONデコードエラー: {self.base_url} - {str(e)}")
                        raise WeatherAPIInvalidResponseError(f"レスポンスのJSONデコードに失敗しました: {str(e)}")
                    self.logger.debug(f"APIリクエスト成功: {self.base_url}")
                    return data

                elif response.status == 429:  # レート制限
                    self.logger.warning(f"レート制限に達しました: {self.base_url}")
                    raise WeatherAPIRateLimitError(
                        f"レート制限に達しました (HTTP {response.status})",
                        status_code=response.status,
                        retry_after=retry_after
                    )

                else:
                    self.logger.warning(f"APIエラー: {self.base_url} (HTTP {response.status})")
                    raise WeatherAPIServerError(
                        f"Weather API error (HTTP {response.status})",
                        status_code=response.status,
                        retry_after=retry_after
                    )

        except WeatherAPIError:
            raise

        except asyncio.TimeoutError:
            self.logger.error(f"タイムアウトエラー: {self.base_url}")
            raise WeatherAPITimeoutError(f"リクエストがタイムアウトしました: {self.base_url}")

        except ClientError as e:
            self.logger.error(f"ネットワークエラー: {self.base_url} - {str(e)}")
            raise WeatherAPINetworkError(f"ネットワークエラー: {str(e)}")

    async def fetch(self, coordinate: Coordinate, params: ForecastParams = DEFAULT_FORECAST_PARAMS) -> Dict[str, Any]:
        """
        予報データを取得

        キャッシュが有効な場合はネットワークにアクセスせずに返す。
        取得に失敗した場合や検証に失敗した場合はキャッシュしない。

        Args:
            coordinate: 座標
            params: 要求するフィールド

        Returns:
            生の予報データ

        Raises:
            ValueError: 座標が不正な場合
            WeatherAPIError: 取得に失敗した場合
        """
        if not is_valid_coordinate(coordinate.latitude, coordinate.longitude):
            raise ValueError(f"無効な座標です: ({coordinate.latitude}, {coordinate.longitude})")

        cache_key = make_cache_key(coordinate, params)
        cached_data = self._get_from_cache(cache_key)
        if cached_data is not None:
            return cached_data

        query = build_query_params(coordinate, params)

        try:
            # ネットワークリクエストとタイマーを競争させる
            data = await asyncio.wait_for(self._make_request(query), timeout=self.request_timeout)
        except asyncio.TimeoutError:
            self.logger.warning(
                f"予報の取得がタイムアウトしました ({self.request_timeout}秒): "
                f"{coordinate.latitude}, {coordinate.longitude}"
            )
            raise WeatherAPITimeoutError(
                f"Weather request timed out after {self.request_timeout} seconds"
            )

        validate_forecast_response(data, params)

        self._set_cache(cache_key, data)
        return data

    async def get_forecast(self, location: ResolvedLocation, params: ForecastParams = DEFAULT_FORECAST_PARAMS):
        """
        位置情報の予報を取得して変換済みのスナップショットを返す

        Raises:
            WeatherAPIError: 取得または変換に失敗した場合
        """
        from .forecast_transformer import transform

        payload = await self.fetch(location.coordinate, params)
        return transform(payload, location)
