"""
地名検索サービス

Open-Meteoジオコーディング APIを使った、デバウンス付きの地名検索
"""

import asyncio
import json
from typing import Any, Dict, List, Optional

import aiohttp
from aiohttp import ClientError

from ..config import config
from ..models.location import GeocodingResult, ResolvedLocation
from ..utils.cancellation import CancellationSource, CancellationToken
from .http_session import HTTPSessionService
from .location_resolver import LocationError

MIN_QUERY_LENGTH = 2


class SearchError(LocationError):
    """地名検索のエラー"""
    def __init__(
        self,
        message: str = 'Unable to search for locations. Please check your internet connection and try again.'
    ):
        super().__init__('SEARCH_ERROR', message)


class LocationSearchIndex(HTTPSessionService):
    """デバウンス付きの地名検索"""

    def __init__(
        self,
        base_url: Optional[str] = None,
        debounce: Optional[float] = None,
        result_count: Optional[int] = None,
        language: Optional[str] = None,
        request_timeout: Optional[float] = None,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        """
        LocationSearchIndexの初期化

        Args:
            base_url: ジオコーディングAPIのURL
            debounce: デバウンス間隔（秒）
            result_count: 取得する候補数
            language: 結果の言語
            request_timeout: リクエストのタイムアウト（秒）
            session: 共有するaiohttpセッション
        """
        super().__init__(
            request_timeout=request_timeout if request_timeout is not None else config.request_timeout,
            session=session,
        )
        self.base_url = base_url or config.GEOCODING_BASE_URL
        self.debounce = debounce if debounce is not None else config.search_debounce
        self.result_count = result_count or config.SEARCH_RESULT_COUNT
        self.language = language or config.SEARCH_LANGUAGE

        # 画面に表示する検索状態
        self.query: str = ''
        self.results: List[GeocodingResult] = []
        self.is_searching = False
        self.error: Optional[SearchError] = None

        self._tokens = CancellationSource()
        self._pending: Optional[asyncio.Task] = None
        self._pending_token: Optional[CancellationToken] = None
        self._debouncing = False

    def _cancel_pending_timer(self) -> None:
        """デバウンス待ち中のタイマーのみ取り消す（通信中のリクエストは中断しない）"""
        if self._pending is not None and self._debouncing and not self._pending.done():
            self._pending.cancel()

    def submit(self, query: str) -> Optional[asyncio.Task]:
        """
        検索クエリを受け付ける

        前のタイマーを取り消し、前のトークンを無効化してから新しいタイマーを開始する。

        Returns:
            デバウンス後に検索を行うタスク。短すぎるクエリの場合はNone
        """
        self.query = query
        self._cancel_pending_timer()
        token = self._tokens.issue()

        trimmed = query.strip()
        if len(trimmed) < MIN_QUERY_LENGTH:
            # 短いクエリは通信せずに結果をクリア
            self.results = []
            self.error = None
            self.is_searching = False
            self._pending = None
            return None

        self._debouncing = True
        self._pending_token = token
        self._pending = asyncio.get_running_loop().create_task(self._debounced_search(trimmed, token))
        return self._pending

    async def search(self, query: str) -> Optional[List[GeocodingResult]]:
        """
        検索を実行して結果を待つ

        Returns:
            確定した検索結果。後続のクエリに置き換えられた場合はNone

        Raises:
            SearchError: このクエリが最新のまま検索に失敗した場合
        """
        task = self.submit(query)
        if task is None:
            return []

        # 置き換えでタスクがキャンセルされても呼び出し側には伝播させない
        await asyncio.wait({task})
        if task.cancelled():
            return None
        return task.result()

    async def _debounced_search(self, query: str, token: CancellationToken) -> Optional[List[GeocodingResult]]:
        await asyncio.sleep(self.debounce)
        self._debouncing = False

        if not token.is_current:
            return None

        self.is_searching = True
        self.error = None

        try:
            results = await self._fetch_results(query)
        except SearchError as e:
            if not token.is_current:
                self.logger.debug(f"置き換えられた検索のエラーを破棄しました: '{query}'")
                return None
            self.logger.error(f"地名検索に失敗しました: '{query}' - {e}")
            self.error = e
            self.results = []
            raise
        finally:
            if token.is_current:
                self.is_searching = False

        if not token.is_current:
            self.logger.debug(f"置き換えられた検索の結果を破棄しました: '{query}'")
            return None

        self.results = results
        self.logger.debug(f"地名検索結果: '{query}' -> {len(results)}件")
        return results

    async def _fetch_results(self, query: str) -> List[GeocodingResult]:
        """
        ジオコーディングAPIを呼び出す

        Raises:
            SearchError: 通信やレスポンスの解析に失敗した場合
        """
        if self.session is None or self.session.closed:
            await self.start_session()

        params = {
            'name': query,
            'count': str(self.result_count),
            'language': self.language,
            'format': 'json',
        }

        try:
            async with self.session.get(self.base_url, params=params) as response:
                if response.status != 200:
                    self.logger.warning(f"ジオコーディングAPIエラー: HTTP {response.status}")
                    raise SearchError()
                data = await response.json()
        except SearchError:
            raise
        except asyncio.TimeoutError:
            self.logger.warning(f"地名検索がタイムアウトしました: '{query}'")
            raise SearchError()
        except (ClientError, json.JSONDecodeError) as e:
            self.logger.warning(f"地名検索の通信に失敗しました: '{query}' - {e}")
            raise SearchError()

        return self._parse_results(data)

    def _parse_results(self, data: Any) -> List[GeocodingResult]:
        """レスポンスから候補を抽出（results がなければ空）"""
        if not isinstance(data, dict):
            raise SearchError()

        items = data.get('results') or []
        if not isinstance(items, list):
            self.logger.warning(f"検索結果の形式が不正です: {type(items).__name__}")
            raise SearchError()

        results: List[GeocodingResult] = []
        for item in items:
            if not isinstance(item, dict):
                self.logger.warning(f"検索候補の解析をスキップしました: {item!r}")
                continue
            try:
                results.append(GeocodingResult.from_dict(item))
            except (KeyError, TypeError) as e:
                self.logger.warning(f"検索候補の解析をスキップしました: {e}")
        return results

    def clear_results(self) -> None:
        """検索結果とエラーをクリア"""
        self.results = []
        self.error = None

    def clear_error(self) -> None:
        self.error = None

    @staticmethod
    def to_resolved_location(result: GeocodingResult) -> ResolvedLocation:
        """検索候補を位置情報に変換"""
        return result.to_resolved_location()

    async def close(self) -> None:
        """保留中の検索を取り消してセッションを閉じる"""
        self._cancel_pending_timer()
        self._tokens.cancel()
        self.is_searching = False
        await self.close_session()
