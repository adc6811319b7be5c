"""
HTTPセッション管理

予報APIクライアントと地名検索で共通のaiohttpセッション管理
"""

import logging
from typing import Optional

import aiohttp
from aiohttp import ClientTimeout


class HTTPSessionService:
    """aiohttp.ClientSessionのライフサイクルを管理する基底クラス"""

    USER_AGENT = 'WeatherClient/1.0'
    CONNECT_TIMEOUT = 10  # 接続タイムアウト（秒）

    def __init__(self, request_timeout: float, session: Optional[aiohttp.ClientSession] = None):
        self.logger = logging.getLogger(self.__class__.__module__)
        self.request_timeout = request_timeout
        self.session: Optional[aiohttp.ClientSession] = session
        # 外部から渡されたセッションは閉じない
        self._owns_session = session is None

    async def __aenter__(self):
        """非同期コンテキストマネージャーの開始"""
        await self.start_session()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """非同期コンテキストマネージャーの終了"""
        await self.close_session()

    async def start_session(self):
        """HTTPセッションを開始"""
        if self.session is None or self.session.closed:
            timeout = ClientTimeout(
                total=self.request_timeout,
                connect=min(self.CONNECT_TIMEOUT, self.request_timeout)
            )
            connector = aiohttp.TCPConnector(
                limit=10,  # 最大接続数
                limit_per_host=5,  # ホスト毎の最大接続数
                ttl_dns_cache=300,  # DNS キャッシュTTL
            )
            self.session = aiohttp.ClientSession(
                timeout=timeout,
                connector=connector,
                headers={
                    'User-Agent': self.USER_AGENT,
                    'Accept': 'application/json',
                    'Accept-Encoding': 'gzip, deflate'
                }
            )
            self._owns_session = True
            self.logger.info("HTTPセッションを開始しました")

    async def close_session(self):
        """HTTPセッションを終了"""
        if self._owns_session and self.session and not self.session.closed:
            await self.session.close()
            self.logger.info("HTTPセッションを終了しました")
