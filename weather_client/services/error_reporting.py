"""
エラー報告サービス

例外を構造化されたエラー値に変換し、パンくずリストと共に外部のシンクへ渡す。
保存や送信はシンク側の責務。
"""

import logging
import time
import uuid
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass, field, asdict
from datetime import datetime
from enum import Enum
from typing import Any, Deque, Dict, List, Optional

from ..config import config
from .forecast_client import (
    WeatherAPIError,
    WeatherAPIInvalidResponseError,
    WeatherAPINetworkError,
    WeatherAPIRateLimitError,
    WeatherAPIServerError,
    WeatherAPITimeoutError,
)
from .location_resolver import (
    LocationError,
    LocationTimeoutError,
    PermissionDeniedError,
)
from .location_search import SearchError

logger = logging.getLogger(__name__)


class ErrorType(Enum):
    """エラーの分類"""
    NETWORK = 'NETWORK'
    PERMISSION = 'PERMISSION'
    API = 'API'
    LOCATION = 'LOCATION'
    STORAGE = 'STORAGE'
    VALIDATION = 'VALIDATION'
    UNKNOWN = 'UNKNOWN'


class ErrorSeverity(Enum):
    """エラーの重要度"""
    LOW = 'LOW'
    MEDIUM = 'MEDIUM'
    HIGH = 'HIGH'
    CRITICAL = 'CRITICAL'


# ユーザー向けのエラーメッセージ
WEATHER_ERROR_MESSAGES = {
    'NETWORK_ERROR': 'Unable to connect to weather service. Please check your internet connection.',
    'TIMEOUT_ERROR': 'Weather request timed out. Please try again.',
    'LOCATION_ERROR': 'Unable to get weather for this location. Please try a different location.',
    'INVALID_RESPONSE': 'Received invalid weather data. Please try again.',
    'RATE_LIMIT': 'Too many requests. Please wait a moment and try again.',
    'SERVER_ERROR': 'Weather service is temporarily unavailable. Please try again later.',
    'UNKNOWN_ERROR': 'An unexpected error occurred. Please try again.',
}


@dataclass(frozen=True)
class AppError:
    """画面に表示するための構造化されたエラー"""
    type: ErrorType
    severity: ErrorSeverity
    message: str
    retryable: bool
    details: Optional[str] = None
    source: Optional[str] = None
    id: str = field(default_factory=lambda: str(int(time.time() * 1000)))
    timestamp: datetime = field(default_factory=datetime.now)
    resolved: bool = False


@dataclass(frozen=True)
class Breadcrumb:
    """エラー発生までの操作履歴"""
    category: str  # navigation / user_action / network / state_change
    message: str
    level: str = 'info'
    data: Optional[Dict[str, Any]] = None
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass(frozen=True)
class ErrorReport:
    """シンクに渡すエラーレポート"""
    id: str
    timestamp: datetime
    error: AppError
    breadcrumbs: List[Breadcrumb]


def app_error_from_exception(error: BaseException, source: Optional[str] = None) -> AppError:
    """例外を分類してユーザー向けのAppErrorに変換"""
    details = str(error)

    if isinstance(error, WeatherAPITimeoutError):
        return AppError(ErrorType.NETWORK, ErrorSeverity.MEDIUM, WEATHER_ERROR_MESSAGES['TIMEOUT_ERROR'],
                        retryable=True, details=details, source=source)
    if isinstance(error, WeatherAPINetworkError):
        return AppError(ErrorType.NETWORK, ErrorSeverity.MEDIUM, WEATHER_ERROR_MESSAGES['NETWORK_ERROR'],
                        retryable=True, details=details, source=source)
    if isinstance(error, WeatherAPIRateLimitError):
        return AppError(ErrorType.API, ErrorSeverity.LOW, WEATHER_ERROR_MESSAGES['RATE_LIMIT'],
                        retryable=True, details=details, source=source)
    if isinstance(error, WeatherAPIServerError):
        if error.status_code is not None and error.status_code >= 500:
            return AppError(ErrorType.API, ErrorSeverity.HIGH, WEATHER_ERROR_MESSAGES['SERVER_ERROR'],
                            retryable=True, details=details, source=source)
        return AppError(ErrorType.API, ErrorSeverity.MEDIUM, WEATHER_ERROR_MESSAGES['LOCATION_ERROR'],
                        retryable=False, details=details, source=source)
    if isinstance(error, WeatherAPIInvalidResponseError):
        return AppError(ErrorType.VALIDATION, ErrorSeverity.MEDIUM, WEATHER_ERROR_MESSAGES['INVALID_RESPONSE'],
                        retryable=True, details=details, source=source)
    if isinstance(error, WeatherAPIError):
        return AppError(ErrorType.API, ErrorSeverity.MEDIUM, WEATHER_ERROR_MESSAGES['UNKNOWN_ERROR'],
                        retryable=True, details=details, source=source)
    if isinstance(error, PermissionDeniedError):
        return AppError(ErrorType.PERMISSION, ErrorSeverity.HIGH, error.message,
                        retryable=False, details=error.code, source=source)
    if isinstance(error, SearchError):
        return AppError(ErrorType.NETWORK, ErrorSeverity.LOW, error.message,
                        retryable=True, details=error.code, source=source)
    if isinstance(error, LocationError):
        return AppError(ErrorType.LOCATION, ErrorSeverity.MEDIUM, error.message,
                        retryable=isinstance(error, LocationTimeoutError) or error.code == 'UNAVAILABLE',
                        details=error.code, source=source)
    if isinstance(error, ValueError):
        return AppError(ErrorType.VALIDATION, ErrorSeverity.MEDIUM, details or WEATHER_ERROR_MESSAGES['UNKNOWN_ERROR'],
                        retryable=False, details=details, source=source)

    return AppError(ErrorType.UNKNOWN, ErrorSeverity.HIGH, WEATHER_ERROR_MESSAGES['UNKNOWN_ERROR'],
                    retryable=True, details=details, source=source)


class ErrorSink(ABC):
    """エラーとパンくずリストの保存先（外部コラボレーター）"""

    @abstractmethod
    async def append_breadcrumb(self, breadcrumb: Breadcrumb) -> None:
        """パンくずを追記する"""

    @abstractmethod
    async def report_error(self, report: ErrorReport) -> None:
        """エラーレポートを保存・送信する"""

    @abstractmethod
    async def load_breadcrumbs(self) -> List[Breadcrumb]:
        """保存済みのパンくずを読み込む"""


class LoggingErrorSink(ErrorSink):
    """ログに出力するだけのシンク"""

    async def append_breadcrumb(self, breadcrumb: Breadcrumb) -> None:
        logger.debug(f"パンくず: [{breadcrumb.category}] {breadcrumb.message}")

    async def report_error(self, report: ErrorReport) -> None:
        error = report.error
        logger.error(
            f"エラーレポート: {error.type.value}/{error.severity.value} - {error.message}",
            extra={'context': {
                'report_id': report.id,
                'source': error.source,
                'details': error.details,
                'breadcrumbs': [asdict(b) for b in report.breadcrumbs[-5:]],
            }}
        )

    async def load_breadcrumbs(self) -> List[Breadcrumb]:
        return []


class ErrorReporter:
    """パンくずリストを保持し、エラーをシンクへ報告する"""

    def __init__(self, sink: Optional[ErrorSink] = None, max_breadcrumbs: Optional[int] = None):
        self.sink = sink or LoggingErrorSink()
        self.max_breadcrumbs = max_breadcrumbs or config.MAX_BREADCRUMBS
        # 上限を超えたら古いものから捨てる
        self._breadcrumbs: Deque[Breadcrumb] = deque(maxlen=self.max_breadcrumbs)

    @property
    def breadcrumbs(self) -> List[Breadcrumb]:
        return list(self._breadcrumbs)

    async def add_breadcrumb(self, category: str, message: str, level: str = 'info',
                             data: Optional[Dict[str, Any]] = None) -> Breadcrumb:
        """パンくずを追加してシンクに追記"""
        breadcrumb = Breadcrumb(category=category, message=message, level=level, data=data)
        self._breadcrumbs.append(breadcrumb)

        try:
            await self.sink.append_breadcrumb(breadcrumb)
        except Exception as e:
            logger.error(f"パンくずの保存に失敗しました: {e}")

        return breadcrumb

    async def report_error(self, error: AppError) -> Optional[ErrorReport]:
        """
        エラーを報告

        報告自体の失敗はログに残すだけで送出しない。
        """
        report = ErrorReport(
            id=f"error_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}",
            timestamp=datetime.now(),
            error=error,
            breadcrumbs=list(self._breadcrumbs),
        )

        try:
            await self.sink.report_error(report)
        except Exception as e:
            logger.error(f"エラーの報告に失敗しました: {e}")
            return None

        return report

    async def report_exception(self, error: BaseException, source: Optional[str] = None) -> AppError:
        """例外を変換して報告し、変換後のAppErrorを返す"""
        app_error = app_error_from_exception(error, source)
        await self.report_error(app_error)
        return app_error

    async def load_breadcrumbs(self) -> List[Breadcrumb]:
        """シンクから保存済みのパンくずを読み込む"""
        try:
            stored = await self.sink.load_breadcrumbs()
        except Exception as e:
            logger.error(f"パンくずの読み込みに失敗しました: {e}")
            return self.breadcrumbs

        self._breadcrumbs.clear()
        self._breadcrumbs.extend(stored)
        return self.breadcrumbs
