"""
位置情報プロバイダーのインターフェース

プラットフォームの権限・測位・逆ジオコーディングはこのインターフェース越しに扱う。
デバイスを持たない環境向けに固定値を返す実装も用意する。
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Optional

from ..models.location import Coordinate, PermissionState, PermissionStatus


class Accuracy(Enum):
    """測位精度"""
    LOW = 'low'
    BALANCED = 'balanced'
    HIGH = 'high'


@dataclass(frozen=True)
class WatchOptions:
    """連続測位のオプション"""
    accuracy: Accuracy = Accuracy.HIGH
    time_interval: float = 30.0  # 秒
    distance_interval: float = 50.0  # メートル


class PositionProviderError(Exception):
    """測位プロバイダーのエラー"""

    SERVICES_DISABLED = 'SERVICES_DISABLED'
    TIMEOUT = 'TIMEOUT'
    UNAVAILABLE = 'UNAVAILABLE'

    def __init__(self, code: str, message: str = ''):
        super().__init__(message or code)
        self.code = code


class WatchSubscription(ABC):
    """連続測位の購読ハンドル"""

    @abstractmethod
    def stop(self) -> None:
        """購読を停止する"""


class PermissionProvider(ABC):
    """位置情報の権限プロバイダー"""

    @abstractmethod
    async def request_foreground_permission(self) -> PermissionState:
        """権限をリクエストする（ユーザーにプロンプトを表示する）"""

    @abstractmethod
    async def check_foreground_permission(self) -> PermissionState:
        """現在の権限状態を取得する"""


class PositionProvider(ABC):
    """測位プロバイダー"""

    @abstractmethod
    async def get_current_position(self, accuracy: Accuracy, timeout: float, min_distance: float) -> Coordinate:
        """
        現在位置を1回取得する

        Raises:
            PositionProviderError: 測位に失敗した場合
        """

    @abstractmethod
    def watch_position(self, options: WatchOptions, on_update: Callable[[Coordinate], Any]) -> WatchSubscription:
        """連続測位を開始する。位置が更新されるたびに on_update が呼ばれる"""


class ReverseGeocoder(ABC):
    """逆ジオコーディングプロバイダー"""

    @abstractmethod
    async def reverse_geocode(self, latitude: float, longitude: float) -> Optional[Dict[str, Any]]:
        """
        座標から住所を取得する

        Returns:
            {'city', 'district', 'subregion', 'country', 'region'} のいずれかを含む辞書、
            見つからない場合はNone
        """


class StaticPermissionProvider(PermissionProvider):
    """固定の権限状態を返すプロバイダー"""

    def __init__(self, status: PermissionStatus = PermissionStatus.GRANTED, can_ask_again: bool = True):
        self.state = PermissionState(status=status, can_ask_again=can_ask_again)

    async def request_foreground_permission(self) -> PermissionState:
        return self.state

    async def check_foreground_permission(self) -> PermissionState:
        return self.state


class _NoopSubscription(WatchSubscription):
    def __init__(self):
        self.stopped = False

    def stop(self) -> None:
        self.stopped = True


class StaticPositionProvider(PositionProvider):
    """固定座標を返すプロバイダー（設定の DEFAULT_LATITUDE / DEFAULT_LONGITUDE 用）"""

    def __init__(self, coordinate: Optional[Coordinate]):
        self.coordinate = coordinate

    async def get_current_position(self, accuracy: Accuracy, timeout: float, min_distance: float) -> Coordinate:
        if self.coordinate is None:
            raise PositionProviderError(PositionProviderError.UNAVAILABLE, "No fixed position configured")
        return self.coordinate

    def watch_position(self, options: WatchOptions, on_update: Callable[[Coordinate], Any]) -> WatchSubscription:
        # 位置は変化しないため、最初の1回だけ通知する
        if self.coordinate is not None:
            on_update(self.coordinate)
        return _NoopSubscription()


class NullReverseGeocoder(ReverseGeocoder):
    """常に結果なしを返す逆ジオコーダー"""

    async def reverse_geocode(self, latitude: float, longitude: float) -> Optional[Dict[str, Any]]:
        return None
