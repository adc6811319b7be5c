"""気象アラート用のモデル定義"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum


class AlertType(Enum):
    """アラートの種類"""
    TEMPERATURE = 'temperature'
    PRECIPITATION = 'precipitation'
    WIND = 'wind'
    GENERAL = 'general'


class AlertSeverity(Enum):
    """アラートの重要度"""
    INFO = 'info'
    WARNING = 'warning'
    SEVERE = 'severe'
    EXTREME = 'extreme'


@dataclass(frozen=True)
class AlertCandidate:
    """ルール評価で生成されたアラート候補"""
    type: AlertType
    severity: AlertSeverity
    title: str
    message: str
    icon: str
    ttl: timedelta


@dataclass(frozen=True)
class ActiveAlert:
    """表示中のアラート"""
    id: str
    type: AlertType
    severity: AlertSeverity
    title: str
    message: str
    icon: str
    created_at: datetime
    expires_at: datetime

    @property
    def key(self):
        """重複判定キー（type, severity）"""
        return (self.type, self.severity)

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at <= now
