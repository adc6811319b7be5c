"""
気象アラートサービス

スナップショットをしきい値ルールで評価し、重複を除いたアラートを管理する。
期限切れのアラートはAPSchedulerの定期ジョブで削除する。
"""

import logging
import time
import uuid
from datetime import datetime, timedelta
from typing import Callable, List, Optional, Sequence, Tuple

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from ..config import config
from ..models.alert import ActiveAlert, AlertCandidate, AlertSeverity, AlertType
from ..models.weather import ForecastSnapshot

logger = logging.getLogger(__name__)

AlertRule = Callable[[ForecastSnapshot], List[AlertCandidate]]

SWEEP_JOB_ID = 'alert_expiry_sweep'


def temperature_rule(snapshot: ForecastSnapshot) -> List[AlertCandidate]:
    """気温アラート（最も強い1段階のみ）"""
    temperature = snapshot.current.temperature
    if temperature is None:
        return []

    if temperature <= -10:
        return [AlertCandidate(
            type=AlertType.TEMPERATURE,
            severity=AlertSeverity.SEVERE,
            title='Extreme Cold Warning',
            message=f'Temperature is {temperature}°C. Bundle up and limit outdoor exposure.',
            icon='🥶',
            ttl=timedelta(hours=3),
        )]
    if temperature <= 0:
        return [AlertCandidate(
            type=AlertType.TEMPERATURE,
            severity=AlertSeverity.WARNING,
            title='Freezing Temperature',
            message=f'Temperature is at freezing point ({temperature}°C). Watch for ice.',
            icon='🧊',
            ttl=timedelta(hours=2),
        )]
    if temperature >= 35:
        return [AlertCandidate(
            type=AlertType.TEMPERATURE,
            severity=AlertSeverity.SEVERE,
            title='Extreme Heat Warning',
            message=f'Temperature is {temperature}°C. Stay hydrated and seek shade.',
            icon='🔥',
            ttl=timedelta(hours=4),
        )]
    if temperature >= 30:
        return [AlertCandidate(
            type=AlertType.TEMPERATURE,
            severity=AlertSeverity.WARNING,
            title='High Temperature Alert',
            message=f'Temperature is {temperature}°C. Stay cool and drink plenty of water.',
            icon='☀️',
            ttl=timedelta(hours=3),
        )]
    return []


def wind_rule(snapshot: ForecastSnapshot) -> List[AlertCandidate]:
    """風速アラート（km/h）"""
    wind_speed = snapshot.current.wind_speed
    if wind_speed is None:
        return []

    if wind_speed >= 80:
        return [AlertCandidate(
            type=AlertType.WIND,
            severity=AlertSeverity.EXTREME,
            title='Extreme Wind Warning',
            message=f'Wind speed is {wind_speed} km/h. Avoid outdoor activities.',
            icon='🌪️',
            ttl=timedelta(hours=6),
        )]
    if wind_speed >= 60:
        return [AlertCandidate(
            type=AlertType.WIND,
            severity=AlertSeverity.SEVERE,
            title='High Wind Alert',
            message=f'Strong winds at {wind_speed} km/h. Secure loose objects.',
            icon='💨',
            ttl=timedelta(hours=4),
        )]
    if wind_speed >= 40:
        return [AlertCandidate(
            type=AlertType.WIND,
            severity=AlertSeverity.WARNING,
            title='Windy Conditions',
            message=f'Moderate winds at {wind_speed} km/h. Be cautious outdoors.',
            icon='🍃',
            ttl=timedelta(hours=2),
        )]
    return []


def precipitation_rule(snapshot: ForecastSnapshot) -> List[AlertCandidate]:
    """次の1時間の降水確率アラート"""
    if not snapshot.hourly:
        return []

    probability = snapshot.hourly[0].precipitation_probability
    if probability is None or probability < 80:
        return []

    return [AlertCandidate(
        type=AlertType.PRECIPITATION,
        severity=AlertSeverity.INFO,
        title='Rain Expected',
        message=f'{probability:g}% chance of rain in the next hour.',
        icon='🌧️',
        ttl=timedelta(hours=1),
    )]


def condition_rule(snapshot: ForecastSnapshot) -> List[AlertCandidate]:
    """天気の説明に基づくアラート（雷雨を優先）"""
    description = (snapshot.current.description or '').lower()

    if 'thunderstorm' in description:
        return [AlertCandidate(
            type=AlertType.GENERAL,
            severity=AlertSeverity.SEVERE,
            title='Thunderstorm Alert',
            message='Thunderstorm conditions detected. Seek indoor shelter.',
            icon='⛈️',
            ttl=timedelta(hours=2),
        )]
    if 'snow' in description:
        return [AlertCandidate(
            type=AlertType.PRECIPITATION,
            severity=AlertSeverity.WARNING,
            title='Snow Conditions',
            message='Snow is falling. Drive carefully and dress warmly.',
            icon='❄️',
            ttl=timedelta(hours=3),
        )]
    return []


DEFAULT_RULES: Tuple[AlertRule, ...] = (temperature_rule, wind_rule, precipitation_rule, condition_rule)


def generate_alert_id() -> str:
    return f"alert_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"


class AlertRuleEngine:
    """アラートの評価と保持を行うサービス"""

    def __init__(
        self,
        rules: Sequence[AlertRule] = DEFAULT_RULES,
        sweep_interval: Optional[float] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        """
        AlertRuleEngineの初期化

        Args:
            rules: 評価するルール
            sweep_interval: 期限切れ削除の間隔（秒）
            clock: 現在時刻を返す関数
        """
        self.rules = tuple(rules)
        self.sweep_interval = sweep_interval if sweep_interval is not None else config.alert_sweep_interval
        self._clock = clock

        # 新しいものが先頭。(type, severity) ごとに最大1件
        self._alerts: List[ActiveAlert] = []
        self._scheduler: Optional[AsyncIOScheduler] = None

    @property
    def active_alerts(self) -> Tuple[ActiveAlert, ...]:
        return tuple(self._alerts)

    def evaluate(self, snapshot: ForecastSnapshot) -> List[AlertCandidate]:
        """
        スナップショットを全ルールで評価

        不正なスナップショットでは候補を返さないだけで、例外は送出しない。
        """
        candidates: List[AlertCandidate] = []
        for rule in self.rules:
            try:
                candidates.extend(rule(snapshot))
            except (AttributeError, TypeError, ValueError) as e:
                logger.warning(f"アラートルールの評価をスキップしました: {getattr(rule, '__name__', rule)} - {e}")
        return candidates

    def add_alert(self, candidate: AlertCandidate) -> ActiveAlert:
        """
        アラートを追加（同じ type, severity があれば置き換え）

        置き換えの場合はIDと並び位置を保ったまま内容と時刻を更新する。

        Returns:
            追加または更新されたアラート
        """
        now = self._clock()

        for index, existing in enumerate(self._alerts):
            if existing.key == (candidate.type, candidate.severity):
                updated = ActiveAlert(
                    id=existing.id,
                    type=candidate.type,
                    severity=candidate.severity,
                    title=candidate.title,
                    message=candidate.message,
                    icon=candidate.icon,
                    created_at=now,
                    expires_at=now + candidate.ttl,
                )
                self._alerts[index] = updated
                logger.debug(f"アラートを更新しました: {updated.type.value}/{updated.severity.value}")
                return updated

        alert = ActiveAlert(
            id=generate_alert_id(),
            type=candidate.type,
            severity=candidate.severity,
            title=candidate.title,
            message=candidate.message,
            icon=candidate.icon,
            created_at=now,
            expires_at=now + candidate.ttl,
        )
        self._alerts.insert(0, alert)
        logger.info(f"アラートを追加しました: {alert.title} ({alert.severity.value})")
        return alert

    def process(self, snapshot: ForecastSnapshot) -> Tuple[ActiveAlert, ...]:
        """スナップショットを評価してアラートを更新し、現在のアラートを返す"""
        for candidate in self.evaluate(snapshot):
            self.add_alert(candidate)
        return self.active_alerts

    def dismiss(self, alert_id: str) -> bool:
        """アラートを削除（期限に関係なく）"""
        before = len(self._alerts)
        self._alerts = [alert for alert in self._alerts if alert.id != alert_id]
        return len(self._alerts) < before

    def clear_all(self) -> None:
        self._alerts = []

    def sweep_expired(self) -> int:
        """
        期限切れのアラートを削除

        Returns:
            削除した件数
        """
        now = self._clock()
        remaining = [alert for alert in self._alerts if not alert.is_expired(now)]
        removed = len(self._alerts) - len(remaining)
        self._alerts = remaining
        if removed:
            logger.info(f"期限切れのアラートを削除しました: {removed}件")
        return removed

    async def _sweep_job(self) -> None:
        """スケジューラーから呼ばれる期限切れ削除（イベントループ上で実行）"""
        self.sweep_expired()

    def start(self, scheduler: AsyncIOScheduler) -> None:
        """期限切れ削除ジョブをスケジューラーに登録"""
        self._scheduler = scheduler
        scheduler.add_job(
            func=self._sweep_job,
            trigger=IntervalTrigger(seconds=self.sweep_interval),
            id=SWEEP_JOB_ID,
            name='Alert expiry sweep',
            replace_existing=True,
        )
        logger.info(f"アラートの期限切れ削除を {self.sweep_interval}秒間隔でスケジュールしました")

    def stop(self) -> None:
        """期限切れ削除ジョブを解除"""
        if self._scheduler is not None and self._scheduler.get_job(SWEEP_JOB_ID):
            self._scheduler.remove_job(SWEEP_JOB_ID)
        self._scheduler = None
