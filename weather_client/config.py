"""Configuration management for the weather client."""

import os
import sys
from typing import Optional, Dict, Any, List
from pathlib import Path
from dotenv import load_dotenv

# 環境変数ファイルの読み込み
# 最初に見つかった.envファイルのみを読み込む
env_files = ['.env', '.env.local']
for env_file in env_files:
    if os.path.exists(env_file):
        load_dotenv(env_file)
        break


def _get_float_env(name: str) -> Optional[float]:
    """数値の環境変数を取得（未設定ならNone）"""
    value = os.getenv(name)
    if value is None or value == '':
        return None
    return float(value)


class Config:
    """Configuration class for the weather client."""

    # 環境設定
    ENVIRONMENT: str = os.getenv('ENVIRONMENT', 'development')

    # Open-Meteo API Configuration
    FORECAST_BASE_URL: str = os.getenv('FORECAST_BASE_URL', 'https://api.open-meteo.com/v1/forecast')
    GEOCODING_BASE_URL: str = os.getenv('GEOCODING_BASE_URL', 'https://geocoding-api.open-meteo.com/v1/search')

    # Forecast request / cache (ミリ秒)
    REQUEST_TIMEOUT_MS: int = int(os.getenv('REQUEST_TIMEOUT_MS', '15000'))
    CACHE_TTL_MS: int = int(os.getenv('CACHE_TTL_MS', '600000'))  # 10 minutes
    MAX_RETRIES: int = int(os.getenv('MAX_RETRIES', '3'))
    RETRY_DELAY_MS: int = int(os.getenv('RETRY_DELAY_MS', '1000'))

    # Refresh scheduling (ミリ秒)
    STALE_THRESHOLD_MS: int = int(os.getenv('STALE_THRESHOLD_MS', '3600000'))  # 1 hour
    AUTO_REFRESH_INTERVAL_MS: int = int(os.getenv('AUTO_REFRESH_INTERVAL_MS', '600000'))  # 10 minutes

    # Location search
    SEARCH_DEBOUNCE_MS: int = int(os.getenv('SEARCH_DEBOUNCE_MS', '300'))
    SEARCH_RESULT_COUNT: int = int(os.getenv('SEARCH_RESULT_COUNT', '10'))
    SEARCH_LANGUAGE: str = os.getenv('SEARCH_LANGUAGE', 'en')

    # Alerts
    ALERT_SWEEP_INTERVAL_MS: int = int(os.getenv('ALERT_SWEEP_INTERVAL_MS', '60000'))

    # Error reporting
    MAX_BREADCRUMBS: int = int(os.getenv('MAX_BREADCRUMBS', '50'))

    # Location defaults
    DEFAULT_TIMEZONE: str = os.getenv('DEFAULT_TIMEZONE', 'auto')
    DEFAULT_LATITUDE: Optional[float] = _get_float_env('DEFAULT_LATITUDE')
    DEFAULT_LONGITUDE: Optional[float] = _get_float_env('DEFAULT_LONGITUDE')

    # Logging Configuration
    LOG_LEVEL: str = os.getenv('LOG_LEVEL', '')
    LOG_FILE: str = os.getenv('LOG_FILE', 'weather_client.log')

    # 環境別設定
    def __init__(self):
        """環境に応じた設定を初期化"""
        self._apply_environment_settings()

    def _apply_environment_settings(self):
        """環境に応じた設定を適用"""
        if self.ENVIRONMENT == 'development':
            if not self.LOG_LEVEL:
                self.LOG_LEVEL = 'DEBUG'

        elif self.ENVIRONMENT == 'staging':
            if not self.LOG_LEVEL:
                self.LOG_LEVEL = 'INFO'

        elif self.ENVIRONMENT == 'production':
            if not self.LOG_LEVEL:
                self.LOG_LEVEL = 'WARNING'

        if not self.LOG_LEVEL:
            self.LOG_LEVEL = 'INFO'

        # ログファイルパスの調整（ディレクトリ作成はsetup_logging側で行う）
        if self.LOG_FILE and not os.path.isabs(self.LOG_FILE) and not self.LOG_FILE.startswith('logs'):
            self.LOG_FILE = str(Path('logs') / self.LOG_FILE)

    # 秒単位のアクセサ（asyncio / APSchedulerは秒で扱う）
    @property
    def request_timeout(self) -> float:
        return self.REQUEST_TIMEOUT_MS / 1000

    @property
    def cache_ttl(self) -> float:
        return self.CACHE_TTL_MS / 1000

    @property
    def retry_delay(self) -> float:
        return self.RETRY_DELAY_MS / 1000

    @property
    def stale_threshold(self) -> float:
        return self.STALE_THRESHOLD_MS / 1000

    @property
    def auto_refresh_interval(self) -> float:
        return self.AUTO_REFRESH_INTERVAL_MS / 1000

    @property
    def search_debounce(self) -> float:
        return self.SEARCH_DEBOUNCE_MS / 1000

    @property
    def alert_sweep_interval(self) -> float:
        return self.ALERT_SWEEP_INTERVAL_MS / 1000

    @classmethod
    def validate(cls) -> bool:
        """Validate configuration values."""
        config_instance = cls()
        errors: List[str] = []

        for var in ['FORECAST_BASE_URL', 'GEOCODING_BASE_URL']:
            value = getattr(config_instance, var)
            if not value or not value.startswith(('http://', 'https://')):
                errors.append(f"{var} must be an http(s) URL")

        positive_vars = [
            'REQUEST_TIMEOUT_MS', 'CACHE_TTL_MS', 'STALE_THRESHOLD_MS',
            'AUTO_REFRESH_INTERVAL_MS', 'SEARCH_DEBOUNCE_MS',
            'ALERT_SWEEP_INTERVAL_MS', 'SEARCH_RESULT_COUNT', 'MAX_BREADCRUMBS',
        ]
        for var in positive_vars:
            if getattr(config_instance, var) <= 0:
                errors.append(f"{var} must be positive")

        for var in ['MAX_RETRIES', 'RETRY_DELAY_MS']:
            if getattr(config_instance, var) < 0:
                errors.append(f"{var} must not be negative")

        if (config_instance.DEFAULT_LATITUDE is None) != (config_instance.DEFAULT_LONGITUDE is None):
            errors.append("DEFAULT_LATITUDE and DEFAULT_LONGITUDE must be set together")

        if errors:
            raise ValueError(f"Invalid configuration: {', '.join(errors)}")

        return True

    def get_environment_info(self) -> Dict[str, Any]:
        """環境情報を取得"""
        return {
            "environment": self.ENVIRONMENT,
            "python_version": f"{sys.version_info.major}.{sys.version_info.minor}.{sys.version_info.micro}",
            "log_level": self.LOG_LEVEL,
            "log_file": self.LOG_FILE,
            "timezone": self.DEFAULT_TIMEZONE
        }


# Global config instance
config = Config()
