"""Logging configuration for the weather client."""

import logging
import logging.handlers
import sys
import json
from datetime import datetime
from pathlib import Path
from typing import Optional

from ..config import Config, config as default_config

LOGGER_NAME = "weather_client"


class JSONFormatter(logging.Formatter):
    """JSON形式のログフォーマッター"""

    def format(self, record):
        """ログレコードをJSON形式に変換"""
        log_data = {
            'timestamp': datetime.fromtimestamp(record.created).isoformat(),
            'level': record.levelname,
            'message': record.getMessage(),
            'logger': record.name,
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno,
        }

        # 例外情報があれば追加
        if record.exc_info:
            log_data['exception'] = {
                'type': record.exc_info[0].__name__,
                'message': str(record.exc_info[1]),
            }

        # 追加のコンテキスト情報があれば追加
        if hasattr(record, 'context') and record.context:
            log_data['context'] = record.context

        return json.dumps(log_data, ensure_ascii=False, default=str)


def setup_logging(cfg: Optional[Config] = None, log_to_file: bool = True) -> logging.Logger:
    """
    weather_clientロガーを設定する

    アプリケーション起動時に一度だけ呼び出す。各モジュールは
    logging.getLogger(__name__) を使うため、このロガーの子として出力される。

    Args:
        cfg: 設定（省略時はグローバル設定）
        log_to_file: ファイルハンドラーを追加するかどうか

    Returns:
        設定済みのロガー
    """
    cfg = cfg or default_config

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(getattr(logging, cfg.LOG_LEVEL.upper(), logging.INFO))

    # Clear existing handlers
    logger.handlers.clear()

    # 環境に応じたフォーマッターを選択
    if cfg.ENVIRONMENT == 'production':
        # 本番環境ではJSON形式
        detailed_formatter = JSONFormatter()
        simple_formatter = logging.Formatter(
            '%(asctime)s - %(levelname)s - %(message)s'
        )
    else:
        # 開発環境では読みやすいテキスト形式
        detailed_formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(filename)s:%(lineno)d - %(message)s'
        )
        simple_formatter = logging.Formatter(
            '%(asctime)s - %(levelname)s - %(message)s'
        )

    # Console handler
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(logging.INFO)
    console_handler.setFormatter(simple_formatter)
    logger.addHandler(console_handler)

    if log_to_file:
        file_path = Path(cfg.LOG_FILE)
        file_path.parent.mkdir(parents=True, exist_ok=True)

        # File handler with rotation
        file_handler = logging.handlers.RotatingFileHandler(
            file_path,
            maxBytes=10 * 1024 * 1024,  # 10MB
            backupCount=5,
            encoding='utf-8'
        )
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(detailed_formatter)
        logger.addHandler(file_handler)

        # Error file handler
        error_handler = logging.handlers.RotatingFileHandler(
            file_path.parent / "error.log",
            maxBytes=10 * 1024 * 1024,  # 10MB
            backupCount=5,
            encoding='utf-8'
        )
        error_handler.setLevel(logging.ERROR)
        error_handler.setFormatter(detailed_formatter)
        logger.addHandler(error_handler)

    logger.info(f"ログシステムを初期化しました - 環境: {cfg.ENVIRONMENT}, レベル: {cfg.LOG_LEVEL}")

    return logger


class ContextLogger:
    """コンテキスト情報付きのロガー"""

    def __init__(self, logger, context=None):
        self.logger = logger
        self.context = context or {}

    def _log_with_context(self, level, msg, *args, **kwargs):
        """コンテキスト情報を付加してログを記録"""
        if kwargs.get('extra') is None:
            kwargs['extra'] = {}
        kwargs['extra']['context'] = self.context
        getattr(self.logger, level)(msg, *args, **kwargs)

    def debug(self, msg, *args, **kwargs):
        self._log_with_context('debug', msg, *args, **kwargs)

    def info(self, msg, *args, **kwargs):
        self._log_with_context('info', msg, *args, **kwargs)

    def warning(self, msg, *args, **kwargs):
        self._log_with_context('warning', msg, *args, **kwargs)

    def error(self, msg, *args, **kwargs):
        self._log_with_context('error', msg, *args, **kwargs)

    def with_context(self, **context):
        """新しいコンテキスト情報を追加したロガーを返す"""
        new_context = {**self.context, **context}
        return ContextLogger(self.logger, new_context)
