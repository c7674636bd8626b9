import logging
import logging.handlers
from pathlib import Path
from typing import Any

from config.settings import Settings


class SystemLogger:
    """コンポーネント名とコンテキスト付きの統一ロガー。

    使用例:
        >>> from common.logging_utils import SystemLogger
        >>> sys_logger = SystemLogger.create("Coordinator")
        >>> sys_logger.info("Run finished", executed=2, failed=0)

    Args:
        system_name: コンポーネント名（例: "Coordinator"）
        logger: Python標準のloggerインスタンス
        compact_mode: コンパクトモード（INFO を DEBUG に降格）
    """

    def __init__(
        self,
        system_name: str,
        logger: logging.Logger | None = None,
        compact_mode: bool = False,
    ):
        self.system_name = system_name
        self.logger = logger or logging.getLogger(__name__)
        self.compact_mode = compact_mode

    @classmethod
    def create(cls, system_name: str, logger: logging.Logger | None = None) -> "SystemLogger":
        """COMPACT_LOGS 環境変数を考慮して SystemLogger を作成"""
        from config.environment import get_env_config

        env = get_env_config()
        return cls(system_name=system_name, logger=logger, compact_mode=env.compact_logs)

    def _format_message(self, message: str, **context: Any) -> str:
        if not context:
            return f"{self.system_name}: {message}"
        context_str = ", ".join(f"{k}={v}" for k, v in context.items())
        return f"{self.system_name}: {message} ({context_str})"

    def log(self, level: int, message: str, **context: Any) -> None:
        self.logger.log(level, self._format_message(message, **context))

    def debug(self, message: str, **context: Any) -> None:
        self.log(logging.DEBUG, message, **context)

    def info(self, message: str, **context: Any) -> None:
        """INFOレベルのログ出力（compact_mode ではDEBUGに降格）"""
        level = logging.DEBUG if self.compact_mode else logging.INFO
        self.log(level, message, **context)

    def exception(self, message: str, **context: Any) -> None:
        """例外情報付きのERRORレベルログ出力"""
        self.logger.error(self._format_message(message, **context), exc_info=True)


def _parse_size(rotation: str) -> int:
    """"10 MB" -> 10485760。解釈できなければ 10MB。"""
    try:
        parts = rotation.split()
        num = float(parts[0])
        unit = parts[1].lower() if len(parts) > 1 else "b"
    except (IndexError, ValueError):
        return 10 * 1024 * 1024
    mult = 1
    if unit.startswith("k"):
        mult = 1024
    elif unit.startswith("m"):
        mult = 1024 * 1024
    elif unit.startswith("g"):
        mult = 1024 * 1024 * 1024
    return int(num * mult)


def setup_logging(settings: Settings) -> logging.Logger:
    """ロギング設定を標準 logging で初期化して root ロガーを返す。
    - 日次ローテーション: rotation == "daily"
    - それ以外: サイズローテーション（例: "10 MB"）
    """
    level = getattr(logging, settings.logging.level.upper(), logging.INFO)
    log_dir = Path(settings.LOGS_DIR)
    log_dir.mkdir(parents=True, exist_ok=True)
    log_path = log_dir / settings.logging.filename

    logger = logging.getLogger()
    logger.setLevel(level)

    # 既存ハンドラをクリア
    for h in list(logger.handlers):
        logger.removeHandler(h)

    fmt = logging.Formatter(
        fmt="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    rotation = settings.logging.rotation.lower()
    handler: logging.handlers.TimedRotatingFileHandler | logging.handlers.RotatingFileHandler
    if rotation == "daily":
        handler = logging.handlers.TimedRotatingFileHandler(
            filename=str(log_path), when="midnight", backupCount=7, encoding="utf-8"
        )
    else:
        handler = logging.handlers.RotatingFileHandler(
            filename=str(log_path),
            maxBytes=_parse_size(rotation),
            backupCount=5,
            encoding="utf-8",
        )

    handler.setFormatter(fmt)
    logger.addHandler(handler)

    # コンソールにも出す
    sh = logging.StreamHandler()
    sh.setLevel(level)
    sh.setFormatter(fmt)
    logger.addHandler(sh)

    logger.debug("Logging initialized")
    return logger
