"""環境変数の統一管理モジュール。

YAML に載せない実行時フラグを EnvironmentConfig クラスで一元管理する。
デフォルト値と型変換を提供。

使用例:
    >>> from config.environment import get_env_config
    >>> env = get_env_config()
    >>> if env.dry_run:
    ...     print("転送は送信しません")
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from functools import lru_cache


def _get_bool_env(key: str, default: bool = False) -> bool:
    """環境変数をboolとして取得。"""
    val = os.environ.get(key, "").strip().lower()
    if not val:
        return default
    return val in {"1", "true", "yes", "on"}


def _get_int_env(key: str, default: int) -> int:
    """環境変数をintとして取得（変換失敗時はデフォルト）。"""
    val = os.environ.get(key, "").strip()
    if not val:
        return default
    try:
        return int(val)
    except (ValueError, TypeError):
        return default


@dataclass(frozen=True)
class EnvironmentConfig:
    compact_logs: bool = field(
        default_factory=lambda: _get_bool_env("COMPACT_LOGS", False)
    )
    """INFO ログを DEBUG に降格して簡潔にする。"""

    dry_run: bool = field(default_factory=lambda: _get_bool_env("DRY_RUN", False))
    """判定のみ行い、転送リクエストは送信しない。"""

    lock_stale_seconds: int = field(
        default_factory=lambda: _get_int_env("RUN_LOCK_STALE_SECONDS", 3600)
    )
    """これより古い実行ロックは残骸とみなして削除する。"""


@lru_cache(maxsize=1)
def get_env_config() -> EnvironmentConfig:
    """環境変数設定をシングルトンとして取得。"""
    return EnvironmentConfig()


def reset_env_config_cache() -> None:
    """os.environ を変更した後に呼び出して再読込させる。"""
    get_env_config.cache_clear()


__all__ = [
    "EnvironmentConfig",
    "get_env_config",
    "reset_env_config_cache",
]
