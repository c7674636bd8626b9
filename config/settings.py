from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv

from common.exceptions import ConfigError
from config.schemas import AppConfigModel, validate_config_dict
from core.models import RouteConfig

# プロジェクトルート推定
PROJECT_ROOT = Path(__file__).resolve().parents[1]

# .env を読み込み（存在すれば）
load_dotenv(dotenv_path=PROJECT_ROOT / ".env", override=False)


# -----------------------------
# Dataclasses (セクション別)
# -----------------------------
@dataclass(frozen=True)
class AccountConfig:
    username: str
    password: str = ""

    def __repr__(self) -> str:
        # パスワードをログに出さない
        return f"AccountConfig(username={self.username!r}, password='***')"


@dataclass(frozen=True)
class ApiConfig:
    base_url: str = "https://pintandpillage.nl/api"
    request_timeout: float = 10.0
    verify_ssl: bool = True
    max_workers: int = 8
    facility_name: str = "Market"


@dataclass(frozen=True)
class LoggingConfig:
    level: str = "INFO"
    rotation: str = "daily"
    filename: str = "balancer.log"


@dataclass(frozen=True)
class SchedulerConfig:
    timezone: str = "Europe/Amsterdam"
    cron: str = "*/15 * * * *"


@dataclass(frozen=True)
class LockConfig:
    name: str = "balance_resources"
    dir: Path = Path("locks")


@dataclass(frozen=True)
class Settings:
    """アプリ全体で共有する設定値（YAML + .env を統合）
    優先度: .env > YAML > 既定値
    create_dirs=True でログ・ロック用ディレクトリを作成
    """

    PROJECT_ROOT: Path
    CONFIG_PATH: Path
    LOGS_DIR: Path

    account: AccountConfig
    api: ApiConfig
    logging: LoggingConfig
    scheduler: SchedulerConfig
    lock: LockConfig
    routes: tuple[RouteConfig, ...]


# -----------------------------
# 内部ユーティリティ
# -----------------------------


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw.strip())
    except ValueError:
        raise ConfigError(f"{name} は整数で指定してください: {raw!r}") from None


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw.strip())
    except ValueError:
        raise ConfigError(f"{name} は数値で指定してください: {raw!r}") from None


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _as_path(base: Path, p: str | os.PathLike) -> Path:
    pth = Path(p)
    return pth if pth.is_absolute() else (base / pth)


def _config_path(project_root: Path) -> Path:
    cfg_path_env = os.getenv("APP_CONFIG", "")
    return Path(cfg_path_env) if cfg_path_env else project_root / "config" / "config.yaml"


def _load_config_file(path: Path) -> dict[str, Any]:
    """YAML/JSON を拡張子で判別して辞書として返す。失敗は ConfigError。"""
    if not path.exists():
        raise ConfigError(f"設定ファイルが見つかりません: {path}")
    try:
        with path.open("r", encoding="utf-8") as f:
            if path.suffix.lower() == ".json":
                data = json.load(f)
            else:
                data = yaml.safe_load(f)
    except (OSError, json.JSONDecodeError, yaml.YAMLError) as e:
        raise ConfigError(f"設定ファイルを読み込めません: {path}: {e}") from e
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigError(f"設定ファイルの最上位はマッピングである必要があります: {path}")
    return data


# -----------------------------
# 設定構築ヘルパー
# -----------------------------


def _build_account_config(model: AppConfigModel) -> AccountConfig:
    username = os.getenv("BALANCER_USERNAME") or model.username
    password = os.getenv("BALANCER_PASSWORD") or model.password
    if not username or not password:
        raise ConfigError(
            "username/password が設定されていません（config.yaml または BALANCER_USERNAME/BALANCER_PASSWORD）"
        )
    return AccountConfig(username=username, password=password)


def _build_api_config(model: AppConfigModel) -> ApiConfig:
    api = model.api
    return ApiConfig(
        base_url=str(os.getenv("BALANCER_API_BASE", api.base_url)).rstrip("/"),
        request_timeout=_env_float("REQUEST_TIMEOUT", api.request_timeout),
        verify_ssl=_env_bool("VERIFY_SSL", api.verify_ssl),
        max_workers=max(1, _env_int("THREADS_DEFAULT", api.max_workers)),
        facility_name=api.facility_name,
    )


def _build_logging_config(model: AppConfigModel) -> LoggingConfig:
    return LoggingConfig(
        level=str(os.getenv("LOG_LEVEL", model.logging.level)).upper(),
        rotation=model.logging.rotation,
        filename=str(os.getenv("LOG_FILENAME", model.logging.filename)),
    )


def _build_scheduler_config(model: AppConfigModel) -> SchedulerConfig:
    return SchedulerConfig(
        timezone=model.scheduler.timezone,
        cron=str(os.getenv("BALANCE_CRON", model.scheduler.cron)),
    )


def _build_routes(model: AppConfigModel) -> tuple[RouteConfig, ...]:
    return tuple(
        RouteConfig(
            from_node=r.from_node,
            to_node=r.to_node,
            resource_type=r.resource_type,
            limit=r.limit,
            threshold=r.threshold,
        )
        for r in model.routes
    )


# -----------------------------
# 公開 API
# -----------------------------


def load_settings(path: Path | str | None = None, create_dirs: bool = False) -> Settings:
    """設定ファイルを読み込み、検証して Settings を返す。"""
    root = PROJECT_ROOT
    cfg_path = Path(path) if path is not None else _config_path(root)
    model = validate_config_dict(_load_config_file(cfg_path))

    settings = Settings(
        PROJECT_ROOT=root,
        CONFIG_PATH=cfg_path,
        LOGS_DIR=_as_path(root, os.getenv("LOGS_DIR", model.logging.logs_dir)),
        account=_build_account_config(model),
        api=_build_api_config(model),
        logging=_build_logging_config(model),
        scheduler=_build_scheduler_config(model),
        lock=LockConfig(
            name=model.lock.name,
            dir=_as_path(root, os.getenv("RUN_LOCK_DIR", model.lock.dir)),
        ),
        routes=_build_routes(model),
    )

    if create_dirs:
        for p in (settings.LOGS_DIR, settings.lock.dir):
            Path(p).mkdir(parents=True, exist_ok=True)

    return settings


__all__ = [
    "Settings",
    "AccountConfig",
    "ApiConfig",
    "LoggingConfig",
    "SchedulerConfig",
    "LockConfig",
    "PROJECT_ROOT",
    "load_settings",
]
