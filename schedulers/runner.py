"""Fixed-interval scheduler for the resource balancer.

Supports a minimal subset of cron: "m h * * d" with ``*``, lists, ranges and
``*/n`` steps. Day-of-month and month must be ``*``.
"""

from __future__ import annotations

import argparse
from collections.abc import Callable
from datetime import datetime
import logging
from pathlib import Path
import sys
import time
from typing import Literal
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from common.api_client import VillageApiClient
from common.exceptions import AuthError, ConfigError
from common.logging_utils import setup_logging
from common.run_lock import RunLock
from config.environment import get_env_config
from config.settings import Settings, load_settings
from core.coordinator import BalanceCoordinator, RunReport

Field = tuple[int, ...] | Literal["*"]


def parse_cron(cron: str) -> Callable[[datetime], bool]:
    """Parse a very small subset of cron: "m h * * dow".
    - minute: 0-59, "*" or "*/n"
    - hour: 0-23, "*" or "*/n"
    - dow: 0-7, list (e.g., 1-5), comma-separated, or "*". 0/7 = Sunday.
    Returns a predicate function (dt: datetime) -> bool
    """
    parts = cron.split()
    if len(parts) != 5:
        raise ValueError(f"Unsupported cron format: {cron}")
    m_s, h_s, dom_s, mon_s, d_s = parts
    if dom_s != "*" or mon_s != "*":
        raise ValueError(f"Day-of-month/month fields are not supported: {cron}")

    def parse_field(val: str, min_v: int, max_v: int) -> Field:
        val = val.strip()
        if val == "*":
            return "*"
        vals: set[int] = set()
        for tok in val.split(","):
            tok = tok.strip()
            if tok.startswith("*/"):
                step = int(tok[2:])
                if step <= 0:
                    raise ValueError(f"Invalid step in cron field: {tok}")
                vals.update(range(min_v, max_v + 1, step))
            elif "-" in tok:
                a, b = tok.split("-", 1)
                vals.update(range(int(a), int(b) + 1))
            else:
                vals.add(int(tok))
        return tuple(sorted(v for v in vals if min_v <= v <= max_v))

    m_val = parse_field(m_s, 0, 59)
    h_val = parse_field(h_s, 0, 23)
    d_val = parse_field(d_s, 0, 7)

    def _match(value: int, allowed: Field) -> bool:
        if allowed == "*":
            return True
        return value in allowed

    def pred(dt: datetime) -> bool:
        dow = dt.weekday() + 1  # Monday=1 ... Sunday=7
        if not _match(dt.minute, m_val):
            return False
        if not _match(dt.hour, h_val):
            return False
        return _match(dow, d_val) or (dow == 7 and _match(0, d_val))

    return pred


def run_balance(settings: Settings, *, client: VillageApiClient | None = None) -> RunReport | None:
    """ロック付きで 1 回分の再配分を実行する。

    実行中の別ランがあればスキップして None を返す（キューイングはしない）。
    """
    lock = RunLock(
        settings.lock.name,
        lock_dir=settings.lock.dir,
        stale_seconds=get_env_config().lock_stale_seconds,
    )
    if not lock.try_acquire():
        logging.warning("前回の再配分がまだ実行中のためスキップします (%s)", lock.lock_path)
        return None
    try:
        logging.info("Transfer them resources! %s", datetime.now().isoformat())
        client = client or VillageApiClient.from_settings(settings)
        report = BalanceCoordinator.from_settings(client, settings).run()
        logging.info("Done transferring them resources! %s", datetime.now().isoformat())
        return report
    finally:
        lock.release()


def task_balance_resources(config_path: Path | None = None) -> None:
    # 設定は毎回読み直す（実行中に config.yaml を編集できるように）
    run_balance(load_settings(config_path, create_dirs=True))


def _resolve_tz(tz_name: str) -> ZoneInfo | None:
    try:
        return ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError):
        logging.warning("未知のタイムゾーン '%s'、ローカル時刻を使用します", tz_name)
        return None


def serve(settings: Settings, task: Callable[[], None] | None = None) -> int:
    """cron に一致した分ごとにタスクを起動するポーリングループ。"""
    func = task or (lambda: task_balance_resources(settings.CONFIG_PATH))
    tz = _resolve_tz(settings.scheduler.timezone)
    try:
        pred = parse_cron(settings.scheduler.cron)
    except ValueError as e:
        logging.error("cron 解析失敗 (%s): %s", settings.scheduler.cron, e)
        return 1

    logging.info("スケジューラー開始 (%s)", settings.scheduler.cron)
    last_minute = None
    try:
        while True:
            now = datetime.now(tz) if tz is not None else datetime.now()
            # 1分に1回だけ起動判定
            minute_key = (now.year, now.month, now.day, now.hour, now.minute)
            if last_minute != minute_key:
                last_minute = minute_key
                if pred(now):
                    try:
                        func()
                    except Exception:
                        logging.exception("balance_resources タスクが失敗しました")
            time.sleep(30)
    except KeyboardInterrupt:
        logging.info("スケジューラー停止")
        return 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Village resource balancer")
    parser.add_argument("--once", action="store_true", help="1 回だけ実行して終了")
    parser.add_argument("--config", default=None, help="設定ファイルのパス (既定: config/config.yaml)")
    args = parser.parse_args(argv)

    try:
        settings = load_settings(args.config, create_dirs=True)
    except ConfigError as e:
        logging.basicConfig(level=logging.INFO)
        logging.error("%s", e)
        return 1
    setup_logging(settings)

    if not args.once:
        return serve(settings)

    try:
        report = run_balance(settings)
    except (ConfigError, AuthError) as e:
        logging.error("再配分を中断しました: %s", e)
        return 1
    except Exception:
        logging.exception("再配分が失敗しました")
        return 1
    return 0 if report is None or not report.errors else 2


if __name__ == "__main__":
    sys.exit(main())
