"""Non-reentrant run lock that keeps balancing runs from overlapping.

Atomic directory creation is the lock primitive, so the guard also holds
across processes (two schedulers pointed at the same lock directory).

Usage:
    from common.run_lock import RunLock

    lock = RunLock("balance_resources", lock_dir=settings.lock.dir)
    if not lock.try_acquire():
        return  # a run is already in progress
    try:
        ...
    finally:
        lock.release()

A lock whose directory is older than ``stale_seconds`` is treated as left
over from a crashed run and removed.
"""

from __future__ import annotations

import json
import os
from pathlib import Path
import shutil
import time


class RunLock:
    def __init__(
        self,
        name: str = "balance_resources",
        lock_dir: Path | str = "locks",
        stale_seconds: int | None = 3600,
    ) -> None:
        self.name = str(name)
        self.stale_seconds = stale_seconds
        self.locks_dir = Path(lock_dir)
        self.lock_path = self.locks_dir / f"{self.name}.lock"
        self._acquired = False

    def _clear_if_stale(self) -> None:
        if not self.stale_seconds:
            return
        try:
            age = time.time() - self.lock_path.stat().st_mtime
        except FileNotFoundError:
            return
        if age > float(self.stale_seconds):
            shutil.rmtree(self.lock_path, ignore_errors=True)

    def try_acquire(self) -> bool:
        """ロックを 1 回だけ試行する。取得できなければ False。"""
        if self._acquired:
            # 同一インスタンスでも再入はさせない
            return False
        self.locks_dir.mkdir(parents=True, exist_ok=True)
        self._clear_if_stale()
        try:
            os.mkdir(self.lock_path)
        except FileExistsError:
            return False
        # 診断用メタデータ（失敗しても致命的ではない）
        try:
            (self.lock_path / "owner.json").write_text(
                json.dumps({"pid": os.getpid(), "time": time.time()}), encoding="utf-8"
            )
        except OSError:
            pass
        self._acquired = True
        return True

    def release(self) -> None:
        if not self._acquired:
            return
        shutil.rmtree(self.lock_path, ignore_errors=True)
        self._acquired = False
