import os
import time
from pathlib import Path

from common.run_lock import RunLock


def test_try_acquire_is_non_reentrant(tmp_path: Path) -> None:
    rl = RunLock("testlock", lock_dir=tmp_path)
    assert rl.try_acquire() is True
    assert (tmp_path / "testlock.lock").exists()
    assert (tmp_path / "testlock.lock" / "owner.json").exists()

    # 同じインスタンスでも別インスタンスでも二重取得できない
    assert rl.try_acquire() is False
    assert RunLock("testlock", lock_dir=tmp_path).try_acquire() is False

    rl.release()
    assert not (tmp_path / "testlock.lock").exists()
    assert RunLock("testlock", lock_dir=tmp_path).try_acquire() is True


def test_release_without_acquire_keeps_foreign_lock(tmp_path: Path) -> None:
    holder = RunLock("busy", lock_dir=tmp_path)
    assert holder.try_acquire()
    other = RunLock("busy", lock_dir=tmp_path)
    assert other.try_acquire() is False
    other.release()
    assert (tmp_path / "busy.lock").exists()
    holder.release()


def test_stale_lock_removal(tmp_path: Path) -> None:
    lock_path = tmp_path / "stalelock.lock"
    lock_path.mkdir(parents=True)
    old_time = time.time() - 3600 * 24
    os.utime(lock_path, (old_time, old_time))

    rl = RunLock("stalelock", lock_dir=tmp_path, stale_seconds=1)
    assert rl.try_acquire() is True
    rl.release()


def test_fresh_lock_is_not_stale(tmp_path: Path) -> None:
    (tmp_path / "fresh.lock").mkdir(parents=True)
    assert RunLock("fresh", lock_dir=tmp_path, stale_seconds=3600).try_acquire() is False
