from __future__ import annotations

from collections.abc import Callable, Iterable
from concurrent.futures import ThreadPoolExecutor, as_completed
import logging
from typing import Any


# エラーコード体系
class ErrorCode:
    """構造化エラーコード体系。"""

    # 設定・認証
    CONFIG_INVALID = "CFG001E"
    AUTH_FAILED = "AUT001E"

    # 通信
    API_REQUEST_FAILED = "NET001E"
    API_PAYLOAD_INVALID = "NET002E"

    # ルート単位
    NODE_NOT_FOUND = "NOD001W"
    FACILITY_MISSING = "FAC001W"
    TRANSFER_REJECTED = "TRF001E"


class BalancerError(Exception):
    """プロジェクト共通の上位例外。"""

    code: str = ErrorCode.API_REQUEST_FAILED


class ConfigError(BalancerError):
    """設定ファイルの欠落・不正。実行全体を中断する。"""

    code = ErrorCode.CONFIG_INVALID


class AuthError(BalancerError):
    """ログイン失敗。実行全体を中断する。"""

    code = ErrorCode.AUTH_FAILED


class ApiError(BalancerError):
    """リモート API 呼び出しの失敗。"""

    code = ErrorCode.API_REQUEST_FAILED

    def __init__(self, message: str, status_code: int | None = None):
        self.message = message
        self.status_code = status_code
        super().__init__(message)


class PayloadError(ApiError):
    """レスポンス JSON が想定の形をしていない。"""

    code = ErrorCode.API_PAYLOAD_INVALID


class TransferError(ApiError):
    """転送リクエストがリモート側で拒否された。"""

    code = ErrorCode.TRANSFER_REJECTED


class NodeLookupError(BalancerError):
    """ルートが参照する村がディレクトリに存在しない。"""

    code = ErrorCode.NODE_NOT_FOUND


class FacilityMissingError(BalancerError):
    """送信側の村に輸送施設 (Market) が無い。"""

    code = ErrorCode.FACILITY_MISSING


def log_with_code(
    logger: logging.Logger,
    level: int,
    code: str,
    message: str,
    details: dict[str, Any] | None = None,
) -> None:
    """エラーコード付きでログを出力。"""
    formatted_msg = f"[{code}] {message}"
    if details:
        formatted_msg += f" | Details: {details}"
    logger.log(level, formatted_msg)


def map_concurrently(
    fn: Callable[[Any], Any],
    iterable: Iterable[Any],
    *,
    max_workers: int = 8,
) -> tuple[list[Any], list[tuple[Any, Exception]]]:
    """並列mapで例外を吸収して返すユーティリティ。
    戻り値: (results_list, errors_list[(input, exc), ...])
    失敗した要素の results 側は None のまま。
    """
    items = list(iterable)
    results: list[Any] = [None] * len(items)
    errors: list[tuple[Any, Exception]] = []
    if not items:
        return results, errors

    with ThreadPoolExecutor(max_workers=max(1, max_workers)) as ex:
        futures = {ex.submit(fn, item): i for i, item in enumerate(items)}
        for fut in as_completed(futures):
            idx = futures[fut]
            try:
                results[idx] = fut.result()
            except Exception as e:  # noqa: BLE001
                errors.append((items[idx], e))

    return results, errors
