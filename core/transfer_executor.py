"""Apply a positive decision: submit the transfer and refresh both villages."""

from __future__ import annotations

from dataclasses import dataclass, replace
import logging

from common.exceptions import ApiError, NodeLookupError, PayloadError
from core.directory import NodeDirectory
from core.models import Decision, NodeSnapshot, PendingTransfer, RouteConfig

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TransferResult:
    route: RouteConfig
    amount: int
    sender: NodeSnapshot
    receiver: NodeSnapshot
    dry_run: bool = False


def _refresh(client, directory: NodeDirectory, node: NodeSnapshot) -> NodeSnapshot:
    """転送後に村を再取得する。失敗したら古いエントリを破棄して NodeLookupError。"""
    try:
        fresh = client.get_node(node.id)
    except ApiError as e:
        directory.discard(node.name)
        raise NodeLookupError(
            f"Transfer submitted but could not refresh {node.name}: {e}"
        ) from e
    directory.put(fresh)
    return fresh


def _simulate(
    sender: NodeSnapshot, receiver: NodeSnapshot, route: RouteConfig, decision: Decision
) -> tuple[NodeSnapshot, NodeSnapshot]:
    """dry-run 用に転送後の送信側・受信側スナップショットを組み立てる。"""
    rtype = route.resource_type
    res = dict(sender.available_resources)
    res[rtype] = sender.available(rtype) - decision.amount
    new_sender = replace(sender, available_resources=res)

    record = PendingTransfer(rtype, decision.amount, sender.id, receiver.id)
    first, *rest = receiver.transport_facilities
    first = replace(first, pending_transfers=first.pending_transfers + (record,))
    new_receiver = replace(receiver, transport_facilities=(first, *rest))
    return new_sender, new_receiver


def execute_transfer(
    client,
    directory: NodeDirectory,
    route: RouteConfig,
    decision: Decision,
    *,
    dry_run: bool = False,
) -> TransferResult:
    """転送を送信し、成功したら送信側・受信側のスナップショットを差し替える。

    - TransferError / ApiError（送信失敗）の場合はディレクトリを変更せず送出
    - 2xx だが応答本文が読めない（PayloadError）場合は受理済みとみなし、
      送信側も再取得する
    - 送信成功後に再取得が失敗した村のエントリは破棄して NodeLookupError を
      送出（後続ルートでの二重計上を防ぐ）
    - dry_run=True の場合は何も送信せず、転送後の状態を模擬してディレクトリに
      反映する（後続ルートが同じ余剰・空きを二重に使わないように）
    """
    if not decision.actionable:
        raise ValueError(f"not an actionable decision: {decision.reason.value}")
    sender = directory.get(route.from_node)
    receiver = directory.get(route.to_node)
    if sender is None:
        raise NodeLookupError(f"Village {route.from_node} not found!")
    if receiver is None:
        raise NodeLookupError(f"Village {route.to_node} not found!")

    if dry_run:
        new_sender, new_receiver = _simulate(sender, receiver, route, decision)
        directory.put(new_sender)
        directory.put(new_receiver)
        logger.info(
            "[dry-run] would transfer %s %s from %s to %s",
            decision.amount,
            route.resource_type,
            sender.name,
            receiver.name,
        )
        return TransferResult(route, decision.amount, new_sender, new_receiver, dry_run=True)

    try:
        new_sender = client.submit_transfer(
            decision.facility_id, route.resource_type, decision.amount, receiver.id
        )
    except PayloadError as e:
        logger.warning(
            "Transfer from %s accepted but response unreadable (%s); re-reading",
            sender.name,
            e,
        )
        try:
            new_sender = _refresh(client, directory, sender)
        except NodeLookupError:
            directory.discard(receiver.name)
            raise
    else:
        directory.put(new_sender)

    new_receiver = _refresh(client, directory, receiver)

    logger.info(
        "Transferring %s %s from %s to %s",
        decision.amount,
        route.resource_type,
        sender.name,
        receiver.name,
    )
    return TransferResult(route, decision.amount, new_sender, new_receiver)


__all__ = ["TransferResult", "execute_transfer"]
