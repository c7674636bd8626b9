# ============================================================================
# Context Note
# ルート 1 本分の転送量を決める純粋関数。I/O・ログ・状態変更は一切しない。
#
# 判定順（各段で早期 return）:
#   村の欠落 → 送信側・受信側の輸送施設 → 受信側の上限（到着待ち込み）→ 余剰/空き
#   → 1000 単位に切り捨て → 施設の throughput で上限
#
# limit / threshold は負値なら「容量 + 値」（容量からのオフセット）として解釈する。
# ============================================================================

"""Per-route transfer decision.

:func:`evaluate_route` is deterministic: the same route and snapshots always
yield an equal :class:`~core.models.Decision`. Diagnostic fields on the
decision are filled in as far as evaluation progressed so callers can log
why a route was skipped.
"""

from __future__ import annotations

from core.models import (
    BATCH_SIZE,
    Decision,
    DecisionReason,
    NodeSnapshot,
    ResourceType,
    RouteConfig,
    TransportFacility,
)


def effective_limit(limit: int, capacity: int) -> int:
    """受信側の上限。負値は容量からのオフセット。"""
    return limit if limit >= 0 else capacity + limit


def effective_threshold(threshold: int, capacity: int) -> int:
    """送信側に残す量。負値は容量からのオフセット。"""
    return threshold if threshold >= 0 else capacity + threshold


def select_facility(node: NodeSnapshot) -> TransportFacility | None:
    """送信に使う施設。村が公開している最初の施設を使う。"""
    return node.transport_facilities[0] if node.transport_facilities else None


def incoming_in_flight(node: NodeSnapshot, resource_type: ResourceType) -> int:
    """Sum of pending transfers of ``resource_type`` headed to ``node``.

    Every facility of the receiver is scanned and a record counts when its
    destination is the receiver itself, whatever village dispatched it.
    """
    return sum(
        p.amount
        for facility in node.transport_facilities
        for p in facility.pending_transfers
        if p.resource_type == resource_type and p.destination_id == node.id
    )


def round_to_batch(amount: int) -> int:
    # floor division なので負値は 0 ではなく負側に丸まる
    return (amount // BATCH_SIZE) * BATCH_SIZE


def evaluate_route(
    route: RouteConfig,
    sender: NodeSnapshot | None,
    receiver: NodeSnapshot | None,
) -> Decision:
    if sender is None:
        return Decision(0, DecisionReason.SOURCE_MISSING)
    if receiver is None:
        return Decision(0, DecisionReason.DESTINATION_MISSING)

    facility = select_facility(sender)
    if facility is None:
        return Decision(0, DecisionReason.NO_TRANSPORT_FACILITY)
    # 受信側に施設が無いと到着待ちレコードを参照できない
    if not receiver.transport_facilities:
        return Decision(0, DecisionReason.NO_TRANSPORT_FACILITY, facility_id=facility.id)

    rtype = route.resource_type
    incoming = incoming_in_flight(receiver, rtype)
    receiver_total = receiver.available(rtype) + incoming
    limit = effective_limit(route.limit, receiver.resource_capacity)

    if receiver_total >= limit:
        return Decision(
            0,
            DecisionReason.DESTINATION_NEAR_FULL,
            effective_limit=limit,
            receiver_total=receiver_total,
            incoming=incoming,
            facility_id=facility.id,
        )

    threshold = effective_threshold(route.threshold, sender.resource_capacity)
    room = limit - receiver_total
    surplus = sender.available(rtype) - threshold
    batched = round_to_batch(min(surplus, room))
    capped = min(batched, facility.throughput_units * BATCH_SIZE)

    details = dict(
        effective_limit=limit,
        effective_threshold=threshold,
        receiver_total=receiver_total,
        incoming=incoming,
        room=room,
        surplus=surplus,
        facility_id=facility.id,
    )
    if capped <= 0:
        return Decision(0, DecisionReason.AMOUNT_NON_POSITIVE, **details)
    return Decision(capped, DecisionReason.OK, **details)


__all__ = [
    "effective_limit",
    "effective_threshold",
    "evaluate_route",
    "incoming_in_flight",
    "round_to_batch",
    "select_facility",
]
