"""Immutable value types shared by the balancing engine.

Snapshots are built fresh from the remote village payloads at the start of
each run and are replaced (never mutated) whenever a transfer touches a
village. ``node_from_payload`` is the single place that knows the remote
JSON layout.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, TypeAlias

from common.exceptions import PayloadError

ResourceType: TypeAlias = str
NodeId: TypeAlias = int | str

BATCH_SIZE = 1000
DEFAULT_FACILITY_NAME = "Market"
# throughput 情報を返さない API 向け: 1 回の判定では上限なしとして扱う
UNLIMITED_THROUGHPUT = 10**9

_THROUGHPUT_KEYS = ("availableTraders", "traders", "throughputUnits")
_RESOURCE_KEYS = ("resource", "resourceType")


class DecisionReason(str, Enum):
    OK = "ok"
    DESTINATION_MISSING = "destination-missing"
    SOURCE_MISSING = "source-missing"
    NO_TRANSPORT_FACILITY = "no-transport-facility"
    DESTINATION_NEAR_FULL = "destination-near-full"
    AMOUNT_NON_POSITIVE = "amount-non-positive"


@dataclass(frozen=True)
class PendingTransfer:
    resource_type: ResourceType
    amount: int
    origin_id: NodeId | None = None
    destination_id: NodeId | None = None


@dataclass(frozen=True)
class TransportFacility:
    id: NodeId
    throughput_units: int
    pending_transfers: tuple[PendingTransfer, ...] = ()


@dataclass(frozen=True)
class NodeSnapshot:
    id: NodeId
    name: str
    resource_capacity: int
    available_resources: Mapping[ResourceType, int] = field(
        default_factory=lambda: MappingProxyType({})
    )
    transport_facilities: tuple[TransportFacility, ...] = ()

    def __post_init__(self) -> None:
        # dict を渡されても外から書き換えられないよう読み取り専用にする
        if not isinstance(self.available_resources, MappingProxyType):
            object.__setattr__(
                self,
                "available_resources",
                MappingProxyType(dict(self.available_resources)),
            )

    def available(self, resource_type: ResourceType) -> int:
        return int(self.available_resources.get(resource_type, 0))


@dataclass(frozen=True)
class NodeRef:
    """Entry of the village list call (id + name only)."""

    id: NodeId
    name: str


@dataclass(frozen=True)
class RouteConfig:
    from_node: str
    to_node: str
    resource_type: ResourceType
    limit: int
    threshold: int

    def describe(self) -> str:
        return f"{self.resource_type}: {self.from_node} -> {self.to_node}"


@dataclass(frozen=True)
class Decision:
    amount: int
    reason: DecisionReason
    effective_limit: int | None = None
    effective_threshold: int | None = None
    receiver_total: int | None = None
    incoming: int | None = None
    room: int | None = None
    surplus: int | None = None
    facility_id: NodeId | None = None

    @property
    def actionable(self) -> bool:
        return self.reason is DecisionReason.OK and self.amount > 0


# -----------------------------
# Payload mapping
# -----------------------------


def _require(payload: Mapping[str, Any], key: str, what: str) -> Any:
    if key not in payload or payload[key] is None:
        raise PayloadError(f"{what}: '{key}' がありません")
    return payload[key]


def _as_int(value: Any, what: str) -> int:
    if isinstance(value, bool):
        raise PayloadError(f"{what}: 数値ではありません ({value!r})")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise PayloadError(f"{what}: 数値ではありません ({value!r})") from None


def _pending_from_payload(raw: Mapping[str, Any]) -> PendingTransfer:
    resource = next((raw[k] for k in _RESOURCE_KEYS if raw.get(k) is not None), None)
    if resource is None:
        raise PayloadError("transfer: 'resource' がありません")
    return PendingTransfer(
        resource_type=str(resource),
        amount=_as_int(_require(raw, "amount", "transfer"), "transfer.amount"),
        origin_id=raw.get("fromVillageId"),
        destination_id=raw.get("toVillageId"),
    )


def _facility_from_payload(raw: Mapping[str, Any]) -> TransportFacility:
    throughput = UNLIMITED_THROUGHPUT
    for key in _THROUGHPUT_KEYS:
        if raw.get(key) is not None:
            throughput = max(0, _as_int(raw[key], f"facility.{key}"))
            break
    pending = tuple(_pending_from_payload(t) for t in raw.get("transfers") or ())
    return TransportFacility(
        id=_require(raw, "buildingId", "facility"),
        throughput_units=throughput,
        pending_transfers=pending,
    )


def node_ref_from_payload(payload: Mapping[str, Any]) -> NodeRef:
    return NodeRef(
        id=_require(payload, "villageId", "village"),
        name=str(_require(payload, "name", "village")),
    )


def node_from_payload(
    payload: Mapping[str, Any], facility_name: str = DEFAULT_FACILITY_NAME
) -> NodeSnapshot:
    """村の詳細 JSON から NodeSnapshot を構築する。

    - 輸送施設は ``buildings`` のうち ``name == facility_name`` のもの（出現順）
    - 在庫は ``villageResources.availableResources``
    - 必須キー欠落時は PayloadError
    """
    if not isinstance(payload, Mapping):
        raise PayloadError(f"village: オブジェクトではありません ({type(payload).__name__})")
    village_id = _require(payload, "villageId", "village")
    resources_raw = (payload.get("villageResources") or {}).get("availableResources") or {}
    resources = {
        str(k): _as_int(v, f"village.availableResources.{k}")
        for k, v in resources_raw.items()
    }
    facilities = tuple(
        _facility_from_payload(b)
        for b in payload.get("buildings") or ()
        if b.get("name") == facility_name
    )
    return NodeSnapshot(
        id=village_id,
        name=str(_require(payload, "name", "village")),
        resource_capacity=_as_int(
            _require(payload, "resourceLimit", "village"), "village.resourceLimit"
        ),
        available_resources=resources,
        transport_facilities=facilities,
    )


__all__ = [
    "BATCH_SIZE",
    "DEFAULT_FACILITY_NAME",
    "UNLIMITED_THROUGHPUT",
    "Decision",
    "DecisionReason",
    "NodeRef",
    "NodeSnapshot",
    "PendingTransfer",
    "RouteConfig",
    "TransportFacility",
    "node_from_payload",
    "node_ref_from_payload",
]
