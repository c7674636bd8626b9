from dataclasses import replace
from pathlib import Path
import sys
from unittest import mock

import pytest

# プロジェクトルートを import パスに追加(pytest 実行場所に依存しないため)
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from common.exceptions import ApiError, PayloadError, TransferError
from config.environment import reset_env_config_cache
from core.models import (
    NodeRef,
    NodeSnapshot,
    PendingTransfer,
    RouteConfig,
    TransportFacility,
)

_ENV_KEYS = (
    "APP_CONFIG",
    "BALANCER_USERNAME",
    "BALANCER_PASSWORD",
    "BALANCER_API_BASE",
    "REQUEST_TIMEOUT",
    "THREADS_DEFAULT",
    "VERIFY_SSL",
    "LOG_LEVEL",
    "LOG_FILENAME",
    "LOGS_DIR",
    "BALANCE_CRON",
    "RUN_LOCK_DIR",
    "DRY_RUN",
    "COMPACT_LOGS",
    "RUN_LOCK_STALE_SECONDS",
)


# ========== Test Isolation: 環境変数と設定キャッシュ ==========


@pytest.fixture(autouse=True, scope="function")
def isolate_settings(monkeypatch):
    """各テストの前後で設定キャッシュをクリアし、関連する環境変数を除去する。"""
    for key in _ENV_KEYS:
        monkeypatch.delenv(key, raising=False)
    reset_env_config_cache()
    mock.patch.stopall()

    yield

    reset_env_config_cache()
    mock.patch.stopall()


# ========== Snapshot / Route factories ==========


@pytest.fixture
def make_node():
    """NodeSnapshot を組み立てるファクトリー関数。

    facilities=None なら throughput 5 の Market を 1 つ持つ。
    incoming は {resource: amount} で、受信側施設の到着待ちレコードになる。
    """

    def _make(
        name: str,
        *,
        node_id=None,
        capacity: int = 10_000,
        resources: dict | None = None,
        throughput: int = 5,
        incoming: dict | None = None,
        facilities: tuple | None = None,
    ) -> NodeSnapshot:
        node_id = node_id if node_id is not None else f"id-{name}"
        if facilities is None:
            pending = tuple(
                PendingTransfer(r, amt, origin_id="elsewhere", destination_id=node_id)
                for r, amt in (incoming or {}).items()
            )
            facilities = (TransportFacility(f"market-{name}", throughput, pending),)
        return NodeSnapshot(
            id=node_id,
            name=name,
            resource_capacity=capacity,
            available_resources=dict(resources or {}),
            transport_facilities=facilities,
        )

    return _make


@pytest.fixture
def make_route():
    def _make(
        frm: str = "A",
        to: str = "B",
        *,
        resource: str = "Wood",
        limit: int = -2000,
        threshold: int = 0,
    ) -> RouteConfig:
        return RouteConfig(frm, to, resource, limit, threshold)

    return _make


# ========== Fake remote API ==========


class FakeVillageClient:
    """メモリ上の村データに対して API 呼び出しを模倣するフェイク。

    submit_transfer は送信側の在庫を減らし、送信側・受信側の施設に到着待ち
    レコードを追加する（実 API と同じく受信側の在庫は増えない）。
    """

    def __init__(self, nodes: list[NodeSnapshot]):
        self.nodes: dict = {n.id: n for n in nodes}
        self.calls: list[tuple] = []
        self.fail_get: set = set()
        self.fail_get_after_transfer: set = set()
        self.reject_transfer: str | None = None
        self.unreadable_transfer_response = False
        self.logged_in_as: str | None = None
        self._transferred = False

    def login(self, username: str, password: str) -> str:
        self.calls.append(("login", username))
        self.logged_in_as = username
        return "token"

    def list_nodes(self) -> list[NodeRef]:
        self.calls.append(("list_nodes",))
        return [NodeRef(n.id, n.name) for n in self.nodes.values()]

    def get_node(self, node_id) -> NodeSnapshot:
        self.calls.append(("get_node", node_id))
        if node_id in self.fail_get or (
            self._transferred and node_id in self.fail_get_after_transfer
        ):
            raise ApiError(f"GET /village/{node_id} failed", status_code=500)
        return self.nodes[node_id]

    def submit_transfer(self, facility_id, resource_type, amount, destination_id):
        self.calls.append(("submit_transfer", facility_id, resource_type, amount, destination_id))
        if self.reject_transfer is not None:
            raise TransferError(self.reject_transfer, status_code=400)
        sender = next(
            n
            for n in self.nodes.values()
            if any(f.id == facility_id for f in n.transport_facilities)
        )
        record = PendingTransfer(resource_type, amount, sender.id, destination_id)
        res = dict(sender.available_resources)
        res[resource_type] = res.get(resource_type, 0) - amount
        self.nodes[sender.id] = self._with_pending(
            replace(sender, available_resources=res), record
        )
        receiver = self.nodes[destination_id]
        if receiver.transport_facilities:
            self.nodes[destination_id] = self._with_pending(receiver, record)
        self._transferred = True
        if self.unreadable_transfer_response:
            raise PayloadError("レスポンスが JSON ではありません")
        return self.nodes[sender.id]

    @staticmethod
    def _with_pending(node: NodeSnapshot, record: PendingTransfer) -> NodeSnapshot:
        first, *rest = node.transport_facilities
        first = replace(first, pending_transfers=first.pending_transfers + (record,))
        return replace(node, transport_facilities=(first, *rest))

    def count(self, name: str) -> int:
        return sum(1 for c in self.calls if c[0] == name)


@pytest.fixture
def fake_client_factory():
    return FakeVillageClient


# ========== Config files ==========


@pytest.fixture
def write_config(tmp_path):
    """YAML 文字列を tmp_path に書き出してパスを返す。"""

    def _write(text: str, name: str = "config.yaml") -> Path:
        path = tmp_path / name
        path.write_text(text, encoding="utf-8")
        return path

    return _write


VALID_CONFIG = """
username: alice
password: secret
api:
  base_url: https://example.test/api
  verify_ssl: false
  max_workers: 4
logging:
  level: debug
  logs_dir: {logs}
lock:
  dir: {locks}
routes:
  - from: Farm
    to: Capital
    resourceType: Food
    limit: -2000
    threshold: 0
  - from: Quarry
    to: Capital
    type: Stone
    limit: 8000
    threshold: -5000
"""


@pytest.fixture
def valid_config(tmp_path, write_config):
    return write_config(
        VALID_CONFIG.format(logs=tmp_path / "logs", locks=tmp_path / "locks")
    )
