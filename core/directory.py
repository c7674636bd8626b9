"""Run-scoped village directory.

One instance is created per run by the coordinator. Entries are replaced
whole, never patched, so a snapshot handed to the evaluator never changes
underneath it.
"""

from __future__ import annotations

import logging

from common.exceptions import ErrorCode, log_with_code, map_concurrently
from core.models import NodeRef, NodeSnapshot

logger = logging.getLogger(__name__)


class NodeDirectory:
    def __init__(self, snapshots: list[NodeSnapshot] | None = None) -> None:
        self._nodes: dict[str, NodeSnapshot] = {}
        for snap in snapshots or ():
            self.put(snap)

    def get(self, name: str) -> NodeSnapshot | None:
        return self._nodes.get(name)

    def put(self, snapshot: NodeSnapshot) -> None:
        self._nodes[snapshot.name] = snapshot

    def discard(self, name: str) -> None:
        self._nodes.pop(name, None)

    def __len__(self) -> int:
        return len(self._nodes)


def load_directory(client, *, max_workers: int = 8) -> NodeDirectory:
    """一覧取得 1 回 + 詳細取得を並列に行い、ディレクトリを構築する。

    詳細取得に失敗した村は警告を出して欠落扱いにする（実行は継続）。
    一覧取得の失敗はそのまま送出する。
    """
    refs: list[NodeRef] = client.list_nodes()
    # 詳細取得はワーカー間で client の requests.Session を共有する。
    # 並列に送るのは GET のみで、Session 側の状態（Bearer ヘッダ）は login 後に変更しない
    results, errors = map_concurrently(
        lambda ref: client.get_node(ref.id), refs, max_workers=max_workers
    )
    for ref, exc in errors:
        log_with_code(
            logger,
            logging.WARNING,
            ErrorCode.NODE_NOT_FOUND,
            f"村 {ref.name} の詳細取得に失敗しました: {exc}",
            {"village_id": ref.id},
        )

    directory = NodeDirectory([snap for snap in results if snap is not None])
    logger.info("Loaded %d/%d villages", len(directory), len(refs))
    return directory


__all__ = ["NodeDirectory", "load_directory"]
