"""HTTP client for the village game API.

Thin wrapper around a ``requests.Session``. Every method maps one remote
call to one return value and turns transport/HTTP failures into the project
exceptions; nothing here retries.
"""

from __future__ import annotations

from typing import Any

import requests
import urllib3

from common.exceptions import ApiError, AuthError, PayloadError, TransferError
from core.models import (
    DEFAULT_FACILITY_NAME,
    NodeId,
    NodeRef,
    NodeSnapshot,
    node_from_payload,
    node_ref_from_payload,
)


def _error_message(resp: requests.Response) -> str:
    """レスポンスから API のエラーメッセージを抽出（無ければ status）。"""
    try:
        data = resp.json() if resp.content else {}
    except ValueError:
        data = {}
    if isinstance(data, dict):
        for key in ("error", "message"):
            if data.get(key):
                return str(data[key])
    text = resp.text[:200] if resp.text else ""
    return text or f"status={resp.status_code}"


class VillageApiClient:
    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 10.0,
        verify_ssl: bool = True,
        facility_name: str = DEFAULT_FACILITY_NAME,
        session: requests.Session | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = float(timeout)
        self.facility_name = facility_name
        self.session = session or requests.Session()
        self.session.verify = bool(verify_ssl)
        if not verify_ssl:
            # サーバ証明書に問題があるため検証を無効化できるようにしている
            urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)

    @classmethod
    def from_settings(cls, settings) -> "VillageApiClient":
        api = settings.api
        return cls(
            api.base_url,
            timeout=api.request_timeout,
            verify_ssl=api.verify_ssl,
            facility_name=api.facility_name,
        )

    def _request(self, method: str, path: str, **kwargs: Any) -> requests.Response:
        url = f"{self.base_url}/{path.lstrip('/')}"
        try:
            return self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            raise ApiError(f"{method} {url} failed: {e}") from e

    @staticmethod
    def _json(resp: requests.Response) -> Any:
        try:
            return resp.json()
        except ValueError as e:
            raise PayloadError(
                f"invalid JSON from {resp.url}", status_code=resp.status_code
            ) from e

    def _get_json(self, path: str) -> Any:
        resp = self._request("GET", path)
        if not resp.ok:
            raise ApiError(
                f"GET {path} failed: {_error_message(resp)}", status_code=resp.status_code
            )
        return self._json(resp)

    def login(self, username: str, password: str) -> str:
        """ログインしてトークンを取得し、以降のリクエストに Bearer として付与する。"""
        try:
            resp = self._request(
                "POST", "/accounts/login", json={"username": username, "password": password}
            )
        except ApiError as e:
            raise AuthError(f"login failed: {e}") from e
        if not resp.ok:
            raise AuthError(f"login failed: {_error_message(resp)}")
        try:
            token = (resp.json() or {}).get("token")
        except (ValueError, AttributeError):
            token = None
        if not token:
            raise AuthError("login failed: no token in response")
        self.session.headers["Authorization"] = f"Bearer {token}"
        return str(token)

    def list_nodes(self) -> list[NodeRef]:
        data = self._get_json("/village")
        if not isinstance(data, list):
            raise PayloadError("village list: expected a JSON array")
        return [node_ref_from_payload(v) for v in data]

    def get_node(self, node_id: NodeId) -> NodeSnapshot:
        return node_from_payload(self._get_json(f"/village/{node_id}"), self.facility_name)

    def submit_transfer(
        self,
        facility_id: NodeId,
        resource_type: str,
        amount: int,
        destination_id: NodeId,
    ) -> NodeSnapshot:
        """転送を送信し、送信側村の新しい状態を返す。拒否時は TransferError。"""
        resp = self._request(
            "POST",
            "/market/transfer",
            json={
                "amount": int(amount),
                "marketId": facility_id,
                "resource": resource_type,
                "toVillageId": destination_id,
            },
        )
        if not resp.ok:
            raise TransferError(_error_message(resp), status_code=resp.status_code)
        return node_from_payload(self._json(resp), self.facility_name)


__all__ = ["VillageApiClient"]
