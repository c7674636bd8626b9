from __future__ import annotations

import json

import pytest
import requests

from common.api_client import VillageApiClient
from common.exceptions import ApiError, AuthError, PayloadError, TransferError


def _response(status: int, body=None, *, raw: bytes | None = None, url: str = "") -> requests.Response:
    resp = requests.Response()
    resp.status_code = status
    resp._content = raw if raw is not None else json.dumps(body).encode("utf-8")
    resp.url = url
    resp.encoding = "utf-8"
    return resp


class DummySession:
    """requests.Session の代わりに、登録済みレスポンスを返す。"""

    def __init__(self, routes: dict):
        self.routes = routes
        self.headers: dict[str, str] = {}
        self.verify = True
        self.requests: list[tuple] = []

    def request(self, method, url, timeout=None, **kwargs):
        self.requests.append((method, url, timeout, kwargs))
        result = self.routes[(method, url)]
        if isinstance(result, Exception):
            raise result
        return result


BASE = "https://example.test/api"

VILLAGE_A = {
    "villageId": 1,
    "name": "A",
    "resourceLimit": 10_000,
    "villageResources": {"availableResources": {"Wood": 3000}},
    "buildings": [{"buildingId": 10, "name": "Market", "availableTraders": 5}],
}


def _client(routes: dict, **kw) -> tuple[VillageApiClient, DummySession]:
    session = DummySession(routes)
    return VillageApiClient(BASE + "/", session=session, timeout=3, **kw), session


def test_login_sets_bearer_token():
    client, session = _client({("POST", f"{BASE}/accounts/login"): _response(200, {"token": "abc"})})
    assert client.login("alice", "pw") == "abc"
    assert session.headers["Authorization"] == "Bearer abc"
    method, url, timeout, kwargs = session.requests[0]
    assert kwargs["json"] == {"username": "alice", "password": "pw"}
    assert timeout == 3


@pytest.mark.parametrize(
    "resp",
    [
        _response(401, {"error": "Invalid credentials"}),
        _response(200, {"notatoken": 1}),
        _response(200, raw=b"<html>"),
    ],
)
def test_login_failures_raise_auth_error(resp):
    client, session = _client({("POST", f"{BASE}/accounts/login"): resp})
    with pytest.raises(AuthError):
        client.login("alice", "bad")
    assert "Authorization" not in session.headers


def test_login_network_error_is_auth_error():
    client, _ = _client(
        {("POST", f"{BASE}/accounts/login"): requests.ConnectionError("refused")}
    )
    with pytest.raises(AuthError):
        client.login("alice", "pw")


def test_list_and_get_nodes():
    client, _ = _client(
        {
            ("GET", f"{BASE}/village"): _response(200, [{"villageId": 1, "name": "A"}]),
            ("GET", f"{BASE}/village/1"): _response(200, VILLAGE_A),
        }
    )
    (ref,) = client.list_nodes()
    assert (ref.id, ref.name) == (1, "A")
    node = client.get_node(ref.id)
    assert node.available("Wood") == 3000
    assert node.transport_facilities[0].id == 10


def test_list_nodes_rejects_non_list():
    client, _ = _client({("GET", f"{BASE}/village"): _response(200, {"oops": True})})
    with pytest.raises(PayloadError):
        client.list_nodes()


def test_get_node_http_error():
    client, _ = _client({("GET", f"{BASE}/village/9"): _response(404, {"error": "Not found"})})
    with pytest.raises(ApiError) as ei:
        client.get_node(9)
    assert ei.value.status_code == 404
    assert "Not found" in str(ei.value)


def test_timeout_becomes_api_error():
    client, _ = _client({("GET", f"{BASE}/village/1"): requests.Timeout("slow")})
    with pytest.raises(ApiError):
        client.get_node(1)


def test_submit_transfer_returns_sender_state():
    client, session = _client({("POST", f"{BASE}/market/transfer"): _response(200, VILLAGE_A)})
    node = client.submit_transfer(10, "Wood", 2000, 2)
    assert node.name == "A"
    assert session.requests[0][3]["json"] == {
        "amount": 2000,
        "marketId": 10,
        "resource": "Wood",
        "toVillageId": 2,
    }


def test_submit_transfer_rejection_carries_remote_message():
    client, _ = _client(
        {("POST", f"{BASE}/market/transfer"): _response(400, {"error": "Not enough traders"})}
    )
    with pytest.raises(TransferError) as ei:
        client.submit_transfer(10, "Wood", 2000, 2)
    assert ei.value.message == "Not enough traders"
    assert ei.value.status_code == 400


def test_verify_ssl_flag_applied_to_session():
    client, session = _client({}, verify_ssl=False)
    assert session.verify is False
    client2, session2 = _client({})
    assert session2.verify is True
