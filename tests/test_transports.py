"""
Transport adapter tests.

httpx clients run against httpx.MockTransport; requests sessions run
against a patched HTTPAdapter.send, so no network is touched.
"""

import json

import httpx
import pytest
import requests
from requests.adapters import HTTPAdapter

from polyauth import (
    AuthConfig,
    AuthenticatingAdapter,
    AuthenticatingInterceptor,
    AuthenticationHandler,
    AuthenticationRejected,
    BearerTokenStrategy,
    Credential,
    CredentialUnavailable,
    PolyAuth,
    create_session,
)

from fakes import ACCOUNT, TOKEN, ScriptedRefresh

API = "https://api.example.com"


class TokenServer:
    """Accepts only the given bearer token on /user and /items, everything else is public."""

    def __init__(self, valid_token: str):
        self.valid_token = valid_token
        self.seen = []

    def status_for(self, method: str, url: str, authorization):
        self.seen.append((method, url, authorization))
        if url.endswith("/public"):
            return 200
        return 200 if authorization == f"Bearer {self.valid_token}" else 401

    def httpx_handler(self, request: httpx.Request) -> httpx.Response:
        status = self.status_for(request.method, str(request.url), request.headers.get("Authorization"))
        return httpx.Response(status, json={"body": request.content.decode("utf-8")})


@pytest.fixture
def routed_handler(handler):
    handler.register_route("GET", f"{API}/user", TOKEN, ACCOUNT)
    handler.register_route("POST", f"{API}/items", TOKEN, ACCOUNT)
    return handler


def test_httpx_client_refreshes_on_401(routed_handler, credential_store):
    credential_store.put(routed_handler.resolve_owner(ACCOUNT), TOKEN, Credential("T0"))
    server = TokenServer(valid_token="T1")

    with httpx.Client(auth=PolyAuth(routed_handler), transport=httpx.MockTransport(server.httpx_handler)) as client:
        response = client.get(f"{API}/user")

    assert response.status_code == 200
    assert [auth for _, _, auth in server.seen] == ["Bearer T0", "Bearer T1"]
    assert len(response.history) == 1


def test_httpx_client_resends_body_on_retry(routed_handler, credential_store):
    credential_store.put(routed_handler.resolve_owner(ACCOUNT), TOKEN, Credential("T0"))
    server = TokenServer(valid_token="T1")

    with httpx.Client(auth=PolyAuth(routed_handler), transport=httpx.MockTransport(server.httpx_handler)) as client:
        response = client.post(f"{API}/items", json={"name": "widget"})

    assert response.status_code == 200
    assert json.loads(response.json()["body"]) == {"name": "widget"}


def test_httpx_client_public_route_has_no_auth(routed_handler, refresh):
    server = TokenServer(valid_token="T1")

    with httpx.Client(auth=PolyAuth(routed_handler), transport=httpx.MockTransport(server.httpx_handler)) as client:
        response = client.get(f"{API}/public")

    assert response.status_code == 200
    assert server.seen == [("GET", f"{API}/public", None)]
    assert refresh.calls == []


def test_httpx_client_raises_after_second_rejection(routed_handler):
    server = TokenServer(valid_token="never")

    with httpx.Client(auth=PolyAuth(routed_handler), transport=httpx.MockTransport(server.httpx_handler)) as client:
        with pytest.raises(AuthenticationRejected):
            client.get(f"{API}/user")

    assert len(server.seen) == 2


@pytest.mark.asyncio
async def test_httpx_async_client_refreshes_on_401(routed_handler, credential_store):
    credential_store.put(routed_handler.resolve_owner(ACCOUNT), TOKEN, Credential("T0"))
    server = TokenServer(valid_token="T1")
    auth = PolyAuth(AuthenticatingInterceptor(routed_handler))

    async with httpx.AsyncClient(auth=auth, transport=httpx.MockTransport(server.httpx_handler)) as client:
        response = await client.get(f"{API}/user")

    assert response.status_code == 200
    assert [a for _, _, a in server.seen] == ["Bearer T0", "Bearer T1"]


def _unread_rejection(request: httpx.Request) -> httpx.Response:
    return httpx.Response(401, stream=httpx.ByteStream(b'{"message": "Bad credentials"}'))


def test_httpx_rejection_body_is_readable_after_raise(routed_handler):
    with httpx.Client(auth=PolyAuth(routed_handler), transport=httpx.MockTransport(_unread_rejection)) as client:
        with pytest.raises(AuthenticationRejected) as exc_info:
            client.get(f"{API}/user")

    assert exc_info.value.response.status_code == 401
    assert exc_info.value.response.json() == {"message": "Bad credentials"}


@pytest.mark.asyncio
async def test_httpx_async_rejection_body_is_readable_after_raise(routed_handler):
    auth = PolyAuth(routed_handler)

    async with httpx.AsyncClient(auth=auth, transport=httpx.MockTransport(_unread_rejection)) as client:
        with pytest.raises(AuthenticationRejected) as exc_info:
            await client.get(f"{API}/user")

    assert exc_info.value.response.json() == {"message": "Bad credentials"}


def _fake_send(server):
    def send(self, request, **kwargs):
        response = requests.Response()
        response.status_code = server.status_for(request.method, request.url, request.headers.get("Authorization"))
        response.request = request
        response.url = request.url
        response._content = b"{}"
        response._content_consumed = True
        return response

    return send


def test_requests_session_refreshes_on_401(routed_handler, credential_store, monkeypatch):
    credential_store.put(routed_handler.resolve_owner(ACCOUNT), TOKEN, Credential("T0"))
    server = TokenServer(valid_token="T1")
    monkeypatch.setattr(HTTPAdapter, "send", _fake_send(server))

    session = create_session(routed_handler)
    response = session.get(f"{API}/user")

    assert response.status_code == 200
    assert response.request.headers["Authorization"] == "Bearer T1"
    assert [a for _, _, a in server.seen] == ["Bearer T0", "Bearer T1"]


def test_requests_session_public_route_untouched(routed_handler, monkeypatch):
    server = TokenServer(valid_token="T1")
    monkeypatch.setattr(HTTPAdapter, "send", _fake_send(server))

    session = create_session(routed_handler)
    response = session.get(f"{API}/public")

    assert response.status_code == 200
    assert "Authorization" not in response.request.headers


def test_requests_session_raises_after_second_rejection(routed_handler, monkeypatch):
    server = TokenServer(valid_token="never")
    monkeypatch.setattr(HTTPAdapter, "send", _fake_send(server))

    session = create_session(routed_handler)
    with pytest.raises(AuthenticationRejected):
        session.get(f"{API}/user")
    assert len(server.seen) == 2


def test_adapter_rejects_unknown_targets():
    with pytest.raises(TypeError):
        AuthenticatingAdapter(object())


class _PooledConnection:
    def __init__(self):
        self.released = False

    def release_conn(self):
        self.released = True


def test_requests_adapter_returns_connection_when_refresh_fails(credential_store, monkeypatch):
    handler = AuthenticationHandler(
        credential_store=credential_store,
        strategies={TOKEN: BearerTokenStrategy(refresh=ScriptedRefresh([], error=PermissionError("revoked")))},
        config=AuthConfig(refresh_timeout=None),
    )
    handler.register_route("GET", f"{API}/user", TOKEN, ACCOUNT)
    credential_store.put(handler.resolve_owner(ACCOUNT), TOKEN, Credential("T0"))
    connections = []

    def send(self, request, **kwargs):
        response = requests.Response()
        response.status_code = 401
        response.request = request
        response._content = b"{}"
        response._content_consumed = True
        response.raw = _PooledConnection()
        connections.append(response.raw)
        return response

    monkeypatch.setattr(HTTPAdapter, "send", send)

    with pytest.raises(CredentialUnavailable):
        create_session(handler).get(f"{API}/user")
    assert [c.released for c in connections] == [True]
