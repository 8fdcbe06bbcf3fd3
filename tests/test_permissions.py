"""Tests for the permission callback endpoint and its embedded server."""

from __future__ import annotations

import httpx
import pytest

from autohand_acp.models import PermissionContext
from autohand_acp.permissions import PermissionBroker, PermissionServer, build_description, create_app
from conftest import FakeClient


def http_client(broker: PermissionBroker) -> httpx.AsyncClient:
    transport = httpx.ASGITransport(app=create_app(broker))
    return httpx.AsyncClient(transport=transport, base_url="http://testserver")


class ExplodingClient(FakeClient):
    async def request_permission(self, options, session_id, tool_call, **kwargs):
        raise ConnectionError("client disconnected")


def test_build_description() -> None:
    context = PermissionContext(
        tool="run_command",
        command="rm",
        args=["-rf", "build"],
        path="/work",
        description="clean build output",
    )
    assert build_description(context) == "run_command: rm -rf build: /work: - clean build output"
    assert build_description(PermissionContext(tool="write_file", path="a.py")) == "write_file: a.py"


class TestPermissionEndpoint:
    @pytest.mark.anyio
    async def test_tool_permission_approved(self, client: FakeClient) -> None:
        client.permission_answers = ["allow_once"]
        body = {"type": "permission_request", "context": {"tool": "write_file", "path": "a.py"}}
        async with http_client(PermissionBroker(client, "s1")) as http:
            response = await http.post("/permission", json=body)

        assert response.status_code == 200
        assert response.json() == {"allowed": True, "reason": "external_approved"}
        (request,) = client.permission_requests
        assert request["session_id"] == "s1"
        assert request["tool_call"].title == "write_file: a.py"
        assert request["tool_call"].raw_input == {"tool": "write_file", "path": "a.py"}
        assert [option.option_id for option in request["options"]] == ["allow_once", "allow_always", "reject_once"]

    @pytest.mark.anyio
    async def test_tool_permission_always_allow(self, client: FakeClient) -> None:
        client.permission_answers = ["allow_always"]
        async with http_client(PermissionBroker(client, "s1")) as http:
            response = await http.post("/permission", json={"type": "permission_request", "context": {"tool": "x"}})
        assert response.json()["allowed"] is True

    @pytest.mark.anyio
    async def test_tool_permission_rejected(self, client: FakeClient) -> None:
        client.permission_answers = ["reject_once"]
        async with http_client(PermissionBroker(client, "s1")) as http:
            response = await http.post("/permission", json={"type": "permission_request", "context": {"tool": "x"}})
        assert response.json() == {"allowed": False, "reason": "external_denied"}

    @pytest.mark.anyio
    async def test_cancelled_request_is_denied(self, client: FakeClient) -> None:
        async with http_client(PermissionBroker(client, "s1")) as http:
            response = await http.post("/permission", json={"type": "permission_request", "context": {"tool": "x"}})
        assert response.json() == {"allowed": False, "reason": "external_denied"}

    @pytest.mark.anyio
    async def test_client_failure_is_denied(self) -> None:
        async with http_client(PermissionBroker(ExplodingClient(), "s1")) as http:
            response = await http.post("/permission", json={"type": "permission_request", "context": {"tool": "x"}})
        assert response.status_code == 200
        assert response.json() == {"allowed": False, "reason": "external_denied"}

    @pytest.mark.anyio
    async def test_confirm(self, client: FakeClient) -> None:
        client.permission_answers = ["allow", "reject"]
        body = {"type": "confirm", "message": "Overwrite file?"}
        async with http_client(PermissionBroker(client, "s1")) as http:
            approved = await http.post("/permission", json=body)
            rejected = await http.post("/permission", json=body)
        assert approved.json()["allowed"] is True
        assert rejected.json()["allowed"] is False
        assert client.permission_requests[0]["tool_call"].title == "Overwrite file?"
        assert [option.option_id for option in client.permission_requests[0]["options"]] == ["allow", "reject"]

    @pytest.mark.anyio
    async def test_select_returns_choice(self, client: FakeClient) -> None:
        client.permission_answers = ["beta"]
        body = {
            "type": "select",
            "message": "Pick one",
            "choices": [{"name": "alpha", "message": "Alpha"}, {"name": "beta"}],
        }
        async with http_client(PermissionBroker(client, "s1")) as http:
            response = await http.post("/permission", json=body)
        assert response.json() == {"allowed": True, "reason": "external_approved", "choice": "beta"}
        names = [option.name for option in client.permission_requests[0]["options"]]
        assert names == ["Alpha", "beta"]

    @pytest.mark.anyio
    async def test_select_without_choices_is_denied(self, client: FakeClient) -> None:
        async with http_client(PermissionBroker(client, "s1")) as http:
            response = await http.post("/permission", json={"type": "select", "message": "Pick", "choices": []})
        assert response.json()["allowed"] is False
        assert client.permission_requests == []

    @pytest.mark.anyio
    async def test_input_is_denied_without_asking(self, client: FakeClient) -> None:
        async with http_client(PermissionBroker(client, "s1")) as http:
            response = await http.post("/permission", json={"type": "input", "message": "Name?"})
        assert response.json() == {"allowed": False, "reason": "external_denied"}
        assert client.permission_requests == []

    @pytest.mark.anyio
    async def test_unknown_type(self, client: FakeClient) -> None:
        async with http_client(PermissionBroker(client, "s1")) as http:
            response = await http.post("/permission", json={"type": "telepathy"})
        assert response.status_code == 400
        assert response.text == "Invalid request type"

    @pytest.mark.anyio
    async def test_malformed_body(self, client: FakeClient) -> None:
        async with http_client(PermissionBroker(client, "s1")) as http:
            response = await http.post(
                "/permission",
                content=b"{not json",
                headers={"content-type": "application/json"},
            )
        assert response.status_code == 500
        assert response.json() == {"allowed": False, "reason": "external_error"}


class TestPermissionServer:
    @pytest.mark.anyio
    async def test_serves_on_loopback_until_stopped(self, client: FakeClient) -> None:
        client.permission_answers = ["allow_once"]
        server = PermissionServer(PermissionBroker(client, "s1"))
        url = await server.start()
        assert url.startswith("http://127.0.0.1:")
        assert url.endswith("/permission")
        assert server.port and server.port > 0

        async with httpx.AsyncClient(trust_env=False) as http:
            response = await http.post(url, json={"type": "permission_request", "context": {"tool": "x"}})
        assert response.json()["allowed"] is True

        await server.stop()
        with pytest.raises(httpx.TransportError):
            async with httpx.AsyncClient(trust_env=False) as http:
                await http.post(url, json={"type": "permission_request"}, timeout=1)

    @pytest.mark.anyio
    async def test_stop_is_idempotent(self, client: FakeClient) -> None:
        server = PermissionServer(PermissionBroker(client, "s1"))
        await server.stop()
        await server.start()
        await server.stop()
        await server.stop()
