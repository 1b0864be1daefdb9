"""Tests for the CLI HTTP client and command dispatch."""

import argparse
import base64
import json
from pathlib import Path

import httpx
import pytest

from openzt_manager.cli.client import ApiError, InstanceClient
from openzt_manager.cli.config import ClientConfig
from openzt_manager.cli.main import build_parser, run

INSTANCE_ID = "ba4fc512-3d48-4f9e-9a1b-123456789abc"
INSTANCE = {
    "id": INSTANCE_ID,
    "state": "running",
    "status_message": None,
    "container_ref": "0123456789abcdef",
    "rdp_port": 13390,
    "console_port": 18081,
    "rdp_url": "rdp://localhost:13390",
    "created_at": "2024-01-01T12:00:00Z",
    "last_state_change_at": "2024-01-01T12:00:05Z",
    "mods": [],
    "config": {"has_rdp_password": False, "wine_debug_level": None, "cpulimit": None},
}


@pytest.fixture
def requests() -> list[httpx.Request]:
    return []


def make_client(requests: list[httpx.Request]) -> InstanceClient:
    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        path = request.url.path
        if request.method == "POST" and path == "/api/v1/instances":
            return httpx.Response(201, json=INSTANCE)
        if request.method == "GET" and path == "/api/v1/instances":
            return httpx.Response(200, json={"instances": [INSTANCE]})
        if path == f"/api/v1/instances/{INSTANCE_ID}/logs":
            return httpx.Response(200, json={"instance_id": INSTANCE_ID, "logs": "hello\n"})
        if request.method == "DELETE" and path == f"/api/v1/instances/{INSTANCE_ID}":
            return httpx.Response(204)
        if path == f"/api/v1/instances/{INSTANCE_ID}":
            return httpx.Response(200, json=INSTANCE)
        return httpx.Response(
            404,
            json={"error": {"code": "INSTANCE_NOT_FOUND", "message": "Instance not found"}},
        )

    return InstanceClient("http://manager:3000/", transport=httpx.MockTransport(handler))


def parse(*argv: str) -> argparse.Namespace:
    return build_parser(ClientConfig()).parse_args(list(argv))


class TestInstanceClient:
    """Tests for InstanceClient."""

    async def test_create_sends_base64_payload(self, requests: list[httpx.Request]) -> None:
        async with make_client(requests) as client:
            result = await client.create_instance(
                b"MZ\x90\x00", mods=["finn.zoo"], rdp_password="secret"
            )

        assert result["id"] == INSTANCE_ID
        body = json.loads(requests[0].content)
        assert base64.b64decode(body["openzt_dll"]) == b"MZ\x90\x00"
        assert body["mods"] == ["finn.zoo"]
        assert body["config"]["rdp_password"] == "secret"

    async def test_error_body_becomes_api_error(self, requests: list[httpx.Request]) -> None:
        async with make_client(requests) as client:
            with pytest.raises(ApiError) as exc_info:
                await client.get_instance("unknown")

        assert exc_info.value.status_code == 404
        assert exc_info.value.code == "INSTANCE_NOT_FOUND"

    async def test_logs_tail_param(self, requests: list[httpx.Request]) -> None:
        async with make_client(requests) as client:
            logs = await client.get_logs(INSTANCE_ID, tail=5)

        assert logs == "hello\n"
        assert requests[0].url.params["tail"] == "5"


class TestRun:
    """Tests for command dispatch."""

    async def test_create_reads_dll(
        self,
        requests: list[httpx.Request],
        tmp_path: Path,
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        dll = tmp_path / "openzt.dll"
        dll.write_bytes(b"MZ\x90\x00")
        args = parse("--output", "json", "create", str(dll), "--mod", "a", "--mod", "b")

        async with make_client(requests) as client:
            code = await run(args, client)

        assert code == 0
        assert json.loads(requests[0].content)["mods"] == ["a", "b"]
        assert json.loads(capsys.readouterr().out)["id"] == INSTANCE_ID

    async def test_get_resolves_prefix(
        self, requests: list[httpx.Request], capsys: pytest.CaptureFixture[str]
    ) -> None:
        async with make_client(requests) as client:
            code = await run(parse("get", "ba4f"), client)

        assert code == 0
        assert requests[-1].url.path == f"/api/v1/instances/{INSTANCE_ID}"
        assert INSTANCE_ID in capsys.readouterr().out

    async def test_delete_with_yes(
        self, requests: list[httpx.Request], capsys: pytest.CaptureFixture[str]
    ) -> None:
        async with make_client(requests) as client:
            code = await run(parse("delete", "ba4f", "-y"), client)

        assert code == 0
        assert requests[-1].method == "DELETE"
        assert "deleted" in capsys.readouterr().out

    async def test_delete_cancelled(
        self,
        requests: list[httpx.Request],
        monkeypatch: pytest.MonkeyPatch,
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        monkeypatch.setattr("builtins.input", lambda prompt: "n")

        async with make_client(requests) as client:
            await run(parse("delete", "ba4f"), client)

        assert all(r.method != "DELETE" for r in requests)
        assert "Cancelled" in capsys.readouterr().out


class TestClientConfig:
    """Tests for ClientConfig."""

    def test_env_override(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("OPENZT_CLI_API_URL", "http://zoo:3000")
        monkeypatch.setenv("OPENZT_CLI_OUTPUT", "json")

        config = ClientConfig()
        args = build_parser(config).parse_args(["list"])

        assert args.api_url == "http://zoo:3000"
        assert args.output == "json"
