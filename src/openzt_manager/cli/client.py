"""HTTP client for the manager REST API."""

import base64
import logging

import httpx

logger = logging.getLogger(__name__)


class ApiError(Exception):
    """Non-success response from the manager."""

    def __init__(self, status_code: int, code: str, message: str) -> None:
        self.status_code = status_code
        self.code = code
        self.message = message
        super().__init__(f"{message} ({code}, HTTP {status_code})")


def _raise_for_error(resp: httpx.Response) -> None:
    if resp.is_success:
        return
    code = "HTTP_ERROR"
    message = resp.text or resp.reason_phrase
    try:
        body = resp.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict):
            code = error.get("code", code)
            message = error.get("message", message)
        elif "detail" in body:
            message = str(body["detail"])
    raise ApiError(resp.status_code, code, message)


class InstanceClient:
    """Async client for /api/v1/instances and /health.

    Use as an async context manager so the connection pool is closed.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 120.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=timeout,
            transport=transport,
        )

    async def __aenter__(self) -> "InstanceClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def close(self) -> None:
        await self._client.aclose()

    async def health(self) -> dict:
        resp = await self._client.get("/health")
        _raise_for_error(resp)
        return resp.json()

    async def create_instance(
        self,
        dll: bytes,
        mods: list[str] | None = None,
        rdp_password: str | None = None,
        wine_debug_level: str | None = None,
        cpulimit: float | None = None,
    ) -> dict:
        body = {
            "openzt_dll": base64.b64encode(dll).decode("ascii"),
            "mods": mods or [],
            "config": {
                "rdp_password": rdp_password,
                "wine_debug_level": wine_debug_level,
                "cpulimit": cpulimit,
            },
        }
        resp = await self._client.post("/api/v1/instances", json=body)
        _raise_for_error(resp)
        return resp.json()

    async def list_instances(self) -> list[dict]:
        resp = await self._client.get("/api/v1/instances")
        _raise_for_error(resp)
        return resp.json()["instances"]

    async def get_instance(self, instance_id: str) -> dict:
        resp = await self._client.get(f"/api/v1/instances/{instance_id}")
        _raise_for_error(resp)
        return resp.json()

    async def delete_instance(self, instance_id: str) -> None:
        resp = await self._client.delete(f"/api/v1/instances/{instance_id}")
        _raise_for_error(resp)

    async def get_logs(self, instance_id: str, tail: int | None = None) -> str:
        params = {"tail": tail} if tail is not None else None
        resp = await self._client.get(f"/api/v1/instances/{instance_id}/logs", params=params)
        _raise_for_error(resp)
        return resp.json()["logs"]
