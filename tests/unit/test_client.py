import json

import httpx
import pytest

from conftest import build_execution
from pipeline_xray.client import XRayHttpClient
from pipeline_xray.config import CollectorConfig
from pipeline_xray.contracts import Execution
from pipeline_xray.errors import CollectorError, InvalidExecutionError


def _client(handler) -> XRayHttpClient:
    return XRayHttpClient(
        "http://collector.test/", "secret", transport=httpx.MockTransport(handler)
    )


@pytest.mark.asyncio
async def test_send_execution_posts_json_with_api_key():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["key"] = request.headers["X-API-Key"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(201, json={"success": True, "execution_id": "exec-1"})

    reply = await _client(handler).send_execution(build_execution(count=2))

    assert reply == {"success": True, "execution_id": "exec-1"}
    assert seen["url"] == "http://collector.test/api/logs"
    assert seen["key"] == "secret"
    assert seen["body"]["execution_id"] == "exec-1"
    assert [s["name"] for s in seen["body"]["steps"]] == ["step_0", "step_1"]


@pytest.mark.asyncio
async def test_server_error_message_is_surfaced():
    def handler(request):
        return httpx.Response(401, json={"error": "Invalid API key"})

    with pytest.raises(CollectorError) as exc_info:
        await _client(handler).send_execution(build_execution(count=1))

    assert str(exc_info.value) == "Invalid API key"
    assert exc_info.value.status_code == 401


@pytest.mark.asyncio
async def test_non_json_error_body():
    def handler(request):
        return httpx.Response(500, text="oops")

    with pytest.raises(CollectorError, match=r"Failed to send execution \(500\)"):
        await _client(handler).send_execution(build_execution(count=1))


@pytest.mark.asyncio
async def test_empty_execution_is_rejected_before_sending():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(200, json={})

    with pytest.raises(InvalidExecutionError):
        await _client(handler).send_execution(Execution(execution_id="exec-1"))
    assert calls == []


def test_from_config_requires_api_key():
    with pytest.raises(ValueError):
        XRayHttpClient.from_config(CollectorConfig())
    client = XRayHttpClient.from_config(CollectorConfig(api_key="k"))
    assert client.server_url == "http://localhost:3000"
