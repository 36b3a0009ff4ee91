import json

import pytest
import pytest_asyncio

from http_transport import AiohttpTransport
from sequence_errors import TransportError
from sequence_models import HttpRequest
from tests.e2e.mock_server import create_mock_server, shutdown_mock_server


@pytest_asyncio.fixture
async def mock_server():
    runner, base_url, hits, requests = await create_mock_server()
    yield {'base_url': base_url, 'hits': hits, 'requests': requests}
    await shutdown_mock_server(runner)


@pytest.mark.asyncio
async def test_json_body_is_sent_with_content_type(mock_server):
    async with AiohttpTransport() as transport:
        response = await transport.send(HttpRequest(
            method="POST", url=f"{mock_server['base_url']}/echo", body={"a": 1},
        ))

    assert response.status == 200
    assert response.status_text == "OK"
    assert json.loads(response.body["body"]) == {"a": 1}
    assert response.body["headers"]["Content-Type"] == "application/json"
    assert response.duration >= 0


@pytest.mark.asyncio
async def test_string_body_is_sent_raw(mock_server):
    async with AiohttpTransport() as transport:
        response = await transport.send(HttpRequest(
            method="PUT", url=f"{mock_server['base_url']}/echo", body="a=1&b=2",
            headers={"Content-Type": "application/x-www-form-urlencoded"},
        ))
    assert response.body["body"] == "a=1&b=2"


@pytest.mark.asyncio
async def test_body_is_not_sent_for_get(mock_server):
    async with AiohttpTransport() as transport:
        await transport.send(HttpRequest(method="GET", url=f"{mock_server['base_url']}/echo", body={"a": 1}))
    assert mock_server['requests'][0]['body'] == ""


@pytest.mark.asyncio
async def test_non_2xx_does_not_raise(mock_server):
    async with AiohttpTransport() as transport:
        response = await transport.send(HttpRequest(method="GET", url=f"{mock_server['base_url']}/status/404"))
    assert response.status == 404
    assert response.body == {"code": 404}


@pytest.mark.asyncio
async def test_text_body_is_kept_as_text(mock_server):
    async with AiohttpTransport() as transport:
        response = await transport.send(HttpRequest(method="GET", url=f"{mock_server['base_url']}/text"))
    assert response.body == "plain text body"


@pytest.mark.asyncio
async def test_timeout_raises_transport_error(mock_server):
    async with AiohttpTransport() as transport:
        with pytest.raises(TransportError, match=r"Request timeout after 0\.2s") as exc_info:
            await transport.send(HttpRequest(method="GET", url=f"{mock_server['base_url']}/slow", timeout=0.2))
    assert exc_info.value.duration >= 0.1


@pytest.mark.asyncio
async def test_connection_error_raises_transport_error():
    async with AiohttpTransport() as transport:
        with pytest.raises(TransportError, match="Network error"):
            await transport.send(HttpRequest(method="GET", url="http://127.0.0.1:1/unreachable", timeout=2))
