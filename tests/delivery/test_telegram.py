"""Tests for chime/delivery/telegram.py over a mocked HTTP transport."""
from __future__ import annotations

import json

import httpx
import pytest

from chime.core.errors import ConfigError, DeliveryError
from chime.delivery.base import is_remote_ref
from chime.delivery.telegram import TelegramTransport


class FakeTelegram:
    def __init__(self, status=200, body=None):
        self.status = status
        self.body = body if body is not None else {"ok": True, "result": {}}
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return httpx.Response(self.status, json=self.body)


def make_transport(fake):
    return TelegramTransport("123:abc", transport=httpx.MockTransport(fake))


def test_remote_refs():
    assert is_remote_ref("https://cdn/x.png")
    assert is_remote_ref("http://cdn/x.png")
    assert not is_remote_ref("/var/media/x.png")


def test_token_required():
    with pytest.raises(ConfigError):
        TelegramTransport("   ")


@pytest.mark.asyncio
class TestSend:
    async def test_send_text(self):
        fake = FakeTelegram()
        transport = make_transport(fake)

        await transport.send_text("42", "Drink water")

        request = fake.requests[0]
        assert request.url.path == "/bot123:abc/sendMessage"
        assert json.loads(request.content) == {"chat_id": "42", "text": "Drink water"}
        await transport.close()

    async def test_send_text_with_parse_mode(self):
        fake = FakeTelegram()
        await make_transport(fake).send_text("42", "*hi*", parse_mode="Markdown")
        assert json.loads(fake.requests[0].content)["parse_mode"] == "Markdown"

    async def test_photo_url_sent_by_reference(self):
        fake = FakeTelegram()
        await make_transport(fake).send_photo("42", "https://img.example/cat.png")

        request = fake.requests[0]
        assert request.url.path.endswith("/sendPhoto")
        assert json.loads(request.content) == {"chat_id": "42", "photo": "https://img.example/cat.png"}

    async def test_local_video_is_uploaded(self, tmp_path):
        clip = tmp_path / "clip.mp4"
        clip.write_bytes(b"\x00\x01video")
        fake = FakeTelegram()

        await make_transport(fake).send_video("42", str(clip))

        request = fake.requests[0]
        assert request.url.path.endswith("/sendVideo")
        assert request.headers["content-type"].startswith("multipart/form-data")
        assert b'name="chat_id"' in request.content
        assert b'filename="clip.mp4"' in request.content
        assert b"\x00\x01video" in request.content

    async def test_missing_local_file(self, tmp_path):
        fake = FakeTelegram()
        with pytest.raises(DeliveryError) as exc:
            await make_transport(fake).send_photo("42", str(tmp_path / "nope.png"))
        assert exc.value.target == "42"
        assert fake.requests == []

    async def test_http_error_status(self):
        fake = FakeTelegram(status=403, body={"ok": False, "description": "bot was kicked"})
        with pytest.raises(DeliveryError, match="403"):
            await make_transport(fake).send_text("42", "hi")

    async def test_rejected_by_api(self):
        fake = FakeTelegram(body={"ok": False, "description": "chat not found"})
        with pytest.raises(DeliveryError, match="chat not found"):
            await make_transport(fake).send_text("42", "hi")

    async def test_network_failure(self):
        def broken(request):
            raise httpx.ConnectError("down", request=request)

        transport = TelegramTransport("t", transport=httpx.MockTransport(broken))
        with pytest.raises(DeliveryError):
            await transport.send_text("42", "hi")


@pytest.mark.asyncio
class TestUpdates:
    async def test_offset_advances(self):
        fake = FakeTelegram(
            body={"ok": True, "result": [{"update_id": 7, "message": {}}, {"update_id": 8, "message": {}}]}
        )
        transport = make_transport(fake)

        updates = await transport.get_updates(poll_timeout=0)
        assert [u["update_id"] for u in updates] == [7, 8]
        assert fake.requests[0].url.params["offset"] == "0"

        fake.body = {"ok": True, "result": []}
        assert await transport.get_updates(poll_timeout=0) == []
        assert fake.requests[1].url.params["offset"] == "9"

    async def test_error_status(self):
        transport = make_transport(FakeTelegram(status=502, body={}))
        with pytest.raises(DeliveryError):
            await transport.get_updates(poll_timeout=0)


@pytest.mark.asyncio
class TestInboundFiles:
    async def test_file_url_from_get_file(self):
        fake = FakeTelegram(body={"ok": True, "result": {"file_id": "big", "file_path": "photos/file_7.jpg"}})
        transport = make_transport(fake)

        url = await transport.file_url("big")

        assert url == "https://api.telegram.org/file/bot123:abc/photos/file_7.jpg"
        assert fake.requests[0].url.path == "/bot123:abc/getFile"
        assert json.loads(fake.requests[0].content) == {"file_id": "big"}

    async def test_missing_path_raises(self):
        transport = make_transport(FakeTelegram(body={"ok": True, "result": {}}))
        with pytest.raises(DeliveryError):
            await transport.file_url("big")
