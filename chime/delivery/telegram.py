"""
TelegramTransport — delivers messages and media via a Telegram bot.

Requires config:
    [telegram]
    token = "BOT_TOKEN"

Targets are chat ids. Agents are linked to a chat by storing its id in
agent.linked_chat_id.

To get a chat id:
    1. Create a bot via @BotFather, copy the token.
    2. Add the bot to the chat and send it any message.
    3. Visit https://api.telegram.org/bot<TOKEN>/getUpdates
       and read the "chat.id" field.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import httpx

from chime.core.errors import ConfigError, DeliveryError
from chime.delivery.base import DeliveryTransport, is_remote_ref

logger = logging.getLogger(__name__)

_TELEGRAM_API = "https://api.telegram.org/bot{token}"
_TELEGRAM_FILES = "https://api.telegram.org/file/bot{token}/{path}"


class TelegramTransport(DeliveryTransport):
    """
    Sends text, photos and videos through the Telegram Bot API.

    Also exposes get_updates() so a host can long-poll inbound messages
    without a public webhook URL, and file_url() to fetch inbound photos.
    """

    def __init__(
        self,
        token: str,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._token = token.strip()
        if not self._token:
            raise ConfigError("A Telegram bot token is required")
        self._timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._offset = 0

    @property
    def name(self) -> str:
        return "telegram"

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=_TELEGRAM_API.format(token=self._token),
                timeout=self._timeout,
                transport=self._transport,
            )
        return self._client

    async def _call(
        self,
        method: str,
        target: str,
        json: dict[str, Any] | None = None,
        data: dict[str, Any] | None = None,
        files: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        client = await self._get_client()
        try:
            resp = await client.post(f"/{method}", json=json, data=data, files=files)
        except httpx.HTTPError as e:
            raise DeliveryError(f"Telegram {method} failed: {e}", target=target) from e
        if resp.status_code != 200:
            raise DeliveryError(
                f"Telegram {method} error ({resp.status_code}): {resp.text}",
                target=target,
            )
        body = resp.json()
        if not body.get("ok", False):
            raise DeliveryError(
                f"Telegram {method} rejected: {body.get('description', 'unknown error')}",
                target=target,
            )
        return body

    async def send_text(self, target: str, text: str, parse_mode: str | None = None) -> None:
        payload: dict[str, Any] = {"chat_id": target, "text": text}
        if parse_mode:
            payload["parse_mode"] = parse_mode
        await self._call("sendMessage", target, json=payload)
        logger.debug(f"Telegram text sent to {target}")

    async def send_photo(self, target: str, ref: str) -> None:
        await self._send_media("sendPhoto", "photo", target, ref)

    async def send_video(self, target: str, ref: str) -> None:
        await self._send_media("sendVideo", "video", target, ref)

    async def _send_media(self, method: str, field: str, target: str, ref: str) -> None:
        if is_remote_ref(ref):
            await self._call(method, target, json={"chat_id": target, field: ref})
        else:
            path = Path(ref)
            try:
                content = path.read_bytes()
            except OSError as e:
                raise DeliveryError(f"Cannot read media file {ref}: {e}", target=target) from e
            await self._call(
                method,
                target,
                data={"chat_id": target},
                files={field: (path.name, content)},
            )
        logger.debug(f"Telegram {field} sent to {target}")

    async def file_url(self, file_id: str) -> str:
        """Resolve an inbound file id through getFile. The URL embeds the bot token."""
        body = await self._call("getFile", "", json={"file_id": file_id})
        path = (body.get("result") or {}).get("file_path")
        if not path:
            raise DeliveryError(f"Telegram getFile returned no path for {file_id}")
        return _TELEGRAM_FILES.format(token=self._token, path=path)

    async def get_updates(self, poll_timeout: int = 25) -> list[dict[str, Any]]:
        """Long-poll for new updates and advance the offset past them."""
        client = await self._get_client()
        try:
            resp = await client.get(
                "/getUpdates",
                params={"offset": self._offset, "timeout": poll_timeout},
                timeout=poll_timeout + self._timeout,
            )
        except httpx.HTTPError as e:
            raise DeliveryError(f"Telegram getUpdates failed: {e}") from e
        if resp.status_code != 200:
            raise DeliveryError(f"Telegram getUpdates error ({resp.status_code}): {resp.text}")
        updates: list[dict[str, Any]] = resp.json().get("result", [])
        if updates:
            self._offset = updates[-1]["update_id"] + 1
        return updates

    async def close(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()
        self._client = None
