"""
ChimeRuntime — wires the components together and owns their lifecycle.

Everything stateful (scheduler registry, engagement cache, HTTP clients) is
constructed here and handed to the components that need it. There are no
module-level singletons.

Usage:
    runtime = ChimeRuntime.from_config(ChimeConfig.load())
    await runtime.initialize()
    await runtime.serve()        # long-poll Telegram until SIGINT/SIGTERM
    await runtime.shutdown()
"""

from __future__ import annotations

import asyncio
import logging
import random
import signal
import sys
import time
from typing import Any, Callable

from chime.context.builder import ConversationContextBuilder
from chime.core.config import ChimeConfig
from chime.core.errors import ChimeError, ConfigError, DeliveryError
from chime.core.types import UserMessage
from chime.delivery.base import DeliveryTransport
from chime.delivery.telegram import TelegramTransport
from chime.engagement.analyzer import ConversationAnalyzer
from chime.engagement.cache import EngagementCache
from chime.engagement.engine import EngagementEngine
from chime.llm.base import ProviderFactory
from chime.llm.images import ImageGenerator, OpenAIImageGenerator
from chime.llm.openai import OpenAIProviderPool
from chime.reply.loop import ReplyLoop
from chime.reply.tools import ReplyToolbox
from chime.scheduler.engine import JobScheduler
from chime.scheduler.timers import Timer
from chime.store.base import PersistenceGateway
from chime.store.records import Agent, StoredMessage
from chime.store.sqlite import SQLiteGateway

logger = logging.getLogger(__name__)

POLL_RETRY_DELAY = 5.0  # seconds to wait after a failed getUpdates

HELP_TEXT = (
    "{name} is an AI chat bot that follows this conversation and chimes in when "
    "it has something to add. Address {name} by name to get an answer straight "
    "away. Not everything {name} can do is obvious at first, so try asking for "
    "reminders or pictures."
)

CAPTION_PROMPT = (
    "Provide a concise, descriptive caption for this image. "
    "Mention key objects, scene, and any notable details."
)


class ChimeRuntime:
    """
    The host-facing core.

    Provides:
    1. Component wiring (scheduler, engagement engine, reply loop)
    2. Lifecycle (initialize / shutdown, signal hooks)
    3. The inbound flow: messages (handle_incoming), slash commands
       (handle_command) and photos (handle_photo)
    """

    def __init__(
        self,
        gateway: PersistenceGateway,
        transport: DeliveryTransport,
        providers: ProviderFactory,
        images: ImageGenerator | None = None,
        config: ChimeConfig | None = None,
        timer: Timer | None = None,
        rng: random.Random | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.config = config if config is not None else ChimeConfig()
        self.gateway = gateway
        self.transport = transport
        self._providers = providers
        self._images = images

        self.scheduler = JobScheduler(
            gateway, transport, timer=timer, config=self.config.scheduler, clock=clock
        )
        self.context = ConversationContextBuilder(gateway)
        self.engagement = EngagementEngine(
            self.context,
            ConversationAnalyzer(providers, self.config.engagement),
            cache=EngagementCache(ttl=self.config.engagement.cache_ttl),
            config=self.config.engagement,
            rng=rng,
        )
        self.toolbox = ReplyToolbox(
            gateway,
            self.scheduler,
            images=images,
            transport=transport,
            tz=self.config.reply.timezone,
            clock=clock,
        )
        self.reply = ReplyLoop(
            gateway, providers, self.toolbox, config=self.config.reply, clock=clock
        )

        self._initialized = False
        self._closed = False
        self._shutdown_event = asyncio.Event()
        self._signals: list[signal.Signals] = []

    @classmethod
    def from_config(cls, config: ChimeConfig) -> ChimeRuntime:
        """Production wiring: SQLite storage, Telegram delivery, OpenAI models."""
        if not config.telegram.configured:
            raise ConfigError("telegram.token is not set (CHIME_TELEGRAM_TOKEN)")

        images = None
        if config.llm.api_key:
            images = OpenAIImageGenerator(
                api_key=config.llm.api_key,
                model=config.images.model,
                size=config.images.size,
                base_url=config.llm.base_url,
            )

        return cls(
            gateway=SQLiteGateway(config.get_db_path()),
            transport=TelegramTransport(config.telegram.token, timeout=config.telegram.timeout),
            providers=OpenAIProviderPool(
                base_url=config.llm.base_url,
                default_model=config.llm.default_model,
                timeout=config.llm.timeout,
            ),
            images=images,
            config=config,
        )

    # ━━━ Lifecycle ━━━

    async def initialize(self, install_signal_handlers: bool = True) -> None:
        """Open storage, recover and start the scheduler, hook SIGINT/SIGTERM."""
        if self._initialized:
            return
        await self.gateway.initialize()
        await self.scheduler.start()
        if install_signal_handlers:
            self._install_signal_handlers()
        self._initialized = True
        logger.info("Chime runtime initialized")

    async def shutdown(self) -> None:
        """Stop the scheduler and release every handle. Safe to call twice."""
        if self._closed:
            return
        self._closed = True
        self._shutdown_event.set()
        self._remove_signal_handlers()

        await self.scheduler.stop()
        await self.transport.close()
        close_providers = getattr(self._providers, "close", None)
        if close_providers is not None:
            await close_providers()
        if self._images is not None:
            await self._images.close()
        await self.gateway.close()
        logger.info("Chime runtime shut down")

    def request_shutdown(self) -> None:
        """Ask serve() to return. Used as the signal handler."""
        logger.info("Shutdown requested")
        self._shutdown_event.set()

    async def wait_for_shutdown(self) -> None:
        await self._shutdown_event.wait()

    def _install_signal_handlers(self) -> None:
        if sys.platform == "win32":
            return
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, self.request_shutdown)
            self._signals.append(sig)

    def _remove_signal_handlers(self) -> None:
        if not self._signals:
            return
        loop = asyncio.get_running_loop()
        for sig in self._signals:
            loop.remove_signal_handler(sig)
        self._signals.clear()

    # ━━━ Inbound flow ━━━

    async def handle_incoming(
        self,
        chat_id: str,
        text: str,
        author_name: str | None = None,
    ) -> str | None:
        """
        Process one inbound chat message.

        Returns the reply that was sent, or None when the chat is not linked
        to an agent or the agent decided to stay silent.
        """
        agent = await self.gateway.find_agent_by_chat(chat_id)
        if agent is None:
            logger.debug(f"No agent linked to chat {chat_id}, ignoring message")
            return None

        await self.gateway.create_message(
            StoredMessage(agent_id=agent.id, role="user", content=text, author_name=author_name)
        )

        if not await self.engagement.should_engage(text, agent):
            return None

        reply_config = self.config.reply
        try:
            history = await self.context.build(
                agent.id, limit=reply_config.history_limit, agent=agent
            )
            reply = await self.reply.generate_reply(history, agent.id)
        except Exception as e:
            logger.error(f"Could not generate a reply for {agent.name!r}: {e}")
            await self._send(chat_id, reply_config.error_text)
            return reply_config.error_text

        if not reply.strip():
            reply = reply_config.empty_text

        await self.gateway.create_message(
            StoredMessage(agent_id=agent.id, role="assistant", content=reply)
        )
        await self._send(chat_id, reply)
        return reply

    async def handle_command(self, chat_id: str, text: str) -> str | None:
        """
        Answer a slash command such as /help or /stats.

        Commands never enter the conversation history. Returns the reply
        that was sent, or None for a command Chime does not know.
        """
        command = text.split(maxsplit=1)[0][1:].split("@", 1)[0].lower()
        agent = await self.gateway.find_agent_by_chat(chat_id)
        match command:
            case "help":
                reply = HELP_TEXT.format(name=agent.name if agent else "assistant")
            case "stats":
                if agent is None:
                    reply = "This chat is not linked to any agent."
                else:
                    reply = (
                        f"Bot: {agent.name}\n"
                        f"Chat ID: {chat_id}\n"
                        f"Engagement factor: {agent.engagement_factor}"
                    )
            case _:
                logger.debug(f"Ignoring unknown command /{command} in chat {chat_id}")
                return None
        await self._send(chat_id, reply)
        return reply

    async def handle_photo(
        self,
        chat_id: str,
        file_id: str,
        caption: str | None = None,
        author_name: str | None = None,
    ) -> str | None:
        """
        Record an inbound photo in the agent's history.

        The picture is described by a vision model and stored as an
        "image_description: ..." user message; a caption follows as an
        ordinary user message. Photos never trigger a reply. Returns the
        description, or None when there is none.
        """
        agent = await self.gateway.find_agent_by_chat(chat_id)
        if agent is None:
            logger.debug(f"No agent linked to chat {chat_id}, ignoring photo")
            return None

        description = ""
        try:
            image_url = await self.transport.file_url(file_id)
        except DeliveryError as e:
            logger.warning(f"Could not fetch photo {file_id}: {e}")
            image_url = None
        if image_url:
            description = await self._describe_image(agent, image_url)
        if description:
            await self.gateway.create_message(
                StoredMessage(
                    agent_id=agent.id, role="user", content=f"image_description: {description}"
                )
            )
        if caption:
            await self.gateway.create_message(
                StoredMessage(agent_id=agent.id, role="user", content=caption, author_name=author_name)
            )
        return description or None

    async def _describe_image(self, agent: Agent, image_url: str) -> str:
        try:
            llm = self._providers(agent)
            completion = await llm.complete(
                [UserMessage(CAPTION_PROMPT, image_url=image_url)],
                model=self.config.images.caption_model,
            )
        except ChimeError as e:
            logger.warning(f"Could not describe a photo for {agent.name!r}: {e}")
            return ""
        return completion.text.strip()

    async def _send(self, chat_id: str, text: str) -> None:
        try:
            await self.transport.send_text(chat_id, text)
        except DeliveryError as e:
            logger.warning(f"Reply to chat {chat_id} was not delivered: {e}")

    # ━━━ Telegram long-poll ━━━

    async def serve(self) -> None:
        """
        Long-poll Telegram for messages until shutdown is requested.

        Requires a TelegramTransport. Messages are handled one at a time in
        arrival order.
        """
        if not isinstance(self.transport, TelegramTransport):
            raise ConfigError("serve() needs a TelegramTransport")
        transport = self.transport
        poll_timeout = self.config.telegram.poll_timeout
        logger.info("Listening for Telegram messages")

        while not self._shutdown_event.is_set():
            poll = asyncio.create_task(transport.get_updates(poll_timeout))
            stop = asyncio.create_task(self._shutdown_event.wait())
            done, _ = await asyncio.wait({poll, stop}, return_when=asyncio.FIRST_COMPLETED)

            if stop in done:
                poll.cancel()
                await asyncio.gather(poll, return_exceptions=True)
                break
            stop.cancel()

            try:
                updates = poll.result()
            except DeliveryError as e:
                logger.warning(f"Polling Telegram failed: {e}")
                await asyncio.sleep(POLL_RETRY_DELAY)
                continue

            for update in updates:
                await self._handle_update(update)

    async def _handle_update(self, update: dict[str, Any]) -> None:
        message = update.get("message") or {}
        chat = message.get("chat") or {}
        if "id" not in chat:
            return
        chat_id = str(chat["id"])
        author = (message.get("from") or {}).get("first_name")
        text = message.get("text")
        photos = message.get("photo") or []
        try:
            if text and text.startswith("/"):
                await self.handle_command(chat_id, text)
            elif text:
                await self.handle_incoming(chat_id, text, author_name=author)
            elif photos and photos[-1].get("file_id"):
                # Telegram lists sizes smallest first
                await self.handle_photo(
                    chat_id, photos[-1]["file_id"], message.get("caption"), author_name=author
                )
        except Exception as e:
            logger.error(f"Failed to handle message in chat {chat_id}: {e}")
