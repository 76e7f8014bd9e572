# src/relay/discord_bridge.py
"""
Discord relay bridge.

Runs a discord.Client on its own daemon thread with its own event loop.
The tick loop never awaits anything here; the two sides only share:

  - `Outbox` (tick loop -> Discord): flushed every FLUSH_INTERVAL_S
  - `inbox` queue (Discord -> tick loop): command lines only; any
    message without the command prefix is dropped
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import logging
import queue
import threading
from typing import List, Optional

import discord

from env.schema import RelayConfig

from .outbox import FLUSH_INTERVAL_S, Outbox

log = logging.getLogger(__name__)

ONLINE_MESSAGE = "✅ **AFK agent online!**"
CLOSE_TIMEOUT_S = 5.0


class RelayClient(discord.Client):
    """Thin discord.Client that hands inbound lines to the DiscordRelay."""

    def __init__(self, relay: "DiscordRelay", **discord_kwargs):
        intents = discord.Intents.default()
        intents.message_content = True
        super().__init__(intents=intents, **discord_kwargs)
        self._relay = relay
        self._channel: Optional[discord.abc.Messageable] = None

    async def setup_hook(self) -> None:
        self.loop.create_task(self._flush_loop())

    async def on_ready(self):
        log.info("Relay logged in as %s", self.user)
        channel_id = self._relay.config.channel_id
        try:
            self._channel = self.get_channel(channel_id) or await self.fetch_channel(channel_id)
        except discord.DiscordException as exc:
            log.error("Relay channel %s unavailable: %s", channel_id, exc)
            log.info("Check the channel id: enable Developer Mode, right-click the channel, Copy ID")
            return
        await self.send_text(ONLINE_MESSAGE)

    async def on_message(self, message: discord.Message):
        if message.author.bot or message.channel.id != self._relay.config.channel_id:
            return
        self._relay.accept_inbound(message.content, str(message.author))

    async def send_text(self, text: str) -> None:
        if self._channel is None:
            return
        try:
            await self._channel.send(text)
        except discord.DiscordException as exc:
            log.error("Relay send failed: %s", exc)

    async def flush(self, everything: bool = False) -> None:
        if self._channel is None:
            return
        outbox = self._relay.outbox
        if everything:
            for chunk in outbox.drain_all():
                await self.send_text(chunk)
            return
        chunk = outbox.drain_chunk()
        if chunk is not None:
            await self.send_text(chunk)

    async def _flush_loop(self) -> None:
        await self.wait_until_ready()
        while not self.is_closed():
            await asyncio.sleep(FLUSH_INTERVAL_S)
            await self.flush()


class DiscordRelay:
    """
    Owns the relay thread. `start()` returns immediately.

    Nothing here is fatal to the session: login failures and dropped
    gateways are logged and the agent keeps running without a relay.
    """

    def __init__(self, config: RelayConfig, prefix: str = "!", outbox: Optional[Outbox] = None) -> None:
        self.config = config
        self.prefix = prefix
        self.outbox = outbox or Outbox()
        self.inbox: "queue.Queue[tuple[str, str]]" = queue.Queue()
        self._client: Optional[RelayClient] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._thread: Optional[threading.Thread] = None

    # --------------------------------------------------------
    # Inbound (Discord thread)
    # --------------------------------------------------------

    def accept_inbound(self, content: str, author: str = "") -> bool:
        line = content.strip()
        if not line.startswith(self.prefix):
            return False
        self.inbox.put((line, author))
        return True

    def drain_inbox(self) -> List[tuple[str, str]]:
        lines: List[tuple[str, str]] = []
        while True:
            try:
                lines.append(self.inbox.get_nowait())
            except queue.Empty:
                return lines

    # --------------------------------------------------------
    # Lifecycle
    # --------------------------------------------------------

    def start(self) -> None:
        if self._thread is not None:
            return
        self._thread = threading.Thread(target=self._run, name="discord-relay", daemon=True)
        self._thread.start()

    def _run(self) -> None:
        try:
            asyncio.run(self._main())
        except discord.LoginFailure as exc:
            log.error("Relay login failed: %s", exc)
        except Exception:
            log.exception("Relay stopped unexpectedly")

    async def _main(self) -> None:
        self._loop = asyncio.get_running_loop()
        self._client = RelayClient(self)
        async with self._client:
            await self._client.start(self.config.token)

    def close(self, flush: bool = True) -> None:
        """Flush pending lines (optionally) and log the client out."""
        client, loop = self._client, self._loop
        if client is None or loop is None or loop.is_closed():
            return
        future = asyncio.run_coroutine_threadsafe(self._shutdown(client, flush), loop)
        try:
            future.result(timeout=CLOSE_TIMEOUT_S)
        except concurrent.futures.TimeoutError:
            log.warning("Relay did not close within %.0fs", CLOSE_TIMEOUT_S)
        except discord.DiscordException as exc:
            log.warning("Relay close failed: %s", exc)

    @staticmethod
    async def _shutdown(client: RelayClient, flush: bool) -> None:
        if flush:
            await client.flush(everything=True)
        await client.close()
