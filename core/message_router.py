# Relay routing between the game server and the bridged Discord channel
from __future__ import annotations

import asyncio
import logging
from typing import Optional, Protocol, Union

from core.commands import CommandDispatcher, GameServer
from core.config import BridgeContext
from core.models import (
    Broadcast,
    Chat,
    GameEvent,
    OutboundMessage,
    PlatformMessage,
    PlayerJoined,
    PlayerLeft,
    ServerStarted,
    TextMessage,
)
from core.roster import RosterCache
from core.transformer import encode_outbound_mentions, normalize_emotes, normalize_outbound

QUEUE_SIZE = 256


class PlatformConnection(Protocol):
    @property
    def self_id(self) -> Optional[int]: ...

    def send(self, message: OutboundMessage) -> None: ...


Item = Union[GameEvent, PlatformMessage]


class RelayRouter:
    """Forwards game events to Discord and Discord messages to the game.

    Both sides only enqueue; a single consumer (run) does the work, so items
    from one side are forwarded in the order they arrived.
    """

    def __init__(self, context: BridgeContext, game: GameServer, connection: PlatformConnection,
                 roster: RosterCache, dispatcher: CommandDispatcher,
                 logger: Optional[logging.Logger] = None, queue_size: int = QUEUE_SIZE):
        self.context = context
        self.game = game
        self.connection = connection
        self.roster = roster
        self.dispatcher = dispatcher
        self.logger = logger or logging.getLogger("TerraRelay.Router")
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=queue_size)
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    # --- Intake ---

    def submit_game_event(self, event: GameEvent) -> None:
        self._submit(event)

    def submit_platform_message(self, message: PlatformMessage) -> None:
        self._submit(message)

    def attach(self, loop: asyncio.AbstractEventLoop) -> None:
        """Bind the queue to the loop that will consume it."""
        self._loop = loop

    def _submit(self, item: Item) -> None:
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if self._loop is None:
            if running is None:
                # asyncio.Queue is not thread-safe, so there is no safe way in yet
                self.logger.warning(f"Relay not started, dropping {type(item).__name__}")
                return
            self._loop = running
        if running is not self._loop:
            # Called from a foreign thread, e.g. a synchronous host hook
            self._loop.call_soon_threadsafe(self._enqueue, item)
        else:
            self._enqueue(item)

    def _enqueue(self, item: Item) -> None:
        try:
            self._queue.put_nowait(item)
        except asyncio.QueueFull:
            self.logger.warning(f"Relay queue full, dropping {type(item).__name__}")

    async def run(self) -> None:
        self.attach(asyncio.get_running_loop())
        self.logger.debug("Relay consumer started")
        while True:
            item = await self._queue.get()
            try:
                if isinstance(item, PlatformMessage):
                    await self.on_platform_message(item)
                else:
                    await self.on_game_event(item)
            except Exception as exc:
                self.logger.error(f"Failed to relay {type(item).__name__}: {exc}", exc_info=True)
            finally:
                self._queue.task_done()

    async def drain(self) -> None:
        await self._queue.join()

    # --- Game server -> Discord ---

    def _is_game_command(self, text: str) -> bool:
        specifiers = (self.game.command_specifier, self.game.silent_command_specifier)
        return any(spec and text.startswith(spec) for spec in specifiers)

    async def on_game_event(self, event: GameEvent) -> None:
        config = self.context.config
        if isinstance(event, PlayerJoined):
            if event.player is None:
                self.logger.warning("Join event without a player record, not relayed")
                return
            self.logger.info(f"{event.player} has joined the server.")
            line = f"**:heavy_plus_sign: {event.player} has joined the server.**"
        elif isinstance(event, PlayerLeft):
            if event.player is None:
                self.logger.info("Leave event for an already reclaimed player, not relayed")
                return
            self.logger.info(f"{event.player} has left the server.")
            line = f"**:heavy_minus_sign: {event.player} has left the server.**"
        elif isinstance(event, Chat):
            if self._is_game_command(event.text):
                return
            name = event.player or "Unknown"
            if config.log_chat:
                self.logger.info(f"{name} said: {event.text}")
            text = encode_outbound_mentions(event.text, self.roster.snapshot)
            line = f"**<{name}>** {text}"
        elif isinstance(event, Broadcast):
            if self._is_game_command(event.text):
                return
            self.logger.info(f"Server broadcast: {event.text}")
            line = f"**:mega: Broadcast:** {event.text}"
        elif isinstance(event, ServerStarted):
            self.logger.info("Server has started.")
            line = "**:rocket: Server has started.**"
        else:
            raise TypeError(f"Unhandled game event: {event!r}")
        self.connection.send(TextMessage(line))

    # --- Discord -> game server ---

    async def on_platform_message(self, message: PlatformMessage) -> None:
        config = self.context.config
        if message.channel_id != config.channel_id:
            return
        # Never echo the relay's own posts back into the game
        if message.author_id == self.connection.self_id:
            return

        prefix = config.command_prefix
        if message.content.startswith(prefix) and len(message.content) > len(prefix):
            await self.dispatcher.dispatch(message.content, message.author_id)
            return

        text = normalize_emotes(normalize_outbound(message.content, self.roster.snapshot))
        if not text.strip():
            return
        line = f"<{message.author_name}@Discord> {text}"
        if config.log_chat:
            self.logger.info(line)
        try:
            await self.game.broadcast(line, config.broadcast_color)
        except Exception as exc:
            self.logger.error(f"Unable to broadcast message to the game server: {exc}")
