# Discord transport client: owns the bot session and the bridged channel
import asyncio
import contextlib
import enum
from typing import Callable, Iterator, Optional

import discord
from discord.ext import commands

from core.config import BridgeContext
from core.errors import ConnectionFailed, handle_fatal_error
from core.models import EntityKind, OutboundMessage, PlatformMessage, RichMessage, RosterEntry, TextMessage
from core.roster import RosterCache

READY_TIMEOUT = 60.0

RELAY_AVAILABLE = "**:white_check_mark: Relay available.**"
RELAY_SHUTDOWN = "**:octagonal_sign: Relay shutting down.**"

# In-game text may contain @everyone or @here literally
ALLOWED_MENTIONS = discord.AllowedMentions(everyone=False)


class ConnectionState(enum.Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"


def build_intents() -> discord.Intents:
    intents = discord.Intents.default()
    # Member list is needed to resolve @user mentions in larger servers
    intents.members = True
    intents.message_content = True
    return intents


def build_embed(message: RichMessage) -> discord.Embed:
    embed = discord.Embed(
        title=message.title,
        description=message.description,
        colour=discord.Colour(message.color),
        timestamp=message.timestamp,
    )
    embed.set_footer(text=message.footer)
    return embed


class DiscordClient:
    def __init__(self, bot: commands.Bot, context: BridgeContext, roster: RosterCache, logger):
        self.bot = bot
        self.context = context
        self.roster = roster
        self.logger = logger
        self.state = ConnectionState.DISCONNECTED
        self.channel: Optional[discord.abc.Messageable] = None
        self.ready = asyncio.Event()
        self._on_message_callback: Optional[Callable[[PlatformMessage], None]] = None
        self._session_task: Optional[asyncio.Task] = None
        self._pending: set = set()

        @self.bot.event
        async def on_ready():
            await self._handle_ready()

        @self.bot.event
        async def on_resumed():
            self.state = ConnectionState.CONNECTED
            self.logger.info("Discord session resumed")

        @self.bot.event
        async def on_disconnect():
            if self.state is ConnectionState.CONNECTED:
                self.state = ConnectionState.RECONNECTING
                self.logger.warning("Lost connection to Discord, waiting for the gateway to reconnect")

        @self.bot.event
        async def on_message(message):
            self._handle_message(message)

        async def on_roster_change(*_args):
            self.refresh_roster()

        for event in (
            "on_member_join", "on_member_remove", "on_member_update",
            "on_guild_channel_create", "on_guild_channel_delete", "on_guild_channel_update",
            "on_guild_role_create", "on_guild_role_delete", "on_guild_role_update",
        ):
            self.bot.add_listener(on_roster_change, event)

    @property
    def self_id(self) -> Optional[int]:
        user = self.bot.user
        return user.id if user is not None else None

    def set_on_message(self, callback: Callable[[PlatformMessage], None]) -> None:
        self._on_message_callback = callback

    # --- Lifecycle ---

    async def connect(self, token: str) -> bool:
        if self.state is not ConnectionState.DISCONNECTED:
            return self.state is ConnectionState.CONNECTED
        self.state = ConnectionState.CONNECTING
        self.ready.clear()
        self.logger.info("Connecting to Discord...")
        try:
            await self._login_and_wait(token)
        except ConnectionFailed as exc:
            self.state = ConnectionState.DISCONNECTED
            handle_fatal_error(self.logger, f"Unable to connect to Discord: {exc}",
                               self.context.config.abort_on_error)
            return False
        return True

    async def _login_and_wait(self, token: str) -> None:
        try:
            await self.bot.login(token)
        except (discord.LoginFailure, discord.HTTPException) as exc:
            raise ConnectionFailed(str(exc)) from exc

        self._session_task = asyncio.create_task(self.bot.connect(reconnect=True), name="discord-session")
        self._session_task.add_done_callback(self._session_done)
        ready_wait = asyncio.create_task(self.ready.wait())
        done, _ = await asyncio.wait(
            {ready_wait, self._session_task},
            timeout=READY_TIMEOUT,
            return_when=asyncio.FIRST_COMPLETED,
        )
        if ready_wait in done:
            return
        ready_wait.cancel()
        if not done:
            raise ConnectionFailed("timed out waiting for ready")
        raise ConnectionFailed("session ended before ready")

    def _session_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self.logger.error(f"Discord session crashed: {exc}", exc_info=exc)
        self.state = ConnectionState.DISCONNECTED

    async def _handle_ready(self) -> None:
        config = self.context.config
        self.state = ConnectionState.CONNECTED
        channel = self.bot.get_channel(config.channel_id)
        if channel is None:
            try:
                channel = await self.bot.fetch_channel(config.channel_id)
            except discord.DiscordException as exc:
                self.logger.error(f"Unable to acquire Discord channel {config.channel_id}: {exc}")
        self.channel = channel

        try:
            await self.bot.change_presence(activity=discord.Game(name=config.bot_game))
        except Exception as exc:
            handle_fatal_error(self.logger, f"Unable to set game/playing status: {exc}", config.abort_on_error)

        self.refresh_roster()
        # Announced on every connect and reconnect
        self.logger.info(f"Relay available. Connected to Discord as {self.bot.user}.")
        self.send(TextMessage(RELAY_AVAILABLE))
        self.ready.set()

    async def disconnect(self) -> None:
        if self._session_task is None and self.state is ConnectionState.DISCONNECTED:
            return
        self.logger.info("Relay shutting down.")
        self.state = ConnectionState.DISCONNECTED
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)
        if self.channel is not None:
            try:
                await self.channel.send(RELAY_SHUTDOWN)
            except discord.DiscordException as exc:
                self.logger.error(f"Unable to send shutdown notice: {exc}")
        await self.bot.close()
        if self._session_task is not None:
            with contextlib.suppress(asyncio.CancelledError, Exception):
                await self._session_task
            self._session_task = None
        self.channel = None

    # --- Roster ---

    def _roster_entries(self) -> Iterator[RosterEntry]:
        for guild in self.bot.guilds:
            for channel in guild.text_channels:
                yield RosterEntry(EntityKind.CHANNEL, channel.id, channel.name)
            for role in guild.roles:
                if role.is_default():
                    continue
                yield RosterEntry(EntityKind.ROLE, role.id, role.name)
            for member in guild.members:
                yield RosterEntry(EntityKind.USER, member.id, member.name)

    def refresh_roster(self) -> bool:
        return self.roster.refresh(self._roster_entries)

    # --- Messages ---

    def _handle_message(self, message: discord.Message) -> None:
        if self._on_message_callback is None:
            return
        author = message.author
        self._on_message_callback(PlatformMessage(
            channel_id=message.channel.id,
            author_id=author.id,
            author_name=getattr(author, "name", None) or "Unknown",
            content=message.content or "",
        ))

    def send(self, message: OutboundMessage) -> None:
        """Fire-and-forget delivery to the bridged channel."""
        channel = self.channel
        if channel is None:
            self.logger.debug("Relay channel not resolved yet, message dropped")
            return
        if isinstance(message, RichMessage):
            coro = channel.send(embed=build_embed(message), allowed_mentions=ALLOWED_MENTIONS)
        else:
            coro = channel.send(message.text, allowed_mentions=ALLOWED_MENTIONS)
        task = asyncio.create_task(coro)
        self._pending.add(task)
        task.add_done_callback(self._send_done)

    def _send_done(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self.logger.error(f"Unable to send Discord message: {exc}")
