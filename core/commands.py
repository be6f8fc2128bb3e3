# Discord-side commands: informational built-ins and remote game commands
from __future__ import annotations

import logging
from typing import Awaitable, Callable, Optional, Protocol

from core.config import APP_NAME, VERSION, BridgeContext
from core.models import (
    COLOR_BLUE,
    COLOR_GREEN,
    COLOR_RED,
    Command,
    OutboundMessage,
    PlayerList,
    RGB,
    RichMessage,
    ServerInfo,
)

# Game commands a Discord operator may run remotely
REMOTE_COMMANDS = frozenset(
    "annoy ban broadcast firework give godmode heal kick kill mute reload save slap stop warp whisper".split()
)

GENERAL_HELP = (
    "__**General Commands**__\n"
    "**help**       - Display command list\n"
    "**playerlist** - Display online players\n"
    "**serverinfo** - Display server details\n"
    "**uptime**     - Display relay uptime\n\n"
)

ADMIN_HELP = (
    "__**Administrative Commands**__\n"
    "**annoy <player> <seconds>** - Annoy player with a sound for the specified amount of time\n"
    "**ban add <player/IP address> <time> [reason]** - Ban player or IP address for the specified time "
    "with optional reason -- <time> can be 0 for a permanent ban or is in the format: 1d 2h 3m 4s\n"
    "**ban del <player>** - Unban player\n"
    "**ban delip <IP address>** - Unban IP address\n"
    "**broadcast <text>** - Broadcast arbitrary text to all players\n"
    "**firework <player> [color]** - Detonate a blue, green, red, or yellow firework on a player\n"
    "**give <item/ID> <player> [amount]** - Give player an item specified by name or numerical ID\n"
    "**godmode <player>** - Make player invincible\n"
    "**heal <player>** - Restore player health\n"
    "**kick <player> [reason]** - Kick player for optional reason\n"
    "**kill <player>** - Kill player\n"
    "**mute <player> [reason]** - Mute player for optional reason\n"
    "**reload** - Reload configuration\n"
    "**save** - Save world\n"
    "**slap <player> [damage]** - Slap player for arbitrary damage\n"
    "**stop** - Shut down server\n"
    "**warp send <player> <location>** - Warp player to preset location\n"
    "**whisper <player> <text>** - Message player with arbitrary text"
)


class GameServer(Protocol):
    """What the relay needs from the game server host."""

    command_specifier: str
    silent_command_specifier: str

    async def players(self) -> PlayerList: ...

    async def server_info(self) -> ServerInfo: ...

    async def broadcast(self, text: str, color: RGB) -> None: ...

    async def execute_command(self, line: str) -> bool: ...


def parse_command(raw: str, prefix: str, issuer_id: int) -> Optional[Command]:
    if not raw.startswith(prefix):
        return None
    body = raw[len(prefix):].strip()
    if not body:
        return None
    name, *rest = body.split(maxsplit=1)
    return Command(name=name, args=rest[0] if rest else "", issuer_id=issuer_id)


def format_uptime(elapsed) -> str:
    hours, remainder = divmod(elapsed.seconds, 3600)
    minutes, seconds = divmod(remainder, 60)
    return f"{elapsed.days} day(s), {hours} hour(s), {minutes} minute(s), and {seconds} second(s)"


class CommandDispatcher:
    def __init__(self, context: BridgeContext, game: GameServer,
                 send: Callable[[OutboundMessage], None], logger: Optional[logging.Logger] = None,
                 on_reload: Optional[Callable[[], Awaitable[None]]] = None):
        self.context = context
        self.game = game
        self.send = send
        self.logger = logger or logging.getLogger("TerraRelay.Commands")
        self.on_reload = on_reload
        self._builtins = {
            "help": self._help,
            "playerlist": self._player_list,
            "serverinfo": self._server_info,
            "uptime": self._uptime,
        }

    async def dispatch(self, raw: str, issuer_id: int) -> None:
        command = parse_command(raw, self.context.config.command_prefix, issuer_id)
        if command is None:
            return
        self.logger.info(f"Command sent: {command.line}")

        builtin = self._builtins.get(command.name.lower()) if not command.args else None
        if builtin is not None:
            try:
                title, description = await builtin()
            except Exception as exc:
                self.logger.error(f"Unable to answer {command.name}: {exc}", exc_info=True)
                return
            self._respond(title, description)
            return

        if self.context.config.remote_commands and command.name.lower() in REMOTE_COMMANDS:
            await self._execute_remote(command)
            return
        self.logger.debug(f"Ignoring unknown command: {command.name}")

    async def _execute_remote(self, command: Command) -> None:
        config = self.context.config
        if command.issuer_id != config.owner_id:
            self.logger.warning(f"Unauthorized remote command from {command.issuer_id}: {command.line}")
            self._respond("Command Status", f"Access denied for: {command.line}", COLOR_RED)
            return

        line = f"{self.game.command_specifier}{command.line}"
        try:
            succeeded = await self.game.execute_command(line)
        except Exception as exc:
            self.logger.error(f"Remote command {line!r} raised: {exc}", exc_info=True)
            succeeded = False

        if succeeded:
            self.logger.info(f"Remotely executed: {command.line}")
            if command.name.lower() == "reload" and self.on_reload is not None:
                try:
                    await self.on_reload()
                except Exception as exc:
                    self.logger.error(f"Relay configuration reload failed: {exc}")
        else:
            self.logger.warning(f"Failed to execute: {command.line}")

        if config.remote_results:
            if succeeded:
                self._respond("Command Status", f"Remotely executed: {command.line}", COLOR_GREEN)
            else:
                self._respond("Command Status", f"Failed to execute: {command.line}", COLOR_RED)

    def _respond(self, title: str, description: str, color: int = COLOR_BLUE) -> None:
        self.send(RichMessage(
            title=title,
            description=description,
            footer=f"{APP_NAME} {VERSION}",
            timestamp=self.context.now(),
            color=color,
        ))

    async def _help(self):
        text = GENERAL_HELP
        if self.context.config.remote_commands:
            text += ADMIN_HELP
        return "Help", text

    async def _player_list(self):
        players = await self.game.players()
        lines = "".join(f"{name}\n" for name in players.players)
        return "Player List", f"{players.count}/{players.max_slots}\n\n{lines}"

    async def _server_info(self):
        info = await self.game.server_info()
        return "Server Information", (
            f"**Server Name:** {info.name}\n"
            f"**Players:** {info.player_count}/{info.max_slots}\n"
            f"**Server Version:** {info.version}"
        )

    async def _uptime(self):
        return "Uptime", format_uptime(self.context.now() - self.context.start_time)
