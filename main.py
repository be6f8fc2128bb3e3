# Main entrypoint for the game server <-> Discord relay
import asyncio
import contextlib
import logging
import os
import signal
import sys

from discord.ext import commands

from core.commands import CommandDispatcher
from core.config import BridgeContext, load_config
from core.errors import EXIT_FAILURE, ConfigError, GameHostError
from core.logs import APP_LOGGER, setup_logging
from core.message_router import RelayRouter
from core.roster import RosterCache
from services.hook_server import HookServer
from transports.discord_client import ALLOWED_MENTIONS, ConnectionState, DiscordClient, build_intents
from transports.game_client import GameClient


class BridgeApp:
    def __init__(self, context: BridgeContext):
        self.context = context
        config = context.config
        # Main logger for app-wide events
        self.logger = logging.getLogger(APP_LOGGER)
        self.discord_logger = self.logger.getChild("Discord")
        self.game_logger = self.logger.getChild("Game")

        self.roster = RosterCache(self.logger.getChild("Roster"))
        self.game = GameClient(config.game_host, self.game_logger)

        discord_bot = commands.Bot(
            command_prefix=commands.when_mentioned,
            intents=build_intents(),
            help_command=None,
            allowed_mentions=ALLOWED_MENTIONS,
        )
        self.discord = DiscordClient(discord_bot, context, self.roster, self.discord_logger)
        self.dispatcher = CommandDispatcher(
            context, self.game, self.discord.send, self.logger.getChild("Commands"), on_reload=self.reload_config,
        )
        self.router = RelayRouter(
            context, self.game, self.discord, self.roster, self.dispatcher, self.logger.getChild("Router"),
        )
        self.discord.set_on_message(self.router.submit_platform_message)
        self.hooks = HookServer(
            config.game_host, self.router, self.game, self.game_logger, on_post_initialize=self.ensure_connected,
        )
        self._router_task = None
        self._stopping = asyncio.Event()

    async def reload_config(self) -> None:
        old = self.context.config
        new = self.context.reload()
        if (new.bot_token, new.channel_id) != (old.bot_token, old.channel_id):
            self.logger.warning("Discord token or channel changed; restart the relay to apply")
        self.logger.info("Relay configuration reloaded")

    async def ensure_connected(self) -> None:
        if self.discord.state is ConnectionState.DISCONNECTED:
            await self.discord.connect(self.context.config.bot_token)

    async def start(self) -> None:
        self.router.attach(asyncio.get_running_loop())
        self._router_task = asyncio.create_task(self.router.run(), name="relay-router")
        try:
            await self.game.load_server_info()
        except GameHostError as exc:
            self.logger.warning(f"Game host not reachable yet, using default command specifiers: {exc}")
        await self.hooks.start()
        # Blocks once so startup ordering stays deterministic
        await self.discord.connect(self.context.config.bot_token)

    async def stop(self) -> None:
        await self.hooks.stop()
        with contextlib.suppress(asyncio.TimeoutError):
            await asyncio.wait_for(self.router.drain(), timeout=5)
        await self.discord.disconnect()
        if self._router_task is not None:
            self._router_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._router_task
        await self.game.close()

    async def run(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            with contextlib.suppress(NotImplementedError):
                loop.add_signal_handler(sig, self._stopping.set)
        try:
            await self.start()
            await self._stopping.wait()
        finally:
            await self.stop()


def main() -> None:
    config_path = os.environ.get("RELAY_CONFIG", "config.json")
    try:
        config = load_config(config_path)
    except ConfigError as exc:
        logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
        logging.error(f"Invalid relay configuration: {exc}")
        sys.exit(EXIT_FAILURE)
    setup_logging(config)
    app = BridgeApp(BridgeContext(config, config_path))
    asyncio.run(app.run())


if __name__ == "__main__":
    main()
