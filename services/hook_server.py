# Receives game server hook events from the host shim and hands them to the router
from typing import Awaitable, Callable, Optional

from aiohttp import web

from core.config import GameHostConfig
from core.errors import GameHostError, PlayerRecordMissing
from core.models import Broadcast, Chat, GameEvent, PlayerJoined, PlayerLeft, ServerStarted

TOKEN_HEADER = "X-Relay-Token"

PLAYER_HOOKS = {"join": PlayerJoined, "leave": PlayerLeft}
HOOKS = ("initialize", "post_initialize", "join", "leave", "chat", "broadcast")


class HookServer:
    def __init__(self, config: GameHostConfig, router, game, logger,
                 on_post_initialize: Optional[Callable[[], Awaitable[None]]] = None):
        self.config = config
        self.router = router
        self.game = game
        self.logger = logger
        self.on_post_initialize = on_post_initialize
        self._runner: Optional[web.AppRunner] = None

    def build_app(self) -> web.Application:
        app = web.Application()
        app.router.add_post("/hooks/{hook}", self.handle_hook)
        return app

    async def start(self) -> None:
        self._runner = web.AppRunner(self.build_app())
        await self._runner.setup()
        site = web.TCPSite(self._runner, self.config.listen_host, self.config.listen_port)
        await site.start()
        self.logger.info(f"Listening for game hooks on {self.config.listen_host}:{self.config.listen_port}")

    async def stop(self) -> None:
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None

    async def handle_hook(self, request: web.Request) -> web.Response:
        if self.config.token and request.headers.get(TOKEN_HEADER) != self.config.token:
            raise web.HTTPUnauthorized(text="bad relay token")
        hook = request.match_info["hook"]
        if hook not in HOOKS:
            raise web.HTTPNotFound(text=f"unknown hook {hook}")
        try:
            payload = await request.json() if request.can_read_body else {}
        except ValueError:
            raise web.HTTPBadRequest(text="body must be JSON")
        if payload is None:
            payload = {}
        if not isinstance(payload, dict):
            raise web.HTTPBadRequest(text="body must be a JSON object")

        if hook == "post_initialize":
            self.logger.debug("Game server post-initialize hook received")
            if self.on_post_initialize is not None:
                await self.on_post_initialize()
            return web.json_response({"status": "ok"})

        event = await self.build_event(hook, payload)
        self.router.submit_game_event(event)
        return web.json_response({"status": "queued"})

    async def build_event(self, hook: str, payload: dict) -> GameEvent:
        if hook == "initialize":
            return ServerStarted()
        if hook == "broadcast":
            return Broadcast(text=str(payload.get("text", "")))
        player = await self._resolve_player(payload)
        if hook == "chat":
            return Chat(player=player, text=str(payload.get("text", "")))
        return PLAYER_HOOKS[hook](player=player)

    async def _resolve_player(self, payload: dict) -> Optional[str]:
        name = payload.get("name")
        if name:
            return str(name)
        who = payload.get("who")
        if who is None:
            return None
        try:
            return await self.game.player_name(int(who))
        except (GameHostError, ValueError) as exc:
            self.logger.error(f"Player registry lookup for slot {who} failed: {exc}")
            raise PlayerRecordMissing(who) from exc
