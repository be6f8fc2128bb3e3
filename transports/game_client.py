# Game server host transport: queries, broadcasts and commands over the host shim's HTTP API
from typing import Any, Optional

import aiohttp

from core.config import GameHostConfig
from core.errors import GameHostError
from core.models import PlayerList, RGB, ServerInfo


class GameClient:
    def __init__(self, config: GameHostConfig, logger, session: Optional[aiohttp.ClientSession] = None):
        self.config = config
        self.logger = logger
        self.session = session
        self.command_specifier = "/"
        self.silent_command_specifier = "."
        self.server_name = ""
        self.server_version = ""

    async def _get_session(self) -> aiohttp.ClientSession:
        if self.session is None or self.session.closed:
            headers = {"Authorization": f"Bearer {self.config.token}"} if self.config.token else {}
            self.session = aiohttp.ClientSession(
                headers=headers,
                timeout=aiohttp.ClientTimeout(total=self.config.timeout),
            )
        return self.session

    async def close(self) -> None:
        if self.session is not None and not self.session.closed:
            await self.session.close()

    async def _request(self, method: str, path: str, payload: Optional[dict] = None,
                       allow_missing: bool = False) -> Optional[Any]:
        session = await self._get_session()
        url = f"{self.config.base_url}{path}"
        try:
            async with session.request(method, url, json=payload) as resp:
                if allow_missing and resp.status == 404:
                    return None
                if resp.status not in (200, 201, 204):
                    text = await resp.text()
                    raise GameHostError(f"{method} {path} failed: {resp.status} {text}")
                if resp.status == 204:
                    return {}
                return await resp.json(content_type=None)
        except aiohttp.ClientError as exc:
            raise GameHostError(f"{method} {path} failed: {exc}") from exc

    async def load_server_info(self) -> ServerInfo:
        """Fetch server metadata, including the command specifiers used to filter chat."""
        data = await self._request("GET", "/server") or {}
        self.command_specifier = str(data.get("command_specifier", self.command_specifier))
        self.silent_command_specifier = str(data.get("silent_command_specifier", self.silent_command_specifier))
        self.server_name = str(data.get("name", ""))
        self.server_version = str(data.get("version", ""))
        self.logger.info(
            f"Game host {self.server_name or self.config.base_url} "
            f"(commands: {self.command_specifier!r}, silent: {self.silent_command_specifier!r})"
        )
        players = data.get("players")
        return ServerInfo(
            name=self.server_name,
            version=self.server_version,
            player_count=int(data.get("player_count", len(players) if isinstance(players, list) else 0)),
            max_slots=int(data.get("max_slots", 0)),
        )

    async def server_info(self) -> ServerInfo:
        info = await self.load_server_info()
        if not info.player_count:
            players = await self.players()
            info = ServerInfo(info.name, info.version, players.count, info.max_slots or players.max_slots)
        return info

    async def players(self) -> PlayerList:
        data = await self._request("GET", "/players") or {}
        names = [str(name) for name in data.get("players", []) if name]
        return PlayerList(players=names, max_slots=int(data.get("max_slots", 0)))

    async def player_name(self, who: int) -> Optional[str]:
        """Look up a player slot. None means the slot was already reclaimed."""
        data = await self._request("GET", f"/players/{who}", allow_missing=True)
        if not data or not data.get("active", True):
            return None
        name = data.get("name")
        return str(name) if name else None

    async def broadcast(self, text: str, color: RGB) -> None:
        await self._request("POST", "/broadcast", {"text": text, "color": list(color)})

    async def execute_command(self, line: str) -> bool:
        data = await self._request("POST", "/commands", {"command": line}) or {}
        return bool(data.get("success", False))
