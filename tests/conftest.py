from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime, timedelta

import pytest

from core.config import BridgeConfig, BridgeContext
from core.models import EntityKind, PlayerList, RosterEntry, ServerInfo
from core.roster import RosterCache

START = datetime(2024, 1, 1, 12, 0, 0)
CHANNEL_ID = 100
OWNER_ID = 1
BOT_ID = 999


class FakeGame:
    command_specifier = "/"
    silent_command_specifier = "."

    def __init__(self, players=("Alice", "Bob"), max_slots=8, command_result=True):
        self._players = list(players)
        self.max_slots = max_slots
        self.command_result = command_result
        self.broadcasts = []
        self.commands = []

    async def players(self) -> PlayerList:
        return PlayerList(players=list(self._players), max_slots=self.max_slots)

    async def server_info(self) -> ServerInfo:
        return ServerInfo("Test World", "4.5.18", len(self._players), self.max_slots)

    async def broadcast(self, text, color) -> None:
        self.broadcasts.append((text, color))

    async def execute_command(self, line: str) -> bool:
        self.commands.append(line)
        if isinstance(self.command_result, Exception):
            raise self.command_result
        return self.command_result


class FakeConnection:
    def __init__(self, self_id=BOT_ID):
        self.self_id = self_id
        self.sent = []

    def send(self, message) -> None:
        self.sent.append(message)


class Clock:
    def __init__(self, now: datetime):
        self.current = now

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> None:
        self.current += timedelta(**kwargs)


def make_config(**overrides) -> BridgeConfig:
    config = BridgeConfig(bot_token="token", channel_id=CHANNEL_ID, owner_id=OWNER_ID, abort_on_error=False)
    return replace(config, **overrides)


@pytest.fixture
def clock():
    return Clock(START)


@pytest.fixture
def context(clock):
    return BridgeContext(make_config(), start_time=START, now=clock)


@pytest.fixture
def game():
    return FakeGame()


@pytest.fixture
def connection():
    return FakeConnection()


@pytest.fixture
def roster():
    cache = RosterCache(logging.getLogger("test.roster"))
    cache.refresh(lambda: [
        RosterEntry(EntityKind.CHANNEL, 10, "general"),
        RosterEntry(EntityKind.CHANNEL, 11, "terraria"),
        RosterEntry(EntityKind.ROLE, 20, "Admins"),
        RosterEntry(EntityKind.USER, 42, "Alice"),
        RosterEntry(EntityKind.USER, 43, "Bob"),
    ])
    return cache
