# Core data models for the relay
from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Tuple, Union

# Embed colors, same values discord.Colour uses
COLOR_BLUE = 0x3498DB
COLOR_GREEN = 0x2ECC71
COLOR_RED = 0xE74C3C


class EntityKind(enum.Enum):
    CHANNEL = "channel"
    ROLE = "role"
    USER = "user"


@dataclass(frozen=True)
class RosterEntry:
    kind: EntityKind
    id: int
    name: str


# --- Game server events ---

@dataclass(frozen=True)
class PlayerJoined:
    player: Optional[str]


@dataclass(frozen=True)
class PlayerLeft:
    player: Optional[str]


@dataclass(frozen=True)
class Chat:
    player: Optional[str]
    text: str


@dataclass(frozen=True)
class Broadcast:
    text: str


@dataclass(frozen=True)
class ServerStarted:
    pass


GameEvent = Union[PlayerJoined, PlayerLeft, Chat, Broadcast, ServerStarted]


# --- Chat platform side ---

@dataclass(frozen=True)
class PlatformMessage:
    channel_id: int
    author_id: int
    author_name: str
    content: str


@dataclass(frozen=True)
class TextMessage:
    text: str


@dataclass(frozen=True)
class RichMessage:
    title: str
    description: str
    footer: str
    timestamp: datetime
    color: int = COLOR_BLUE


OutboundMessage = Union[TextMessage, RichMessage]


@dataclass(frozen=True)
class Command:
    name: str
    args: str
    issuer_id: int

    @property
    def line(self) -> str:
        return f"{self.name} {self.args}" if self.args else self.name


# --- Game host query results ---

@dataclass(frozen=True)
class PlayerList:
    players: List[str] = field(default_factory=list)
    max_slots: int = 0

    @property
    def count(self) -> int:
        return len(self.players)


@dataclass(frozen=True)
class ServerInfo:
    name: str
    version: str
    player_count: int
    max_slots: int


RGB = Tuple[int, int, int]
