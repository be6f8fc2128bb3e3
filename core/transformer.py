"""Mention and emote conversion between Discord markup and plain game chat.

Every pass runs over the whole message one category at a time, always in the
order channels, roles, users. Anything that cannot be resolved against the
roster is left as it was.
"""
import re

from core.models import EntityKind
from core.roster import RosterSnapshot

CHANNEL_REF = re.compile(r"<#(\d+)>")
ROLE_REF = re.compile(r"<@&(\d+)>")
USER_REF = re.compile(r"<@!?(\d+)>")

# <:name:123>, <:name:> and animated <a:name:123>
EMOTE = re.compile(r"<a?(:\w+:)\d*>")


def _resolver(roster: RosterSnapshot, kind: EntityKind, sigil: str):
    def replace(match: re.Match) -> str:
        entry = roster.lookup(kind, int(match.group(1)))
        if entry is None:
            return match.group(0)
        return f"{sigil}{entry.name}"
    return replace


def normalize_outbound(content: str, roster: RosterSnapshot) -> str:
    """Turn Discord channel/role/user references into #name and @name."""
    content = CHANNEL_REF.sub(_resolver(roster, EntityKind.CHANNEL, "#"), content)
    content = ROLE_REF.sub(_resolver(roster, EntityKind.ROLE, "@"), content)
    content = USER_REF.sub(_resolver(roster, EntityKind.USER, "@"), content)
    return content


def normalize_emotes(content: str) -> str:
    return EMOTE.sub(r"\1", content)


def mention_for(kind: EntityKind, entity_id: int) -> str:
    if kind is EntityKind.CHANNEL:
        return f"<#{entity_id}>"
    if kind is EntityKind.ROLE:
        return f"<@&{entity_id}>"
    return f"<@{entity_id}>"


def _encode(text: str, roster: RosterSnapshot, kind: EntityKind, sigil: str) -> str:
    pattern = roster.name_pattern(kind, sigil)
    if pattern is None:
        return text

    def replace(match: re.Match) -> str:
        entry = roster.by_name(kind, match.group(1))
        if entry is None:
            return match.group(0)
        return mention_for(kind, entry.id)

    return pattern.sub(replace, text)


def encode_outbound_mentions(text: str, roster: RosterSnapshot) -> str:
    """Turn literal #name and @name tokens into Discord references.

    Same-named entities resolve to whichever the roster listed first.
    """
    if "#" in text:
        text = _encode(text, roster, EntityKind.CHANNEL, "#")
    if "@" in text:
        text = _encode(text, roster, EntityKind.ROLE, "@")
        text = _encode(text, roster, EntityKind.USER, "@")
    return text
