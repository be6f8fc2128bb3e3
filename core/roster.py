# Last known Discord channels, roles and users, used for mention resolution
from __future__ import annotations

import itertools
import logging
import re
from typing import Callable, Dict, Iterable, Optional, Tuple, Union

from core.models import EntityKind, RosterEntry

RosterSource = Callable[[], Iterable[RosterEntry]]


class RosterSnapshot:
    """Immutable view of the roster. Entries keep source order per kind so the
    first of several same-named entities is the one that resolves."""

    __slots__ = ("generation", "_entries", "_by_id", "_by_name", "_patterns")

    def __init__(self, entries: Iterable[RosterEntry] = (), generation: int = 0):
        grouped: Dict[EntityKind, list] = {kind: [] for kind in EntityKind}
        by_id: Dict[Tuple[EntityKind, int], RosterEntry] = {}
        by_name: Dict[Tuple[EntityKind, str], RosterEntry] = {}
        for entry in entries:
            grouped[entry.kind].append(entry)
            by_id.setdefault((entry.kind, entry.id), entry)
            by_name.setdefault((entry.kind, entry.name.casefold()), entry)
        self.generation = generation
        self._entries = {kind: tuple(items) for kind, items in grouped.items()}
        self._by_id = by_id
        self._by_name = by_name
        self._patterns: Dict[Tuple[EntityKind, str], Optional[re.Pattern]] = {}

    def entries(self, kind: EntityKind) -> Tuple[RosterEntry, ...]:
        return self._entries[kind]

    def lookup(self, kind: EntityKind, id_or_name: Union[int, str]) -> Optional[RosterEntry]:
        if isinstance(id_or_name, int):
            return self._by_id.get((kind, id_or_name))
        if id_or_name.isdigit():
            found = self._by_id.get((kind, int(id_or_name)))
            if found is not None:
                return found
        return self._by_name.get((kind, id_or_name.casefold()))

    def by_name(self, kind: EntityKind, name: str) -> Optional[RosterEntry]:
        return self._by_name.get((kind, name.casefold()))

    def name_pattern(self, kind: EntityKind, sigil: str) -> Optional[re.Pattern]:
        """Compiled matcher for sigil+name tokens of one kind, built once per snapshot.

        Longer names are tried first so `#general-chat` is never read as `#general`.
        """
        key = (kind, sigil)
        if key not in self._patterns:
            names = sorted({entry.name for entry in self._entries[kind] if entry.name}, key=len, reverse=True)
            if names:
                alternation = "|".join(re.escape(name) for name in names)
                self._patterns[key] = re.compile(f"{re.escape(sigil)}({alternation})(?!\\w)", re.IGNORECASE)
            else:
                self._patterns[key] = None
        return self._patterns[key]

    def __len__(self) -> int:
        return sum(len(items) for items in self._entries.values())


class RosterCache:
    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger("TerraRelay.Roster")
        self._generations = itertools.count(1)
        self._snapshot = RosterSnapshot()

    @property
    def snapshot(self) -> RosterSnapshot:
        return self._snapshot

    def refresh(self, source: RosterSource) -> bool:
        try:
            snapshot = RosterSnapshot(source(), generation=next(self._generations))
        except Exception as exc:
            self.logger.warning(f"Roster refresh failed, keeping generation {self._snapshot.generation}: {exc}")
            return False
        # Readers holding the old snapshot keep a consistent view
        self._snapshot = snapshot
        self.logger.debug(
            f"Roster generation {snapshot.generation}: "
            f"{len(snapshot.entries(EntityKind.CHANNEL))} channels, "
            f"{len(snapshot.entries(EntityKind.ROLE))} roles, "
            f"{len(snapshot.entries(EntityKind.USER))} users"
        )
        return True

    def lookup(self, kind: EntityKind, id_or_name: Union[int, str]) -> Optional[RosterEntry]:
        return self._snapshot.lookup(kind, id_or_name)
