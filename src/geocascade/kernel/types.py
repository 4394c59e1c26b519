"""Core typed contracts shared by the cache, remote client and session."""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

PlaceId = Union[int, str]

# "Nothing selected". Also the parent key of the root level.
NONE: int = -1


def now_ms() -> int:
    return int(time.time() * 1000)


def new_id(prefix: str) -> str:
    return "{0}_{1}".format(prefix, uuid.uuid4().hex)


@dataclass(frozen=True)
class Place:
    id: PlaceId
    parent_id: PlaceId
    name: str


class LoadState(str, Enum):
    """Lifecycle of one level's item list."""

    IDLE = "idle"
    LOADING = "loading"
    OK = "ok"
    EMPTY = "empty"
    ERROR = "error"


class Level(str, Enum):
    """The three dependent selection levels, root first."""

    COUNTRY = "country"
    STATE = "state"
    CITY = "city"

    @property
    def table(self) -> str:
        return _LEVEL_TABLES[self]

    @property
    def parent(self) -> Optional["Level"]:
        index = LEVELS.index(self)
        return LEVELS[index - 1] if index > 0 else None

    @property
    def child(self) -> Optional["Level"]:
        index = LEVELS.index(self)
        return LEVELS[index + 1] if index + 1 < len(LEVELS) else None

    def descendants(self) -> List["Level"]:
        return list(LEVELS[LEVELS.index(self) + 1:])


LEVELS = (Level.COUNTRY, Level.STATE, Level.CITY)

_LEVEL_TABLES = {
    Level.COUNTRY: "countries",
    Level.STATE: "states",
    Level.CITY: "cities",
}


def parse_level(value: str) -> Level:
    normalized = str(value or "").strip().lower()
    aliases = {
        "country": Level.COUNTRY,
        "countries": Level.COUNTRY,
        "state": Level.STATE,
        "states": Level.STATE,
        "city": Level.CITY,
        "cities": Level.CITY,
    }
    level = aliases.get(normalized)
    if level is None:
        raise ValueError("unknown level: {0!r}".format(value))
    return level


def coerce_place_id(value: object, id_type: str = "int") -> PlaceId:
    """Normalize a raw identifier to the deployment's id type."""

    if isinstance(value, bool) or value is None:
        raise ValueError("invalid place id: {0!r}".format(value))
    if id_type == "str":
        text = str(value).strip()
        if not text:
            raise ValueError("invalid place id: {0!r}".format(value))
        return text
    if isinstance(value, int):
        return value
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        raise ValueError("invalid place id: {0!r}".format(value)) from None


@dataclass
class SessionEvent:
    event_id: str
    event_type: str
    ts_ms: int
    context_id: str
    payload: Dict[str, Any] = field(default_factory=dict)


EventHandler = Callable[[SessionEvent], None]
EventSink = Callable[[str, Dict[str, Any]], None]

FetchRemote = Callable[[PlaceId], List[Place]]


def stamp_parent(places: Iterable[Place], parent_id: PlaceId) -> List[Place]:
    return [
        Place(id=place.id, parent_id=parent_id, name=place.name)
        for place in places
    ]
