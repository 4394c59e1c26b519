"""Saving and restoring the three selected identifiers."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional, Protocol, Sequence, Tuple

from geocascade.kernel.observable import Observable
from geocascade.kernel.types import NONE, PlaceId

SELECTION_FIELDS = ("country", "state", "city")
SELECTION_STATE_VERSION = 1


class SelectionStateError(RuntimeError):
    """Raised when a saved selection cannot be read back."""


class PersistableSelection(Protocol):
    def persisted_fields(self) -> Sequence[Observable[Any]]:
        """Selected-id holders in fixed (country, state, city) order."""
        ...


def _check_scalar(value: object) -> PlaceId:
    if isinstance(value, bool) or not isinstance(value, (int, str)):
        raise SelectionStateError("selection field is not a scalar id: {0!r}".format(value))
    return value


@dataclass(frozen=True)
class SelectionMemento:
    country_id: PlaceId = NONE
    state_id: PlaceId = NONE
    city_id: PlaceId = NONE

    @property
    def fields(self) -> Tuple[PlaceId, PlaceId, PlaceId]:
        return (self.country_id, self.state_id, self.city_id)

    @classmethod
    def from_fields(cls, values: Sequence[object]) -> "SelectionMemento":
        if len(values) != len(SELECTION_FIELDS):
            raise SelectionStateError(
                "expected {0} selection fields, got {1}".format(len(SELECTION_FIELDS), len(values))
            )
        ids = [_check_scalar(value) for value in values]
        # A level below an empty selection cannot be selected itself.
        for index in range(1, len(ids)):
            if ids[index - 1] == NONE:
                ids[index] = NONE
        return cls(country_id=ids[0], state_id=ids[1], city_id=ids[2])

    @classmethod
    def capture(cls, source: PersistableSelection) -> "SelectionMemento":
        return cls.from_fields([holder.get() for holder in source.persisted_fields()])

    def restore_to(self, target: PersistableSelection) -> None:
        """Write the ids straight into the holders, in field order.

        Meant to run before any cascade listener is attached.
        """

        holders = list(target.persisted_fields())
        if len(holders) != len(SELECTION_FIELDS):
            raise SelectionStateError("target does not expose three selection fields")
        for holder, value in zip(holders, self.fields):
            holder.set(value)

    def as_dict(self) -> dict:
        return dict(zip(SELECTION_FIELDS, self.fields))


class SelectionStateFile:
    """JSON file holding one SelectionMemento."""

    def __init__(self, path: Path) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> Optional[SelectionMemento]:
        if not self._path.exists():
            return None
        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            raise SelectionStateError("unreadable selection file: {0}".format(self._path)) from exc
        if not isinstance(raw, dict) or not isinstance(raw.get("fields"), list):
            raise SelectionStateError("invalid selection file: {0}".format(self._path))
        version = raw.get("version")
        if version != SELECTION_STATE_VERSION:
            raise SelectionStateError("unsupported selection file version: {0!r}".format(version))
        return SelectionMemento.from_fields(raw["fields"])

    def save(self, memento: SelectionMemento) -> Path:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        payload = {"version": SELECTION_STATE_VERSION, "fields": list(memento.fields)}
        tmp_path = self._path.with_name(self._path.name + ".tmp")
        tmp_path.write_text(json.dumps(payload, ensure_ascii=True), encoding="utf-8")
        os.replace(tmp_path, self._path)
        return self._path
