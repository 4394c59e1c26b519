"""Cache-first, network-fallback loading of one level's item list."""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Protocol, Sequence

from geocascade.errors import PlaceLoadError, load_error_summary
from geocascade.kernel.cancellation import CancellationToken
from geocascade.kernel.choice import ChoiceSlot
from geocascade.kernel.observable import Observable
from geocascade.kernel.types import (
    EventSink,
    FetchRemote,
    Level,
    LoadState,
    Place,
    PlaceId,
    stamp_parent,
)


class PlaceCacheProtocol(Protocol):
    def query(self, level: Level, parent_id: PlaceId) -> List[Place]:
        ...

    def write_transaction(self, level: Level, places: Sequence[Place], parent_id: PlaceId) -> int:
        ...


class CacheThenRemoteLoader:
    """Fills a ChoiceSlot from the cache, falling back to the remote.

    Failures never leave this class: they end up in ``slot.state`` and in the
    shared ``problem`` holder. A cancelled load returns quietly and touches
    neither.
    """

    def __init__(
        self,
        cache: PlaceCacheProtocol,
        problem: Observable[Optional[Exception]],
        event_sink: Optional[EventSink] = None,
    ) -> None:
        self._cache = cache
        self._problem = problem
        self._event_sink = event_sink

    def load(
        self,
        slot: ChoiceSlot[Place, Any],
        parent_id: PlaceId,
        fetch_remote: FetchRemote,
        token: Optional[CancellationToken] = None,
        load_id: str = "",
    ) -> Optional[LoadState]:
        token = token or CancellationToken()
        level = slot.level
        base: Dict[str, Any] = {"level": level.value, "parent_id": parent_id, "load_id": load_id}

        with slot.publish_lock:
            if token.cancelled:
                self._emit("load.cancelled", dict(base, stage="start"))
                return None
            slot.state.set(LoadState.LOADING)
        self._emit("load.started", base)

        try:
            items = self._cache.query(level, parent_id)
            if token.cancelled:
                self._emit("load.cancelled", dict(base, stage="cache"))
                return None
            if items:
                self._emit("load.cache_hit", dict(base, count=len(items)))
            else:
                fetched = list(fetch_remote(parent_id))
                if token.cancelled:
                    self._emit("load.cancelled", dict(base, stage="remote"))
                    return None
                self._cache.write_transaction(level, fetched, parent_id)
                self._emit("load.remote_fetched", dict(base, count=len(fetched)))
                items = sorted(stamp_parent(fetched, parent_id), key=lambda place: place.name)

            with slot.publish_lock:
                if token.cancelled:
                    self._emit("load.cancelled", dict(base, stage="publish"))
                    return None
                state = slot.publish(items)
                self._problem.set(None)
        except Exception as exc:
            if token.cancelled:
                self._emit("load.cancelled", dict(base, stage="error"))
                return None
            error = exc if isinstance(exc, PlaceLoadError) else _wrap_unexpected(exc, level, parent_id)
            with slot.publish_lock:
                if token.cancelled:
                    self._emit("load.cancelled", dict(base, stage="error"))
                    return None
                self._problem.set(error)
                slot.state.set(LoadState.ERROR)
            self._emit(
                "load.failed",
                dict(base, error_type=type(error).__name__, error=load_error_summary(error)),
            )
            return LoadState.ERROR

        self._emit("load.succeeded", dict(base, state=state.value, count=len(items)))
        return state

    def _emit(self, event_type: str, payload: Dict[str, Any]) -> None:
        if self._event_sink is None:
            return
        try:
            self._event_sink(event_type, payload)
        except Exception:
            return


def _wrap_unexpected(exc: Exception, level: Level, parent_id: PlaceId) -> PlaceLoadError:
    wrapped = PlaceLoadError(
        "unexpected load failure",
        level=level.value,
        parent_id=parent_id,
        stage="load",
    )
    wrapped.__cause__ = exc
    return wrapped
