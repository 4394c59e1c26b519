"""Three-level dependent selection session: cascade, retry and teardown."""

from __future__ import annotations

import threading
import time
from concurrent.futures import Executor, ThreadPoolExecutor, wait
from typing import Any, Dict, List, Optional, Protocol, Sequence

from geocascade.kernel.cancellation import LoadHandle
from geocascade.kernel.choice import ChoiceSlot, ChoiceView, place_choice
from geocascade.kernel.eventbus import EventBus
from geocascade.kernel.observable import Observable, ObservableView, Unsubscribe, clear_each_and
from geocascade.kernel.types import (
    LEVELS,
    NONE,
    EventHandler,
    FetchRemote,
    Level,
    LoadState,
    Place,
    PlaceId,
)
from geocascade.loader import CacheThenRemoteLoader, PlaceCacheProtocol
from geocascade.persistence import SelectionMemento


class RemoteCatalog(Protocol):
    def fetch_countries(self, _parent_id: PlaceId = NONE) -> List[Place]:
        ...

    def fetch_states(self, country_id: PlaceId) -> List[Place]:
        ...

    def fetch_cities(self, state_id: PlaceId) -> List[Place]:
        ...


class PlaceSelectionSession:
    """Owns the three choice slots and keeps each consistent with its parent.

    Setup order is fixed: restore the saved ids, load countries, wire
    country -> state, load states, wire state -> city, load cities. Restored
    ids therefore never trigger a cascade, and each level loads exactly once.

    The ``problem`` holder is shared by all levels; it only ever keeps the
    most recent error.
    """

    def __init__(
        self,
        cache: PlaceCacheProtocol,
        remote: RemoteCatalog,
        *,
        executor: Optional[Executor] = None,
        max_workers: int = 3,
        state: Optional[SelectionMemento] = None,
        event_bus: Optional[EventBus] = None,
    ) -> None:
        self._bus = event_bus or EventBus()
        self._lock = threading.Lock()
        self._closed = False
        self._owns_executor = executor is None
        self._executor: Executor = executor or ThreadPoolExecutor(
            max_workers=max(1, int(max_workers)),
            thread_name_prefix="geocascade-load",
        )
        self._slots: Dict[Level, ChoiceSlot[Place, Any]] = {level: place_choice(level) for level in LEVELS}
        self._handles: Dict[Level, Optional[LoadHandle]] = {level: None for level in LEVELS}
        self._fetchers: Dict[Level, FetchRemote] = {
            Level.COUNTRY: remote.fetch_countries,
            Level.STATE: remote.fetch_states,
            Level.CITY: remote.fetch_cities,
        }
        self._problem: Observable[Optional[Exception]] = Observable(None)
        self.retry_requested: Observable[bool] = Observable(False)
        self._loader = CacheThenRemoteLoader(cache, self._problem, event_sink=self._emit)
        self._unsubscribers: List[Unsubscribe] = []

        if state is not None:
            state.restore_to(self)
            self._emit("session.restored", state.as_dict())

        self._unsubscribers.append(clear_each_and(self.retry_requested, self.retry))
        self._load(Level.COUNTRY)
        self._wire_cascade(Level.COUNTRY)
        self._load(Level.STATE)
        self._wire_cascade(Level.STATE)
        self._load(Level.CITY)

    # Presentation boundary

    @property
    def countries(self) -> ChoiceView[Place, Any]:
        return self._slots[Level.COUNTRY].view()

    @property
    def states(self) -> ChoiceView[Place, Any]:
        return self._slots[Level.STATE].view()

    @property
    def cities(self) -> ChoiceView[Place, Any]:
        return self._slots[Level.CITY].view()

    @property
    def problem(self) -> ObservableView[Optional[Exception]]:
        return self._problem.view()

    @property
    def closed(self) -> bool:
        with self._lock:
            return self._closed

    def choice(self, level: Level) -> ChoiceView[Place, Any]:
        return self._slots[level].view()

    def select(self, level: Level, place_id: PlaceId) -> bool:
        return self._slots[level].selected_id.set(place_id)

    def subscribe(self, event_type: str, handler: EventHandler) -> None:
        self._bus.subscribe(event_type, handler)

    def persisted_fields(self) -> Sequence[Observable[Any]]:
        return [self._slots[level].selected_id for level in LEVELS]

    def save_state(self) -> SelectionMemento:
        return SelectionMemento.capture(self)

    def snapshot(self) -> Dict[str, Any]:
        problem = self._problem.get()
        levels: Dict[str, Any] = {}
        for level in LEVELS:
            slot = self._slots[level]
            selected = slot.selected_item()
            levels[level.value] = {
                "state": slot.state.get().value,
                "selected_id": slot.selected_id.get(),
                "selected_name": selected.name if selected is not None else None,
                "items": [{"id": item.id, "name": item.name} for item in slot.items.get()],
            }
        return {
            "levels": levels,
            "problem": str(problem) if problem is not None else None,
            "pending": [level.value for level in self.pending_levels()],
        }

    def failed_levels(self) -> List[Level]:
        return [level for level in LEVELS if self._slots[level].state.get() == LoadState.ERROR]

    # Retry controller

    def retry(self) -> None:
        """Reload every level currently in ERROR, keyed on today's parent."""

        if self.closed:
            return
        failed = self.failed_levels()
        self._emit("retry.requested", {"levels": [level.value for level in failed]})
        for level in failed:
            self._load(level)

    # Load orchestration

    def pending_levels(self) -> List[Level]:
        with self._lock:
            return [
                level
                for level in LEVELS
                if self._handles[level] is not None and not self._handles[level].done  # type: ignore[union-attr]
            ]

    def wait_for_loads(self, timeout: Optional[float] = None) -> bool:
        """Block until no load is in flight; False when ``timeout`` ran out."""

        deadline = None if timeout is None else time.monotonic() + float(timeout)
        while True:
            with self._lock:
                futures = [
                    handle.future
                    for handle in self._handles.values()
                    if handle is not None and handle.future is not None and not handle.future.done()
                ]
            if not futures:
                return True
            remaining = None
            if deadline is not None:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return False
            wait(futures, timeout=remaining)

    def teardown(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            handles = [handle for handle in self._handles.values() if handle is not None]
            self._handles = {level: None for level in LEVELS}
        for handle in handles:
            handle.cancel()
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []
        if self._owns_executor:
            self._executor.shutdown(wait=False, cancel_futures=True)
        self._emit("session.teardown", {"cancelled": len(handles)})

    close = teardown

    def __enter__(self) -> "PlaceSelectionSession":
        return self

    def __exit__(self, *_exc: object) -> None:
        self.teardown()

    # Cascade controller

    def _wire_cascade(self, parent_level: Level) -> None:
        child = parent_level.child
        if child is None:
            return

        def on_parent_changed(old: PlaceId, new: PlaceId) -> None:
            self._reset_subtree(child, old, new)

        self._unsubscribers.append(self._slots[parent_level].selected_id.subscribe(on_parent_changed))

    def _reset_subtree(self, child: Level, old: PlaceId, new: PlaceId) -> None:
        self._cancel_levels([child] + child.descendants())
        slot = self._slots[child]
        with slot.publish_lock:
            # Clearing the child re-enters this method for the grandchild.
            slot.clear()
            if new == NONE:
                slot.state.set(LoadState.IDLE)
        self._problem.set(None)
        self._emit(
            "cascade.reset",
            {"level": child.value, "old_parent_id": old, "new_parent_id": new},
        )
        self._load(child)

    def _cancel_levels(self, levels: Sequence[Level]) -> None:
        with self._lock:
            handles = [self._handles[level] for level in levels]
            for level in levels:
                self._handles[level] = None
        for handle in handles:
            if handle is not None:
                handle.cancel()

    def _parent_id_for(self, level: Level) -> PlaceId:
        parent = level.parent
        if parent is None:
            return NONE
        return self._slots[parent].selected_id.get()

    def _load(self, level: Level) -> Optional[LoadHandle]:
        parent_id = self._parent_id_for(level)
        if level.parent is not None and parent_id == NONE:
            self._cancel_levels([level])
            return None

        handle = LoadHandle(parent_id=parent_id)
        with self._lock:
            if self._closed:
                return None
            previous = self._handles[level]
            self._handles[level] = handle
        if previous is not None:
            previous.cancel()

        slot = self._slots[level]
        with slot.publish_lock:
            if not handle.token.cancelled:
                slot.state.set(LoadState.LOADING)

        try:
            handle.future = self._executor.submit(
                self._loader.load,
                slot,
                parent_id,
                self._fetchers[level],
                handle.token,
                handle.load_id,
            )
        except RuntimeError:
            # Executor already shut down.
            handle.token.cancel()
            return None
        self._emit(
            "load.submitted",
            {"level": level.value, "parent_id": parent_id, "load_id": handle.load_id},
        )
        return handle

    def _emit(self, event_type: str, payload: Dict[str, Any]) -> None:
        self._bus.emit(event_type, payload)

