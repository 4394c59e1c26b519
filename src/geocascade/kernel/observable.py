"""Thread-safe observable value holders."""

from __future__ import annotations

import threading
from typing import Callable, Generic, List, TypeVar

T = TypeVar("T")

ChangeListener = Callable[[T, T], None]
Unsubscribe = Callable[[], None]


class ObservableView(Generic[T]):
    """Read-only facade over an Observable."""

    def __init__(self, source: "Observable[T]") -> None:
        self._source = source

    def get(self) -> T:
        return self._source.get()

    @property
    def value(self) -> T:
        return self._source.get()

    def subscribe(self, listener: ChangeListener) -> Unsubscribe:
        return self._source.subscribe(listener)


class Observable(Generic[T]):
    """Holds one value and notifies listeners with ``(old, new)`` on change.

    With ``distinct=True`` a write of a value equal to the current one is
    dropped without notifying anybody. Listeners run on the writing thread,
    outside the internal lock.
    """

    def __init__(self, initial: T, *, distinct: bool = False) -> None:
        self._value = initial
        self._distinct = bool(distinct)
        self._lock = threading.Lock()
        self._listeners: List[ChangeListener] = []

    @property
    def distinct(self) -> bool:
        return self._distinct

    def get(self) -> T:
        with self._lock:
            return self._value

    @property
    def value(self) -> T:
        return self.get()

    def set(self, value: T) -> bool:
        """Store ``value``; returns False when a distinct holder dropped it."""

        with self._lock:
            old = self._value
            if self._distinct and old == value:
                return False
            self._value = value
            listeners = list(self._listeners)
        for listener in listeners:
            listener(old, value)
        return True

    def subscribe(self, listener: ChangeListener) -> Unsubscribe:
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                try:
                    self._listeners.remove(listener)
                except ValueError:
                    return

        return unsubscribe

    def view(self) -> ObservableView[T]:
        return ObservableView(self)


def clear_each_and(trigger: Observable[bool], action: Callable[[], None]) -> Unsubscribe:
    """Turn a boolean holder into a self-clearing command.

    Every write of ``True`` resets the holder to ``False`` first and then
    runs ``action`` once.
    """

    def on_change(_old: bool, new: bool) -> None:
        if not new:
            return
        trigger.set(False)
        action()

    return trigger.subscribe(on_change)
