"""Single-choice slot: selected id, produced items and load state."""

from __future__ import annotations

import threading
from typing import Callable, Generic, Optional, Sequence, Tuple, TypeVar

from geocascade.kernel.observable import Observable, ObservableView
from geocascade.kernel.types import NONE, Level, LoadState, Place

T = TypeVar("T")
K = TypeVar("K")


class ChoiceSlot(Generic[T, K]):
    """Observable unit of cascading for one level.

    ``publish_lock`` serializes result publication against clears so that a
    superseded load which checks its token under the lock can never overwrite
    a clear issued after its cancellation.
    """

    def __init__(
        self,
        level: Level,
        id_of: Callable[[T], K],
        none_id: K = NONE,  # type: ignore[assignment]
    ) -> None:
        self.level = level
        self.none_id = none_id
        self._id_of = id_of
        self.selected_id: Observable[K] = Observable(none_id, distinct=True)
        self.items: Observable[Tuple[T, ...]] = Observable((), distinct=True)
        self.state: Observable[LoadState] = Observable(LoadState.IDLE, distinct=True)
        self.publish_lock = threading.RLock()

    def clear(self) -> None:
        """Reset selection and items; ``state`` is left for the next load."""

        with self.publish_lock:
            self.selected_id.set(self.none_id)
            self.items.set(())

    def publish(self, items: Sequence[T]) -> LoadState:
        values = tuple(items)
        state = LoadState.OK if values else LoadState.EMPTY
        with self.publish_lock:
            self.items.set(values)
            self.state.set(state)
        return state

    def selected_item(self) -> Optional[T]:
        selected = self.selected_id.get()
        if selected == self.none_id:
            return None
        for item in self.items.get():
            if self._id_of(item) == selected:
                return item
        return None

    def view(self) -> "ChoiceView[T, K]":
        return ChoiceView(self)


class ChoiceView(Generic[T, K]):
    """Presentation-facing view: selection stays writable, the rest is read-only."""

    def __init__(self, slot: ChoiceSlot[T, K]) -> None:
        self._slot = slot

    @property
    def level(self) -> Level:
        return self._slot.level

    @property
    def selected_id(self) -> Observable[K]:
        return self._slot.selected_id

    @property
    def items(self) -> ObservableView[Tuple[T, ...]]:
        return self._slot.items.view()

    @property
    def state(self) -> ObservableView[LoadState]:
        return self._slot.state.view()

    def selected_item(self) -> Optional[T]:
        return self._slot.selected_item()


def place_choice(level: Level) -> ChoiceSlot[Place, object]:
    return ChoiceSlot(level, id_of=lambda place: place.id, none_id=NONE)
