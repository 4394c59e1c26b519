"""Cooperative cancellation for background loads."""

from __future__ import annotations

import threading
from concurrent.futures import Future
from dataclasses import dataclass, field
from typing import Optional

from geocascade.kernel.types import PlaceId, new_id


class CancellationToken:
    def __init__(self) -> None:
        self._event = threading.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        self._event.set()


@dataclass
class LoadHandle:
    """One submitted load: its token, its future and the key it loads."""

    parent_id: PlaceId
    token: CancellationToken = field(default_factory=CancellationToken)
    future: Optional[Future] = None
    load_id: str = field(default_factory=lambda: new_id("load"))

    def cancel(self) -> None:
        self.token.cancel()
        if self.future is not None:
            self.future.cancel()

    @property
    def done(self) -> bool:
        return self.future is None or self.future.done()
