"""In-process event bus for session observers."""

from __future__ import annotations

from collections import defaultdict
from typing import Any, DefaultDict, Dict, List, Optional

from geocascade.kernel.types import EventHandler, SessionEvent, new_id, now_ms


class EventBus:
    """Simple pub-sub scoped to one session; ``"*"`` receives everything."""

    def __init__(self, context_id: str = "default") -> None:
        self.context_id = context_id
        self._subscribers: DefaultDict[str, List[EventHandler]] = defaultdict(list)

    def subscribe(self, event_type: str, handler: EventHandler) -> None:
        self._subscribers[event_type].append(handler)

    def publish(self, event: SessionEvent) -> None:
        handlers = list(self._subscribers.get(event.event_type, []))
        handlers += list(self._subscribers.get("*", []))
        for handler in handlers:
            try:
                handler(event)
            except Exception:
                # Observers never break the load pipeline.
                continue

    def emit(self, event_type: str, payload: Optional[Dict[str, Any]] = None) -> SessionEvent:
        event = SessionEvent(
            event_id=new_id("evt"),
            event_type=str(event_type),
            ts_ms=now_ms(),
            context_id=self.context_id,
            payload=dict(payload or {}),
        )
        self.publish(event)
        return event
