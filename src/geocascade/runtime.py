"""Runtime container wiring settings, cache, remote client and logging."""

from __future__ import annotations

from concurrent.futures import Executor
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from geocascade.cache.store import PlaceCache
from geocascade.config import Settings
from geocascade.kernel.debug_log import DebugLogWriter
from geocascade.kernel.eventbus import EventBus
from geocascade.kernel.types import SessionEvent
from geocascade.loader import PlaceCacheProtocol
from geocascade.persistence import SelectionMemento, SelectionStateError, SelectionStateFile
from geocascade.remote.client import PlaceApiClient
from geocascade.session import PlaceSelectionSession, RemoteCatalog


class Runtime:
    core_version = "0.3.0"

    def __init__(
        self,
        settings: Settings,
        *,
        remote: Optional[RemoteCatalog] = None,
        cache: Optional[PlaceCacheProtocol] = None,
        executor: Optional[Executor] = None,
    ) -> None:
        self.settings = settings
        self.context_id = settings.context_id
        self.context_dir = settings.context_dir
        self.context_dir.mkdir(parents=True, exist_ok=True)

        self.event_bus = EventBus(context_id=self.context_id)
        self.debug_log = DebugLogWriter(
            logs_dir=settings.logs_dir,
            enabled=settings.logs_enabled,
            log_format=settings.logs_format,
            max_file_bytes=settings.logs_max_file_bytes,
            max_files=settings.logs_max_files,
            redaction=settings.logs_redaction,
        )
        self.event_bus.subscribe("*", self.debug_log.write_event)

        self._owns_cache = cache is None
        self.cache: PlaceCacheProtocol = cache if cache is not None else PlaceCache(settings.cache_db_path)
        self._owns_remote = remote is None
        self.remote: RemoteCatalog = remote if remote is not None else PlaceApiClient.from_settings(settings)
        self.selection_store = SelectionStateFile(settings.selection_file)
        self._executor = executor

    def subscribe(self, event_type: str, handler: Any) -> None:
        self.event_bus.subscribe(event_type, handler)

    def load_saved_selection(self) -> Tuple[Optional[SelectionMemento], Optional[str]]:
        """Returns the saved selection, or ``(None, reason)`` when unreadable."""

        try:
            return self.selection_store.load(), None
        except SelectionStateError as exc:
            self.log_diagnostic(
                level="warn",
                component="persistence",
                message="saved selection discarded",
                data={"error": str(exc), "path": str(self.selection_store.path)},
            )
            return None, str(exc)

    def open_session(self, state: Optional[SelectionMemento] = None) -> PlaceSelectionSession:
        return PlaceSelectionSession(
            self.cache,
            self.remote,
            executor=self._executor,
            max_workers=self.settings.max_workers,
            state=state,
            event_bus=self.event_bus,
        )

    def save_selection(self, session: PlaceSelectionSession) -> Path:
        memento = session.save_state()
        path = self.selection_store.save(memento)
        self.log_diagnostic(
            level="info",
            component="persistence",
            message="selection saved",
            data=memento.as_dict(),
        )
        return path

    def emit(self, event_type: str, payload: Optional[Dict[str, Any]] = None) -> SessionEvent:
        return self.event_bus.emit(event_type, payload)

    def log_diagnostic(
        self,
        *,
        level: str,
        component: str,
        message: str,
        data: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.debug_log.write_entry(
            level=level,
            component=component,
            context_id=self.context_id,
            message=message,
            data=data,
        )

    def doctor(self) -> Dict[str, Any]:
        report: Dict[str, Any] = {
            "core_version": self.core_version,
            "context_id": self.context_id,
            "context_dir": str(self.context_dir),
            "remote": {
                "base_url": self.settings.remote_base_url,
                "id_type": self.settings.remote_id_type,
                "connect_timeout": self.settings.remote_connect_timeout,
                "read_timeout": self.settings.remote_read_timeout,
                "max_retries": self.settings.remote_max_retries,
                "api_token_configured": bool(self.settings.remote_api_token),
            },
            "max_workers": self.settings.max_workers,
            "cache_db": str(self.settings.cache_db_path),
        }
        describe = getattr(self.remote, "describe", None)
        if callable(describe):
            report["remote_client"] = describe()
        stats = getattr(self.cache, "stats", None)
        if callable(stats):
            try:
                report["cache_rows"] = stats()
            except Exception as exc:
                report["cache_error"] = str(exc)
        saved, error = self.load_saved_selection()
        report["saved_selection"] = saved.as_dict() if saved is not None else None
        if error:
            report["saved_selection_error"] = error
        report.update(self.debug_log.status())
        return report

    def close(self) -> None:
        if self._owns_remote:
            close_remote = getattr(self.remote, "close", None)
            if callable(close_remote):
                close_remote()
        if self._owns_cache:
            close_cache = getattr(self.cache, "close", None)
            if callable(close_cache):
                close_cache()
