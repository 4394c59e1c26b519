"""JSONL debug log for session events, with rotation and secret masking."""

from __future__ import annotations

import json
import re
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional

from geocascade.kernel.types import SessionEvent, now_ms

LOG_FILE_NAME = "debug.log.jsonl"
SUPPORTED_LOG_FORMATS = ("jsonl",)

_MASK = "***REDACTED***"
_SECRET_KEY_RE = re.compile(
    r"(password|secret|token|authorization|cookie|api[_-]?key)",
    re.IGNORECASE,
)
_BEARER_RE = re.compile(r"(?i)\bbearer\s+([^\s,;]+)")
_QUERY_SECRET_RE = re.compile(
    r"(?i)\b(api[_-]?key|access[_-]?token|token|secret)=([^\s&,;]+)"
)

_EVENT_LEVELS = {
    "load.failed": "error",
    "load.cancelled": "warn",
    "session.teardown": "info",
}


class DebugLogWriter:
    """Best-effort writer: failures are counted, never raised."""

    def __init__(
        self,
        *,
        logs_dir: Path,
        enabled: bool,
        log_format: str = "jsonl",
        max_file_bytes: int = 10 * 1024 * 1024,
        max_files: int = 5,
        redaction: str = "default",
    ) -> None:
        self._logs_dir = Path(logs_dir)
        self._enabled = bool(enabled)
        log_format = str(log_format or "jsonl").strip().lower()
        if log_format not in SUPPORTED_LOG_FORMATS:
            log_format = "jsonl"
        self._log_format = log_format
        self._max_file_bytes = max(1, int(max_file_bytes or 0))
        self._max_files = max(1, int(max_files or 0))
        redaction = str(redaction or "default").strip().lower()
        self._redaction = redaction if redaction in {"none", "default", "strict"} else "default"
        self._write_errors = 0
        self._lock = threading.Lock()

    @property
    def active_log_file(self) -> Path:
        return self._logs_dir / LOG_FILE_NAME

    def write_event(self, event: SessionEvent) -> None:
        self.write_entry(
            level=_EVENT_LEVELS.get(event.event_type, "info"),
            component=event.event_type.split(".", 1)[0],
            context_id=event.context_id,
            event_type=event.event_type,
            message="event:{0}".format(event.event_type),
            data=event.payload,
            ts_ms=event.ts_ms,
        )

    def write_entry(
        self,
        *,
        level: str,
        component: str,
        context_id: str,
        message: str,
        data: Optional[Dict[str, Any]] = None,
        event_type: Optional[str] = None,
        ts_ms: Optional[int] = None,
    ) -> None:
        if not self._enabled:
            return

        record: Dict[str, Any] = {
            "ts_ms": int(ts_ms if ts_ms is not None else now_ms()),
            "level": str(level or "info"),
            "component": str(component or "session"),
            "context_id": str(context_id or ""),
            "event_type": str(event_type or ""),
            "message": str(message or ""),
            "data": dict(data or {}),
        }
        if self._redaction != "none":
            record["message"] = _mask_text(record["message"])
            record["data"] = _mask_value(record["data"], strict=self._redaction == "strict")

        with self._lock:
            try:
                line = json.dumps(record, ensure_ascii=True, separators=(",", ":"), default=str)
                encoded = (line + "\n").encode("utf-8")
                self._logs_dir.mkdir(parents=True, exist_ok=True)
                self._rotate_if_full(len(encoded))
                with self.active_log_file.open("ab") as fp:
                    fp.write(encoded)
            except Exception:
                self._write_errors += 1

    def status(self) -> Dict[str, Any]:
        with self._lock:
            active = self.active_log_file
            active_size = active.stat().st_size if self._enabled and active.exists() else 0
            rotated: List[str] = []
            total = int(active_size)
            if self._enabled:
                for index in range(1, self._max_files + 1):
                    path = self._backup(index)
                    if path.exists():
                        rotated.append(str(path))
                        total += int(path.stat().st_size)
            return {
                "logs_enabled": self._enabled,
                "logs_format": self._log_format,
                "logs_dir": str(self._logs_dir),
                "logs_active_file": str(active),
                "logs_active_size_bytes": int(active_size),
                "logs_max_file_bytes": self._max_file_bytes,
                "logs_max_files": self._max_files,
                "logs_total_size_bytes": total,
                "logs_rotated_files": rotated,
                "logs_write_errors": self._write_errors,
            }

    def _rotate_if_full(self, incoming: int) -> None:
        active = self.active_log_file
        current = int(active.stat().st_size) if active.exists() else 0
        if current + incoming <= self._max_file_bytes:
            return
        self._backup(self._max_files).unlink(missing_ok=True)
        for index in range(self._max_files - 1, 0, -1):
            src = self._backup(index)
            if src.exists():
                src.replace(self._backup(index + 1))
        if active.exists():
            active.replace(self._backup(1))

    def _backup(self, index: int) -> Path:
        return Path("{0}.{1}".format(self.active_log_file, index))


def _mask_value(value: Any, strict: bool) -> Any:
    if isinstance(value, dict):
        out: Dict[str, Any] = {}
        for key, item in value.items():
            if _SECRET_KEY_RE.search(str(key)):
                out[key] = _MASK
            else:
                out[key] = _mask_value(item, strict)
        return out
    if isinstance(value, (list, tuple)):
        return [_mask_value(item, strict) for item in value]
    if isinstance(value, str):
        return _MASK if strict else _mask_text(value)
    return value


def _mask_text(text: str) -> str:
    if not text:
        return text
    masked = _BEARER_RE.sub("Bearer {0}".format(_MASK), text)
    return _QUERY_SECRET_RE.sub(lambda m: "{0}={1}".format(m.group(1), _MASK), masked)
