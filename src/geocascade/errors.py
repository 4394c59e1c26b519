"""Load failure taxonomy shared by the cache, remote client and loader."""

from __future__ import annotations

from typing import Any, Dict


class PlaceLoadError(RuntimeError):
    """Raised when a level's item list could not be produced."""

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message)
        self._details: Dict[str, Any] = {}
        for key, value in details.items():
            if value is None:
                continue
            self._details[str(key)] = value

    @property
    def details(self) -> Dict[str, Any]:
        return dict(self._details)


class CacheReadError(PlaceLoadError):
    """Raised when the local cache cannot be queried."""


class CachePersistError(PlaceLoadError):
    """Raised when fetched places cannot be written to the local cache."""


class NetworkError(PlaceLoadError):
    """Raised when the remote fetch fails (connect/timeout/HTTP status)."""


class RemotePayloadError(NetworkError):
    """Raised when the remote answers with a payload we cannot parse."""


def load_error_summary(exc: BaseException) -> str:
    detail = exc.details if isinstance(exc, PlaceLoadError) else {}
    ordered_keys = (
        "level",
        "parent_id",
        "stage",
        "url",
        "status_code",
    )
    segments = [str(exc) or type(exc).__name__]
    for key in ordered_keys:
        value = detail.get(key)
        if value in ("", None):
            continue
        segments.append("{0}={1}".format(key, value))
    cause = exc.__cause__
    if cause is not None:
        segments.append("cause={0}: {1}".format(type(cause).__name__, cause))
    return " | ".join(segments)
