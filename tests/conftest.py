from __future__ import annotations

from concurrent.futures import Executor, Future
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import pytest

from geocascade.cache.store import PlaceCache
from geocascade.config import initialize_project_config, resolve_project_config_root
from geocascade.kernel.types import NONE, Level, Place, PlaceId


@pytest.fixture
def isolated_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    workspace = tmp_path / "workspace"
    workspace.mkdir(parents=True, exist_ok=True)

    monkeypatch.chdir(workspace)
    initialize_project_config(workspace_dir=workspace)

    return {
        "workspace": workspace,
        "config_root": resolve_project_config_root(workspace),
    }


class ManualExecutor(Executor):
    """Queues submitted work until the test decides to run it."""

    def __init__(self) -> None:
        self.queue: List[Tuple[Future, Callable[..., Any], tuple, dict]] = []
        self.submitted = 0

    def submit(self, fn, *args, **kwargs):  # type: ignore[override]
        future: Future = Future()
        self.queue.append((future, fn, args, kwargs))
        self.submitted += 1
        return future

    def run_next(self) -> bool:
        if not self.queue:
            return False
        future, fn, args, kwargs = self.queue.pop(0)
        if not future.set_running_or_notify_cancel():
            return True
        try:
            future.set_result(fn(*args, **kwargs))
        except BaseException as exc:  # pragma: no cover - loader never raises
            future.set_exception(exc)
        return True

    def run_all(self) -> None:
        while self.run_next():
            continue


COUNTRIES = [(1, "USA"), (2, "Canada")]
STATES = {1: [(11, "Texas"), (10, "Ohio")], 2: [(20, "Quebec")]}
CITIES = {10: [(100, "Columbus")], 11: [(111, "Dallas"), (110, "Austin")], 20: []}


class FakeRemote:
    def __init__(
        self,
        countries: Optional[Sequence[Tuple[PlaceId, str]]] = None,
        states: Optional[Dict[PlaceId, Sequence[Tuple[PlaceId, str]]]] = None,
        cities: Optional[Dict[PlaceId, Sequence[Tuple[PlaceId, str]]]] = None,
    ) -> None:
        self.countries = list(COUNTRIES if countries is None else countries)
        self.states = dict(STATES if states is None else states)
        self.cities = dict(CITIES if cities is None else cities)
        self.calls: List[Tuple[str, PlaceId]] = []
        self.failures: Dict[str, Exception] = {}
        self.hooks: Dict[str, Callable[[PlaceId], None]] = {}

    def fetch_countries(self, _parent_id: PlaceId = NONE) -> List[Place]:
        return self._serve("countries", NONE, self.countries)

    def fetch_states(self, country_id: PlaceId) -> List[Place]:
        return self._serve("states", country_id, self.states.get(country_id, []))

    def fetch_cities(self, state_id: PlaceId) -> List[Place]:
        return self._serve("cities", state_id, self.cities.get(state_id, []))

    def calls_for(self, kind: str) -> List[PlaceId]:
        return [parent_id for call_kind, parent_id in self.calls if call_kind == kind]

    def _serve(self, kind: str, parent_id: PlaceId, rows) -> List[Place]:
        self.calls.append((kind, parent_id))
        hook = self.hooks.get(kind)
        if hook is not None:
            hook(parent_id)
        failure = self.failures.get(kind)
        if failure is not None:
            raise failure
        # The service does not know our parent key convention.
        return [Place(id=place_id, parent_id=0, name=name) for place_id, name in rows]


class CountingCache:
    """PlaceCache wrapper that records calls and can be told to fail."""

    def __init__(self, inner: PlaceCache) -> None:
        self.inner = inner
        self.queries: List[Tuple[Level, PlaceId]] = []
        self.writes: List[Tuple[Level, PlaceId, int]] = []
        self.fail_query: Optional[Exception] = None
        self.fail_write: Optional[Exception] = None

    def query(self, level: Level, parent_id: PlaceId) -> List[Place]:
        self.queries.append((level, parent_id))
        if self.fail_query is not None:
            raise self.fail_query
        return self.inner.query(level, parent_id)

    def write_transaction(self, level: Level, places, parent_id: PlaceId) -> int:
        self.writes.append((level, parent_id, len(places)))
        if self.fail_write is not None:
            raise self.fail_write
        return self.inner.write_transaction(level, places, parent_id)

    def queried_levels(self) -> List[Level]:
        return [level for level, _ in self.queries]

    def stats(self) -> Dict[str, int]:
        return self.inner.stats()

    def close(self) -> None:
        self.inner.close()


@pytest.fixture
def place_cache(tmp_path: Path):
    cache = PlaceCache(tmp_path / "places.db")
    try:
        yield cache
    finally:
        cache.close()


@pytest.fixture
def counting_cache(place_cache: PlaceCache) -> CountingCache:
    return CountingCache(place_cache)


@pytest.fixture
def remote() -> FakeRemote:
    return FakeRemote()


@pytest.fixture
def executor() -> ManualExecutor:
    return ManualExecutor()
