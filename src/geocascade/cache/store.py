"""SQLite cache of downloaded places, one table per level."""

from __future__ import annotations

import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Sequence

from geocascade.errors import CachePersistError, CacheReadError
from geocascade.kernel.types import LEVELS, Level, Place, PlaceId, now_ms, stamp_parent

SCHEMA_VERSION = 2


class PlaceCache:
    """Filtered, name-sorted reads and all-or-nothing writes of places.

    Rows are keyed on ``(parent_id, id)``: the same id may appear under
    several parents. Identifier columns carry no type affinity so integer and
    string ids come back exactly as they were written.
    """

    def __init__(self, db_path: Path) -> None:
        self._db_path = Path(db_path)
        if str(db_path) != ":memory:":
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(str(db_path), check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.Lock()
        self._init_db()

    @property
    def db_path(self) -> Path:
        return self._db_path

    def _init_db(self) -> None:
        cursor = self._conn.cursor()
        version = int(cursor.execute("PRAGMA user_version").fetchone()[0])
        if version < SCHEMA_VERSION:
            # Rows are only a cache; older layouts are rebuilt from scratch.
            for level in LEVELS:
                cursor.execute("DROP TABLE IF EXISTS {0}".format(level.table))
        for level in LEVELS:
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS {0} (
                    id NOT NULL,
                    parent_id NOT NULL,
                    name TEXT NOT NULL,
                    fetched_at_ms INTEGER NOT NULL,
                    PRIMARY KEY (parent_id, id)
                )
                """.format(level.table)
            )
            cursor.execute(
                "CREATE INDEX IF NOT EXISTS idx_{0}_parent_name ON {0} (parent_id, name)".format(
                    level.table
                )
            )
        cursor.execute("PRAGMA user_version = {0}".format(SCHEMA_VERSION))
        self._conn.commit()

    def query(self, level: Level, parent_id: PlaceId) -> List[Place]:
        try:
            with self._lock:
                rows = self._conn.execute(
                    "SELECT id, parent_id, name FROM {0} WHERE parent_id = ? ORDER BY name ASC".format(
                        level.table
                    ),
                    (parent_id,),
                ).fetchall()
        except sqlite3.Error as exc:
            raise CacheReadError(
                "cache read failed",
                level=level.value,
                parent_id=parent_id,
            ) from exc
        return [Place(id=row["id"], parent_id=row["parent_id"], name=row["name"]) for row in rows]

    def write_transaction(
        self,
        level: Level,
        places: Sequence[Place],
        parent_id: PlaceId,
    ) -> int:
        """Insert ``places`` stamped with ``parent_id`` in one transaction."""

        stamped = stamp_parent(places, parent_id)
        ids = [place.id for place in stamped]
        if len(set(ids)) != len(ids):
            raise CachePersistError(
                "duplicate place id in one list",
                level=level.value,
                parent_id=parent_id,
                rows=len(stamped),
            )
        ts = now_ms()
        try:
            with self._transaction() as conn:
                conn.executemany(
                    "INSERT OR REPLACE INTO {0} (id, parent_id, name, fetched_at_ms) VALUES (?, ?, ?, ?)".format(
                        level.table
                    ),
                    [(place.id, place.parent_id, place.name, ts) for place in stamped],
                )
        except sqlite3.Error as exc:
            raise CachePersistError(
                "cache write failed",
                level=level.value,
                parent_id=parent_id,
                rows=len(stamped),
            ) from exc
        return len(stamped)

    def count(self, level: Level, parent_id: Optional[PlaceId] = None) -> int:
        sql = "SELECT COUNT(*) AS n FROM {0}".format(level.table)
        params: tuple = ()
        if parent_id is not None:
            sql += " WHERE parent_id = ?"
            params = (parent_id,)
        try:
            with self._lock:
                row = self._conn.execute(sql, params).fetchone()
        except sqlite3.Error as exc:
            raise CacheReadError("cache count failed", level=level.value) from exc
        return int(row["n"]) if row is not None else 0

    def stats(self) -> Dict[str, int]:
        return {level.table: self.count(level) for level in LEVELS}

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            try:
                yield self._conn
                self._conn.commit()
            except Exception:
                self._conn.rollback()
                raise
