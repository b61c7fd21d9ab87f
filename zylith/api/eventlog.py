# api/eventlog.py
from __future__ import annotations

import hashlib
import json
import os
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple

DDL = """
PRAGMA journal_mode=WAL;

CREATE TABLE IF NOT EXISTS tx_log(
  id TEXT PRIMARY KEY,
  kind TEXT NOT NULL,
  ts TEXT NOT NULL,
  payload TEXT NOT NULL
);
"""


def _now() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


# ---------- JSON snapshots ----------
def load_json(path: str, default: Optional[dict] = None) -> dict:
    if os.path.exists(path):
        with open(path, "r") as f:
            return json.load(f)
    return dict(default or {})


def save_json(path: str, obj: dict) -> None:
    Path(path).parent.mkdir(parents=True, exist_ok=True)
    tmp = f"{path}.tmp"
    with open(tmp, "w") as f:
        json.dump(obj, f, indent=2)
    os.replace(tmp, path)


def saver(path: str) -> Callable[[dict], None]:
    """on_change callback that writes the store snapshot to ``path``."""
    return lambda snap: save_json(path, snap)


# ---------- append-only event log ----------
def event_id_for(kind: str, payload: Dict[str, Any]) -> str:
    """Content-derived id: the same chain event delivered twice maps to one row."""
    blob = json.dumps({"kind": kind, **payload}, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(blob.encode()).hexdigest()


class EventLog:
    def __init__(self, db_path: str):
        self.db_path = db_path
        self._ready = False

    def _conn(self) -> sqlite3.Connection:
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        return sqlite3.connect(self.db_path)

    def _init(self) -> None:
        if self._ready:
            return
        with self._conn() as cx:
            cx.executescript(DDL)
        self._ready = True

    def append(self, kind: str, payload: Dict[str, Any], event_id: Optional[str] = None) -> Tuple[str, bool]:
        """Returns (event_id, is_new). A known id is left untouched."""
        self._init()
        event_id = event_id or event_id_for(kind, payload)
        blob = json.dumps(payload, separators=(",", ":"), default=str)
        with self._conn() as cx:
            cur = cx.execute(
                "INSERT OR IGNORE INTO tx_log(id,kind,ts,payload) VALUES(?,?,?,?)",
                (event_id, kind, _now(), blob),
            )
            return event_id, cur.rowcount == 1

    def replay(self) -> Iterator[Tuple[str, Dict[str, Any]]]:
        self._init()
        with self._conn() as cx:
            rows = cx.execute("SELECT kind, payload FROM tx_log ORDER BY ts ASC, rowid ASC").fetchall()
        for kind, payload in rows:
            yield kind, json.loads(payload)

    def counts(self) -> List[Tuple[str, int]]:
        self._init()
        with self._conn() as cx:
            return cx.execute("SELECT kind, COUNT(*) FROM tx_log GROUP BY kind ORDER BY kind").fetchall()


class MemoryEventLog:
    """Same contract as EventLog without a database file."""

    def __init__(self) -> None:
        self._rows: Dict[str, Tuple[str, Dict[str, Any]]] = {}

    def append(self, kind: str, payload: Dict[str, Any], event_id: Optional[str] = None) -> Tuple[str, bool]:
        event_id = event_id or event_id_for(kind, payload)
        if event_id in self._rows:
            return event_id, False
        self._rows[event_id] = (kind, dict(payload))
        return event_id, True

    def replay(self) -> Iterator[Tuple[str, Dict[str, Any]]]:
        return iter(list(self._rows.values()))

    def counts(self) -> List[Tuple[str, int]]:
        out: Dict[str, int] = {}
        for kind, _ in self._rows.values():
            out[kind] = out.get(kind, 0) + 1
        return sorted(out.items())


__all__ = [
    "load_json",
    "save_json",
    "saver",
    "event_id_for",
    "EventLog",
    "MemoryEventLog",
]
