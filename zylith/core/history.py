# core/history.py
from __future__ import annotations

import logging
import threading
from collections import OrderedDict
from typing import Any, Callable, Dict, Iterable, List, Optional

from zylith.core.models import TxRecord, TxStatus
from zylith.crypto_core.codec import to_hex

LOG = logging.getLogger(__name__)
LOG.addHandler(logging.NullHandler())

Listener = Callable[[str, TxRecord], None]
SaveCallback = Callable[[Dict[str, Any]], None]

# statuses held for hashes not recorded yet, oldest dropped first
EARLY_STATUS_LIMIT = 1024


class HistoryLedger:
    """
    Submitted transactions, one row per hash (first occurrence wins).

    A second record for a known hash is a status update. Terminal states (success/failed)
    never regress; re-notifications are ignored. A status that arrives before its record
    is held and applied when the record shows up.
    """

    def __init__(self, records: Optional[Iterable[TxRecord]] = None, on_change: Optional[SaveCallback] = None):
        self._rows: Dict[str, TxRecord] = {}
        self._early: "OrderedDict[str, TxStatus]" = OrderedDict()
        self._lock = threading.RLock()
        self._listeners: List[Listener] = []
        self._on_change = on_change
        for r in records or []:
            self._rows.setdefault(r.hash, r)

    @classmethod
    def from_snapshot(cls, snap: Optional[Dict[str, Any]], on_change: Optional[SaveCallback] = None) -> "HistoryLedger":
        return cls([TxRecord.model_validate(r) for r in (snap or {}).get("transactions", [])], on_change=on_change)

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            return {"transactions": [r.model_dump(mode="json") for r in self._rows.values()]}

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _changed(self, event: str, rec: TxRecord) -> None:
        if self._on_change is not None:
            self._on_change(self.snapshot())
        for fn in list(self._listeners):
            fn(event, rec.model_copy())

    # ---------- commands ----------
    def record(self, tx: TxRecord) -> TxRecord:
        with self._lock:
            existing = self._rows.get(tx.hash)
            if existing is not None:
                LOG.debug("tx %s already recorded; treating as status update", tx.hash)
            else:
                rec = tx.model_copy()
                early = self._early.pop(rec.hash, None)
                if early is not None and rec.status == TxStatus.PENDING:
                    rec.status = early
                self._rows[rec.hash] = rec
        if existing is not None:
            return self.update_status(tx.hash, tx.status)
        LOG.info("tx recorded %s type=%s status=%s", rec.hash, rec.type.value, rec.status.value)
        self._changed("recorded", rec)
        return rec.model_copy()

    def update_status(self, tx_hash: str, status: TxStatus) -> Optional[TxRecord]:
        key = to_hex(tx_hash)
        status = TxStatus(status)
        with self._lock:
            rec = self._rows.get(key)
            if rec is None:
                if status.terminal:
                    self._early[key] = status
                    self._early.move_to_end(key)
                    while len(self._early) > EARLY_STATUS_LIMIT:
                        dropped, _ = self._early.popitem(last=False)
                        LOG.debug("dropping held status for unknown tx %s", dropped)
                LOG.debug("status %s for unknown tx %s held", status.value, key)
                return None
            if rec.status.terminal or status == rec.status or status == TxStatus.PENDING:
                return rec.model_copy()
            rec.status = status
        LOG.info("tx %s -> %s", key, status.value)
        self._changed("status", rec)
        return rec.model_copy()

    # ---------- queries ----------
    def dedupe(self) -> List[TxRecord]:
        with self._lock:
            return [r.model_copy() for r in self._rows.values()]

    def get(self, tx_hash: str) -> Optional[TxRecord]:
        with self._lock:
            r = self._rows.get(to_hex(tx_hash))
            return r.model_copy() if r else None

    def pending(self) -> List[TxRecord]:
        return [r for r in self.dedupe() if r.status == TxStatus.PENDING]

    def __len__(self) -> int:
        return len(self._rows)


__all__ = ["HistoryLedger"]
