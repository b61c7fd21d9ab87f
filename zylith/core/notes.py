# core/notes.py
"""
Note store: the user's confidential notes and their lifecycle.

    unconfirmed --(commitment seen in tree)--> confirmed --(nullifier in a tx)--> spent

Only confirmed notes are selectable as proof inputs. A selection made for an in-flight operation
leases the notes to that operation; the lease is dropped either by ``mark_spent`` (a tx hash was
recorded) or by ``release`` (the operation was abandoned), in which case the notes stay spendable.
Notes are never deleted.
"""
from __future__ import annotations

import logging
import threading
from collections import OrderedDict
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from zylith.core.errors import (
    AlreadySpentError,
    DuplicateCommitmentError,
    InsufficientBalanceError,
    NoteNotFoundError,
    ValidationError,
)
from zylith.core.locks import KeyedLocks
from zylith.core.models import Note, NoteState, normalize_commitment
from zylith.crypto_core.codec import parse_u256, to_hex
from zylith.crypto_core.splits import greedy_coin_select

LOG = logging.getLogger(__name__)
LOG.addHandler(logging.NullHandler())

Listener = Callable[[str, Note], None]
SaveCallback = Callable[[Dict[str, Any]], None]

# deposit confirmations seen before their note was stored, oldest dropped first
EARLY_CONFIRMATION_LIMIT = 4096


def token_key(token_address: Optional[str]) -> Optional[str]:
    """0x049d.. and 0x49D.. name the same token."""
    if token_address is None:
        return None
    s = str(token_address).strip()
    try:
        return hex(int(s, 16))
    except ValueError:
        return s.lower()


def _order(n: Note) -> int:
    return n.index if n.index is not None else 1 << 62


class NoteStore:
    def __init__(self, notes: Optional[Iterable[Note]] = None, on_change: Optional[SaveCallback] = None):
        self._notes: Dict[str, Note] = {}
        self._by_nullifier: Dict[str, str] = {}
        self._leases: Dict[str, str] = {}
        self._early_index: "OrderedDict[str, int]" = OrderedDict()
        self._early_guard = threading.Lock()
        self._locks = KeyedLocks()
        self._lease_guard = threading.Lock()
        self._listeners: List[Listener] = []
        self._on_change = on_change
        for n in notes or []:
            self._insert(n)

    # ---------- persistence / notifications ----------
    @classmethod
    def from_snapshot(cls, snap: Optional[Dict[str, Any]], on_change: Optional[SaveCallback] = None) -> "NoteStore":
        notes = [Note.model_validate(d) for d in (snap or {}).get("notes", [])]
        return cls(notes, on_change=on_change)

    def snapshot(self) -> Dict[str, Any]:
        return {"notes": [n.model_dump(mode="json") for n in list(self._notes.values())]}

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _changed(self, event: str, note: Note) -> None:
        if self._on_change is not None:
            self._on_change(self.snapshot())
        for fn in list(self._listeners):
            fn(event, note.model_copy())

    def _insert(self, note: Note) -> None:
        self._notes[note.commitment] = note
        self._by_nullifier[note.nullifier] = note.commitment

    def _apply_early(self, note: Note) -> None:
        with self._early_guard:
            index = self._early_index.pop(note.commitment, None)
        if index is not None and note.state == NoteState.UNCONFIRMED:
            note.index = index
            note.state = NoteState.CONFIRMED
            LOG.info("note %s confirmed from held deposit at index=%s", note.commitment, index)

    def _require(self, commitment: str) -> Note:
        key = normalize_commitment(commitment)
        note = self._notes.get(key)
        if note is None:
            raise NoteNotFoundError(f"Unknown note {key}", fields=["commitment"])
        return note

    # ---------- commands ----------
    def add_note(self, note: Note) -> Note:
        with self._locks.hold(note.commitment):
            if note.commitment in self._notes:
                LOG.error("duplicate commitment on add: %s", note.commitment)
                raise DuplicateCommitmentError(note.commitment)
            if note.nullifier in self._by_nullifier:
                raise ValidationError("nullifier already belongs to another note", fields=["nullifier"])
            note = note.model_copy()
            self._insert(note)
            self._apply_early(note)
        LOG.info("note added %s amount=%s state=%s", note.commitment, note.amount, note.state.value)
        self._changed("added", note)
        return note.model_copy()

    def materialize_output(self, note: Note) -> Note:
        """Insert an operation's output note. Re-delivery of the same commitment is a no-op."""
        with self._locks.hold(note.commitment):
            existing = self._notes.get(note.commitment)
            if existing is not None:
                LOG.debug("output note %s already materialized", note.commitment)
                return existing.model_copy()
            note = note.model_copy()
            self._insert(note)
            self._apply_early(note)
        LOG.info("output note materialized %s amount=%s", note.commitment, note.amount)
        self._changed("materialized", note)
        return note.model_copy()

    def confirm(self, commitment: str, index: int) -> Note:
        """Commitment observed in the membership tree at ``index``."""
        key = normalize_commitment(commitment)
        with self._locks.hold(key):
            note = self._require(key)
            if note.index == index and note.state != NoteState.UNCONFIRMED:
                return note.model_copy()
            note.index = index
            if note.state == NoteState.UNCONFIRMED:
                note.state = NoteState.CONFIRMED
        LOG.info("note confirmed %s index=%s", key, index)
        self._changed("confirmed", note)
        return note.model_copy()

    def observe_deposit(self, commitment: str, index: int) -> Optional[Note]:
        """
        Chain Deposit event. A commitment not stored yet (the event beat ``submit``) is held and
        applied when the note is added or materialized. Returns None in that case.
        """
        key = normalize_commitment(commitment)
        with self._locks.hold(key):
            if key in self._notes:
                return self.confirm(key, index)
            with self._early_guard:
                self._early_index[key] = index
                self._early_index.move_to_end(key)
                while len(self._early_index) > EARLY_CONFIRMATION_LIMIT:
                    dropped, _ = self._early_index.popitem(last=False)
                    LOG.warning("dropping held deposit confirmation for %s", dropped)
        LOG.debug("deposit %s held until its note is stored", key)
        return None

    def mark_spent(self, commitment: str, tx_hash: str) -> Note:
        key = normalize_commitment(commitment)
        tx_hash = to_hex(tx_hash)
        with self._locks.hold(key):
            note = self._require(key)
            if note.state == NoteState.SPENT:
                if note.spent_in == tx_hash:
                    LOG.debug("note %s already spent in %s", key, tx_hash)
                    return note.model_copy()
                LOG.error("double spend refused: %s spent in %s, attempted %s", key, note.spent_in, tx_hash)
                raise AlreadySpentError(key, note.spent_in or "", tx_hash)
            note.state = NoteState.SPENT
            note.spent_in = tx_hash
            with self._lease_guard:
                self._leases.pop(key, None)
        LOG.info("note spent %s in %s", key, tx_hash)
        self._changed("spent", note)
        return note.model_copy()

    def mark_all_spent(self, commitments: Iterable[str], tx_hash: str) -> List[Note]:
        """Every note ends up spent in ``tx_hash``, or none changes."""
        keys = [normalize_commitment(c) for c in commitments]
        tx_hash = to_hex(tx_hash)
        with self._locks.hold_many(keys):
            for k in keys:
                note = self._require(k)
                if note.state == NoteState.SPENT and note.spent_in != tx_hash:
                    LOG.error("double spend refused: %s spent in %s, attempted %s", k, note.spent_in, tx_hash)
                    raise AlreadySpentError(k, note.spent_in or "", tx_hash)
            return [self.mark_spent(k, tx_hash) for k in keys]

    def mark_spent_by_nullifier(self, nullifier: str, tx_hash: str) -> Optional[Note]:
        """Chain reported a nullifier; returns None when it is not one of ours."""
        commitment = self._by_nullifier.get(str(parse_u256(nullifier, "nullifier")))
        if commitment is None:
            return None
        return self.mark_spent(commitment, tx_hash)

    # ---------- selection / leases ----------
    def select_spendable(
        self,
        token_address: Optional[str],
        min_amount: int,
        holder: Optional[str] = None,
        max_notes: Optional[int] = None,
    ) -> List[Note]:
        """
        Fewest confirmed, unleased notes of ``token_address`` summing to at least ``min_amount``.
        With ``holder`` set, the chosen notes are leased to it atomically.
        """
        if min_amount <= 0:
            raise ValidationError("amount must be positive", fields=["amount"])
        tk = token_key(token_address)
        with self._locks.hold(("select", tk)):
            with self._lease_guard:
                cands = [
                    n for n in self._notes.values()
                    if n.state == NoteState.CONFIRMED
                    and token_key(n.token_address) == tk
                    and n.commitment not in self._leases
                ]
                chosen, total = greedy_coin_select(cands, min_amount, lambda n: n.amount, _order, max_notes)
                if not chosen:
                    available = sum(n.amount for n in cands)
                    raise InsufficientBalanceError(token_address or "", min_amount, available)
                if holder is not None:
                    for n in chosen:
                        self._leases[n.commitment] = holder
        LOG.debug("selected %d note(s) total=%s for %s holder=%s", len(chosen), total, token_address, holder)
        return [n.model_copy() for n in chosen]

    def lease(self, commitments: Iterable[str], holder: str) -> None:
        keys = [normalize_commitment(c) for c in commitments]
        with self._lease_guard:
            for k in keys:
                note = self._require(k)
                other = self._leases.get(k)
                if other is not None and other != holder:
                    raise ValidationError(f"note {k} is reserved by another operation", fields=["commitment"])
                if note.state != NoteState.CONFIRMED:
                    raise ValidationError(f"note {k} is not spendable ({note.state.value})", fields=["commitment"])
            for k in keys:
                self._leases[k] = holder

    def release(self, holder: str) -> List[str]:
        with self._lease_guard:
            freed = [k for k, h in self._leases.items() if h == holder]
            for k in freed:
                del self._leases[k]
        if freed:
            LOG.info("released %d leased note(s) held by %s", len(freed), holder)
        return freed

    def leased_by(self, holder: str) -> List[str]:
        with self._lease_guard:
            return [k for k, h in self._leases.items() if h == holder]

    # ---------- queries ----------
    def get(self, commitment: str) -> Note:
        return self._require(commitment).model_copy()

    def list_notes(self, token_address: Optional[str] = None, include_spent: bool = False) -> List[Note]:
        tk = token_key(token_address)
        out = []
        for n in list(self._notes.values()):
            if token_address is not None and token_key(n.token_address) != tk:
                continue
            if n.state == NoteState.SPENT and not include_spent:
                continue
            out.append(n.model_copy())
        return out

    def get_total_balance(self, token_address: Optional[str]) -> int:
        """Sum over unspent notes (confirmed or still awaiting confirmation)."""
        return sum(n.amount for n in self.list_notes(token_address))

    def get_spendable_balance(self, token_address: Optional[str]) -> int:
        with self._lease_guard:
            leased = set(self._leases)
        return sum(
            n.amount for n in self.list_notes(token_address)
            if n.state == NoteState.CONFIRMED and n.commitment not in leased
        )

    def unconfirmed(self) -> List[Note]:
        return [n.model_copy() for n in list(self._notes.values()) if n.state == NoteState.UNCONFIRMED]

    def __len__(self) -> int:
        return len(self._notes)


__all__ = ["NoteStore", "token_key"]
