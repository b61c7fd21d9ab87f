import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from zylith.core.errors import (
    AlreadySpentError,
    DuplicateCommitmentError,
    InsufficientBalanceError,
    NoteNotFoundError,
)
from zylith.core.models import Note, NoteState
from zylith.core.notes import NoteStore

TOKEN = "0x49d36570d4e46f48e99674bd3fcc84644ddd6b96f7c741b1562b82f9e004dc7"


def make_note(n, amount, index=None, state=NoteState.CONFIRMED, token=TOKEN):
    return Note(secret=str(1000 + n), nullifier=str(2000 + n), amount=amount, commitment=hex(0xC000 + n),
                token_address=token, index=index if index is not None else n, state=state)


@pytest.fixture
def store():
    return NoteStore([make_note(1, 300), make_note(2, 500), make_note(3, 300), make_note(4, 50)])


def test_add_duplicate_commitment_rejected(store):
    with pytest.raises(DuplicateCommitmentError):
        store.add_note(make_note(1, 999))


def test_commitment_lookup_is_format_insensitive(store):
    assert store.get("0x000c001").amount == 300
    assert store.get(str(0xC001)).amount == 300


def test_mark_spent_idempotent_for_same_tx(store):
    store.mark_spent(hex(0xC001), "0xabc")
    again = store.mark_spent(hex(0xC001), "0xABC")
    assert again.state == NoteState.SPENT
    assert again.spent_in == "0xabc"


def test_double_spend_refused(store):
    store.mark_spent(hex(0xC001), "0xabc")
    with pytest.raises(AlreadySpentError) as e:
        store.mark_spent(hex(0xC001), "0xdef")
    assert e.value.spent_in == "0xabc"
    assert store.get(hex(0xC001)).spent_in == "0xabc"


def test_spent_note_never_selectable(store):
    store.mark_spent(hex(0xC002), "0x1")
    chosen = store.select_spendable(TOKEN, 400)
    assert hex(0xC002) not in [n.commitment for n in chosen]


def test_largest_first_with_index_tie_break(store):
    chosen = store.select_spendable(TOKEN, 700)
    assert [n.commitment for n in chosen] == [hex(0xC002), hex(0xC001)]


def test_insufficient_balance_reports_available(store):
    with pytest.raises(InsufficientBalanceError) as e:
        store.select_spendable(TOKEN, 10_000)
    assert e.value.available == 1150
    assert e.value.requested == 10_000


def test_max_notes_limits_selection(store):
    with pytest.raises(InsufficientBalanceError):
        store.select_spendable(TOKEN, 600, max_notes=1)


def test_unconfirmed_notes_not_spendable():
    s = NoteStore([make_note(1, 100, state=NoteState.UNCONFIRMED)])
    assert s.get_total_balance(TOKEN) == 100
    assert s.get_spendable_balance(TOKEN) == 0
    with pytest.raises(InsufficientBalanceError):
        s.select_spendable(TOKEN, 1)


def test_leased_notes_skip_and_release(store):
    first = store.select_spendable(TOKEN, 500, holder="op-1")
    assert [n.commitment for n in first] == [hex(0xC002)]
    second = store.select_spendable(TOKEN, 300, holder="op-2")
    assert [n.commitment for n in second] == [hex(0xC001)]
    assert store.get_spendable_balance(TOKEN) == 350

    assert store.release("op-1") == [hex(0xC002)]
    assert store.get(hex(0xC002)).state == NoteState.CONFIRMED
    assert store.get_spendable_balance(TOKEN) == 850


def test_confirm_moves_unconfirmed_to_confirmed():
    s = NoteStore()
    s.add_note(make_note(9, 10, state=NoteState.UNCONFIRMED))
    note = s.confirm(hex(0xC009), 17)
    assert note.state == NoteState.CONFIRMED
    assert note.index == 17
    with pytest.raises(NoteNotFoundError):
        s.confirm("0x1", 1)


def test_materialize_output_is_idempotent():
    s = NoteStore()
    out = make_note(5, 77, state=NoteState.UNCONFIRMED)
    s.materialize_output(out)
    s.materialize_output(out)
    assert len(s) == 1


def test_mark_spent_by_nullifier(store):
    note = store.mark_spent_by_nullifier("2003", "0x99")
    assert note.commitment == hex(0xC003)
    assert store.mark_spent_by_nullifier("31337", "0x99") is None


def test_listeners_and_snapshot_callback():
    snaps, events = [], []
    s = NoteStore(on_change=snaps.append)
    unsubscribe = s.subscribe(lambda ev, n: events.append((ev, n.commitment)))
    s.add_note(make_note(1, 10))
    s.mark_spent(hex(0xC001), "0x5")
    unsubscribe()
    s.add_note(make_note(2, 10))

    assert events == [("added", hex(0xC001)), ("spent", hex(0xC001))]
    assert len(snaps) == 3
    restored = NoteStore.from_snapshot(snaps[-1])
    assert restored.get(hex(0xC001)).state == NoteState.SPENT
    assert len(restored) == 2


def _race(n_threads, fn):
    """Run fn(i) on n_threads threads released together; returns (results, errors)."""
    start = threading.Barrier(n_threads)

    def run(i):
        start.wait()
        try:
            return fn(i), None
        except Exception as e:  # collected for the assertions
            return None, e

    with ThreadPoolExecutor(max_workers=n_threads) as pool:
        outcomes = list(pool.map(run, range(n_threads)))
    return [r for r, e in outcomes if e is None], [e for _, e in outcomes if e is not None]


def test_concurrent_mark_spent_has_one_winner(store):
    won, errors = _race(32, lambda i: store.mark_spent(hex(0xC002), hex(0x100 + i)))
    assert len(won) == 1
    assert len(errors) == 31
    assert all(isinstance(e, AlreadySpentError) for e in errors)
    assert store.get(hex(0xC002)).spent_in == won[0].spent_in


def test_concurrent_selections_never_share_a_note():
    s = NoteStore([make_note(i, 100) for i in range(20)])
    won, errors = _race(40, lambda i: s.select_spendable(TOKEN, 100, holder=f"op-{i}"))
    picked = [n.commitment for sel in won for n in sel]
    assert len(picked) == 20
    assert len(set(picked)) == 20
    assert all(isinstance(e, InsufficientBalanceError) for e in errors)
    assert s.get_spendable_balance(TOKEN) == 0


def test_deposit_seen_before_note_is_applied_on_insert():
    s = NoteStore()
    assert s.observe_deposit(hex(0xC007), 4) is None
    note = s.materialize_output(make_note(7, 70, index=None, state=NoteState.UNCONFIRMED))
    assert (note.state, note.index) == (NoteState.CONFIRMED, 4)

    s.add_note(make_note(8, 80, state=NoteState.UNCONFIRMED))
    assert s.observe_deposit(hex(0xC008), 5).state == NoteState.CONFIRMED


def test_mark_all_spent_is_all_or_nothing(store):
    store.mark_spent(hex(0xC003), "0xaa")
    with pytest.raises(AlreadySpentError):
        store.mark_all_spent([hex(0xC001), hex(0xC003)], "0xbb")
    assert store.get(hex(0xC001)).state == NoteState.CONFIRMED

    spent = store.mark_all_spent([hex(0xC001), hex(0xC002)], "0xbb")
    assert {n.spent_in for n in spent} == {"0xbb"}
