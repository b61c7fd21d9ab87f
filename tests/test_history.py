from zylith.core import history
from zylith.core.history import HistoryLedger
from zylith.core.models import TxRecord, TxStatus, TxType


def rec(h, status=TxStatus.PENDING, type_=TxType.SWAP):
    return TxRecord(hash=h, type=type_, status=status, timestamp=1.0)


def test_first_record_wins():
    ledger = HistoryLedger()
    ledger.record(rec("0xAB"))
    ledger.record(TxRecord(hash="0xab", type=TxType.DEPOSIT, status=TxStatus.PENDING))
    [only] = ledger.dedupe()
    assert only.type == TxType.SWAP
    assert only.hash == "0xab"


def test_second_record_is_a_status_update():
    ledger = HistoryLedger()
    ledger.record(rec("0x1"))
    ledger.record(rec("0x1", TxStatus.SUCCESS))
    assert ledger.get("0x1").status == TxStatus.SUCCESS
    assert len(ledger) == 1


def test_terminal_status_does_not_regress():
    ledger = HistoryLedger()
    ledger.record(rec("0x1"))
    ledger.update_status("0x1", TxStatus.SUCCESS)
    ledger.update_status("0x1", TxStatus.PENDING)
    ledger.update_status("0x1", TxStatus.FAILED)
    assert ledger.get("0x1").status == TxStatus.SUCCESS
    assert ledger.pending() == []


def test_status_before_record_is_held():
    ledger = HistoryLedger()
    assert ledger.update_status("0x9", TxStatus.FAILED) is None
    assert ledger.record(rec("0x9")).status == TxStatus.FAILED


def test_held_statuses_are_bounded(monkeypatch):
    monkeypatch.setattr(history, "EARLY_STATUS_LIMIT", 3)
    ledger = HistoryLedger()
    for i in range(5):
        ledger.update_status(hex(0x100 + i), TxStatus.SUCCESS)
    # the two oldest were dropped
    assert ledger.record(rec(hex(0x100))).status == TxStatus.PENDING
    assert ledger.record(rec(hex(0x104))).status == TxStatus.SUCCESS


def test_snapshot_and_notifications():
    snaps, events = [], []
    ledger = HistoryLedger(on_change=snaps.append)
    ledger.subscribe(lambda ev, r: events.append(ev))
    ledger.record(rec("0x1"))
    ledger.update_status("0x1", TxStatus.SUCCESS)
    ledger.update_status("0x1", TxStatus.SUCCESS)
    assert events == ["recorded", "status"]
    restored = HistoryLedger.from_snapshot(snaps[-1])
    assert restored.get("0x1").status == TxStatus.SUCCESS
