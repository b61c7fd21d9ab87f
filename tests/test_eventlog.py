import pytest

from zylith.api.eventlog import EventLog, MemoryEventLog, event_id_for, load_json, save_json
from zylith.core.errors import ValidationError
from zylith.core.events import DEPOSIT_EVENT_SELECTOR, DepositEvent, PoolUpdatedEvent, parse_event, parse_events


def test_sqlite_log_ignores_replayed_events(tmp_path):
    log = EventLog(str(tmp_path / "events.db"))
    _, new = log.append("Deposit", {"commitment": "0x1", "leaf_index": 0})
    _, again = log.append("Deposit", {"leaf_index": 0, "commitment": "0x1"})
    log.append("NullifierSpent", {"nullifier": "5", "tx_hash": "0x2"}, event_id="0x2:0")
    _, dup = log.append("NullifierSpent", {"nullifier": "5", "tx_hash": "0x2", "extra": 1}, event_id="0x2:0")
    assert new and not again and not dup
    assert log.counts() == [("Deposit", 1), ("NullifierSpent", 1)]
    assert [k for k, _ in log.replay()] == ["Deposit", "NullifierSpent"]


def test_memory_log_matches_sqlite_contract():
    log = MemoryEventLog()
    assert log.append("Deposit", {"a": 1})[1]
    assert not log.append("Deposit", {"a": 1})[1]
    assert log.counts() == [("Deposit", 1)]


def test_event_id_is_key_order_independent():
    assert event_id_for("k", {"a": 1, "b": 2}) == event_id_for("k", {"b": 2, "a": 1})


def test_json_snapshot_round_trip(tmp_path):
    path = str(tmp_path / "nested" / "notes.json")
    assert load_json(path, {"notes": []}) == {"notes": []}
    save_json(path, {"notes": [1]})
    assert load_json(path) == {"notes": [1]}


def test_deposit_event_from_raw_data():
    ev = DepositEvent.from_data(["0x00ff", "0x3", "99"], event_id="0xaa:1")
    assert (ev.commitment, ev.leaf_index, ev.root) == ("0xff", 3, "99")


def test_parse_event_by_type():
    ev = parse_event({"type": "PoolUpdated", "pool_id": "p", "update": {"liquidity": "5", "block_number": 2}})
    assert isinstance(ev, PoolUpdatedEvent)
    assert ev.update.liquidity == 5


def test_raw_starknet_deposit_decoded_by_selector():
    raw = {"keys": [DEPOSIT_EVENT_SELECTOR], "data": ["0xff", "0x3", "0x99"], "block_number": 7}
    ev = parse_event(raw)
    assert isinstance(ev, DepositEvent)
    assert (ev.commitment, ev.leaf_index, ev.root) == ("0xff", 3, "153")


def test_raw_event_with_foreign_selector_rejected():
    with pytest.raises(ValidationError) as e:
        parse_event({"keys": ["0x1234"], "data": ["0x1", "0x0"]})
    assert e.value.fields == ["keys"]
    with pytest.raises(ValidationError):
        parse_events([{"type": "Deposit", "commitment": "0x1", "leaf_index": 0},
                      {"keys": [DEPOSIT_EVENT_SELECTOR], "data": ["0x1"]}])
