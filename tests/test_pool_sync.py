import pytest

from zylith.core.errors import NoteNotFoundError, ValidationError
from zylith.core.models import PoolState, PoolUpdate, PositionUpdate
from zylith.core.pool_sync import PoolStore, PositionStore
from zylith.crypto_core.codec import Q128


@pytest.fixture
def pools():
    return PoolStore([PoolState(pool_id="p", sqrt_price_x128=Q128, liquidity=100)], clock=lambda: 1.0)


def test_merge_is_field_level(pools):
    merged = pools.merge("p", PoolUpdate(liquidity=250))
    assert merged.liquidity == 250
    assert merged.sqrt_price_x128 == Q128
    assert merged.last_updated == 1.0


def test_replaying_an_update_is_harmless(pools):
    upd = PoolUpdate(sqrt_price_x128=2 * Q128, liquidity=7, fee_growth_global0_x128=9, block_number=3,
                     observed_at=42.0)
    first = pools.merge("p", upd)
    second = pools.merge("p", upd)
    assert first == second
    assert second.last_updated == 42.0


def test_fee_growth_never_decreases(pools):
    pools.merge("p", PoolUpdate(fee_growth_global0_x128=100, fee_growth_global1_x128=5))
    merged = pools.merge("p", PoolUpdate(fee_growth_global0_x128=50, fee_growth_global1_x128=6))
    assert merged.fee_growth_global0_x128 == 100
    assert merged.fee_growth_global1_x128 == 6


def test_stale_block_does_not_overwrite_price(pools):
    pools.merge("p", PoolUpdate(liquidity=500, block_number=10))
    merged = pools.merge("p", PoolUpdate(liquidity=1, fee_growth_global0_x128=8, block_number=5))
    assert merged.liquidity == 500
    assert merged.fee_growth_global0_x128 == 8
    assert merged.last_update_block == 10


def test_tick_derived_from_price():
    store = PoolStore()
    merged = store.merge("new", PoolUpdate(sqrt_price_x128=Q128, liquidity={"low": "5", "high": "0"}))
    assert merged.tick == 0
    assert merged.liquidity == 5
    assert store.pool_ids() == ["new"]


def test_unknown_pool(pools):
    with pytest.raises(NoteNotFoundError):
        pools.get("missing")


def test_snapshot_round_trip_and_listener(pools):
    seen = []
    pools.subscribe(lambda ev, p: seen.append(p.liquidity))
    pools.merge("p", PoolUpdate(liquidity=3))
    restored = PoolStore.from_snapshot(pools.snapshot())
    assert restored.get("p").liquidity == 3
    assert seen == [3]


@pytest.fixture
def positions():
    return PositionStore(clock=lambda: 2.0)


def test_mint_then_top_up(positions):
    positions.on_mint("0xa", -60, 60, 100)
    pos = positions.on_mint("0xa", -60, 60, 50)
    assert pos.liquidity == 150
    with pytest.raises(ValidationError):
        positions.on_mint("0xa", -120, 60, 1)


def test_mint_rejects_inverted_range(positions):
    with pytest.raises(ValidationError):
        positions.on_mint("0xb", 60, -60, 1)


def test_burn_partial_then_full(positions):
    positions.on_mint("0xa", -60, 60, 100)
    assert positions.on_burn("0xa", 40).liquidity == 60
    with pytest.raises(ValidationError):
        positions.on_burn("0xa", 61)
    assert positions.on_burn("0xa", 60) is None
    with pytest.raises(NoteNotFoundError):
        positions.get("0xa")


def test_collect_resets_owed_and_fee_growth_is_monotonic(positions):
    positions.on_mint("0xa", -60, 60, 100)
    positions.merge("0xa", PositionUpdate(tokens_owed0=5, tokens_owed1=6, fee_growth_inside0_last_x128=10))
    pos = positions.merge("0xa", PositionUpdate(fee_growth_inside0_last_x128=4))
    assert pos.fee_growth_inside0_last_x128 == 10
    pos = positions.on_collect("0xa")
    assert (pos.tokens_owed0, pos.tokens_owed1) == (0, 0)
    assert [p.id for p in positions.list("default")] == ["0xa"]
    assert positions.list("other") == []


def test_tick_accepts_rpc_felt_encoding(pools):
    merged = pools.merge("p", PoolUpdate(tick="0xfffffc18"))
    assert merged.tick == -1000
    assert PoolUpdate(tick="-60").tick == -60
