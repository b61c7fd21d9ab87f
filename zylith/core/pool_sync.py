# core/pool_sync.py
"""
Local mirror of pool and LP-position state, fed by chain observations that may arrive
duplicated or out of order.

Merges are field-level overwrites keyed by absolute values, so replaying an update is harmless.
Fee-growth accumulators only move forward.
"""
from __future__ import annotations

import logging
import time
from typing import Any, Callable, Dict, Iterable, List, Optional

from zylith.core.errors import NoteNotFoundError, ValidationError
from zylith.core.locks import KeyedLocks
from zylith.core.models import LPPosition, PoolState, PoolUpdate, PositionUpdate
from zylith.crypto_core.clmm import tick_at_sqrt_price

LOG = logging.getLogger(__name__)
LOG.addHandler(logging.NullHandler())

Listener = Callable[[str, Any], None]
SaveCallback = Callable[[Dict[str, Any]], None]
Clock = Callable[[], float]

_MONOTONIC = ("fee_growth_global0_x128", "fee_growth_global1_x128")
_PRICE = ("sqrt_price_x128", "tick", "liquidity")


class _Observable:
    def __init__(self, on_change: Optional[SaveCallback]):
        self._on_change = on_change
        self._listeners: List[Listener] = []

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def snapshot(self) -> Dict[str, Any]:
        raise NotImplementedError

    def _changed(self, event: str, obj: Any) -> None:
        if self._on_change is not None:
            self._on_change(self.snapshot())
        for fn in list(self._listeners):
            fn(event, obj.model_copy())


class PoolStore(_Observable):
    def __init__(
        self,
        pools: Optional[Iterable[PoolState]] = None,
        on_change: Optional[SaveCallback] = None,
        clock: Clock = time.time,
    ):
        super().__init__(on_change)
        self._pools: Dict[str, PoolState] = {p.pool_id: p for p in pools or []}
        self._locks = KeyedLocks()
        self._clock = clock

    @classmethod
    def from_snapshot(cls, snap: Optional[Dict[str, Any]], on_change: Optional[SaveCallback] = None) -> "PoolStore":
        return cls([PoolState.model_validate(p) for p in (snap or {}).get("pools", [])], on_change=on_change)

    def snapshot(self) -> Dict[str, Any]:
        return {"pools": [p.model_dump(mode="json") for p in list(self._pools.values())]}

    def get(self, pool_id: str) -> PoolState:
        p = self._pools.get(pool_id)
        if p is None:
            raise NoteNotFoundError(f"Unknown pool {pool_id}", fields=["pool_id"])
        return p.model_copy()

    def pool_ids(self) -> List[str]:
        return list(self._pools)

    def merge(self, pool_id: str, update: PoolUpdate) -> PoolState:
        changes = update.changed()
        if "sqrt_price_x128" in changes and "tick" not in changes and changes["sqrt_price_x128"] > 0:
            changes["tick"] = tick_at_sqrt_price(changes["sqrt_price_x128"])

        with self._locks.hold(pool_id):
            cur = self._pools.get(pool_id) or PoolState(pool_id=pool_id)
            data = cur.model_dump()
            stale = update.block_number is not None and update.block_number < cur.last_update_block

            for k, v in changes.items():
                if k in _MONOTONIC:
                    if v < data[k]:
                        LOG.debug("pool %s: ignoring regressing %s (%s < %s)", pool_id, k, v, data[k])
                    data[k] = max(v, data[k])
                elif k in _PRICE and stale:
                    LOG.debug("pool %s: stale %s from block %s", pool_id, k, update.block_number)
                else:
                    data[k] = v

            if update.block_number is not None:
                data["last_update_block"] = max(cur.last_update_block, update.block_number)
            data["last_updated"] = update.observed_at if update.observed_at is not None else self._clock()
            new = PoolState.model_validate(data)
            self._pools[pool_id] = new

        if new.sqrt_price_x128 and abs(new.tick - tick_at_sqrt_price(new.sqrt_price_x128)) > 1:
            LOG.warning("pool %s: tick %s inconsistent with sqrt price", pool_id, new.tick)
        self._changed("pool", new)
        return new.model_copy()


class PositionStore(_Observable):
    def __init__(
        self,
        positions: Optional[Iterable[LPPosition]] = None,
        on_change: Optional[SaveCallback] = None,
        clock: Clock = time.time,
    ):
        super().__init__(on_change)
        self._positions: Dict[str, LPPosition] = {p.id: p for p in positions or []}
        self._locks = KeyedLocks()
        self._clock = clock

    @classmethod
    def from_snapshot(cls, snap: Optional[Dict[str, Any]], on_change: Optional[SaveCallback] = None) -> "PositionStore":
        return cls([LPPosition.model_validate(p) for p in (snap or {}).get("positions", [])], on_change=on_change)

    def snapshot(self) -> Dict[str, Any]:
        return {"positions": [p.model_dump(mode="json") for p in list(self._positions.values())]}

    def get(self, position_id: str) -> LPPosition:
        p = self._positions.get(position_id)
        if p is None:
            raise NoteNotFoundError(f"Unknown position {position_id}", fields=["position_id"])
        return p.model_copy()

    def list(self, pool_id: Optional[str] = None) -> List[LPPosition]:
        return [p.model_copy() for p in list(self._positions.values()) if pool_id is None or p.pool_id == pool_id]

    # ---------- confirmed operations ----------
    def on_mint(self, position_id: str, tick_lower: int, tick_upper: int, liquidity: int, pool_id: str = "default") -> LPPosition:
        with self._locks.hold(position_id):
            cur = self._positions.get(position_id)
            now = self._clock()
            if cur is None:
                try:
                    new = LPPosition(
                        id=position_id, tick_lower=tick_lower, tick_upper=tick_upper,
                        liquidity=liquidity, pool_id=pool_id, created_at=now, last_updated=now,
                    )
                except ValueError as e:
                    raise ValidationError(str(e), fields=["tick_lower", "tick_upper"]) from None
            else:
                if (cur.tick_lower, cur.tick_upper) != (tick_lower, tick_upper):
                    raise ValidationError("position range mismatch", fields=["tick_lower", "tick_upper"])
                new = cur.model_copy(update={"liquidity": cur.liquidity + liquidity, "last_updated": now})
            self._positions[position_id] = new
        self._changed("position", new)
        return new.model_copy()

    def on_burn(self, position_id: str, liquidity: int) -> Optional[LPPosition]:
        """Returns None once the position has no liquidity left (it is dropped)."""
        with self._locks.hold(position_id):
            cur = self._positions.get(position_id)
            if cur is None:
                raise NoteNotFoundError(f"Unknown position {position_id}", fields=["position_id"])
            if liquidity > cur.liquidity:
                raise ValidationError("burn exceeds position liquidity", fields=["liquidity"])
            remaining = cur.liquidity - liquidity
            if remaining == 0:
                del self._positions[position_id]
                gone = cur.model_copy(update={"liquidity": 0, "last_updated": self._clock()})
            else:
                gone = None
                new = cur.model_copy(update={"liquidity": remaining, "last_updated": self._clock()})
                self._positions[position_id] = new
        if gone is not None:
            LOG.info("position %s closed", position_id)
            self._changed("position_removed", gone)
            return None
        self._changed("position", new)
        return new.model_copy()

    def on_collect(self, position_id: str) -> LPPosition:
        return self.merge(position_id, PositionUpdate(tokens_owed0=0, tokens_owed1=0))

    def merge(self, position_id: str, update: PositionUpdate) -> LPPosition:
        with self._locks.hold(position_id):
            cur = self._positions.get(position_id)
            if cur is None:
                raise NoteNotFoundError(f"Unknown position {position_id}", fields=["position_id"])
            changes = update.changed()
            for k in ("fee_growth_inside0_last_x128", "fee_growth_inside1_last_x128"):
                if k in changes:
                    changes[k] = max(changes[k], getattr(cur, k))
            changes["last_updated"] = self._clock()
            new = cur.model_copy(update=changes)
            self._positions[position_id] = new
        self._changed("position", new)
        return new.model_copy()


__all__ = ["PoolStore", "PositionStore"]
