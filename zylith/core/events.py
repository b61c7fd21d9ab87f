# core/events.py
"""Chain observations fed into the local stores."""
from __future__ import annotations

from typing import Annotated, Any, Dict, List, Literal, Optional, Sequence, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from zylith.core.errors import ValidationError
from zylith.core.models import PoolUpdate, PositionUpdate, TxStatus
from zylith.crypto_core.codec import parse_u256

# starknet_keccak("Deposit")
DEPOSIT_EVENT_SELECTOR = "0x9149d2123147c5f43d258257fef0b7b969db78269369ebcf5ebb9eef8592f2"


class _Event(BaseModel):
    model_config = ConfigDict(extra="ignore")

    event_id: Optional[str] = Field(None, description="Stable id (tx hash + event index) when the source has one.")


class DepositEvent(_Event):
    type: Literal["Deposit"] = "Deposit"
    commitment: str
    leaf_index: int = Field(..., ge=0)
    root: Optional[str] = None

    @classmethod
    def from_data(cls, data: Sequence[Any], event_id: Optional[str] = None) -> "DepositEvent":
        """Raw event data is ``[commitment, leaf_index, root]``."""
        return cls(
            commitment=hex(parse_u256(data[0])),
            leaf_index=parse_u256(data[1]),
            root=str(parse_u256(data[2])) if len(data) > 2 else None,
            event_id=event_id,
        )


class NullifierSpentEvent(_Event):
    type: Literal["NullifierSpent"] = "NullifierSpent"
    nullifier: str
    tx_hash: str


class PoolUpdatedEvent(_Event):
    type: Literal["PoolUpdated"] = "PoolUpdated"
    pool_id: str = "default"
    update: PoolUpdate


class PositionUpdatedEvent(_Event):
    type: Literal["PositionUpdated"] = "PositionUpdated"
    position_id: str
    update: PositionUpdate


class TransactionStatusEvent(_Event):
    type: Literal["TransactionStatus"] = "TransactionStatus"
    tx_hash: str
    status: TxStatus


ChainEvent = Annotated[
    Union[DepositEvent, NullifierSpentEvent, PoolUpdatedEvent, PositionUpdatedEvent, TransactionStatusEvent],
    Field(discriminator="type"),
]

_ADAPTER: TypeAdapter = TypeAdapter(ChainEvent)


def parse_event(data: Dict[str, Any]) -> BaseModel:
    """
    Tagged events (``{"type": "Deposit", ...}``) go through the union. Raw ``starknet_getEvents``
    items (``{"keys": [selector, ...], "data": [...]}``) are decoded by selector.
    """
    if "type" not in data and data.get("keys"):
        selector = parse_u256(data["keys"][0], "keys")
        if selector != int(DEPOSIT_EVENT_SELECTOR, 16):
            raise ValidationError(f"unsupported event selector {hex(selector)}", fields=["keys"])
        raw = data.get("data") or []
        if len(raw) < 2:
            raise ValidationError("Deposit event needs commitment and leaf index", fields=["data"])
        return DepositEvent.from_data(raw, event_id=data.get("event_id"))
    return _ADAPTER.validate_python(data)


def parse_events(items: List[Dict[str, Any]]) -> List[BaseModel]:
    return [parse_event(d) for d in items]


__all__ = [
    "DEPOSIT_EVENT_SELECTOR",
    "DepositEvent",
    "NullifierSpentEvent",
    "PoolUpdatedEvent",
    "PositionUpdatedEvent",
    "TransactionStatusEvent",
    "ChainEvent",
    "parse_event",
    "parse_events",
]
