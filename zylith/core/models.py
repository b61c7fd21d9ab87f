# core/models.py
from __future__ import annotations

import time
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from zylith.crypto_core.codec import (
    FIELD_PRIME,
    felt_to_i32,
    from_wire,
    parse_i32,
    parse_u128,
    parse_u256,
    to_hex,
)
from zylith.core.errors import EncodingError


class _Model(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True, extra="ignore", validate_assignment=True)


def normalize_commitment(value: Any) -> str:
    """Canonical key for a commitment: lowercase 0x-hex, whatever form it arrived in."""
    return to_hex(value)


def parse_tick(value: Any) -> int:
    """Signed tick from an int, a decimal string, or the two's-complement hex felt the RPC reports."""
    if isinstance(value, str) and value.strip().lower().startswith("0x"):
        return felt_to_i32(value)
    return parse_i32(value)


# =========================
# Notes
# =========================

class NoteState(str, Enum):
    UNCONFIRMED = "unconfirmed"
    CONFIRMED = "confirmed"
    SPENT = "spent"


class Note(_Model):
    secret: str = Field(..., description="Owner-only randomness (field element, decimal string).")
    nullifier: str = Field(..., description="Revealed exactly once on spend (field element, decimal string).")
    amount: int = Field(..., ge=0, description="Note value in token base units.")
    commitment: str = Field(..., description="Commitment published on-chain (0x-hex).")
    token_address: Optional[str] = Field(None, description="Token contract address.")
    index: Optional[int] = Field(None, ge=0, description="Leaf index in the membership tree.")
    state: NoteState = Field(NoteState.UNCONFIRMED)
    spent_in: Optional[str] = Field(None, description="Hash of the transaction that revealed the nullifier.")
    created_at: float = Field(default_factory=time.time)

    @field_validator("commitment", mode="before")
    @classmethod
    def _commitment_hex(cls, v):
        return normalize_commitment(v)

    @field_validator("secret", "nullifier", mode="before")
    @classmethod
    def _felt(cls, v):
        n = parse_u256(v)
        if n >= FIELD_PRIME:
            raise EncodingError("note secret/nullifier must be a field element")
        return str(n)

    @field_validator("amount", mode="before")
    @classmethod
    def _amount(cls, v):
        return parse_u128(v, "amount")

    @field_validator("token_address", mode="before")
    @classmethod
    def _token(cls, v):
        return v.lower() if isinstance(v, str) else v

    @property
    def spendable(self) -> bool:
        return self.state == NoteState.CONFIRMED


class NoteData(_Model):
    """Secret material of a freshly derived note, as returned by the ASP/commitment service."""
    secret: str
    nullifier: str
    amount: int

    @field_validator("secret", "nullifier", mode="before")
    @classmethod
    def _decimal(cls, v):
        return str(parse_u256(v))

    @field_validator("amount", mode="before")
    @classmethod
    def _amount(cls, v):
        return parse_u128(v, "amount")


# =========================
# Pool / positions
# =========================

class PoolState(_Model):
    pool_id: str = "default"
    token0: Optional[str] = None
    token1: Optional[str] = None
    fee: int = 3000
    tick_spacing: int = 60
    sqrt_price_x128: int = Field(0, ge=0, description="Q128.128 square-root price.")
    tick: int = 0
    liquidity: int = Field(0, ge=0)
    fee_growth_global0_x128: int = Field(0, ge=0)
    fee_growth_global1_x128: int = Field(0, ge=0)
    last_update_block: int = 0
    last_updated: float = 0.0

    @field_validator("sqrt_price_x128", "liquidity", "fee_growth_global0_x128", "fee_growth_global1_x128", mode="before")
    @classmethod
    def _u256(cls, v):
        if isinstance(v, dict):
            return from_wire(v)
        return parse_u256(v)

    @field_validator("tick", mode="before")
    @classmethod
    def _tick(cls, v):
        return parse_tick(v)


class PoolUpdate(_Model):
    """Partial pool update: only the fields that changed are set."""
    sqrt_price_x128: Optional[int] = None
    tick: Optional[int] = None
    liquidity: Optional[int] = None
    fee_growth_global0_x128: Optional[int] = None
    fee_growth_global1_x128: Optional[int] = None
    token0: Optional[str] = None
    token1: Optional[str] = None
    fee: Optional[int] = None
    tick_spacing: Optional[int] = None
    block_number: Optional[int] = Field(None, ge=0, description="Block the values were observed at.")
    observed_at: Optional[float] = Field(None, description="Wall-clock time of the observation.")

    @field_validator("sqrt_price_x128", "liquidity", "fee_growth_global0_x128", "fee_growth_global1_x128", mode="before")
    @classmethod
    def _u256(cls, v):
        if v is None:
            return v
        if isinstance(v, dict):
            return from_wire(v)
        return parse_u256(v)

    @field_validator("tick", mode="before")
    @classmethod
    def _tick(cls, v):
        return None if v is None else parse_tick(v)

    def changed(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True, exclude={"block_number", "observed_at"})


class LPPosition(_Model):
    id: str = Field(..., description="Derived from the position commitment.")
    tick_lower: int
    tick_upper: int
    liquidity: int = Field(0, ge=0)
    fee_growth_inside0_last_x128: int = Field(0, ge=0)
    fee_growth_inside1_last_x128: int = Field(0, ge=0)
    tokens_owed0: int = Field(0, ge=0)
    tokens_owed1: int = Field(0, ge=0)
    pool_id: str = "default"
    created_at: float = Field(default_factory=time.time)
    last_updated: float = Field(default_factory=time.time)

    @model_validator(mode="after")
    def _range(self):
        if self.tick_lower >= self.tick_upper:
            raise ValueError("tick_lower must be < tick_upper")
        return self


class PositionUpdate(_Model):
    liquidity: Optional[int] = Field(None, ge=0)
    fee_growth_inside0_last_x128: Optional[int] = Field(None, ge=0)
    fee_growth_inside1_last_x128: Optional[int] = Field(None, ge=0)
    tokens_owed0: Optional[int] = Field(None, ge=0)
    tokens_owed1: Optional[int] = Field(None, ge=0)

    def changed(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)


# =========================
# Prover / ASP payloads
# =========================

class PreparedTransaction(_Model):
    contract_address: str
    entry_point: str
    calldata: List[str] = Field(default_factory=list)

    @field_validator("calldata", mode="before")
    @classmethod
    def _strs(cls, v):
        return [str(x) for x in (v or [])]


class ProofResponse(_Model):
    """Normalised prover output: 8 point components (plus any hints) and the public inputs."""
    circuit: str
    proof: List[str] = Field(..., description="Groth16 proof as field-element strings, Garaga hints allowed.")
    public_inputs: List[str]

    def point_components(self) -> List[str]:
        """[A.x, A.y, B.x0, B.x1, B.y0, B.y1, C.x, C.y]"""
        return list(self.proof[:8])


# =========================
# History
# =========================

class TxType(str, Enum):
    DEPOSIT = "deposit"
    SWAP = "swap"
    WITHDRAW = "withdraw"
    MINT = "mint"
    BURN = "burn"
    COLLECT = "collect"
    INITIALIZE = "initialize"


class TxStatus(str, Enum):
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self is not TxStatus.PENDING


class TxRecord(_Model):
    hash: str
    type: TxType
    status: TxStatus = TxStatus.PENDING
    timestamp: float = Field(default_factory=time.time)
    tokens: List[str] = Field(default_factory=list)
    amounts: List[str] = Field(default_factory=list)

    @field_validator("hash", mode="before")
    @classmethod
    def _hash(cls, v):
        return to_hex(v)


__all__ = [
    "normalize_commitment",
    "NoteState",
    "Note",
    "NoteData",
    "PoolState",
    "PoolUpdate",
    "LPPosition",
    "PositionUpdate",
    "PreparedTransaction",
    "ProofResponse",
    "TxType",
    "TxStatus",
    "TxRecord",
]
