# core/calls.py
"""
Closed set of ledger calls, one variant per contract entry point.

Each variant carries exactly the fields its entry point takes and is rejected at construction
when one is absent or malformed. Proof-bearing variants serialise as
``[len(proof), *proof, len(public_inputs), *public_inputs, *trailing]``.
"""
from __future__ import annotations

from typing import Annotated, Any, Dict, List, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator

from zylith.core.models import PreparedTransaction
from zylith.crypto_core.codec import Q128, i32_to_felt, parse_u128, parse_u256, split
from zylith.crypto_core.clmm import MAX_TICK, MIN_TICK

# entry point -> public input count its verifier reads
PROOF_ENTRY_POINTS: Dict[str, int] = {
    "private_swap": 9,
    "private_withdraw": 4,
    "private_mint_liquidity": 7,
    "private_burn_liquidity": 7,
    "private_collect": 7,
}


def _felt(v: Any) -> str:
    return str(parse_u256(v))


class _Call(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    contract_address: str

    @field_validator("contract_address", mode="before")
    @classmethod
    def _addr(cls, v):
        return hex(parse_u256(v))

    def trailing(self) -> List[str]:
        raise NotImplementedError

    def to_calldata(self) -> List[str]:
        return self.trailing()

    def to_prepared(self) -> PreparedTransaction:
        return PreparedTransaction(
            contract_address=self.contract_address,
            entry_point=self.entry_point,  # type: ignore[attr-defined]
            calldata=self.to_calldata(),
        )


class _ProofCall(_Call):
    proof: List[str] = Field(..., min_length=8)
    public_inputs: List[str]

    @field_validator("proof", "public_inputs", mode="before")
    @classmethod
    def _felts(cls, v):
        return [_felt(x) for x in v]

    @field_validator("public_inputs")
    @classmethod
    def _pi_len(cls, v):
        ep = cls.model_fields["entry_point"].default
        want = PROOF_ENTRY_POINTS[ep]
        if len(v) != want:
            raise ValueError(f"{ep} expects {want} public inputs, got {len(v)}")
        return v

    def to_calldata(self) -> List[str]:
        return [str(len(self.proof)), *self.proof, str(len(self.public_inputs)), *self.public_inputs, *self.trailing()]


def _tick(v: Any) -> int:
    n = int(v)
    if not MIN_TICK <= n <= MAX_TICK:
        raise ValueError(f"tick {n} out of range")
    return n


# ========================= plain calls =========================

class ApproveCall(_Call):
    entry_point: Literal["approve"] = "approve"
    spender: str
    amount: int

    @field_validator("amount", mode="before")
    @classmethod
    def _u256(cls, v):
        return parse_u256(v)

    def trailing(self) -> List[str]:
        low, high = split(self.amount)
        return [_felt(self.spender), str(low), str(high)]


class DepositCall(_Call):
    entry_point: Literal["private_deposit"] = "private_deposit"
    token: str
    amount: int
    commitment: str

    @field_validator("amount", mode="before")
    @classmethod
    def _u256(cls, v):
        return parse_u256(v)

    def trailing(self) -> List[str]:
        low, high = split(self.amount)
        return [_felt(self.token), str(low), str(high), _felt(self.commitment)]


class InitializeCall(_Call):
    entry_point: Literal["initialize"] = "initialize"
    token0: str
    token1: str
    fee: int = 3000
    tick_spacing: int = 60
    sqrt_price_x128: int = Q128

    @field_validator("sqrt_price_x128", mode="before")
    @classmethod
    def _u256(cls, v):
        return parse_u256(v)

    def trailing(self) -> List[str]:
        low, high = split(self.sqrt_price_x128)
        return [_felt(self.token0), _felt(self.token1), str(self.fee), str(self.tick_spacing), str(low), str(high)]


# ========================= proof-bearing calls =========================

class SwapCall(_ProofCall):
    entry_point: Literal["private_swap"] = "private_swap"
    zero_for_one: bool
    amount_specified: int
    sqrt_price_limit_x128: int = 0
    new_commitment: str

    @field_validator("amount_specified", mode="before")
    @classmethod
    def _u128(cls, v):
        return parse_u128(v, "amount_specified")

    @field_validator("sqrt_price_limit_x128", mode="before")
    @classmethod
    def _u256(cls, v):
        return parse_u256(v)

    def trailing(self) -> List[str]:
        low, high = split(self.sqrt_price_limit_x128)
        return [
            "1" if self.zero_for_one else "0",
            str(self.amount_specified),
            str(low),
            str(high),
            _felt(self.new_commitment),
        ]


class WithdrawCall(_ProofCall):
    entry_point: Literal["private_withdraw"] = "private_withdraw"
    token: str
    recipient: str
    amount: int

    @field_validator("amount", mode="before")
    @classmethod
    def _u128(cls, v):
        return parse_u128(v, "amount")

    def trailing(self) -> List[str]:
        return [_felt(self.token), _felt(self.recipient), str(self.amount)]


class MintCall(_ProofCall):
    entry_point: Literal["private_mint_liquidity"] = "private_mint_liquidity"
    tick_lower: int
    tick_upper: int
    liquidity: int
    new_commitment: str

    @field_validator("tick_lower", "tick_upper", mode="before")
    @classmethod
    def _ticks(cls, v):
        return _tick(v)

    @field_validator("liquidity", mode="before")
    @classmethod
    def _u128(cls, v):
        return parse_u128(v, "liquidity")

    def trailing(self) -> List[str]:
        return [
            str(i32_to_felt(self.tick_lower)),
            str(i32_to_felt(self.tick_upper)),
            str(self.liquidity),
            _felt(self.new_commitment),
        ]


class BurnCall(MintCall):
    entry_point: Literal["private_burn_liquidity"] = "private_burn_liquidity"  # type: ignore[assignment]


class CollectCall(_ProofCall):
    entry_point: Literal["private_collect"] = "private_collect"
    tick_lower: int
    tick_upper: int
    new_commitment: str

    @field_validator("tick_lower", "tick_upper", mode="before")
    @classmethod
    def _ticks(cls, v):
        return _tick(v)

    def trailing(self) -> List[str]:
        return [str(i32_to_felt(self.tick_lower)), str(i32_to_felt(self.tick_upper)), _felt(self.new_commitment)]


LedgerCall = Annotated[
    Union[ApproveCall, DepositCall, InitializeCall, SwapCall, WithdrawCall, MintCall, BurnCall, CollectCall],
    Field(discriminator="entry_point"),
]

_CALL_ADAPTER: TypeAdapter = TypeAdapter(LedgerCall)


def parse_call(data: Dict[str, Any]) -> BaseModel:
    """dict with an ``entry_point`` tag -> the matching call variant."""
    return _CALL_ADAPTER.validate_python(data)


__all__ = [
    "PROOF_ENTRY_POINTS",
    "ApproveCall",
    "DepositCall",
    "InitializeCall",
    "SwapCall",
    "WithdrawCall",
    "MintCall",
    "BurnCall",
    "CollectCall",
    "LedgerCall",
    "parse_call",
]
