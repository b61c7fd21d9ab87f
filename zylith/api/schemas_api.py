from __future__ import annotations

from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, conint

from zylith.core.models import Note, NoteState, TxRecord

Amount = Union[conint(gt=0), str]


class _Base(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True, from_attributes=True, extra="ignore")


class Ok(_Base):
    status: str = Field("ok", description="Fixed OK status for successful responses.")


# ========================= notes / balances =========================

class NoteView(_Base):
    """Public view of a note. Secret and nullifier never leave the store through the API."""
    commitment: str = Field(..., description="Commitment (0x-hex).")
    amount: str = Field(..., description="Amount in token base units.")
    token_address: Optional[str] = Field(None, description="Token contract address.")
    index: Optional[int] = Field(None, description="Leaf index in the membership tree.")
    state: NoteState = Field(..., description="unconfirmed / confirmed / spent")
    spent_in: Optional[str] = Field(None, description="Consuming transaction hash.")

    @classmethod
    def of(cls, n: Note) -> "NoteView":
        return cls(commitment=n.commitment, amount=str(n.amount), token_address=n.token_address,
                   index=n.index, state=n.state, spent_in=n.spent_in)


class ListNotesRes(Ok):
    notes: List[NoteView] = Field(..., description="Notes matching the query.")
    total_balance: str = Field(..., description="Sum of unspent notes (base units).")


class BalanceRes(Ok):
    token: str
    total: str = Field(..., description="Unspent balance, confirmed or not.")
    spendable: str = Field(..., description="Confirmed and not reserved by an in-flight operation.")


# ========================= operations =========================

class DepositReq(_Base):
    token: str = Field(..., description="Token symbol (ETH/USDC) or address.")
    amount: Amount = Field(..., description="Amount in base units.")
    user_address: str = Field(..., description="Depositor account address.")


class SwapReq(_Base):
    amount_specified: Amount = Field(..., description="Exact input amount (base units).")
    zero_for_one: bool = Field(..., description="True: token0 -> token1.")
    sqrt_price_limit_x128: Optional[str] = Field(None, description="Optional Q128 price limit.")
    pool_id: Optional[str] = None


class WithdrawReq(_Base):
    token: str
    amount: Amount
    recipient: str = Field(..., description="Public address receiving the tokens.")


class MintReq(_Base):
    tick_lower: int
    tick_upper: int
    liquidity: Amount
    token: Optional[str] = None
    pool_id: Optional[str] = None


class BurnReq(_Base):
    position_id: str
    liquidity: Amount
    token: Optional[str] = None
    proceeds: conint(ge=0) = 0


class CollectReq(_Base):
    position_id: str
    token: Optional[str] = None
    proceeds: conint(ge=0) = 0


class InitializeReq(_Base):
    token0: Optional[str] = None
    token1: Optional[str] = None
    fee: conint(ge=0) = 3000
    tick_spacing: conint(gt=0) = 60
    sqrt_price_x128: Optional[str] = None
    pool_id: Optional[str] = None


class SubmitReq(_Base):
    tx_hash: str = Field(..., description="Hash returned by the wallet after signing the calls.")


class CallView(_Base):
    contract_address: str
    entry_point: str
    calldata: List[str]


class OperationRes(Ok):
    op_id: str
    kind: str
    calls: List[CallView]
    inputs: List[str] = Field(..., description="Commitments consumed by the operation.")
    outputs: List[NoteView]
    public_inputs: List[List[str]]
    details: Dict[str, Any] = Field(default_factory=dict)
    tx_hash: Optional[str] = None


class AbandonRes(Ok):
    released: List[str]


# ========================= history / state =========================

class TxListRes(Ok):
    transactions: List[TxRecord]


class EventsReq(_Base):
    events: List[Dict[str, Any]] = Field(..., description="Chain events, each tagged with a 'type'.")


class EventsRes(Ok):
    applied: int
    duplicates: int


class SyncRes(Ok):
    confirmed: int


# ========================= proofs =========================

class ProofRes(_Base):
    circuit: str
    full_proof_with_hints: List[str]
    public_inputs: List[str]


class CommitmentReq(_Base):
    secret: str
    nullifier: str
    amount: Union[int, str]


class CommitmentRes(_Base):
    commitment: str
