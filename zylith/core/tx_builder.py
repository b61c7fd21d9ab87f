# core/tx_builder.py
from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, Iterator, List, Optional

import pydantic

from zylith.core.calls import PROOF_ENTRY_POINTS, ApproveCall, DepositCall, InitializeCall, parse_call
from zylith.core.errors import IncompatibleProofError, ValidationError
from zylith.core.models import PreparedTransaction, ProofResponse

LOG = logging.getLogger(__name__)
LOG.addHandler(logging.NullHandler())


class CallSequence:
    """Ordered ledger calls for one user action, submitted as a single multicall."""

    def __init__(self, calls: Optional[Iterable[PreparedTransaction]] = None):
        self.calls: List[PreparedTransaction] = list(calls or [])

    def append(self, call: PreparedTransaction) -> "CallSequence":
        self.calls.append(call)
        return self

    def extend(self, other: "CallSequence") -> "CallSequence":
        self.calls.extend(other.calls)
        return self

    def to_list(self) -> List[Dict[str, Any]]:
        return [c.model_dump() for c in self.calls]

    def __iter__(self) -> Iterator[PreparedTransaction]:
        return iter(self.calls)

    def __len__(self) -> int:
        return len(self.calls)


class TransactionBuilder:
    def __init__(self, contract_address: str):
        self.contract_address = contract_address

    @staticmethod
    def check_compatible(entry_point: str, proof: ProofResponse) -> None:
        want = PROOF_ENTRY_POINTS.get(entry_point)
        if want is None:
            raise IncompatibleProofError(f"{entry_point} does not take a proof", fields=["entry_point"])
        if len(proof.public_inputs) != want:
            raise IncompatibleProofError(
                f"{entry_point} expects {want} public inputs, proof has {len(proof.public_inputs)}",
                fields=["public_inputs"],
            )

    def build(self, prepared: PreparedTransaction, proof: ProofResponse) -> CallSequence:
        """
        Proof fields, then public inputs, then the prepared (operation-specific) calldata.
        Nothing is reordered: same inputs, same calldata.
        """
        self.check_compatible(prepared.entry_point, proof)
        calldata = [
            str(len(proof.proof)), *proof.proof,
            str(len(proof.public_inputs)), *proof.public_inputs,
            *prepared.calldata,
        ]
        LOG.debug("built %s calldata: %d felts", prepared.entry_point, len(calldata))
        return CallSequence([
            PreparedTransaction(
                contract_address=prepared.contract_address,
                entry_point=prepared.entry_point,
                calldata=calldata,
            )
        ])

    def from_variant(self, data: Dict[str, Any]) -> PreparedTransaction:
        """Typed construction of a single call; absent or malformed fields are rejected here."""
        data = dict(data)
        data.setdefault("contract_address", self.contract_address)
        try:
            call = parse_call(data)
        except pydantic.ValidationError as e:
            # loc is (entry_point tag, field)
            fields = [str(err["loc"][-1]) for err in e.errors() if err["loc"]]
            raise ValidationError(f"Invalid {data.get('entry_point')} call: {e.error_count()} error(s)", fields=fields) from None
        return call.to_prepared()  # type: ignore[attr-defined]

    def trailing(self, data: Dict[str, Any], proof: ProofResponse) -> PreparedTransaction:
        """Validate a proof-bearing variant and return it as a prepared call holding only its trailing fields."""
        self.check_compatible(data.get("entry_point", ""), proof)
        full = self.from_variant({**data, "proof": proof.proof, "public_inputs": proof.public_inputs})
        head = 2 + len(proof.proof) + len(proof.public_inputs)
        return PreparedTransaction(
            contract_address=full.contract_address,
            entry_point=full.entry_point,
            calldata=full.calldata[head:],
        )

    def deposit(self, token: str, amount: int, commitment: str) -> CallSequence:
        return CallSequence([
            ApproveCall(contract_address=token, spender=self.contract_address, amount=amount).to_prepared(),
            DepositCall(contract_address=self.contract_address, token=token, amount=amount, commitment=commitment).to_prepared(),
        ])

    def initialize(self, token0: str, token1: str, **kw: Any) -> CallSequence:
        return CallSequence([
            InitializeCall(contract_address=self.contract_address, token0=token0, token1=token1, **kw).to_prepared()
        ])

    @staticmethod
    def passthrough(prepared: Iterable[Dict[str, Any]]) -> CallSequence:
        """Calls already prepared by the ASP are forwarded as-is."""
        return CallSequence(PreparedTransaction.model_validate(p) for p in prepared)


__all__ = ["CallSequence", "TransactionBuilder"]
