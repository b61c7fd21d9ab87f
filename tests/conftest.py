from __future__ import annotations

import hashlib
from typing import Any, Dict, List, Optional

import pytest

from zylith.api.eventlog import MemoryEventLog
from zylith.core.events import DepositEvent
from zylith.core.history import HistoryLedger
from zylith.core.models import PoolState
from zylith.core.notes import NoteStore
from zylith.core.orchestrator import PUBLIC_INPUTS, ProofOrchestrator
from zylith.core.pool_sync import PoolStore, PositionStore
from zylith.core.session import PrivateSession
from zylith.core.tx_builder import TransactionBuilder
from zylith.crypto_core.codec import FIELD_PRIME, Q128
from zylith.crypto_core.commitments import generate_note_secrets
from zylith.crypto_core.merkle import MerkleProof

DEPTH = 4
CONTRACT = "0x4be88b8ded4bcb9bef0d7afce05c8eff7df67714a2e6a9371ed1151948a3dc3"
TOKEN0 = "0x49d36570d4e46f48e99674bd3fcc84644ddd6b96f7c741b1562b82f9e004dc7"
TOKEN1 = "0x512feac6339ff7889822cb5aa2a86c848e9d392bb0e3e237c008674feed8343"
USER = "0x1234"


def fake_hash(*parts: Any) -> str:
    h = hashlib.sha256(":".join(str(p) for p in parts).encode()).hexdigest()
    return hex(int(h, 16) % FIELD_PRIME)


class FakeProver:
    """Echoes the circuit's public inputs back as field elements (negatives wrap mod p)."""

    def __init__(self, error: Optional[Exception] = None, raw: Optional[Dict[str, Any]] = None):
        self.calls: List[tuple] = []
        self.error = error
        self.raw = raw

    def generate(self, circuit: str, inputs: Dict[str, Any]) -> Dict[str, Any]:
        self.calls.append((circuit, dict(inputs)))
        if self.error is not None:
            raise self.error
        if self.raw is not None:
            return self.raw
        return {
            "full_proof_with_hints": [str(i + 1) for i in range(12)],
            "public_inputs": [str(int(inputs[name]) % FIELD_PRIME) for name in PUBLIC_INPUTS[circuit]],
        }


class FakeCommitments:
    def note_commitment(self, secret: str, nullifier: str, amount: int) -> str:
        return fake_hash("note", secret, nullifier, amount)

    def position_commitment(self, secret: str, tick_lower: int, tick_upper: int) -> str:
        return fake_hash("position", secret, tick_lower, tick_upper)


class FakeASP:
    """In-memory membership tree: leaves are appended when a deposit is prepared."""

    def __init__(self, commitments: FakeCommitments, depth: int = DEPTH):
        self.commitments = commitments
        self.depth = depth
        self.leaves: List[str] = []
        self.root = "12345"

    def get_merkle_proof(self, index: int) -> MerkleProof:
        return MerkleProof(leaf=self.leaves[index], path=[str(i + 7) for i in range(self.depth)],
                           path_indices=[0] * self.depth, root=self.root)

    def get_deposit_index(self, commitment: str) -> Optional[int]:
        c = int(commitment, 16)
        for i, leaf in enumerate(self.leaves):
            if int(leaf, 16) == c:
                return i
        return None

    def prepare_deposit(self, amount: int, token_address: str, user_address: str) -> Dict[str, Any]:
        s = generate_note_secrets()
        commitment = self.commitments.note_commitment(s["secret"], s["nullifier"], amount)
        self.leaves.append(commitment)
        return {"note_data": {**s, "amount": str(amount)}, "commitment": commitment}

    def prepare_swap(self, secret, nullifier, amount, note_index, amount_specified, zero_for_one,
                     new_secret, new_nullifier, new_amount, sqrt_price_limit=None) -> Dict[str, Any]:
        return {
            "merkle_proof": self.get_merkle_proof(note_index).model_dump(),
            "new_commitment": self.commitments.note_commitment(new_secret, new_nullifier, new_amount),
        }


@pytest.fixture
def prover() -> FakeProver:
    return FakeProver()


@pytest.fixture
def orchestrator(prover) -> ProofOrchestrator:
    return ProofOrchestrator(prover, tree_depth=DEPTH)


@pytest.fixture
def session(orchestrator) -> PrivateSession:
    commitments = FakeCommitments()
    pool = PoolState(pool_id="default", token0=TOKEN0, token1=TOKEN1, sqrt_price_x128=Q128, liquidity=10 ** 12)
    return PrivateSession(
        notes=NoteStore(),
        pools=PoolStore([pool]),
        positions=PositionStore(),
        history=HistoryLedger(),
        orchestrator=orchestrator,
        builder=TransactionBuilder(CONTRACT),
        asp=FakeASP(commitments),
        commitments=commitments,
        events=MemoryEventLog(),
    )


@pytest.fixture
def fund(session):
    """Deposit, submit and confirm one note per amount; returns the confirmed notes."""
    counter = {"n": 0}

    def _fund(*amounts: int, token: str = TOKEN0):
        notes = []
        for amount in amounts:
            counter["n"] += 1
            op = session.prepare_deposit(token, amount, USER)
            session.submit(op.op_id, hex(0xD000 + counter["n"]))
            note = op.outputs[0]
            index = session.asp.get_deposit_index(note.commitment)
            session.apply_event(DepositEvent(commitment=note.commitment, leaf_index=index))
            notes.append(session.notes.get(note.commitment))
        return notes

    return _fund
