# core/session.py
"""
One user's private session: owns the stores and drives each action through

    select notes -> encode -> prove -> build calldata -> (wallet signs) -> submit -> chain events

``prepare_*`` leases input notes and returns a PendingOperation holding the calls to sign.
``submit`` records the tx hash: inputs become spent, outputs are materialised, history gets a
pending row. ``abandon`` drops the leases and nothing else changes.
"""
from __future__ import annotations

import logging
import time
import uuid
from typing import Any, Dict, List, Optional, Protocol

from pydantic import BaseModel, Field

from zylith.core.errors import (
    AlreadySpentError,
    NoteNotFoundError,
    ValidationError,
)
from zylith.core.events import (
    DepositEvent,
    NullifierSpentEvent,
    PoolUpdatedEvent,
    PositionUpdatedEvent,
    TransactionStatusEvent,
    parse_event,
)
from zylith.core.history import HistoryLedger
from zylith.core.models import (
    Note,
    NoteData,
    PoolState,
    PoolUpdate,
    PreparedTransaction,
    TxRecord,
    TxStatus,
    TxType,
)
from zylith.core.notes import NoteStore
from zylith.core.orchestrator import ProofOrchestrator
from zylith.core.pool_sync import PoolStore, PositionStore
from zylith.core.tx_builder import CallSequence, TransactionBuilder
from zylith.crypto_core.clmm import compute_swap
from zylith.crypto_core.codec import Q128, parse_u256, to_hex
from zylith.crypto_core.commitments import generate_note_secrets, position_id as make_position_id
from zylith.crypto_core.merkle import MerkleProof
from zylith.crypto_core.splits import split_amount

LOG = logging.getLogger(__name__)
LOG.addHandler(logging.NullHandler())


class AssociationSet(Protocol):
    def get_merkle_proof(self, index: int) -> MerkleProof: ...
    def get_deposit_index(self, commitment: str) -> Optional[int]: ...
    def prepare_deposit(self, amount: int, token_address: str, user_address: str) -> Dict[str, Any]: ...
    def prepare_swap(self, secret: str, nullifier: str, amount: int, note_index: int, amount_specified: int,
                     zero_for_one: bool, new_secret: str, new_nullifier: str, new_amount: int,
                     sqrt_price_limit: Optional[str] = None) -> Dict[str, Any]: ...


class CommitmentHasher(Protocol):
    def note_commitment(self, secret: str, nullifier: str, amount: int) -> str: ...
    def position_commitment(self, secret: str, tick_lower: int, tick_upper: int) -> str: ...


class EventSink(Protocol):
    def append(self, kind: str, payload: Dict[str, Any], event_id: Optional[str] = None): ...


class PendingOperation(BaseModel):
    op_id: str
    kind: TxType
    calls: List[PreparedTransaction] = Field(default_factory=list)
    inputs: List[str] = Field(default_factory=list, description="Commitments of the leased input notes.")
    outputs: List[Note] = Field(default_factory=list)
    public_inputs: List[List[str]] = Field(default_factory=list)
    details: Dict[str, Any] = Field(default_factory=dict)
    tx_hash: Optional[str] = None
    created_at: float = Field(default_factory=time.time)


class PrivateSession:
    def __init__(
        self,
        notes: NoteStore,
        pools: PoolStore,
        positions: PositionStore,
        history: HistoryLedger,
        orchestrator: ProofOrchestrator,
        builder: TransactionBuilder,
        asp: AssociationSet,
        commitments: CommitmentHasher,
        events: Optional[EventSink] = None,
        pool_id: str = "default",
    ):
        self.notes = notes
        self.pools = pools
        self.positions = positions
        self.history = history
        self.orchestrator = orchestrator
        self.builder = builder
        self.asp = asp
        self.commitments = commitments
        self.events = events
        self.pool_id = pool_id
        self._pending: Dict[str, PendingOperation] = {}
        # tx hash -> confirmed-on-chain effect on an LP position
        self._position_effects: Dict[str, Dict[str, Any]] = {}

    # =========================
    # helpers
    # =========================

    def _merkle(self, note: Note) -> MerkleProof:
        if note.index is None:
            raise ValidationError(f"note {note.commitment} has no tree index yet", fields=["index"])
        proof = self.asp.get_merkle_proof(note.index)
        return self._check_merkle(proof, note)

    def _check_merkle(self, proof: MerkleProof, note: Note) -> MerkleProof:
        proof.check_shape(self.orchestrator.tree_depth)
        if parse_u256(proof.leaf) != parse_u256(note.commitment):
            raise ValidationError(
                f"membership proof leaf does not match note {note.commitment}", fields=["leaf"]
            )
        return proof

    def _pool(self, pool_id: Optional[str]) -> PoolState:
        return self.pools.get(pool_id or self.pool_id)

    def _fresh_note(self, amount: int, token: Optional[str]) -> Note:
        s = generate_note_secrets()
        commitment = self.commitments.note_commitment(s["secret"], s["nullifier"], amount)
        return Note(secret=s["secret"], nullifier=s["nullifier"], amount=amount,
                    commitment=commitment, token_address=token)

    def _register(self, op: PendingOperation) -> PendingOperation:
        self._pending[op.op_id] = op
        LOG.info("prepared %s op %s: %d call(s), %d input note(s)", op.kind.value, op.op_id, len(op.calls), len(op.inputs))
        return op.model_copy()

    @staticmethod
    def _new_op_id() -> str:
        return uuid.uuid4().hex

    def pending(self, op_id: str) -> PendingOperation:
        op = self._pending.get(op_id)
        if op is None:
            raise NoteNotFoundError(f"Unknown operation {op_id}", fields=["op_id"])
        return op.model_copy()

    # =========================
    # prepare
    # =========================

    def prepare_deposit(self, token_address: str, amount: int, user_address: str) -> PendingOperation:
        self.orchestrator.build_request(
            "deposit", {"amount": str(amount), "token_address": token_address, "user_address": user_address}
        )
        amount = parse_u256(amount, "amount")
        if amount == 0:
            raise ValidationError("deposit amount must be positive", fields=["amount"])

        resp = self.asp.prepare_deposit(amount, token_address, user_address)
        data = NoteData.model_validate(resp["note_data"])
        if data.amount != amount:
            raise ValidationError("prepared note amount differs from the requested deposit", fields=["amount"])
        note = Note(secret=data.secret, nullifier=data.nullifier, amount=data.amount,
                    commitment=resp["commitment"], token_address=token_address)
        if resp.get("transactions"):
            calls = self.builder.passthrough(resp["transactions"])
        else:
            calls = self.builder.deposit(token_address, amount, note.commitment)
        return self._register(PendingOperation(
            op_id=self._new_op_id(), kind=TxType.DEPOSIT, calls=list(calls), outputs=[note],
            details={"token": token_address, "amount": str(amount)},
        ))

    def prepare_swap(self, amount_specified: int, zero_for_one: bool, sqrt_price_limit_x128: int = 0,
                     pool_id: Optional[str] = None) -> PendingOperation:
        pool = self._pool(pool_id)
        token_in, token_out = (pool.token0, pool.token1) if zero_for_one else (pool.token1, pool.token0)
        op_id = self._new_op_id()
        [note] = self.notes.select_spendable(token_in, amount_specified, holder=op_id, max_notes=1)
        try:
            sw = compute_swap(pool.sqrt_price_x128, pool.liquidity, amount_specified, zero_for_one,
                              sqrt_price_limit_x128 or None)
            out = generate_note_secrets()
            prep = self.asp.prepare_swap(
                note.secret, note.nullifier, note.amount, note.index, amount_specified, zero_for_one,
                out["secret"], out["nullifier"], sw.amount_out,
            )
            merkle = self._check_merkle(MerkleProof.model_validate(prep["merkle_proof"]), note)
            out_data = NoteData.model_validate(prep.get("output_note_data") or {**out, "amount": sw.amount_out})
            if out_data.amount != sw.amount_out:
                raise ValidationError("ASP output note amount differs from the swap output", fields=["amount_out"])
            output = Note(secret=out_data.secret, nullifier=out_data.nullifier, amount=out_data.amount,
                          commitment=prep["new_commitment"], token_address=token_out)

            fields = {
                "nullifier": note.nullifier,
                "new_commitment": output.commitment,
                "amount_specified": amount_specified,
                "zero_for_one": zero_for_one,
                "amount0_delta": sw.amount0_delta,
                "amount1_delta": sw.amount1_delta,
                "new_sqrt_price_x128": sw.new_sqrt_price_x128,
                "new_tick": sw.new_tick,
                "secret_in": note.secret,
                "amount_in": note.amount,
                "secret_out": output.secret,
                "nullifier_out": output.nullifier,
                "amount_out": output.amount,
                "sqrt_price_old": sw.sqrt_price_old,
                "liquidity": sw.liquidity,
                **merkle.circuit_inputs(),
            }
            req, proof = self.orchestrator.prove("swap", fields)
            prepared = self.builder.trailing({
                "entry_point": "private_swap",
                "zero_for_one": zero_for_one,
                "amount_specified": amount_specified,
                "sqrt_price_limit_x128": sqrt_price_limit_x128,
                "new_commitment": output.commitment,
            }, proof)
            calls = self.builder.build(prepared, proof)
        except Exception:
            self.notes.release(op_id)
            raise
        unrecovered = note.amount - amount_specified
        if unrecovered:
            LOG.warning("swap %s leaves %d unrecovered in note %s", op_id, unrecovered, note.commitment)
        return self._register(PendingOperation(
            op_id=op_id, kind=TxType.SWAP, calls=list(calls), inputs=[note.commitment], outputs=[output],
            public_inputs=[proof.public_inputs],
            details={
                "pool_id": pool.pool_id,
                "request": req.inputs,
                "amount0_delta": str(sw.amount0_delta),
                "amount1_delta": str(sw.amount1_delta),
                "new_sqrt_price_x128": str(sw.new_sqrt_price_x128),
                "new_tick": sw.new_tick,
                "unrecovered": str(unrecovered),
            },
        ))

    def prepare_withdraw(self, token_address: str, amount: int, recipient: str) -> PendingOperation:
        """
        One withdraw proof per selected note. Every note but the last is withdrawn in full;
        the last covers the remainder. Whatever the last note holds beyond that is not
        re-shielded (the withdraw circuit has no change output) and is reported in details.
        """
        op_id = self._new_op_id()
        selected = self.notes.select_spendable(token_address, amount, holder=op_id)
        try:
            parts = split_amount(amount, [n.amount for n in selected])
            calls = CallSequence()
            public_inputs: List[List[str]] = []
            for note, part in zip(selected, parts):
                merkle = self._merkle(note)
                fields = {
                    "nullifier": note.nullifier,
                    "recipient": recipient,
                    "amount": part,
                    "secret": note.secret,
                    **merkle.circuit_inputs(),
                }
                _, proof = self.orchestrator.prove("withdraw", fields)
                prepared = self.builder.trailing(
                    {"entry_point": "private_withdraw", "token": token_address, "recipient": recipient, "amount": part},
                    proof,
                )
                calls.extend(self.builder.build(prepared, proof))
                public_inputs.append(proof.public_inputs)
        except Exception:
            self.notes.release(op_id)
            raise
        unrecovered = selected[-1].amount - parts[-1]
        if unrecovered:
            LOG.warning("withdraw %s leaves %d unrecovered in note %s", op_id, unrecovered, selected[-1].commitment)
        return self._register(PendingOperation(
            op_id=op_id, kind=TxType.WITHDRAW, calls=list(calls), inputs=[n.commitment for n in selected],
            public_inputs=public_inputs,
            details={"token": token_address, "amount": str(amount), "recipient": recipient,
                     "unrecovered": str(unrecovered)},
        ))

    def _lp_fields(self, note: Note, output: Note, merkle: MerkleProof, tick_lower: int, tick_upper: int,
                   position_commitment: str) -> Dict[str, Any]:
        return {
            "nullifier": note.nullifier,
            "tick_lower": tick_lower,
            "tick_upper": tick_upper,
            "new_commitment": output.commitment,
            "position_commitment": position_commitment,
            "secret_in": note.secret,
            "amount_in": note.amount,
            "secret_out": output.secret,
            "nullifier_out": output.nullifier,
            "amount_out": output.amount,
            **merkle.circuit_inputs(),
        }

    def prepare_mint(self, tick_lower: int, tick_upper: int, liquidity: int,
                     token_address: Optional[str] = None, pool_id: Optional[str] = None) -> PendingOperation:
        pool = self._pool(pool_id)
        if tick_lower >= tick_upper:
            raise ValidationError("tick_lower must be below tick_upper", fields=["tick_lower", "tick_upper"])
        if tick_lower % pool.tick_spacing or tick_upper % pool.tick_spacing:
            raise ValidationError(f"ticks must be multiples of {pool.tick_spacing}", fields=["tick_lower", "tick_upper"])
        token = token_address or pool.token0
        op_id = self._new_op_id()
        [note] = self.notes.select_spendable(token, liquidity, holder=op_id, max_notes=1)
        try:
            merkle = self._merkle(note)
            output = self._fresh_note(note.amount - liquidity, token)
            position_commitment = self.commitments.position_commitment(note.secret, tick_lower, tick_upper)
            fields = self._lp_fields(note, output, merkle, tick_lower, tick_upper, position_commitment)
            fields["liquidity"] = liquidity
            _, proof = self.orchestrator.prove("lp_mint", fields)
            prepared = self.builder.trailing({
                "entry_point": "private_mint_liquidity", "tick_lower": tick_lower, "tick_upper": tick_upper,
                "liquidity": liquidity, "new_commitment": output.commitment,
            }, proof)
            calls = self.builder.build(prepared, proof)
        except Exception:
            self.notes.release(op_id)
            raise
        pid = make_position_id(position_commitment)
        return self._register(PendingOperation(
            op_id=op_id, kind=TxType.MINT, calls=list(calls), inputs=[note.commitment], outputs=[output],
            public_inputs=[proof.public_inputs],
            details={"position_id": pid, "pool_id": pool.pool_id, "tick_lower": tick_lower,
                     "tick_upper": tick_upper, "liquidity": str(liquidity)},
        ))

    def prepare_burn(self, position_id: str, liquidity: int, token_address: Optional[str] = None,
                     proceeds: int = 0) -> PendingOperation:
        """``proceeds``: tokens the burn is expected to return, credited to the output note."""
        pos = self.positions.get(position_id)
        if liquidity <= 0 or liquidity > pos.liquidity:
            raise ValidationError(f"liquidity must be in 1..{pos.liquidity}", fields=["liquidity"])
        token = token_address or self._pool(pos.pool_id).token0
        op_id = self._new_op_id()
        [note] = self.notes.select_spendable(token, 1, holder=op_id, max_notes=1)
        try:
            merkle = self._merkle(note)
            output = self._fresh_note(note.amount + proceeds, token)
            fields = self._lp_fields(note, output, merkle, pos.tick_lower, pos.tick_upper, pos.id)
            fields["liquidity"] = liquidity
            _, proof = self.orchestrator.prove("lp_burn", fields)
            prepared = self.builder.trailing({
                "entry_point": "private_burn_liquidity", "tick_lower": pos.tick_lower, "tick_upper": pos.tick_upper,
                "liquidity": liquidity, "new_commitment": output.commitment,
            }, proof)
            calls = self.builder.build(prepared, proof)
        except Exception:
            self.notes.release(op_id)
            raise
        return self._register(PendingOperation(
            op_id=op_id, kind=TxType.BURN, calls=list(calls), inputs=[note.commitment], outputs=[output],
            public_inputs=[proof.public_inputs],
            details={"position_id": pos.id, "liquidity": str(liquidity)},
        ))

    def prepare_collect(self, position_id: str, token_address: Optional[str] = None,
                        proceeds: int = 0) -> PendingOperation:
        pos = self.positions.get(position_id)
        token = token_address or self._pool(pos.pool_id).token0
        op_id = self._new_op_id()
        [note] = self.notes.select_spendable(token, 1, holder=op_id, max_notes=1)
        try:
            merkle = self._merkle(note)
            output = self._fresh_note(note.amount + proceeds, token)
            fields = self._lp_fields(note, output, merkle, pos.tick_lower, pos.tick_upper, pos.id)
            _, proof = self.orchestrator.prove("lp_collect", fields)
            prepared = self.builder.trailing({
                "entry_point": "private_collect", "tick_lower": pos.tick_lower, "tick_upper": pos.tick_upper,
                "new_commitment": output.commitment,
            }, proof)
            calls = self.builder.build(prepared, proof)
        except Exception:
            self.notes.release(op_id)
            raise
        return self._register(PendingOperation(
            op_id=op_id, kind=TxType.COLLECT, calls=list(calls), inputs=[note.commitment], outputs=[output],
            public_inputs=[proof.public_inputs], details={"position_id": pos.id},
        ))

    def prepare_initialize(self, token0: str, token1: str, fee: int = 3000, tick_spacing: int = 60,
                           sqrt_price_x128: int = Q128, pool_id: Optional[str] = None) -> PendingOperation:
        calls = self.builder.initialize(token0, token1, fee=fee, tick_spacing=tick_spacing,
                                        sqrt_price_x128=sqrt_price_x128)
        return self._register(PendingOperation(
            op_id=self._new_op_id(), kind=TxType.INITIALIZE, calls=list(calls),
            details={"pool_id": pool_id or self.pool_id, "token0": token0, "token1": token1, "fee": fee,
                     "tick_spacing": tick_spacing, "sqrt_price_x128": str(sqrt_price_x128)},
        ))

    # =========================
    # submit / abandon
    # =========================

    def submit(self, op_id: str, tx_hash: str) -> PendingOperation:
        tx_hash = to_hex(tx_hash)
        op = self._pending.get(op_id)
        if op is None:
            raise NoteNotFoundError(f"Unknown operation {op_id}", fields=["op_id"])
        try:
            self.notes.mark_all_spent(op.inputs, tx_hash)
        except AlreadySpentError:
            # op stays pending with its leases; abandon releases them
            LOG.error("op %s not submitted as %s: an input is already spent", op_id, tx_hash)
            raise
        self._pending.pop(op_id, None)

        for out in op.outputs:
            self.notes.materialize_output(out)
        self.notes.release(op_id)

        tokens = [o.token_address for o in op.outputs if o.token_address]
        self.history.record(TxRecord(
            hash=tx_hash, type=op.kind, status=TxStatus.PENDING, tokens=tokens,
            amounts=[str(o.amount) for o in op.outputs],
        ))
        if op.kind in (TxType.MINT, TxType.BURN, TxType.COLLECT):
            self._position_effects[tx_hash] = {"kind": op.kind.value, **op.details}
        if op.kind == TxType.INITIALIZE:
            d = op.details
            self.pools.merge(d["pool_id"], PoolUpdate(
                token0=d["token0"], token1=d["token1"], fee=d["fee"], tick_spacing=d["tick_spacing"],
                sqrt_price_x128=d["sqrt_price_x128"],
            ))
        LOG.info("op %s submitted as %s", op_id, tx_hash)
        return op.model_copy(update={"tx_hash": tx_hash})

    def abandon(self, op_id: str) -> List[str]:
        """Drop an in-flight operation. Its input notes stay confirmed and spendable."""
        op = self._pending.pop(op_id, None)
        if op is None:
            raise NoteNotFoundError(f"Unknown operation {op_id}", fields=["op_id"])
        freed = self.notes.release(op_id)
        LOG.info("op %s abandoned, %d note(s) released", op_id, len(freed))
        return freed

    # =========================
    # chain events
    # =========================

    def apply_event(self, event: Any) -> bool:
        """Returns False when the event was already seen (duplicate delivery)."""
        if isinstance(event, dict):
            event = parse_event(event)
        if self.events is not None:
            payload = event.model_dump(mode="json", exclude={"event_id"})
            _, is_new = self.events.append(event.type, payload, event.event_id)
            if not is_new:
                LOG.debug("duplicate %s event ignored", event.type)
                return False

        if isinstance(event, DepositEvent):
            self.notes.observe_deposit(event.commitment, event.leaf_index)
        elif isinstance(event, NullifierSpentEvent):
            self.notes.mark_spent_by_nullifier(event.nullifier, event.tx_hash)
        elif isinstance(event, PoolUpdatedEvent):
            self.pools.merge(event.pool_id, event.update)
        elif isinstance(event, PositionUpdatedEvent):
            self.positions.merge(event.position_id, event.update)
        elif isinstance(event, TransactionStatusEvent):
            rec = self.history.update_status(event.tx_hash, event.status)
            if rec is not None and rec.status == TxStatus.SUCCESS:
                self._apply_position_effect(rec.hash)
        return True

    def _apply_position_effect(self, tx_hash: str) -> None:
        eff = self._position_effects.pop(tx_hash, None)
        if eff is None:
            return
        if eff["kind"] == TxType.MINT.value:
            self.positions.on_mint(eff["position_id"], eff["tick_lower"], eff["tick_upper"],
                                   int(eff["liquidity"]), pool_id=eff["pool_id"])
        elif eff["kind"] == TxType.BURN.value:
            self.positions.on_burn(eff["position_id"], int(eff["liquidity"]))
        elif eff["kind"] == TxType.COLLECT.value:
            self.positions.on_collect(eff["position_id"])

    def sync_note_indices(self) -> int:
        """Ask the ASP where our unconfirmed commitments landed; confirm the ones it knows."""
        n = 0
        for note in self.notes.unconfirmed():
            idx = self.asp.get_deposit_index(note.commitment)
            if idx is not None:
                self.notes.confirm(note.commitment, idx)
                n += 1
        return n


__all__ = ["PendingOperation", "PrivateSession", "AssociationSet", "CommitmentHasher"]
