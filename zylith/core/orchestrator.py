# core/orchestrator.py
"""
Proof orchestration: per-operation request building, local input checks, dispatch to the
external prover and response-shape validation.

Mint, burn and collect all use the ``lp`` circuit; they differ only in which inputs are set,
so each keeps its own operation name and its own defaults.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Protocol, Sequence, Tuple

from pydantic import BaseModel, Field

from zylith.core.errors import (
    EncodingError,
    MalformedProofResponseError,
    MissingFieldError,
    ProofGenerationError,
    ValidationError,
)
from zylith.core.models import ProofResponse
from zylith.crypto_core.clmm import MAX_TICK, MIN_TICK
from zylith.crypto_core.codec import FELT_MAX, U128_MAX, is_field_element, parse_i32, parse_u256, to_felt_str

LOG = logging.getLogger(__name__)
LOG.addHandler(logging.NullHandler())

# Groth16: A (2) + B (4) + C (2)
PROOF_POINT_COMPONENTS = 8

# circuit -> public input names, in the order the verifier reads them
PUBLIC_INPUTS: Dict[str, Tuple[str, ...]] = {
    "swap": (
        "nullifier", "root", "new_commitment", "amount_specified", "zero_for_one",
        "amount0_delta", "amount1_delta", "new_sqrt_price_x128", "new_tick",
    ),
    "withdraw": ("nullifier", "root", "recipient", "amount"),
    "lp": (
        "nullifier", "root", "tick_lower", "tick_upper", "liquidity",
        "new_commitment", "position_commitment",
    ),
    "membership": ("root", "commitment"),
}

_LP_FIELDS = (
    "nullifier", "root", "tick_lower", "tick_upper", "liquidity", "new_commitment",
    "position_commitment", "secret_in", "amount_in", "secret_out", "nullifier_out",
    "amount_out", "pathElements", "pathIndices",
)


@dataclass(frozen=True)
class OperationSpec:
    name: str
    circuit: Optional[str]
    required: Tuple[str, ...]
    optional: Tuple[str, ...] = ()
    defaults: Mapping[str, Any] = field(default_factory=dict)

    @property
    def expected_public_inputs(self) -> int:
        return len(PUBLIC_INPUTS[self.circuit]) if self.circuit else 0


OPERATIONS: Dict[str, OperationSpec] = {
    "deposit": OperationSpec("deposit", None, ("amount", "token_address", "user_address")),
    "swap": OperationSpec(
        "swap",
        "swap",
        ("nullifier", "root", "new_commitment", "amount_specified", "zero_for_one", "pathElements", "pathIndices"),
        optional=(
            "amount0_delta", "amount1_delta", "new_sqrt_price_x128", "new_tick", "secret_in", "amount_in",
            "secret_out", "nullifier_out", "amount_out", "sqrt_price_old", "liquidity",
        ),
    ),
    "withdraw": OperationSpec(
        "withdraw",
        "withdraw",
        ("nullifier", "root", "recipient", "amount", "pathElements", "pathIndices"),
        optional=("secret",),
    ),
    "lp_mint": OperationSpec("lp_mint", "lp", _LP_FIELDS),
    "lp_burn": OperationSpec("lp_burn", "lp", _LP_FIELDS),
    "lp_collect": OperationSpec(
        "lp_collect",
        "lp",
        tuple(f for f in _LP_FIELDS if f != "liquidity"),
        optional=("liquidity",),
        defaults={"liquidity": "0"},
    ),
    "membership": OperationSpec("membership", "membership", ("root", "commitment", "pathElements", "pathIndices")),
}

# ---------- field classes for local format checks ----------
_FELT = {
    "nullifier", "root", "new_commitment", "position_commitment", "secret_in", "secret_out",
    "nullifier_out", "secret", "commitment", "new_sqrt_price_x128", "sqrt_price_old",
}
_ADDRESS = {"recipient", "token_address", "user_address"}
_U128 = {"amount", "amount_specified", "amount_in", "amount_out", "liquidity"}
_SIGNED = {"amount0_delta", "amount1_delta"}
_TICK = {"tick_lower", "tick_upper", "new_tick"}


class ProofRequest(BaseModel):
    operation: str
    circuit: Optional[str]
    inputs: Dict[str, Any] = Field(default_factory=dict)


class Prover(Protocol):
    def generate(self, circuit: str, inputs: Dict[str, Any]) -> Dict[str, Any]:
        """Raw prover response. Raises ProofGenerationError when the prover rejects the inputs."""


def _absent(v: Any) -> bool:
    return v is None or (isinstance(v, (str, list, tuple)) and len(v) == 0)


class ProofOrchestrator:
    def __init__(self, prover: Optional[Prover], tree_depth: int = 20, validate_format: bool = True):
        self.prover = prover
        self.tree_depth = tree_depth
        self.validate_format = validate_format

    # ---------- request side ----------
    @staticmethod
    def spec(operation: str) -> OperationSpec:
        try:
            return OPERATIONS[operation]
        except KeyError:
            raise ValidationError(f"Unknown operation: {operation}", fields=["operation"]) from None

    def build_request(self, operation: str, fields: Mapping[str, Any]) -> ProofRequest:
        spec = self.spec(operation)
        missing = [f for f in spec.required if _absent(fields.get(f))]
        if missing:
            raise MissingFieldError(missing, context=operation)

        inputs: Dict[str, Any] = {k: v for k, v in fields.items() if not _absent(v)}
        for k, v in spec.defaults.items():
            inputs.setdefault(k, v)
        if self.validate_format:
            inputs = self._normalize(inputs)
        return ProofRequest(operation=operation, circuit=spec.circuit, inputs=inputs)

    def _normalize(self, inputs: Dict[str, Any]) -> Dict[str, Any]:
        out: Dict[str, Any] = {}
        bad: List[str] = []
        for k, v in inputs.items():
            try:
                out[k] = self._normalize_one(k, v)
            except (EncodingError, ValueError, TypeError):
                bad.append(k)

        if not bad and "tick_lower" in out and "tick_upper" in out:
            if int(out["tick_lower"]) >= int(out["tick_upper"]):
                bad += ["tick_lower", "tick_upper"]
        if "pathElements" in out and "pathIndices" in out and not bad:
            if len(out["pathElements"]) != len(out["pathIndices"]):
                bad.append("pathIndices")
        if bad:
            raise ValidationError(f"Malformed fields: {', '.join(bad)}", fields=bad)
        return out

    def _normalize_one(self, k: str, v: Any) -> Any:
        if k in _FELT:
            return to_felt_str(v, k)
        if k in _ADDRESS:
            n = parse_u256(v, k)
            if n >= FELT_MAX:
                raise ValueError(k)
            return str(n)
        if k in _U128:
            n = parse_u256(v, k)
            if n > U128_MAX:
                raise ValueError(k)
            return str(n)
        if k in _SIGNED:
            n = int(str(v).strip(), 10)
            if abs(n) > U128_MAX:
                raise ValueError(k)
            return str(n)
        if k in _TICK:
            n = parse_i32(v, k)
            if not MIN_TICK <= n <= MAX_TICK:
                raise ValueError(k)
            return str(n)
        if k == "zero_for_one":
            if isinstance(v, bool):
                return "1" if v else "0"
            if str(v).strip() in ("0", "1"):
                return str(v).strip()
            raise ValueError(k)
        if k == "pathElements":
            if len(v) != self.tree_depth:
                raise ValueError(k)
            if not all(is_field_element(x) for x in v):
                raise ValueError(k)
            return [str(parse_u256(x, k)) for x in v]
        if k == "pathIndices":
            bits = [int(x) for x in v]
            if len(bits) != self.tree_depth or any(b not in (0, 1) for b in bits):
                raise ValueError(k)
            return bits
        return v

    # ---------- dispatch ----------
    def dispatch(self, request: ProofRequest) -> ProofResponse:
        if request.circuit is None:
            raise ValidationError(f"{request.operation} does not take a proof", fields=["operation"])
        if self.prover is None:
            raise ProofGenerationError("No prover configured")
        LOG.info("requesting %s proof (operation=%s)", request.circuit, request.operation)
        raw = self.prover.generate(request.circuit, dict(request.inputs))
        if isinstance(raw, dict) and raw.get("error"):
            raise ProofGenerationError(str(raw["error"]))
        resp = self.parse_response(request.circuit, raw)
        LOG.info("%s proof ok: %d proof felts, %d public inputs", request.circuit, len(resp.proof), len(resp.public_inputs))
        return resp

    def prove(self, operation: str, fields: Mapping[str, Any]) -> Tuple[ProofRequest, ProofResponse]:
        req = self.build_request(operation, fields)
        return req, self.dispatch(req)

    @staticmethod
    def parse_response(circuit: str, raw: Any) -> ProofResponse:
        expected = len(PUBLIC_INPUTS[circuit])
        if not isinstance(raw, dict):
            raise MalformedProofResponseError("Prover response is not an object")
        proof = raw.get("full_proof_with_hints") or raw.get("proof")
        public_inputs = raw.get("public_inputs")
        if public_inputs is None:
            public_inputs = raw.get("publicSignals")
        if not isinstance(proof, Sequence) or isinstance(proof, str) or len(proof) < PROOF_POINT_COMPONENTS:
            raise MalformedProofResponseError(
                f"Proof must contain at least {PROOF_POINT_COMPONENTS} field elements", fields=["proof"]
            )
        if not isinstance(public_inputs, Sequence) or isinstance(public_inputs, str):
            raise MalformedProofResponseError("Missing public_inputs", fields=["public_inputs"])
        if len(public_inputs) != expected:
            raise MalformedProofResponseError(
                f"{circuit}: expected {expected} public inputs, got {len(public_inputs)}", fields=["public_inputs"]
            )
        try:
            proof_strs = [str(parse_u256(x, "proof")) for x in proof]
            pi_strs = [str(parse_u256(x, "public_inputs")) for x in public_inputs]
        except EncodingError as e:
            raise MalformedProofResponseError(f"Non-numeric proof element: {e}", fields=e.fields) from None
        return ProofResponse(circuit=circuit, proof=proof_strs, public_inputs=pi_strs)


__all__ = [
    "PROOF_POINT_COMPONENTS",
    "PUBLIC_INPUTS",
    "OPERATIONS",
    "OperationSpec",
    "ProofRequest",
    "Prover",
    "ProofOrchestrator",
]
