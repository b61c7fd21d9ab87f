import pytest

from conftest import DEPTH, FakeProver
from zylith.core.errors import (
    MalformedProofResponseError,
    MissingFieldError,
    ProofGenerationError,
    ValidationError,
)
from zylith.core.orchestrator import PUBLIC_INPUTS, ProofOrchestrator
from zylith.crypto_core.codec import FIELD_PRIME


def lp_fields(**overrides):
    fields = {
        "nullifier": "11",
        "root": "22",
        "tick_lower": -120,
        "tick_upper": 120,
        "liquidity": "1000",
        "new_commitment": "0x33",
        "position_commitment": "0x44",
        "secret_in": "55",
        "amount_in": "5000",
        "secret_out": "66",
        "nullifier_out": "77",
        "amount_out": "4000",
        "pathElements": ["1"] * DEPTH,
        "pathIndices": [0, 1, 0, 1],
    }
    fields.update(overrides)
    return fields


def test_missing_fields_are_all_listed(orchestrator):
    with pytest.raises(MissingFieldError) as e:
        orchestrator.build_request("withdraw", {"nullifier": "1", "recipient": "", "pathElements": []})
    assert e.value.fields == ["root", "recipient", "amount", "pathElements", "pathIndices"]
    assert "Missing required fields: root, recipient, amount, pathElements, pathIndices" in str(e.value)


def test_burn_inputs_are_exactly_the_supplied_keys(orchestrator):
    fields = lp_fields()
    req = orchestrator.build_request("lp_burn", fields)
    assert req.circuit == "lp"
    assert set(req.inputs) == set(fields)
    assert req.inputs["tick_lower"] == "-120"
    assert req.inputs["new_commitment"] == "51"


def test_collect_defaults_liquidity_to_zero(orchestrator):
    fields = lp_fields()
    del fields["liquidity"]
    req = orchestrator.build_request("lp_collect", fields)
    assert req.inputs["liquidity"] == "0"
    with pytest.raises(MissingFieldError) as e:
        orchestrator.build_request("lp_mint", fields)
    assert e.value.fields == ["liquidity"]


def test_tick_order_checked_locally(orchestrator):
    with pytest.raises(ValidationError) as e:
        orchestrator.build_request("lp_mint", lp_fields(tick_lower=600, tick_upper=60))
    assert e.value.fields == ["tick_lower", "tick_upper"]


def test_path_length_must_match_depth(orchestrator):
    with pytest.raises(ValidationError) as e:
        orchestrator.build_request("lp_mint", lp_fields(pathElements=["1"] * (DEPTH + 1)))
    assert "pathElements" in e.value.fields


def test_field_elements_must_be_below_the_prime(orchestrator):
    path = ["1"] * (DEPTH - 1) + [str(FIELD_PRIME)]
    with pytest.raises(ValidationError) as e:
        orchestrator.build_request("lp_mint", lp_fields(nullifier=FIELD_PRIME, root="0x", pathElements=path))
    assert e.value.fields == ["nullifier", "root", "pathElements"]


def test_format_checks_can_be_disabled(prover):
    orch = ProofOrchestrator(prover, tree_depth=DEPTH, validate_format=False)
    req = orch.build_request("lp_mint", lp_fields(tick_lower=600, tick_upper=60))
    assert req.inputs["tick_lower"] == 600


def test_prove_returns_normalized_response(orchestrator, prover):
    _, resp = orchestrator.prove("lp_mint", lp_fields())
    assert len(resp.public_inputs) == len(PUBLIC_INPUTS["lp"]) == 7
    assert resp.point_components() == [str(i) for i in range(1, 9)]
    assert prover.calls[0][0] == "lp"


def test_prover_rejection_is_not_retried():
    prover = FakeProver(error=ProofGenerationError("constraint unsatisfied"))
    orch = ProofOrchestrator(prover, tree_depth=DEPTH)
    with pytest.raises(ProofGenerationError):
        orch.prove("lp_burn", lp_fields())
    assert len(prover.calls) == 1


def test_error_body_becomes_proof_generation_error():
    orch = ProofOrchestrator(FakeProver(raw={"error": "witness failed"}), tree_depth=DEPTH)
    with pytest.raises(ProofGenerationError, match="witness failed"):
        orch.prove("lp_burn", lp_fields())


@pytest.mark.parametrize("raw", [
    {"proof": ["1"] * 8, "public_inputs": ["1", "2", "3"]},
    {"proof": ["1"] * 7, "public_inputs": ["1"] * 4},
    {"proof": ["1"] * 8, "public_inputs": ["1", "2", "x", "4"]},
    {"proof": ["1"] * 8},
    "not an object",
])
def test_malformed_responses(raw):
    with pytest.raises(MalformedProofResponseError):
        ProofOrchestrator.parse_response("withdraw", raw)


def test_snarkjs_field_names_accepted():
    resp = ProofOrchestrator.parse_response("membership", {"proof": ["0x1"] * 8, "publicSignals": [1, 2]})
    assert resp.proof == ["1"] * 8
    assert resp.public_inputs == ["1", "2"]


def test_deposit_takes_no_proof(orchestrator):
    req = orchestrator.build_request("deposit", {"amount": "10", "token_address": "0x1", "user_address": "0x2"})
    with pytest.raises(ValidationError):
        orchestrator.dispatch(req)
