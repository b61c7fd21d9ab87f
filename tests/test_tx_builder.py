import pytest

from conftest import CONTRACT, TOKEN0
from zylith.core.calls import BurnCall, CollectCall, MintCall, SwapCall, WithdrawCall, parse_call
from zylith.core.errors import IncompatibleProofError, ValidationError
from zylith.core.models import PreparedTransaction, ProofResponse
from zylith.core.tx_builder import CallSequence, TransactionBuilder
from zylith.crypto_core.codec import Q128

PROOF = [str(100 + i) for i in range(10)]


def proof(n_public, circuit="swap"):
    return ProofResponse(circuit=circuit, proof=PROOF, public_inputs=[str(i) for i in range(n_public)])


@pytest.fixture
def builder():
    return TransactionBuilder(CONTRACT)


def test_build_orders_proof_then_public_inputs_then_calldata(builder):
    prepared = PreparedTransaction(contract_address=CONTRACT, entry_point="private_withdraw",
                                   calldata=["7", "8", "9"])
    [call] = builder.build(prepared, proof(4, "withdraw"))
    assert call.calldata == ["10", *PROOF, "4", "0", "1", "2", "3", "7", "8", "9"]
    assert call.entry_point == "private_withdraw"


def test_build_is_deterministic(builder):
    prepared = PreparedTransaction(contract_address=CONTRACT, entry_point="private_swap", calldata=["1"])
    assert builder.build(prepared, proof(9)).to_list() == builder.build(prepared, proof(9)).to_list()


def test_public_input_count_mismatch_rejected(builder):
    prepared = PreparedTransaction(contract_address=CONTRACT, entry_point="private_swap", calldata=[])
    with pytest.raises(IncompatibleProofError):
        builder.build(prepared, proof(4, "withdraw"))
    with pytest.raises(IncompatibleProofError):
        builder.trailing({"entry_point": "private_mint_liquidity", "tick_lower": -60, "tick_upper": 60,
                          "liquidity": 1, "new_commitment": "0x1"}, proof(9))


def test_swap_trailing_fields(builder):
    prepared = builder.trailing({
        "entry_point": "private_swap", "zero_for_one": True, "amount_specified": 500000,
        "sqrt_price_limit_x128": (2 << 128) + 5, "new_commitment": "0xff",
    }, proof(9))
    assert prepared.calldata == ["1", "500000", "5", "2", "255"]


def test_mint_ticks_use_twos_complement(builder):
    prepared = builder.trailing({
        "entry_point": "private_mint_liquidity", "tick_lower": -1000, "tick_upper": 1020,
        "liquidity": "77", "new_commitment": "0x10",
    }, proof(7, "lp"))
    assert prepared.calldata == ["4294966296", "1020", "77", "16"]


def test_variant_missing_field_is_a_validation_error(builder):
    with pytest.raises(ValidationError) as e:
        builder.trailing({"entry_point": "private_withdraw", "token": TOKEN0, "amount": 5}, proof(4, "withdraw"))
    assert "recipient" in e.value.fields


def test_variant_rejects_out_of_range_tick():
    with pytest.raises(Exception):
        CollectCall(contract_address=CONTRACT, proof=PROOF, public_inputs=["0"] * 7,
                    tick_lower=-900000, tick_upper=60, new_commitment="0x1")


def test_parse_call_dispatches_on_entry_point():
    call = parse_call({"entry_point": "private_burn_liquidity", "contract_address": CONTRACT, "proof": PROOF,
                       "public_inputs": ["0"] * 7, "tick_lower": -60, "tick_upper": 60, "liquidity": 5,
                       "new_commitment": "0x2"})
    assert isinstance(call, BurnCall)
    assert isinstance(call, MintCall)
    calldata = call.to_calldata()
    assert calldata[0] == "10"
    assert calldata[-4:] == ["4294967236", "60", "5", "2"]


def test_withdraw_call_serialises_length_prefixed():
    call = WithdrawCall(contract_address=CONTRACT, proof=PROOF, public_inputs=["1", "2", "3", "4"],
                        token="0x10", recipient="0x20", amount=30)
    assert call.to_calldata() == ["10", *PROOF, "4", "1", "2", "3", "4", "16", "32", "30"]


def test_swap_call_public_input_count_enforced():
    with pytest.raises(Exception):
        SwapCall(contract_address=CONTRACT, proof=PROOF, public_inputs=["0"] * 8, zero_for_one=False,
                 amount_specified=1, new_commitment="0x1")


def test_deposit_is_approve_then_private_deposit(builder):
    seq = builder.deposit(TOKEN0, (1 << 128) + 3, "0xabc")
    approve, deposit = list(seq)
    assert approve.entry_point == "approve"
    assert approve.contract_address == TOKEN0
    assert approve.calldata == [str(int(CONTRACT, 16)), "3", "1"]
    assert deposit.entry_point == "private_deposit"
    assert deposit.calldata == [str(int(TOKEN0, 16)), "3", "1", str(0xABC)]


def test_initialize_defaults(builder):
    [call] = builder.initialize("0x1", "0x2")
    assert call.calldata == ["1", "2", "3000", "60", "0", "1"]
    assert Q128 == 1 << 128


def test_call_sequence_extend():
    a = CallSequence([PreparedTransaction(contract_address="0x1", entry_point="a")])
    b = CallSequence([PreparedTransaction(contract_address="0x1", entry_point="b")])
    assert [c.entry_point for c in a.extend(b)] == ["a", "b"]
    assert len(a) == 2
