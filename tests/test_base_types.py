from decimal import Decimal

import pytest

from core.base_types import (
    Address,
    Token,
    TokenAmount,
    TransactionReceipt,
    TransactionRequest,
)

DEAD = "0x000000000000000000000000000000000000dead"


def test_address_invalid_raises():
    with pytest.raises(ValueError, match="Invalid EVM address"):
        Address("invalid")


def test_address_case_insensitive_equality():
    lower = Address(DEAD)
    upper = Address("0x000000000000000000000000000000000000DEAD")
    assert lower == upper
    assert hash(lower) == hash(upper)
    assert lower == DEAD.upper().replace("0X", "0x")


def test_address_zero_and_bytes():
    zero = Address.zero()
    assert zero.is_zero
    assert not Address(DEAD).is_zero
    assert Address(DEAD).to_bytes() == bytes.fromhex(DEAD[2:])
    assert len(zero.to_bytes()) == 20


def test_address_is_valid_requires_prefix():
    assert Address.is_valid(DEAD)
    assert not Address.is_valid(DEAD[2:])
    assert not Address.is_valid("0x1234")
    assert not Address.is_valid(None)


def test_token_amount_from_human_raw():
    amount = TokenAmount.from_human("1.5", 18)
    assert amount.raw == 1_500_000_000_000_000_000


def test_token_amount_rejects_excess_precision():
    with pytest.raises(ValueError, match="more precision"):
        TokenAmount.from_human("1.0000001", 6)


def test_token_amount_rejects_negative():
    with pytest.raises(ValueError, match="Invalid amount"):
        TokenAmount.from_human("-1", 18)


def test_token_amount_add_mismatched_decimals():
    a = TokenAmount(raw=1, decimals=18)
    b = TokenAmount(raw=1, decimals=6)
    with pytest.raises(ValueError, match="decimals must match"):
        _ = a + b


def test_token_amount_rejects_float_input():
    with pytest.raises(TypeError, match="not float"):
        TokenAmount.from_human(1.5, 18)


def test_token_amount_formatted_truncates():
    amount = TokenAmount(raw=1_234_567, decimals=6, symbol="USDC")
    assert amount.formatted() == "1.234567"
    assert amount.formatted(2) == "1.23"
    assert str(amount) == "1.234567 USDC"
    assert amount.human == Decimal("1.234567")


def test_token_builds_amounts_with_its_decimals():
    token = Token(Address(DEAD), 6, "USDC", "USD Coin")
    assert token.amount("2").raw == 2_000_000
    assert token.raw_amount(5).symbol == "USDC"
    assert token.to_dict()["decimals"] == 6


def test_transaction_request_sign_dict_has_no_sender():
    request = TransactionRequest(
        to=Address(DEAD),
        value=TokenAmount(raw=16, decimals=18),
        data=b"\xd0\xe3\x0d\xb0",
        nonce=3,
        gas_limit=100_000,
        chain_id=1329,
        sender=Address("0x" + "1" * 40),
    )
    payload = request.to_dict()
    assert "from" not in payload
    assert payload["value"] == 16
    assert payload["data"] == "0xd0e30db0"

    call = request.to_call_dict()
    assert call["from"] == Address("0x" + "1" * 40).checksum
    assert call["value"] == "0x10"


def test_receipt_from_rpc_dict():
    receipt = TransactionReceipt.from_web3(
        {
            "transactionHash": "0xabc",
            "blockNumber": "0x10",
            "status": "0x0",
            "gasUsed": "0x5208",
            "effectiveGasPrice": "0x2",
            "logs": [],
        }
    )
    assert receipt.status is False
    assert receipt.block_number == 16
    assert receipt.tx_fee.raw == 21000 * 2
