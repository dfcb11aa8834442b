"""Shared fixtures."""

import asyncio

import pytest
from hexbytes import HexBytes
from unittest.mock import AsyncMock, MagicMock
from web3.exceptions import TransactionNotFound


def build_w3(start_nonce: int = 5, receipt_status: int = 1) -> MagicMock:
    """A stand-in AsyncWeb3 whose transactions are signable legacy txs."""
    w3 = MagicMock()
    w3.eth.get_transaction_count = AsyncMock(return_value=start_nonce)

    async def build_transaction(params):
        await asyncio.sleep(0)
        return {
            "to": "0x5FbDB2315678afecb367f032d93F642f64180aa3",
            "value": 0,
            "gas": 200000,
            "gasPrice": 1_000_000_000,
            "nonce": params["nonce"],
            "chainId": 31337,
            "data": "0x",
        }

    w3.eth.contract.return_value.functions.fulfillFactCheck.return_value.build_transaction = (
        AsyncMock(side_effect=build_transaction)
    )

    sent = []

    async def send_raw_transaction(raw):
        await asyncio.sleep(0)
        sent.append(raw)
        return HexBytes(bytes([len(sent)]) * 32)

    w3.eth.send_raw_transaction = AsyncMock(side_effect=send_raw_transaction)
    w3.eth.wait_for_transaction_receipt = AsyncMock(return_value={"status": receipt_status})
    w3.eth.get_transaction_receipt = AsyncMock(side_effect=TransactionNotFound("unknown tx"))
    w3.eth.get_transaction = AsyncMock(side_effect=TransactionNotFound("unknown tx"))
    return w3


@pytest.fixture
def make_w3():
    return build_w3
