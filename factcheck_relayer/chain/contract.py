"""Binding to the on-chain FactCheck contract."""

import asyncio
import logging
from typing import Any, List, Mapping, Optional

from eth_account import Account
from web3 import AsyncWeb3, Web3
from web3.exceptions import TimeExhausted, TransactionNotFound

from factcheck_relayer.config import Settings
from factcheck_relayer.errors import ChainError
from factcheck_relayer.models.schemas import FactCheckRequest, TransactionStatus

logger = logging.getLogger(__name__)

FACTCHECK_ABI = [
    {
        "anonymous": False,
        "inputs": [
            {"indexed": True, "internalType": "uint256", "name": "requestId", "type": "uint256"},
            {"indexed": True, "internalType": "address", "name": "requester", "type": "address"},
            {"indexed": False, "internalType": "string", "name": "claim", "type": "string"},
        ],
        "name": "FactCheckRequested",
        "type": "event",
    },
    {
        "inputs": [
            {"internalType": "uint256", "name": "requestId", "type": "uint256"},
            {"internalType": "string", "name": "verdict", "type": "string"},
            {"internalType": "string", "name": "explanation", "type": "string"},
        ],
        "name": "fulfillFactCheck",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
]


def _to_hex(value: Any) -> Optional[str]:
    if value is None or isinstance(value, str):
        return value
    return Web3.to_hex(value)


class FactCheckContract:
    """
    Reads `FactCheckRequested` events and submits `fulfillFactCheck` calls.

    Every transaction comes from the same relayer key, so submissions are
    serialized: nonce assignment, signing and broadcast happen under one
    lock. The nonce is read from the chain once and then tracked locally;
    a failed send drops the local value so the next submission re-reads it.
    Receipts are awaited outside the lock, and a sent hash can be looked up
    later so a retry does not broadcast a second fulfillment.
    """

    def __init__(
        self,
        w3: AsyncWeb3,
        contract_address: str,
        private_key: str,
        confirmation_timeout: int = 180,
    ):
        self.w3 = w3
        self.contract = w3.eth.contract(
            address=Web3.to_checksum_address(contract_address),
            abi=FACTCHECK_ABI,
        )
        self.account = Account.from_key(private_key)
        self.confirmation_timeout = confirmation_timeout
        self._nonce: Optional[int] = None
        self._submit_lock = asyncio.Lock()

    @classmethod
    def from_settings(cls, settings: Settings) -> "FactCheckContract":
        """Connect to the configured RPC endpoint with the relayer key."""
        w3 = AsyncWeb3(AsyncWeb3.AsyncHTTPProvider(settings.alchemy_url))
        return cls(
            w3,
            contract_address=settings.factcheck_contract,
            private_key=settings.relayer_private_key,
            confirmation_timeout=settings.confirmation_timeout,
        )

    @property
    def address(self) -> str:
        """Address of the relayer's signing account."""
        return self.account.address

    async def latest_block(self) -> int:
        return await self.w3.eth.block_number

    @staticmethod
    def decode_event(log: Mapping[str, Any]) -> FactCheckRequest:
        """Turn a decoded `FactCheckRequested` log into a request."""
        args = log["args"]
        return FactCheckRequest(
            request_id=int(args["requestId"]),
            requester=str(args["requester"]),
            content_uri=str(args["claim"]),
            block_number=log.get("blockNumber"),
            transaction_hash=_to_hex(log.get("transactionHash")),
        )

    async def fetch_requests(self, from_block: int, to_block: int) -> List[FactCheckRequest]:
        """Return the requests emitted between two blocks, inclusive."""
        logs = await self.contract.events.FactCheckRequested.get_logs(
            from_block=from_block,
            to_block=to_block,
        )
        return [self.decode_event(log) for log in logs]

    async def send_fulfillment(self, request_id: int, verdict: str, explanation: str) -> str:
        """
        Build, sign and broadcast `fulfillFactCheck` without waiting for it.

        Returns:
            The transaction hash as a 0x-prefixed hex string.

        Raises:
            ChainError: If the transaction cannot be built or sent.
        """
        call = self.contract.functions.fulfillFactCheck(request_id, verdict, explanation)

        async with self._submit_lock:
            try:
                if self._nonce is None:
                    self._nonce = await self.w3.eth.get_transaction_count(
                        self.account.address, "pending"
                    )
                nonce = self._nonce
                tx = await call.build_transaction(
                    {"from": self.account.address, "nonce": nonce}
                )
                signed = self.account.sign_transaction(tx)
                tx_hash = await self.w3.eth.send_raw_transaction(signed.raw_transaction)
            except Exception as e:
                self._nonce = None
                raise ChainError(
                    f"Failed to submit fulfillment: {e}", request_id=request_id
                ) from e
            self._nonce = nonce + 1

        tx_hex = _to_hex(tx_hash)
        logger.info(f"[{request_id}] Fulfill tx sent: {tx_hex} (nonce {nonce})")
        return tx_hex

    async def wait_for_confirmation(self, request_id: int, tx_hash: str) -> str:
        """
        Wait for a sent fulfillment to be mined.

        Raises:
            ChainError: If it is not mined within ``confirmation_timeout`` or
                it reverts.
        """
        try:
            receipt = await self.w3.eth.wait_for_transaction_receipt(
                tx_hash, timeout=self.confirmation_timeout
            )
        except TimeExhausted as e:
            raise ChainError(
                f"Fulfill tx {tx_hash} not mined within {self.confirmation_timeout}s",
                request_id=request_id,
            ) from e

        if receipt["status"] != 1:
            raise ChainError(f"Fulfill tx {tx_hash} reverted", request_id=request_id)

        return tx_hash

    async def transaction_status(self, tx_hash: str) -> TransactionStatus:
        """
        Look up a previously sent transaction.

        Returns:
            ``PENDING`` when the node knows the transaction but it is not
            mined, ``DROPPED`` when the node does not know it at all.

        Raises:
            ChainError: If the node cannot be queried.
        """
        try:
            try:
                receipt = await self.w3.eth.get_transaction_receipt(tx_hash)
            except TransactionNotFound:
                receipt = None
            if receipt is not None:
                if receipt["status"] == 1:
                    return TransactionStatus.CONFIRMED
                return TransactionStatus.REVERTED

            try:
                await self.w3.eth.get_transaction(tx_hash)
            except TransactionNotFound:
                return TransactionStatus.DROPPED
            return TransactionStatus.PENDING
        except Exception as e:
            raise ChainError(f"Could not look up tx {tx_hash}: {e}") from e

    async def fulfill(self, request_id: int, verdict: str, explanation: str) -> str:
        """Send `fulfillFactCheck` and wait for it to be mined; returns the tx hash."""
        tx_hash = await self.send_fulfillment(request_id, verdict, explanation)
        return await self.wait_for_confirmation(request_id, tx_hash)
