"""
Execution wallet.

One server-held key signs every swap, so submissions are serialized:
the nonce lookup, signing and broadcast for one transaction complete
before the next one starts.
"""

import asyncio
import logging
from typing import Any

from eth_account import Account
from web3 import AsyncWeb3, Web3

from agentpay.core.exceptions import ConfigurationError, TransactionBroadcastError


logger = logging.getLogger(__name__)

RECEIPT_TIMEOUT_SECONDS = 120


class TransactionSigner:
    """
    Signs and broadcasts contract calls from the execution wallet.

    Args:
        web3: Client for the endpoint transactions are broadcast to
        private_key: Hex private key, with or without 0x prefix
        chain_id: Chain the transactions are signed for
    """

    def __init__(self, web3: AsyncWeb3, private_key: str, chain_id: int):
        if not private_key:
            raise ConfigurationError("EXECUTION_PRIVATE_KEY not configured")
        key = private_key if private_key.startswith("0x") else f"0x{private_key}"
        try:
            self._account = Account.from_key(key)
        except Exception:
            # Never echo the key
            raise ConfigurationError("EXECUTION_PRIVATE_KEY is not a valid private key") from None
        self.web3 = web3
        self.chain_id = chain_id
        self._lock = asyncio.Lock()

    @property
    def address(self) -> str:
        return self._account.address

    async def send(self, contract_call: Any, value: int = 0, stage: str = "transaction") -> str:
        """
        Build, sign and broadcast a contract function call.

        Args:
            contract_call: Bound contract function, e.g.
                `token.functions.approve(spender, amount)`
            value: Wei to attach
            stage: Label carried by a broadcast failure

        Returns:
            Transaction hash as 0x-prefixed hex

        Raises:
            TransactionBroadcastError: The signed transaction could not be
                confirmed as sent; carries its hash
        """
        async with self._lock:
            nonce = await self.web3.eth.get_transaction_count(self.address, "pending")
            tx = await contract_call.build_transaction({
                "from": self.address,
                "nonce": nonce,
                "chainId": self.chain_id,
                "value": value,
            })
            signed = self._account.sign_transaction(tx)
            signed_hash = Web3.to_hex(signed.hash)
            try:
                tx_hash = await self.web3.eth.send_raw_transaction(signed.raw_transaction)
            except Exception as e:
                # The node may have accepted it before the error surfaced
                logger.error(f"Broadcast of {signed_hash} (nonce {nonce}) failed: {type(e).__name__}: {e}")
                raise TransactionBroadcastError(stage, signed_hash, f"{type(e).__name__}: {e}") from e

        tx_hash_hex = Web3.to_hex(tx_hash)
        logger.info(f"Transaction broadcast: {tx_hash_hex} (nonce {nonce})")
        return tx_hash_hex

    async def wait_for_receipt(self, tx_hash: str, timeout: float = RECEIPT_TIMEOUT_SECONDS) -> Any:
        return await self.web3.eth.wait_for_transaction_receipt(tx_hash, timeout=timeout)
