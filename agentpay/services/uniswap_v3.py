"""
Uniswap V3 client: ERC20 reads and approvals, QuoterV2 quotes,
SwapRouter02 swaps, pool state and factory lookups.

Reads go through the RPC fallback pool. Writes go through the
execution wallet's signer.
"""

import logging
from typing import Any

from web3 import AsyncWeb3, Web3
from web3.logs import DISCARD

from agentpay.config import ZERO_ADDRESS, Settings
from agentpay.core.exceptions import ConfigurationError
from agentpay.services.rpc import RpcPool
from agentpay.services.signer import TransactionSigner


logger = logging.getLogger(__name__)

FEE_TIERS = (500, 3000, 10000)

ERC20_ABI = [
    {
        "name": "balanceOf",
        "type": "function",
        "stateMutability": "view",
        "inputs": [{"name": "account", "type": "address"}],
        "outputs": [{"name": "", "type": "uint256"}],
    },
    {
        "name": "allowance",
        "type": "function",
        "stateMutability": "view",
        "inputs": [
            {"name": "owner", "type": "address"},
            {"name": "spender", "type": "address"},
        ],
        "outputs": [{"name": "", "type": "uint256"}],
    },
    {
        "name": "approve",
        "type": "function",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "spender", "type": "address"},
            {"name": "amount", "type": "uint256"},
        ],
        "outputs": [{"name": "", "type": "bool"}],
    },
    {
        "name": "decimals",
        "type": "function",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "", "type": "uint8"}],
    },
]

SWAP_ROUTER_ABI = [
    {
        "name": "exactInputSingle",
        "type": "function",
        "stateMutability": "payable",
        "inputs": [
            {
                "name": "params",
                "type": "tuple",
                "components": [
                    {"name": "tokenIn", "type": "address"},
                    {"name": "tokenOut", "type": "address"},
                    {"name": "fee", "type": "uint24"},
                    {"name": "recipient", "type": "address"},
                    {"name": "amountIn", "type": "uint256"},
                    {"name": "amountOutMinimum", "type": "uint256"},
                    {"name": "sqrtPriceLimitX96", "type": "uint160"},
                ],
            }
        ],
        "outputs": [{"name": "amountOut", "type": "uint256"}],
    },
]

QUOTER_V2_ABI = [
    {
        "name": "quoteExactInputSingle",
        "type": "function",
        "stateMutability": "nonpayable",
        "inputs": [
            {
                "name": "params",
                "type": "tuple",
                "components": [
                    {"name": "tokenIn", "type": "address"},
                    {"name": "tokenOut", "type": "address"},
                    {"name": "amountIn", "type": "uint256"},
                    {"name": "fee", "type": "uint24"},
                    {"name": "sqrtPriceLimitX96", "type": "uint160"},
                ],
            }
        ],
        "outputs": [
            {"name": "amountOut", "type": "uint256"},
            {"name": "sqrtPriceX96After", "type": "uint160"},
            {"name": "initializedTicksCrossed", "type": "uint32"},
            {"name": "gasEstimate", "type": "uint256"},
        ],
    },
]

POOL_ABI = [
    {
        "name": "slot0",
        "type": "function",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [
            {"name": "sqrtPriceX96", "type": "uint160"},
            {"name": "tick", "type": "int24"},
            {"name": "observationIndex", "type": "uint16"},
            {"name": "observationCardinality", "type": "uint16"},
            {"name": "observationCardinalityNext", "type": "uint16"},
            {"name": "feeProtocol", "type": "uint8"},
            {"name": "unlocked", "type": "bool"},
        ],
    },
    {
        "name": "token0",
        "type": "function",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "", "type": "address"}],
    },
    {
        "name": "token1",
        "type": "function",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "", "type": "address"}],
    },
    {
        "name": "Swap",
        "type": "event",
        "anonymous": False,
        "inputs": [
            {"name": "sender", "type": "address", "indexed": True},
            {"name": "recipient", "type": "address", "indexed": True},
            {"name": "amount0", "type": "int256", "indexed": False},
            {"name": "amount1", "type": "int256", "indexed": False},
            {"name": "sqrtPriceX96", "type": "uint160", "indexed": False},
            {"name": "liquidity", "type": "uint128", "indexed": False},
            {"name": "tick", "type": "int24", "indexed": False},
        ],
    },
]

FACTORY_ABI = [
    {
        "name": "getPool",
        "type": "function",
        "stateMutability": "view",
        "inputs": [
            {"name": "tokenA", "type": "address"},
            {"name": "tokenB", "type": "address"},
            {"name": "fee", "type": "uint24"},
        ],
        "outputs": [{"name": "pool", "type": "address"}],
    },
]


def checksum(address: str) -> str:
    return Web3.to_checksum_address(address)


class UniswapV3Client:
    """
    Contract-level access to a Uniswap V3 deployment.

    `signer` is optional; without it the client is read-only and any write
    raises ConfigurationError.
    """

    def __init__(self, settings: Settings, rpc: RpcPool, signer: TransactionSigner | None = None):
        self.settings = settings
        self.rpc = rpc
        self.signer = signer
        self.router_address = checksum(settings.uniswap_v3_swap_router)
        self.quoter_address = checksum(settings.uniswap_v3_quoter)
        self.factory_address = checksum(settings.uniswap_v3_factory)
        self.pool_address = checksum(settings.uniswap_v3_pool_address)
        # Event decoding needs no connection; any client's codec will do
        self._event_decoder = rpc.primary.eth.contract(address=self.pool_address, abi=POOL_ABI)

    def _require_signer(self) -> TransactionSigner:
        if self.signer is None:
            raise ConfigurationError("EXECUTION_PRIVATE_KEY not configured")
        return self.signer

    # ERC20

    async def balance_of(self, token: str, owner: str) -> int:
        async def _read(w3: AsyncWeb3) -> int:
            contract = w3.eth.contract(address=checksum(token), abi=ERC20_ABI)
            return await contract.functions.balanceOf(checksum(owner)).call()

        return await self.rpc.call(f"balanceOf({token})", _read)

    async def allowance(self, token: str, owner: str, spender: str) -> int:
        async def _read(w3: AsyncWeb3) -> int:
            contract = w3.eth.contract(address=checksum(token), abi=ERC20_ABI)
            return await contract.functions.allowance(checksum(owner), checksum(spender)).call()

        return await self.rpc.call(f"allowance({token})", _read)

    async def approve(self, token: str, spender: str, amount: int) -> str:
        signer = self._require_signer()
        contract = signer.web3.eth.contract(address=checksum(token), abi=ERC20_ABI)
        return await signer.send(contract.functions.approve(checksum(spender), amount), stage="approval")

    # Quoter / router

    async def quote_exact_input_single(
        self,
        token_in: str,
        token_out: str,
        amount_in: int,
        fee: int,
    ) -> int:
        """Expected output amount in tokenOut base units."""
        async def _quote(w3: AsyncWeb3) -> int:
            quoter = w3.eth.contract(address=self.quoter_address, abi=QUOTER_V2_ABI)
            amount_out, _, _, _ = await quoter.functions.quoteExactInputSingle(
                (checksum(token_in), checksum(token_out), amount_in, fee, 0)
            ).call()
            return amount_out

        return await self.rpc.call("quoteExactInputSingle", _quote)

    async def exact_input_single(
        self,
        token_in: str,
        token_out: str,
        fee: int,
        recipient: str,
        amount_in: int,
        amount_out_minimum: int,
    ) -> str:
        """Submit the swap with no price limit. Returns the tx hash."""
        signer = self._require_signer()
        router = signer.web3.eth.contract(address=self.router_address, abi=SWAP_ROUTER_ABI)
        params = (
            checksum(token_in),
            checksum(token_out),
            fee,
            checksum(recipient),
            amount_in,
            amount_out_minimum,
            0,
        )
        return await signer.send(router.functions.exactInputSingle(params), stage="swap")

    async def wait_for_receipt(self, tx_hash: str) -> Any:
        return await self._require_signer().wait_for_receipt(tx_hash)

    def decode_swap_amounts(self, receipt: Any) -> list[tuple[int, int]]:
        """(amount0, amount1) for every pool Swap event in the receipt."""
        events = self._event_decoder.events.Swap().process_receipt(receipt, errors=DISCARD)
        return [(event["args"]["amount0"], event["args"]["amount1"]) for event in events]

    # Pools

    async def get_pool(self, token_a: str, token_b: str, fee: int) -> str | None:
        async def _read(w3: AsyncWeb3) -> str:
            factory = w3.eth.contract(address=self.factory_address, abi=FACTORY_ABI)
            return await factory.functions.getPool(checksum(token_a), checksum(token_b), fee).call()

        pool = await self.rpc.call(f"getPool({fee})", _read)
        if not pool or pool.lower() == ZERO_ADDRESS:
            return None
        return pool

    async def pool_state(self, pool_address: str | None = None) -> dict:
        """sqrtPriceX96, tick and token ordering of a pool."""
        address = checksum(pool_address or self.pool_address)

        async def _read(w3: AsyncWeb3) -> dict:
            pool = w3.eth.contract(address=address, abi=POOL_ABI)
            slot0 = await pool.functions.slot0().call()
            token0 = await pool.functions.token0().call()
            token1 = await pool.functions.token1().call()
            return {
                "sqrt_price_x96": slot0[0],
                "tick": slot0[1],
                "token0": token0,
                "token1": token1,
            }

        return await self.rpc.call("pool.slot0", _read)
