"""
Service module exports.
Import individual modules directly to avoid dependency issues.

Example:
    from agentpay.services.lifecycle import TradeLifecycle
    from agentpay.services.swap_executor import SwapExecutor
"""

__all__ = [
    "agents",
    "lifecycle",
    "payment_gate",
    "pnl",
    "price_service",
    "rpc",
    "signer",
    "swap_executor",
    "uniswap_v3",
]
