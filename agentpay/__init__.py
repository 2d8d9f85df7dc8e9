"""
agentpay-relay: x402 payment-gated trade execution on Uniswap V3.
"""

__version__ = "1.0.0"
