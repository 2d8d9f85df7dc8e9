"""
API route module exports.
"""

from agentpay.api.routes.agents import router as agents_router
from agentpay.api.routes.balances import router as balances_router
from agentpay.api.routes.health import router as health_router
from agentpay.api.routes.pools import router as pools_router
from agentpay.api.routes.prices import router as prices_router
from agentpay.api.routes.trades import router as trades_router

__all__ = [
    "agents_router",
    "balances_router",
    "health_router",
    "pools_router",
    "prices_router",
    "trades_router",
]
