"""
Agent catalogue and paid trade suggestions.
"""

from fastapi import APIRouter, Request, Response
from fastapi.responses import JSONResponse

from agentpay.api.deps import Gate, PaymentRateLimit, Prices
from agentpay.core.exceptions import ValidationError
from agentpay.schemas.agents import AgentInfo, SuggestRequest
from agentpay.services import agents
from agentpay.services.payment_gate import PaymentInfo


router = APIRouter(prefix="/agents", tags=["Agents"])


@router.get("", response_model=list[AgentInfo])
async def get_agents() -> list[AgentInfo]:
    """Returns the available trading agents."""
    return agents.list_agents()


@router.post("/suggest", dependencies=[PaymentRateLimit])
async def suggest_trade(
    body: SuggestRequest,
    request: Request,
    gate: Gate,
    prices: Prices,
) -> Response:
    """
    Returns a trade suggestion from the chosen agent.
    Requires an x402 payment of the consultancy fee.
    """
    if not body.agent_id or not body.symbol:
        raise ValidationError("Missing required fields: agentId, symbol")

    # Unknown agents are rejected before anyone is asked to pay
    agent = agents.AgentStrategy.parse(body.agent_id)
    symbol = body.symbol.upper()

    async def handler(payment: PaymentInfo) -> Response:
        suggestion = await agents.suggest(agent.value, symbol, prices)
        suggestion = suggestion.model_copy(update={"payment_id": payment.payment_id})
        return JSONResponse(suggestion.model_dump(mode="json", by_alias=True))

    return await gate.run(request, gate.suggestion_config(agent.value, symbol), handler)
