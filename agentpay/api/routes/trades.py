"""
Trade routes: intent creation, paid execution and trade history.
"""

from fastapi import APIRouter, Query, Request, Response
from fastapi.responses import JSONResponse

from agentpay.api.deps import Gate, Lifecycle, PaymentRateLimit
from agentpay.core.exceptions import InvalidTransitionError
from agentpay.models.enums import TradeStatus
from agentpay.schemas.trading import (
    CreateIntentRequest,
    CreateIntentResponse,
    ExecuteIntentRequest,
    TradeWithPnL,
)
from agentpay.services.payment_gate import PaymentInfo


router = APIRouter(prefix="/trades", tags=["Trades"])


@router.post("/create-intent", response_model=CreateIntentResponse, dependencies=[PaymentRateLimit])
async def create_intent(body: CreateIntentRequest, lifecycle: Lifecycle) -> CreateIntentResponse:
    """
    Creates a pending trade intent and the x402 payment request for it.
    """
    return await lifecycle.create_intent(body)


@router.post("/execute", dependencies=[PaymentRateLimit])
async def execute_trade(
    body: ExecuteIntentRequest,
    request: Request,
    lifecycle: Lifecycle,
    gate: Gate,
) -> Response:
    """
    Executes a trade intent once the request carries an x402 payment
    for the intent's expected payment amount.
    """
    intent = await lifecycle.get_intent(body.trade_intent_id)
    if intent.status == TradeStatus.EXECUTED:
        # Nothing left to pay for
        raise InvalidTransitionError(
            "Trade intent has already been executed",
            {"trade_intent_id": intent.id, "status": intent.status.value},
        )

    async def handler(payment: PaymentInfo) -> Response:
        result = await lifecycle.execute_intent(intent.id, payment)
        return JSONResponse(result.model_dump(mode="json", by_alias=True))

    return await gate.run(request, gate.trade_config(intent), handler)


@router.get("", response_model=list[TradeWithPnL])
async def list_trades(
    lifecycle: Lifecycle,
    limit: int = Query(50, ge=1, le=500),
) -> list[TradeWithPnL]:
    """
    Returns recent executed trades, newest first, with PnL.
    """
    return await lifecycle.list_trades(limit)
