"""
x402 payment gate.

Paid endpoints run their handler only when the request carries a usable
X-PAYMENT proof. Anything missing, malformed or rejected by the facilitator
gets a 402 with machine-readable payment requirements, so a calling agent
can pay and retry. After a successful (2xx) handler run the payment is
settled through the facilitator and the receipt is attached to the response.
"""

import base64
import binascii
import json
import logging
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Awaitable, Callable

import httpx
from fastapi import Request, Response
from fastapi.responses import JSONResponse
from web3 import Web3

from agentpay.config import Settings
from agentpay.core.exceptions import ConfigurationError
from agentpay.schemas.trading import TradeIntentRecord


logger = logging.getLogger(__name__)

X402_VERSION = 1
PAYMENT_HEADER = "X-PAYMENT"
PAYMENT_RESPONSE_HEADER = "X-PAYMENT-RESPONSE"
USDC_DECIMALS = 6
SUGGESTION_TIMEOUT_SECONDS = 60


@dataclass(frozen=True)
class PaymentConfig:
    """What a paid endpoint charges and where the money goes."""
    price: str
    network: str
    pay_to: str
    description: str = ""
    max_timeout_seconds: int = 60
    mime_type: str = "application/json"
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class PaymentInfo:
    """Decoded proof of payment handed to the gated handler."""
    payment_id: str | None
    payload: dict[str, Any]
    requirements: dict[str, Any]
    payer: str | None = None


def parse_price(price: str | Decimal | float) -> Decimal:
    """
    Parse a USD price such as "$0.10". Non-positive or unparseable
    prices are configuration errors.
    """
    text = str(price).strip().lstrip("$").strip()
    try:
        value = Decimal(text)
    except InvalidOperation:
        raise ConfigurationError(f"Invalid payment price: {price}") from None
    if not value.is_finite() or value <= 0:
        raise ConfigurationError(f"Invalid payment price: {price}")
    return value


def to_atomic_amount(price: str | Decimal | float, decimals: int = USDC_DECIMALS) -> str:
    """USD price to atomic USDC units, as the decimal string x402 expects."""
    atomic = (parse_price(price) * (Decimal(10) ** decimals)).quantize(
        Decimal(1), rounding=ROUND_HALF_UP
    )
    return str(int(atomic))


def decode_payment_header(header: str | None, network: str | None = None) -> dict[str, Any] | None:
    """
    Decode an X-PAYMENT header value.

    Returns None for anything that is not a well-formed payment for
    `network`. Never raises.
    """
    if not header or not header.strip():
        return None

    try:
        raw = base64.b64decode(header.strip(), validate=True)
        decoded = json.loads(raw.decode("utf-8"))
    except (binascii.Error, ValueError, UnicodeDecodeError):
        return None

    if not isinstance(decoded, dict):
        return None
    if not isinstance(decoded.get("x402Version"), int) or isinstance(decoded.get("x402Version"), bool):
        return None
    if not isinstance(decoded.get("scheme"), str) or not isinstance(decoded.get("network"), str):
        return None
    if not isinstance(decoded.get("payload"), dict):
        return None
    if network is not None and decoded["network"] != network:
        return None

    return decoded


def extract_payment_id(payment: dict[str, Any], payer: str | None = None) -> str | None:
    """Payload id, else the facilitator-reported payer, else the authorization nonce."""
    payload = payment.get("payload") or {}
    if payload.get("id"):
        return str(payload["id"])
    if payer:
        return payer
    authorization = payload.get("authorization")
    if isinstance(authorization, dict) and authorization.get("nonce"):
        return str(authorization["nonce"])
    return None


class FacilitatorClient:
    """
    HTTP client for an x402 facilitator's /verify and /settle endpoints.
    """

    def __init__(self, base_url: str, timeout: float = 10.0, client: httpx.AsyncClient | None = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._client = client

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def _post(self, path: str, payment: dict[str, Any], requirements: dict[str, Any]) -> dict[str, Any]:
        client = await self._get_client()
        response = await client.post(
            f"{self.base_url}/{path}",
            json={
                "x402Version": payment.get("x402Version", X402_VERSION),
                "paymentPayload": payment,
                "paymentRequirements": requirements,
            },
        )
        response.raise_for_status()
        body = response.json()
        if not isinstance(body, dict):
            raise ValueError(f"Unexpected facilitator response from /{path}")
        return body

    async def verify(self, payment: dict[str, Any], requirements: dict[str, Any]) -> dict[str, Any]:
        return await self._post("verify", payment, requirements)

    async def settle(self, payment: dict[str, Any], requirements: dict[str, Any]) -> dict[str, Any]:
        return await self._post("settle", payment, requirements)

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None


class PaymentGate:
    """
    Blocks a handler until the request proves payment.

    Args:
        settings: Network, payee address and USDC asset
        facilitator: Remote verifier; None means proofs are only decoded
    """

    def __init__(self, settings: Settings, facilitator: FacilitatorClient | None = None):
        self.settings = settings
        self.facilitator = facilitator

    def config_for(
        self,
        price: str | Decimal | float,
        description: str,
        max_timeout_seconds: int,
        metadata: dict[str, Any] | None = None,
    ) -> PaymentConfig:
        amount = parse_price(price)
        if amount.as_tuple().exponent > -2:
            amount = amount.quantize(Decimal("0.01"))
        return PaymentConfig(
            price=f"${amount}",
            network=self.settings.network,
            pay_to=self.settings.x402_payment_address,
            description=description,
            max_timeout_seconds=max_timeout_seconds,
            metadata=metadata or {},
        )

    def trade_config(self, intent: TradeIntentRecord) -> PaymentConfig:
        return self.config_for(
            intent.expected_payment_amount,
            f"Execute {intent.side.value} trade for {intent.symbol}",
            self.settings.x402_max_timeout_seconds,
            {
                "tradeIntentId": intent.id,
                "userAddress": intent.user_address,
                "symbol": intent.symbol,
                "side": intent.side.value,
                "size": intent.size,
            },
        )

    def suggestion_config(self, agent_id: str, symbol: str) -> PaymentConfig:
        return self.config_for(
            self.settings.consultancy_fee,
            f"AI trade suggestion from {agent_id} for {symbol}",
            SUGGESTION_TIMEOUT_SECONDS,
            {"agentId": agent_id, "symbol": symbol},
        )

    def build_payment_requirements(self, config: PaymentConfig, resource: str, method: str) -> dict[str, Any]:
        return {
            "scheme": "exact",
            "network": config.network,
            "maxAmountRequired": to_atomic_amount(config.price),
            "resource": resource,
            "description": config.description,
            "mimeType": config.mime_type,
            "payTo": Web3.to_checksum_address(config.pay_to),
            "maxTimeoutSeconds": config.max_timeout_seconds,
            "asset": Web3.to_checksum_address(self.settings.usdc_payment_asset),
            "outputSchema": {
                "input": {"type": "http", "method": method, "discoverable": True},
                "output": {},
            },
            "extra": {"name": "USDC", "version": "2"},
        }

    def payment_required_response(
        self,
        config: PaymentConfig,
        resource: str,
        method: str,
        error: str = "X-PAYMENT header is required",
    ) -> JSONResponse:
        return JSONResponse(
            status_code=402,
            content={
                "x402Version": X402_VERSION,
                "error": error,
                "accepts": [self.build_payment_requirements(config, resource, method)],
            },
            headers={
                "WWW-Authenticate": (
                    f'x402 price="{config.price}", network="{config.network}", '
                    f'address="{config.pay_to}"'
                ),
            },
        )

    async def verify(self, request: Request, requirements: dict[str, Any]) -> tuple[PaymentInfo | None, str]:
        """
        Check the request's proof of payment.

        Returns:
            (PaymentInfo, "") when paid, otherwise (None, reason)
        """
        payment = decode_payment_header(request.headers.get(PAYMENT_HEADER), self.settings.network)
        if payment is None:
            if request.headers.get(PAYMENT_HEADER):
                return None, "Invalid X-PAYMENT header"
            return None, "X-PAYMENT header is required"

        if payment["scheme"] != requirements["scheme"]:
            return None, "Unable to find matching payment requirements"

        payer = None
        if self.facilitator is not None:
            try:
                result = await self.facilitator.verify(payment, requirements)
            except (httpx.HTTPError, ValueError) as e:
                logger.warning(f"Payment verification unavailable: {type(e).__name__}: {e}")
                return None, "Payment verification failed"

            if result.get("isValid") is not True:
                reason = result.get("invalidReason") or "Payment verification failed"
                logger.info(f"Payment rejected by facilitator: {reason}")
                return None, str(reason)
            payer = result.get("payer")

        return PaymentInfo(
            payment_id=extract_payment_id(payment, payer),
            payload=payment,
            requirements=requirements,
            payer=payer,
        ), ""

    async def run(
        self,
        request: Request,
        config: PaymentConfig,
        handler: Callable[[PaymentInfo], Awaitable[Response]],
    ) -> Response:
        """
        Verify payment, run `handler`, settle on success.
        The handler never runs without a verified payment.
        """
        resource = f"{request.url.scheme}://{request.url.netloc}{request.url.path}"
        method = request.method
        requirements = self.build_payment_requirements(config, resource, method)

        payment, reason = await self.verify(request, requirements)
        if payment is None:
            return self.payment_required_response(config, resource, method, reason)

        response = await handler(payment)

        if 200 <= response.status_code < 300 and self.facilitator is not None:
            await self._settle(payment, response)

        return response

    def wrap(
        self,
        config: PaymentConfig,
        handler: Callable[[Request, PaymentInfo], Awaitable[Response]],
    ) -> Callable[[Request], Awaitable[Response]]:
        """Decorator form of `run` for handlers with a fixed price."""
        async def gated(request: Request) -> Response:
            return await self.run(request, config, lambda payment: handler(request, payment))
        return gated

    async def _settle(self, payment: PaymentInfo, response: Response) -> None:
        try:
            settlement = await self.facilitator.settle(payment.payload, payment.requirements)
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Payment settlement failed: {type(e).__name__}: {e}")
            return

        if settlement.get("success"):
            encoded = base64.b64encode(json.dumps(settlement).encode("utf-8")).decode("ascii")
            response.headers[PAYMENT_RESPONSE_HEADER] = encoded
            logger.info(f"Payment settled: {settlement.get('transaction')}")
        else:
            logger.error(f"Payment settlement rejected: {settlement.get('errorReason')}")
