"""
Tests for the x402 payment gate.
Covers header decoding, payment requirements, facilitator verification
and settlement.
"""

import base64
import json

import httpx
import pytest
from unittest.mock import AsyncMock, MagicMock
from fastapi import Request
from fastapi.responses import JSONResponse

from agentpay.core.exceptions import ConfigurationError
from agentpay.services.payment_gate import (
    PAYMENT_RESPONSE_HEADER,
    X402_VERSION,
    PaymentGate,
    decode_payment_header,
    extract_payment_id,
    parse_price,
    to_atomic_amount,
)

from conftest import PAY_TO_ADDRESS, make_intent, make_settings


def encode(payment: dict) -> str:
    return base64.b64encode(json.dumps(payment).encode("utf-8")).decode("ascii")


def make_payment(**overrides) -> dict:
    payment = {
        "x402Version": 1,
        "scheme": "exact",
        "network": "base-sepolia",
        "payload": {
            "signature": "0xsig",
            "authorization": {"from": "0xpayer", "nonce": "0xnonce"},
        },
    }
    payment.update(overrides)
    return payment


def make_request(payment_header: str | None = None, path: str = "/trades/execute") -> Request:
    headers = [(b"host", b"relay.example")]
    if payment_header is not None:
        headers.append((b"x-payment", payment_header.encode("latin-1")))
    return Request({
        "type": "http",
        "method": "POST",
        "scheme": "https",
        "server": ("relay.example", 443),
        "path": path,
        "root_path": "",
        "query_string": b"",
        "headers": headers,
    })


@pytest.fixture
def gate():
    return PaymentGate(make_settings(x402_payment_address=PAY_TO_ADDRESS))


def make_facilitator(verify=None, settle=None):
    facilitator = MagicMock()
    facilitator.verify = AsyncMock(return_value=verify or {"isValid": True, "payer": "0xpayer"})
    facilitator.settle = AsyncMock(
        return_value=settle or {"success": True, "transaction": "0xsettled", "network": "base-sepolia"}
    )
    return facilitator


async def ok_handler(payment):
    return JSONResponse({"ok": True, "paymentId": payment.payment_id})


class TestDecodePaymentHeader:
    """Tests for X-PAYMENT decoding."""

    def test_valid_header(self):
        decoded = decode_payment_header(encode(make_payment()))
        assert decoded["scheme"] == "exact"
        assert decoded["payload"]["signature"] == "0xsig"

    @pytest.mark.parametrize("header", [None, "", "   ", "not base64!!", encode([1, 2])])
    def test_malformed_headers(self, header):
        assert decode_payment_header(header) is None

    def test_base64_of_non_json(self):
        header = base64.b64encode(b"hello").decode("ascii")
        assert decode_payment_header(header) is None

    @pytest.mark.parametrize("field", ["x402Version", "scheme", "network", "payload"])
    def test_missing_field(self, field):
        payment = make_payment()
        del payment[field]
        assert decode_payment_header(encode(payment)) is None

    def test_boolean_version_rejected(self):
        assert decode_payment_header(encode(make_payment(x402Version=True))) is None

    def test_wrong_network(self):
        header = encode(make_payment(network="base"))
        assert decode_payment_header(header, "base-sepolia") is None
        assert decode_payment_header(header, "base") is not None


class TestPricing:
    """Tests for price parsing and atomic amounts."""

    def test_atomic_amounts(self):
        assert to_atomic_amount("$0.10") == "100000"
        assert to_atomic_amount("0.001000") == "1000"
        assert to_atomic_amount(1) == "1000000"
        assert to_atomic_amount("0.0000005") == "1"

    @pytest.mark.parametrize("price", ["$0", "-1", "abc", "$"])
    def test_invalid_price(self, price):
        with pytest.raises(ConfigurationError):
            parse_price(price)

    def test_config_price_formatting(self, gate):
        assert gate.config_for(0.1, "x", 60).price == "$0.10"
        assert gate.config_for("0.001000", "x", 60).price == "$0.001000"
        assert gate.config_for(1, "x", 60).price == "$1.00"

    def test_trade_config(self, gate):
        config = gate.trade_config(make_intent())
        assert config.price == "$0.001000"
        assert config.max_timeout_seconds == 90
        assert config.metadata["tradeIntentId"] == "intent_1"
        assert config.pay_to == PAY_TO_ADDRESS

    def test_suggestion_config(self, gate):
        config = gate.suggestion_config("trend-follower", "BTC")
        assert config.price == "$0.10"
        assert config.max_timeout_seconds == 60
        assert config.metadata == {"agentId": "trend-follower", "symbol": "BTC"}

    def test_requirements(self, gate):
        config = gate.config_for("0.10", "Suggestion", 60)
        requirements = gate.build_payment_requirements(config, "https://relay.example/agents/suggest", "POST")

        assert requirements["scheme"] == "exact"
        assert requirements["network"] == "base-sepolia"
        assert requirements["maxAmountRequired"] == "100000"
        assert requirements["payTo"].lower() == PAY_TO_ADDRESS.lower()
        assert requirements["asset"].lower() == "0x036cbd53842c5426634e7929541ec2318f3dcf7e"
        assert requirements["outputSchema"]["input"]["method"] == "POST"


class TestExtractPaymentId:
    """Tests for picking the payment id."""

    def test_prefers_payload_id(self):
        assert extract_payment_id(make_payment(payload={"id": "pay_1"}), "0xpayer") == "pay_1"

    def test_then_payer(self):
        assert extract_payment_id(make_payment(), "0xpayer") == "0xpayer"

    def test_then_nonce(self):
        assert extract_payment_id(make_payment()) == "0xnonce"

    def test_none(self):
        assert extract_payment_id(make_payment(payload={})) is None


class TestRun:
    """Tests for PaymentGate.run."""

    @pytest.mark.asyncio
    async def test_missing_header_returns_402(self, gate):
        handler = AsyncMock()
        config = gate.config_for("0.10", "Suggestion", 60)

        response = await gate.run(make_request(), config, handler)

        assert response.status_code == 402
        body = json.loads(response.body)
        assert body["x402Version"] == X402_VERSION
        assert body["error"] == "X-PAYMENT header is required"
        assert body["accepts"][0]["resource"] == "https://relay.example/trades/execute"
        assert "WWW-Authenticate" in response.headers
        handler.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_invalid_header_returns_402(self, gate):
        handler = AsyncMock()
        response = await gate.run(make_request("garbage"), gate.config_for("0.10", "x", 60), handler)

        assert response.status_code == 402
        assert json.loads(response.body)["error"] == "Invalid X-PAYMENT header"
        handler.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_scheme_mismatch_returns_402(self, gate):
        handler = AsyncMock()
        request = make_request(encode(make_payment(scheme="upto")))
        response = await gate.run(request, gate.config_for("0.10", "x", 60), handler)

        assert response.status_code == 402
        handler.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_without_facilitator_decoded_proof_is_accepted(self, gate):
        response = await gate.run(
            make_request(encode(make_payment())), gate.config_for("0.10", "x", 60), ok_handler
        )

        assert response.status_code == 200
        assert json.loads(response.body)["paymentId"] == "0xnonce"
        assert PAYMENT_RESPONSE_HEADER not in response.headers

    @pytest.mark.asyncio
    async def test_facilitator_rejects(self):
        facilitator = make_facilitator(verify={"isValid": False, "invalidReason": "insufficient_funds"})
        gate = PaymentGate(make_settings(x402_payment_address=PAY_TO_ADDRESS), facilitator)
        handler = AsyncMock()

        response = await gate.run(make_request(encode(make_payment())), gate.config_for("0.10", "x", 60), handler)

        assert response.status_code == 402
        assert json.loads(response.body)["error"] == "insufficient_funds"
        handler.assert_not_awaited()
        facilitator.settle.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_facilitator_unreachable(self):
        facilitator = make_facilitator()
        facilitator.verify.side_effect = httpx.ConnectError("connection refused")
        gate = PaymentGate(make_settings(x402_payment_address=PAY_TO_ADDRESS), facilitator)
        handler = AsyncMock()

        response = await gate.run(make_request(encode(make_payment())), gate.config_for("0.10", "x", 60), handler)

        assert response.status_code == 402
        assert json.loads(response.body)["error"] == "Payment verification failed"
        handler.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_verified_payment_is_settled(self):
        facilitator = make_facilitator()
        gate = PaymentGate(make_settings(x402_payment_address=PAY_TO_ADDRESS), facilitator)

        response = await gate.run(make_request(encode(make_payment())), gate.config_for("0.10", "x", 60), ok_handler)

        assert response.status_code == 200
        assert json.loads(response.body)["paymentId"] == "0xpayer"
        facilitator.settle.assert_awaited_once()
        receipt = json.loads(base64.b64decode(response.headers[PAYMENT_RESPONSE_HEADER]))
        assert receipt["transaction"] == "0xsettled"

    @pytest.mark.asyncio
    async def test_failed_handler_is_not_settled(self):
        facilitator = make_facilitator()
        gate = PaymentGate(make_settings(x402_payment_address=PAY_TO_ADDRESS), facilitator)

        async def failing_handler(payment):
            return JSONResponse({"error": "boom"}, status_code=500)

        response = await gate.run(make_request(encode(make_payment())), gate.config_for("0.10", "x", 60), failing_handler)

        assert response.status_code == 500
        facilitator.settle.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_settlement_failure_keeps_response(self):
        facilitator = make_facilitator()
        facilitator.settle.side_effect = httpx.ReadTimeout("timeout")
        gate = PaymentGate(make_settings(x402_payment_address=PAY_TO_ADDRESS), facilitator)

        response = await gate.run(make_request(encode(make_payment())), gate.config_for("0.10", "x", 60), ok_handler)

        assert response.status_code == 200
        assert PAYMENT_RESPONSE_HEADER not in response.headers

    @pytest.mark.asyncio
    async def test_wrap(self, gate):
        async def handler(request, payment):
            return JSONResponse({"path": request.url.path})

        gated = gate.wrap(gate.config_for("0.10", "x", 60), handler)

        assert (await gated(make_request())).status_code == 402
        paid = await gated(make_request(encode(make_payment()), path="/paid"))
        assert json.loads(paid.body) == {"path": "/paid"}
