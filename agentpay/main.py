"""
FastAPI application entry point.
Builds the service graph from Settings, registers middleware, routes and
exception handlers, and manages startup/shutdown.

Run with:
    uvicorn agentpay.main:create_app --factory
"""

import logging
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from agentpay.api.routes import (
    agents_router,
    balances_router,
    health_router,
    pools_router,
    prices_router,
    trades_router,
)
from agentpay.config import Settings, get_settings
from agentpay.core.exceptions import (
    AppException,
    ConfigurationError,
    PaymentRequiredError,
    SwapExecutionError,
)
from agentpay.core.logging_service import (
    RequestLoggingMiddleware,
    log_system_event,
    setup_structured_logging,
)
from agentpay.core.rate_limiter import (
    RateLimitConfig,
    RateLimiter,
    RateLimitMiddleware,
    payment_rate_limit_config,
)
from agentpay.db.database import create_engine_for, create_session_factory, init_db
from agentpay.db.repository import MemoryTradeRepository, SqlTradeRepository, TradeRepository
from agentpay.services.lifecycle import TradeLifecycle
from agentpay.services.payment_gate import X402_VERSION, FacilitatorClient, PaymentGate
from agentpay.services.price_service import PriceService
from agentpay.services.rpc import RpcPool
from agentpay.services.signer import TransactionSigner
from agentpay.services.swap_executor import SwapExecutor
from agentpay.services.uniswap_v3 import UniswapV3Client


logger = logging.getLogger(__name__)

SANITIZED_TRADE_ERROR = "An error occurred while executing the trade"
# Detail keys that may leave the server even when messages are sanitized
SAFE_DETAIL_KEYS = ("tx_hash", "remediation")


def configure_logging(settings: Settings) -> None:
    """JSON logs in production, plain text in debug mode."""
    if not settings.debug:
        setup_structured_logging(level="INFO", json_output=True)
    else:
        setup_structured_logging(level="DEBUG", json_output=False)


def build_signer(settings: Settings, rpc: RpcPool) -> TransactionSigner | None:
    """Execution wallet, or None when no key is configured (read-only mode)."""
    if not settings.execution_private_key:
        logger.warning("EXECUTION_PRIVATE_KEY not set. Trade execution is disabled.")
        return None
    try:
        return TransactionSigner(rpc.primary, settings.execution_private_key, settings.chain_id)
    except ConfigurationError as e:
        logger.error(f"Execution wallet unavailable: {e.message}")
        return None


def _use_repository(app: FastAPI, repository: TradeRepository) -> None:
    app.state.repository = repository
    app.state.lifecycle.repository = repository


def _error_body(exc: AppException, settings: Settings) -> dict:
    if exc.expose_message or settings.is_development:
        body: dict = {"error": exc.message}
        if exc.details:
            body["details"] = exc.details
        return body

    if isinstance(exc, SwapExecutionError):
        body = {"error": SANITIZED_TRADE_ERROR}
    else:
        body = {"error": exc.default_message}

    safe = {k: v for k, v in exc.details.items() if k in SAFE_DETAIL_KEYS}
    if safe:
        body["details"] = safe
    return body


def register_exception_handlers(app: FastAPI, settings: Settings) -> None:
    @app.exception_handler(PaymentRequiredError)
    async def payment_required_handler(request: Request, exc: PaymentRequiredError) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "x402Version": X402_VERSION,
                "error": exc.message,
                "accepts": exc.details.get("accepts", []),
            },
        )

    @app.exception_handler(AppException)
    async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error(
                f"{type(exc).__name__} on {request.method} {request.url.path}: {exc.message}"
            )
        return JSONResponse(status_code=exc.status_code, content=_error_body(exc, settings))

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        errors = [
            {
                "field": ".".join(str(part) for part in error.get("loc", ()) if part != "body"),
                "message": error.get("msg", "Invalid value"),
            }
            for error in exc.errors()
        ]
        return JSONResponse(
            status_code=400,
            content={"error": "Invalid request", "details": {"errors": errors}},
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.error(
            f"Unhandled {type(exc).__name__} on {request.method} {request.url.path}: {exc}",
            exc_info=exc,
        )
        message = f"{type(exc).__name__}: {exc}" if settings.is_development else SANITIZED_TRADE_ERROR
        return JSONResponse(status_code=500, content={"error": message})


def create_app(settings: Settings | None = None) -> FastAPI:
    """
    Application factory.

    Args:
        settings: Explicit settings; defaults to the cached environment settings

    Returns:
        Configured FastAPI application. Services are available on `app.state`.
    """
    settings = settings or get_settings()
    configure_logging(settings)

    rpc = RpcPool.from_settings(settings)
    signer = build_signer(settings, rpc)
    dex = UniswapV3Client(settings, rpc, signer)
    price_service = PriceService(settings, dex)
    facilitator = (
        FacilitatorClient(settings.facilitator_url, settings.facilitator_timeout_seconds)
        if settings.facilitator_url
        else None
    )
    if facilitator is None:
        logger.warning("FACILITATOR_URL not set. Payment proofs are decoded but not verified.")
    payment_gate = PaymentGate(settings, facilitator)
    executor = SwapExecutor(settings, dex, price_service)

    engine = None
    if settings.storage_backend == "sql":
        engine = create_engine_for(settings)
        repository: TradeRepository = SqlTradeRepository(create_session_factory(engine))
    else:
        repository = MemoryTradeRepository()

    lifecycle = TradeLifecycle(settings, repository, executor, payment_gate, price_service)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Creates missing tables, falling back to in-memory storage when
        the database is unreachable, and closes HTTP clients on shutdown.
        """
        logger.info(f"Starting {settings.app_name} {settings.app_version} on {settings.network}")

        if engine is not None:
            try:
                await init_db(engine)
            except Exception as e:
                logger.warning(
                    f"Database unavailable ({type(e).__name__}: {e}). "
                    f"Falling back to in-memory storage; data will not survive a restart."
                )
                _use_repository(app, MemoryTradeRepository())
                log_system_event("storage_fallback", "database", backend="memory")

        log_system_event(
            "startup",
            "app",
            network=settings.network,
            storage=app.state.repository.backend,
            execution_enabled=signer is not None,
        )

        yield

        logger.info(f"Shutting down {settings.app_name}")
        await price_service.close()
        if facilitator is not None:
            await facilitator.close()
        if engine is not None:
            await engine.dispose()
        log_system_event("shutdown", "app", reason="normal")

    app = FastAPI(
        title="AgentPay Relay",
        description="x402 payment-gated agent trade suggestions and Uniswap V3 execution",
        version=settings.app_version,
        lifespan=lifespan,
        redirect_slashes=False,
    )

    app.state.settings = settings
    app.state.started_at = time.monotonic()
    app.state.rpc = rpc
    app.state.dex = dex
    app.state.price_service = price_service
    app.state.payment_gate = payment_gate
    app.state.lifecycle = lifecycle
    app.state.repository = repository
    app.state.payment_rate_limiter = (
        RateLimiter(payment_rate_limit_config(settings.payment_rate_limit_per_minute))
        if settings.rate_limit_enabled
        else None
    )

    # Middleware order: last added = first executed

    # 1. CORS (must be outermost for preflight requests)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=settings.cors_allow_credentials,
        allow_methods=settings.cors_methods_list,
        allow_headers=settings.cors_headers_list,
        expose_headers=["X-PAYMENT-RESPONSE", "WWW-Authenticate", "X-Correlation-ID"],
    )

    # 2. Rate limiting
    if settings.rate_limit_enabled:
        app.add_middleware(
            RateLimitMiddleware,
            config=RateLimitConfig(
                requests_per_minute=settings.rate_limit_requests_per_minute,
                requests_per_hour=settings.rate_limit_requests_per_hour,
                burst_limit=settings.rate_limit_burst,
            ),
        )

    # 3. Request logging (innermost)
    app.add_middleware(RequestLoggingMiddleware)

    app.include_router(health_router)
    app.include_router(agents_router)
    app.include_router(trades_router)
    app.include_router(balances_router)
    app.include_router(prices_router)
    app.include_router(pools_router)

    register_exception_handlers(app, settings)
    return app
