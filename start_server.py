"""
Production-ready server startup script.
Starts the FastAPI application; tables are created in the app lifespan.
"""
import sys

import uvicorn

print("=" * 60)
print("AGENTPAY RELAY - SERVER STARTUP")
print("=" * 60)

print("\n[1/2] Checking configuration...")
try:
    from agentpay.config import get_settings
    settings = get_settings()
    print(f"[OK] Network: {settings.network}, storage: {settings.storage_backend}")
except Exception as e:
    print(f"[ERROR] Configuration failed: {e}")
    sys.exit(1)

print("\n[2/2] Starting FastAPI server...")
try:
    print(f"[OK] Server starting on http://{settings.host}:{settings.port}")
    print("\nEndpoints:")
    print("  - Health: GET /health")
    print("  - Agents: GET /agents, POST /agents/suggest (x402)")
    print("  - Trades: POST /trades/create-intent, POST /trades/execute (x402), GET /trades")
    print("  - API Docs: GET /docs")
    print("\nPress CTRL+C to stop")
    print("=" * 60 + "\n")

    uvicorn.run(
        "agentpay.main:create_app",
        factory=True,
        host=settings.host,
        port=settings.port,
        reload=False,
        log_level="info",
    )
except KeyboardInterrupt:
    print("\n\n[OK] Server shutdown requested")
    sys.exit(0)
except Exception as e:
    print(f"\n[ERROR] Server startup failed: {e}")
    sys.exit(1)
