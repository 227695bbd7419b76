"""
HealthBot Assistant Server — Application Factory
"""

import time
import logging
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from healthbot import settings

# ── 1. Configure logging ──
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("healthbot-server")

_startup_time = time.time()
logger.info("Server initialization started...")

# ── 2. Create FastAPI app ──
app = FastAPI(title="HealthBot Assistant")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ── 3. Register routers ──
from healthbot.routers import assistant_api, health, webhooks  # noqa: E402

app.include_router(health.router)
app.include_router(webhooks.router)
app.include_router(assistant_api.router)


# ── 4. Startup / shutdown ──
@app.on_event("startup")
async def startup_event():
    """Wire the gateway before serving requests."""
    logger.info("=" * 60)
    logger.info("HealthBot Assistant Starting")
    logger.info("Listening on port: %s", settings.PORT)

    try:
        from healthbot.gateway.setup import initialize_gateway
        await initialize_gateway()
        logger.info("HealthBot Gateway initialized")
    except Exception as e:
        logger.error("Gateway failed to start — running without it: %s", e, exc_info=True)

    logger.info("Total init time: %.2fs", time.time() - _startup_time)
    logger.info("=" * 60)


@app.on_event("shutdown")
async def shutdown_event():
    from healthbot.gateway.setup import shutdown_gateway
    await shutdown_gateway()
