#main.py
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from db import close_pool
from middleware import RequestContextMiddleware
from routes.admin_transfers import router as admin_transfers_router
from routes.health import router as health_router
from routes.payout_accounts import router as payout_accounts_router
from routes.refunds import router as refunds_router
from routes.subscriptions import router as subscriptions_router
from routes.webhooks import router as webhooks_router
from settings import validate_env_settings

logger = logging.getLogger("creatorpay")


@asynccontextmanager
async def lifespan(app: FastAPI):
    validate_env_settings()
    try:
        yield
    finally:
        close_pool()


def create_app() -> FastAPI:
    app = FastAPI(title="CreatorPay API", version="1.0.0", lifespan=lifespan)
    app.add_middleware(RequestContextMiddleware)

    # -----------------------------
    # ROUTERS
    # -----------------------------

    app.include_router(health_router)
    app.include_router(payout_accounts_router)
    app.include_router(subscriptions_router)
    app.include_router(refunds_router)
    app.include_router(admin_transfers_router)
    app.include_router(webhooks_router)

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception("unhandled error path=%s", request.url.path)
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error"},
        )

    return app


app = create_app()
