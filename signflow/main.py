from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
import logging

from . import config
from .db import init_db, make_session_factory
from .middleware import SessionGateMiddleware
from .payments import PaymentsClient
from . import auth, billing, consent, credits, documents, subscriptions, usage, webhooks

logging.basicConfig(level=config.LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)


def create_app(session_factory=None, payments=None) -> FastAPI:
    """Build the app. The payments client lives for the life of the process."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        init_db(app.state.session_factory)
        if getattr(app.state, "payments", None) is None:
            if not config.STRIPE_SECRET_KEY:
                logger.warning("STRIPE_SECRET_KEY is not set. Provider calls will fail until it is.")
            app.state.payments = PaymentsClient(config.STRIPE_SECRET_KEY)
        yield
        app.state.payments = None

    app = FastAPI(title="Signflow", lifespan=lifespan)
    app.state.session_factory = session_factory or make_session_factory()
    app.state.payments = payments

    app.add_middleware(SessionGateMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[config.SITE_URL],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health")
    def health():
        return JSONResponse({"ok": True})

    app.include_router(webhooks.router)
    app.include_router(auth.router)
    app.include_router(consent.router)
    app.include_router(billing.router)
    app.include_router(subscriptions.router)
    app.include_router(usage.router)
    app.include_router(credits.router)
    app.include_router(documents.router)
    return app


app = create_app()
