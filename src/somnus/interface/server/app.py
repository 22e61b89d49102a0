"""
Application factory for the Somnus HTTP API.

Wires the configuration, the store, the session issuer and the LLM pipeline
into ``app.state`` and ties the database engine to the app lifespan.
"""

import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from somnus.auth.session import SessionIssuer
from somnus.brain.interpreter import DreamInterpreter
from somnus.brain.llm_gateway import LLMGateway
from somnus.brain.weekly import WeeklyAnalyzer
from somnus.core.config import SomnusConfig, load_config
from somnus.core.database import DreamStore
from somnus.core.system_logger import SystemLogger
from somnus.interface.server.routes import router as api_router
from somnus.journal.service import JournalService

logger = logging.getLogger("somnus.server")

STATIC_DIR = Path(__file__).parent / "static"


class EndpointFilter(logging.Filter):
    """
    Filter out session polling from access logs.
    """
    def filter(self, record: logging.LogRecord) -> bool:
        return record.getMessage().find("/api/auth/me") == -1


def create_app(config: Optional[SomnusConfig] = None, store: Optional[DreamStore] = None) -> FastAPI:
    config = config or load_config()
    SystemLogger.get_instance(config)

    if store is None:
        store = DreamStore(url=config.database.url)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await store.init_db()
        logger.info(f"Database ready at {store.url}")
        try:
            yield
        finally:
            await store.close()
            logger.info("Database engine disposed.")

    app = FastAPI(title="Somnus API", lifespan=lifespan)

    gateway = LLMGateway(config)
    interpreter = DreamInterpreter(gateway)
    if not gateway.is_configured:
        logger.warning("No LLM API keys configured; interpretation endpoints will fail.")

    app.state.config = config
    app.state.store = store
    app.state.issuer = SessionIssuer.from_config(config)
    app.state.gateway = gateway
    app.state.interpreter = interpreter
    app.state.weekly = WeeklyAnalyzer(gateway)
    app.state.journal = JournalService(store, interpreter)

    @app.exception_handler(HTTPException)
    async def error_body(request: Request, exc: HTTPException):
        return JSONResponse({"error": exc.detail}, status_code=exc.status_code, headers=exc.headers)

    # Explicit routers go in before the catch-all static mount
    app.include_router(api_router)
    if STATIC_DIR.exists():
        app.mount("/", StaticFiles(directory=str(STATIC_DIR), html=True), name="static")

    return app
