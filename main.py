"""FastAPI + FastHTML application entry point."""

import logging
import time
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import RedirectResponse

from api.suggestion_jobs import BackgroundRunner
from src.ledgerly.ai.completion_client import CompletionClient
from src.ledgerly.ai.suggestion_generator import ChatClient, SuggestionGenerator
from src.ledgerly.core.config import AppConfig
from src.ledgerly.core.database import DatabaseManager


def create_app(config: AppConfig | None = None, completion_client: ChatClient | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    # Initialize app configuration and database
    config = config or AppConfig()
    config.ensure_dirs()

    db_manager = DatabaseManager(config)
    db_manager.create_tables()

    if completion_client is None and config.completion.has_api_key:
        completion_client = CompletionClient(config.completion)
    if completion_client is None:
        logging.warning("OPENROUTER_API_KEY not set, AI category suggestions are disabled")

    runner = BackgroundRunner(max_workers=config.suggestions.max_workers)
    generator = SuggestionGenerator(db_manager.get_session, completion_client, config)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        # Let in-flight suggestion jobs finish before the process exits
        runner.shutdown(wait=True)
        if isinstance(completion_client, CompletionClient):
            completion_client.close()

    app = FastAPI(
        title="Ledgerly - Personal Budget",
        description="Budget tracking with AI category suggestions",
        version="0.1.0",
        lifespan=lifespan,
    )

    # Store in app state
    app.state.config = config
    app.state.db_manager = db_manager
    app.state.runner = runner
    app.state.generator = generator

    # Add performance monitoring middleware
    @app.middleware("http")
    async def add_process_time_header(request: Request, call_next):
        start_time = time.time()
        response = await call_next(request)
        process_time = time.time() - start_time
        response.headers["X-Process-Time"] = str(process_time)

        if process_time > 0.5:
            logging.warning("SLOW REQUEST: %s %s took %.3fs", request.method, request.url.path, process_time)
        elif process_time > 0.1:
            logging.info("Request %s %s took %.3fs", request.method, request.url.path, process_time)

        return response

    # Include API routes
    from api.accounts import router as accounts_router
    from api.categories import router as categories_router
    from api.suggestions import router as suggestions_router
    from api.summaries import router as summaries_router
    from api.transactions import router as transactions_router

    app.include_router(accounts_router, prefix="/api")
    app.include_router(categories_router, prefix="/api")
    app.include_router(transactions_router, prefix="/api")
    app.include_router(suggestions_router, prefix="/api")
    app.include_router(summaries_router, prefix="/api")

    # Include web routes (FastHTML)
    from web.routes import router as web_router

    app.include_router(web_router)

    @app.get("/")
    async def root():
        return RedirectResponse(url="/docs", status_code=302)

    return app


if __name__ == "__main__":
    logging.basicConfig(
        level=AppConfig().log_level,
        format="%(asctime)s %(levelname)s %(threadName)s %(name)s: %(message)s",
    )
    uvicorn.run("main:create_app", factory=True, host="0.0.0.0", port=8000, reload=True, log_level="info")
