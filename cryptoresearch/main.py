from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger

from cryptoresearch.api.routes import research
from cryptoresearch.config import settings
from cryptoresearch.errors import (
    BudgetExceeded,
    CircuitOpen,
    OperationTimeout,
    RateLimited,
    ResearchError,
    RetryExhausted,
    StageFailed,
    describe_error,
)
from cryptoresearch.services.container import ServiceContainer

ERROR_STATUS: tuple[tuple[type[ResearchError], int], ...] = (
    (BudgetExceeded, 402),
    (RateLimited, 429),
    (CircuitOpen, 503),
    (OperationTimeout, 503),
    (RetryExhausted, 503),
    (StageFailed, 503),
)


def _status_for(error: ResearchError) -> int:
    for error_type, status in ERROR_STATUS:
        if isinstance(error, error_type):
            return status
    return 500


def create_app(services: ServiceContainer | None = None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Startup
        if getattr(app.state, "services", None) is None:
            app.state.services = ServiceContainer.from_settings(settings)
        app.state.services.start()
        yield
        # Shutdown
        await app.state.services.close()

    app = FastAPI(
        title="CryptoResearch",
        description="Staged web-search and LLM research reports for crypto projects",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.services = services

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origin_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(ResearchError)
    async def research_error_handler(request: Request, exc: ResearchError):
        status = _status_for(exc)
        logger.warning(f"{request.method} {request.url.path} -> {status}: {exc}")
        headers = {"Retry-After": str(exc.retry_after)} if isinstance(exc, RateLimited) else None
        return JSONResponse(status_code=status, content={"error": describe_error(exc)}, headers=headers)

    # Routes
    app.include_router(research.router)
    return app


app = create_app()


def serve() -> None:
    import uvicorn

    uvicorn.run("cryptoresearch.main:app", host="0.0.0.0", port=8000)
