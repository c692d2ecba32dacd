"""
Solana Wallet AUM API: FastAPI Application Entry Point

La API solo lee de la caché. La ingesta corre en el scheduler o el CLI de
prefetch; desde aquí solo se dispara con /admin/refresh y /tokens/prices/refresh.
"""

from contextlib import asynccontextmanager

import structlog
from fastapi import Depends, FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from core.config import settings
from core.database import engine as db_engine
from core.dependencies import get_optional_engine, get_store
from core.logging import configure_logging
from core.responses import err, ok
from ingestion.engine import ConfigurationError, IngestionEngine
from routers import admin, auth, portfolio, tokens, wallets
from services.cache_store import CacheStore

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging(settings.LOG_LEVEL, settings.LOG_FORMAT)
    logger.info("api.startup", env=settings.APP_ENV, log_level=settings.LOG_LEVEL)

    store = CacheStore(db_engine)
    if settings.DB_AUTO_CREATE:
        await store.create_schema()
    app.state.store = store

    # Sin HELIUS_RPC_URL la API sigue sirviendo la caché; solo se deshabilita la ingesta
    try:
        app.state.engine = IngestionEngine.from_settings(settings, store)
    except ConfigurationError as exc:
        logger.error("api.ingestion_disabled", error=str(exc))
        app.state.engine = None

    yield

    if app.state.engine is not None:
        await app.state.engine.close()
    await db_engine.dispose()
    logger.info("api.shutdown")


app = FastAPI(
    title="Solana Wallet AUM API",
    description="API de lectura de la caché de balances, precios y PNL de wallets Solana.",
    version="1.0.0",
    docs_url="/docs" if settings.APP_ENV != "production" else None,
    redoc_url="/redoc" if settings.APP_ENV != "production" else None,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middlewares
# ---------------------------------------------------------------------------

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["Authorization", "Content-Type"],
)

# ---------------------------------------------------------------------------
# Exception handlers globales (mantienen formato { data, error, meta })
# ---------------------------------------------------------------------------


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    headers = getattr(exc, "headers", None)
    return JSONResponse(
        status_code=exc.status_code,
        content=err(exc.detail),
        headers=headers,
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=err(f"Error de validación: {exc.errors()}"),
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error("unhandled_exception", path=str(request.url), error=str(exc), exc_info=exc)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=err(f"Error interno del servidor: {type(exc).__name__}"),
    )


# ---------------------------------------------------------------------------
# Routers
# ---------------------------------------------------------------------------

app.include_router(auth.router, prefix="/api/v1/auth", tags=["auth"])
app.include_router(portfolio.router, prefix="/api/v1/portfolio", tags=["portfolio"])
app.include_router(wallets.router, prefix="/api/v1/wallets", tags=["wallets"])
app.include_router(tokens.router, prefix="/api/v1/tokens", tags=["tokens"])
app.include_router(admin.router, prefix="/api/v1/admin", tags=["admin"])


# ---------------------------------------------------------------------------
# Health check (sin auth)
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", tags=["health"])
@app.get("/health", tags=["health"], include_in_schema=False)
async def health_check(
    store: CacheStore = Depends(get_store),
    engine: IngestionEngine | None = Depends(get_optional_engine),
) -> JSONResponse:
    db_health = await store.health_check()
    ingestion = await engine.health_check() if engine else {"status": "unavailable"}
    healthy = db_health["status"] == "healthy" and ingestion["status"] == "healthy"

    return JSONResponse(
        status_code=status.HTTP_200_OK if healthy else status.HTTP_503_SERVICE_UNAVAILABLE,
        content=ok(
            data={
                "status": "healthy" if healthy else "unhealthy",
                "env": settings.APP_ENV,
                "database": db_health,
                "ingestion": ingestion,
            }
        ),
    )
