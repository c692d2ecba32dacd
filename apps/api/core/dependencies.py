"""
Dependencias inyectables de FastAPI.
Uso: añadir como parámetro en la firma del endpoint con Depends().

El CacheStore y el IngestionEngine se construyen en el lifespan de main.py
y se guardan en app.state; aquí solo se recuperan.
"""

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from core.security import verify_token
from ingestion.engine import IngestionEngine
from services.cache_store import CacheStore

_bearer = HTTPBearer()


# ---------------------------------------------------------------------------
# Caché y motor de ingesta
# ---------------------------------------------------------------------------


def get_store(request: Request) -> CacheStore:
    """CacheStore compartido por todos los endpoints de lectura."""
    return request.app.state.store


def get_optional_engine(request: Request) -> IngestionEngine | None:
    """Para endpoints de estado que deben responder aunque la ingesta no esté configurada."""
    return getattr(request.app.state, "engine", None)


def get_engine(request: Request) -> IngestionEngine:
    """
    Motor de ingesta del proceso.
    Lanza 503 si no se pudo construir (p.ej. falta HELIUS_RPC_URL).
    """
    engine = get_optional_engine(request)
    if engine is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Motor de ingesta no disponible: revisa HELIUS_RPC_URL",
        )
    return engine


# ---------------------------------------------------------------------------
# Autenticación JWT
# ---------------------------------------------------------------------------


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(_bearer),
) -> str:
    """
    Valida el Bearer token JWT.
    Lanza 401 si el token es inválido o expirado.
    """
    try:
        return verify_token(credentials.credentials)
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(exc),
            headers={"WWW-Authenticate": "Bearer"},
        ) from exc
