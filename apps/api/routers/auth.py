"""
Router de autenticación, POST /api/v1/auth/token
Un único operador: el token se obtiene con la APP_PASSWORD del .env y
solo sirve para los endpoints de administración (refresh, snapshot).
"""

from fastapi import APIRouter, HTTPException, status
from pydantic import BaseModel

from core.config import settings
from core.responses import ok
from core.security import create_access_token, verify_app_password

router = APIRouter()


class TokenRequest(BaseModel):
    password: str


@router.post("/token")
async def issue_token(body: TokenRequest) -> dict:
    """
    Intercambia la contraseña de operador por un JWT Bearer con scope admin.
    El token expira según ACCESS_TOKEN_EXPIRE_MINUTES.
    """
    if not settings.SECRET_KEY:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Administración deshabilitada: falta SECRET_KEY",
        )
    if not verify_app_password(body.password):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Contraseña incorrecta",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return ok(
        data={
            "access_token": create_access_token(),
            "token_type": "bearer",
            "expires_in_minutes": settings.ACCESS_TOKEN_EXPIRE_MINUTES,
        },
    )
