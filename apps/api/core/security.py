"""
Capa de seguridad de los endpoints de administración:
- JWT HS256 con scope "admin" para disparar refresh y snapshots
- secrets.compare_digest para verificar APP_PASSWORD (timing-safe)

Los endpoints de lectura son públicos: solo leen de la caché.
NUNCA loguear ni exponer SECRET_KEY ni APP_PASSWORD.
"""

import secrets
from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt

from core.config import settings

ALGORITHM = "HS256"
_SUBJECT = "aum_operator"
_SCOPE = "admin"


def verify_app_password(plain: str) -> bool:
    """
    Compara la contraseña enviada contra APP_PASSWORD.
    Sin APP_PASSWORD configurada, los endpoints de administración quedan cerrados.
    """
    if not settings.APP_PASSWORD:
        return False
    return secrets.compare_digest(plain.encode("utf-8"), settings.APP_PASSWORD.encode("utf-8"))


def create_access_token(expires_minutes: int | None = None) -> str:
    """JWT de operador con expiración (ACCESS_TOKEN_EXPIRE_MINUTES por defecto)."""
    minutes = expires_minutes if expires_minutes is not None else settings.ACCESS_TOKEN_EXPIRE_MINUTES
    now = datetime.now(timezone.utc)
    payload = {
        "sub": _SUBJECT,
        "scope": _SCOPE,
        "iat": now,
        "exp": now + timedelta(minutes=minutes),
    }
    return jwt.encode(payload, settings.SECRET_KEY, algorithm=ALGORITHM)


def verify_token(token: str) -> str:
    """
    Valida firma, expiración y scope del JWT; retorna el subject.
    Lanza ValueError si el token no sirve para administración.
    """
    if not settings.SECRET_KEY:
        raise ValueError("SECRET_KEY no configurada")
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError as exc:
        raise ValueError(f"Token inválido: {exc}") from exc

    if payload.get("sub") != _SUBJECT or payload.get("scope") != _SCOPE:
        raise ValueError("Token sin permisos de administración")
    return payload["sub"]
