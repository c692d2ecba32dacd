"""
Helpers para la estructura de respuesta estándar { data, error, meta }.
meta siempre incluye el timestamp ISO de la respuesta, para que el dashboard
pueda mostrar la frescura de los datos servidos desde la caché.
"""

from datetime import datetime, timezone
from typing import Any


def _meta(meta: dict | None) -> dict:
    return {"timestamp": datetime.now(timezone.utc).isoformat(), **(meta or {})}


def ok(data: Any = None, meta: dict | None = None) -> dict:
    """Respuesta exitosa."""
    return {"data": data, "error": None, "meta": _meta(meta)}


def err(message: str, meta: dict | None = None) -> dict:
    """Respuesta de error (para exception handlers globales)."""
    return {"data": None, "error": message, "meta": _meta(meta)}
