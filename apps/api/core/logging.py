"""
Configuración de structlog para la API, el scheduler y el CLI de prefetch.

Todos los módulos usan structlog.get_logger(__name__) con nombres de evento
en formato "modulo.evento" y contexto clave/valor. Este módulo solo decide
el renderizado (JSON en producción, consola en local) y el nivel mínimo.
"""

import logging
import sys
from typing import Any

import structlog


def configure_logging(level: str = "INFO", fmt: str = "json") -> None:
    """
    Configura structlog una sola vez por proceso.
    Llamar al arrancar (lifespan de FastAPI, scheduler o CLI).
    """
    level_value = getattr(logging, level.upper(), logging.INFO)

    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]
    if fmt == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level_value),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stdout),
        cache_logger_on_first_use=True,
    )
