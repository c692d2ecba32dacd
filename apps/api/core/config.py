"""
Configuración centralizada de la aplicación.
Lee todas las variables de entorno usando pydantic-settings.
NUNCA hardcodear valores sensibles aquí (la URL de Helius incluye la API key).
"""

from functools import lru_cache

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # --- Base de datos -------------------------------------------------------
    # URL asíncrona para el servidor y el motor de ingesta (aiosqlite o asyncpg)
    DATABASE_URL: str = "sqlite+aiosqlite:///./aum.db"

    # URL síncrona usada exclusivamente por Alembic para migraciones
    DATABASE_SYNC_URL: str = "sqlite:///./aum.db"

    # Crear tablas al arrancar si no existen (útil con SQLite; en Postgres usar Alembic)
    DB_AUTO_CREATE: bool = True

    # --- Proveedores upstream ------------------------------------------------
    # RPC principal (Helius). Obligatorio: sin él la ingesta no puede arrancar.
    HELIUS_RPC_URL: str = ""

    # RPC público de respaldo (best-effort)
    FALLBACK_RPC_URL: str = "https://api.mainnet-beta.solana.com"

    JUPITER_API_URL: str = "https://lite-api.jup.ag/price/v2"
    JUPITER_TOKENS_API_URL: str = "https://lite-api.jup.ag/tokens/v1"

    # --- Ritmo y reintentos --------------------------------------------------
    # 100 ms entre peticiones al RPC principal (~600 req/min por cola)
    RATE_LIMIT_DELAY_MS: int = 100
    MAX_RETRIES: int = 3
    RETRY_BASE_DELAY_MS: int = 1000

    # --- Lotes ---------------------------------------------------------------
    BATCH_SIZE: int = 5
    BATCH_DELAY_MS: int = 2000
    METADATA_CHUNK_SIZE: int = 10
    METADATA_CHUNK_DELAY_MS: int = 100

    # Tiempo máximo por pipeline de wallet antes de darlo por fallido
    PIPELINE_TIMEOUT_SECONDS: float = 120.0

    # --- Precios -------------------------------------------------------------
    STALE_PRICE_MINUTES: int = 30
    # Último recurso si Jupiter falla y no hay precio de SOL en caché
    NATIVE_PRICE_FALLBACK_USD: str = "150"

    # --- Fuente de direcciones -----------------------------------------------
    WALLETS_CSV_PATH: str = "data/wallets.csv"

    # --- Scheduler -----------------------------------------------------------
    PREFETCH_INTERVAL_MINUTES: int = 10
    PRICE_REFRESH_INTERVAL_MINUTES: int = 5
    # Snapshot diario para la base de coste del PNL (crontab)
    SNAPSHOT_CRON: str = "0 0 * * *"

    # --- Seguridad -----------------------------------------------------------
    # Clave para firmar tokens JWT. Genera con: secrets.token_hex(32)
    SECRET_KEY: str = ""

    # Contraseña para los endpoints de administración (refresh, snapshot)
    APP_PASSWORD: str = ""

    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60

    # --- Aplicación ----------------------------------------------------------
    APP_ENV: str = "production"
    LOG_LEVEL: str = "INFO"
    # "json" en producción, "console" para desarrollo local
    LOG_FORMAT: str = "json"

    # Orígenes CORS permitidos (cadena separada por comas)
    CORS_ORIGINS: str = "http://localhost:3000"

    # --- Propiedades calculadas ----------------------------------------------
    @property
    def cors_origins_list(self) -> list[str]:
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()]

    @property
    def is_sqlite(self) -> bool:
        return self.DATABASE_URL.startswith("sqlite")

    @field_validator("RATE_LIMIT_DELAY_MS", "BATCH_DELAY_MS", "METADATA_CHUNK_DELAY_MS")
    @classmethod
    def validate_non_negative_delay(cls, v: int) -> int:
        if v < 0:
            raise ValueError("los retardos no pueden ser negativos")
        return v

    @field_validator("MAX_RETRIES", "BATCH_SIZE", "METADATA_CHUNK_SIZE")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("debe ser >= 1")
        return v

    @field_validator("APP_ENV")
    @classmethod
    def validate_app_env(cls, v: str) -> str:
        allowed = {"development", "production", "test"}
        if v not in allowed:
            raise ValueError(f"APP_ENV debe ser uno de: {allowed}")
        return v

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        allowed = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in allowed:
            raise ValueError(f"LOG_LEVEL debe ser uno de: {allowed}")
        return v.upper()

    @field_validator("LOG_FORMAT")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        v = v.strip().lower()
        if v not in {"json", "console"}:
            raise ValueError("LOG_FORMAT debe ser 'json' o 'console'")
        return v


@lru_cache
def get_settings() -> Settings:
    """Instancia singleton de Settings, cacheada para evitar re-lecturas del .env."""
    return Settings()


# Exportación conveniente para importar directamente en otros módulos
settings: Settings = get_settings()
