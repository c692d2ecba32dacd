"""
Fixtures compartidas.
Las variables de entorno se fijan antes de importar core.config (Settings se cachea).
Cada test que necesita BD recibe un SQLite temporal propio.
"""

import os

os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("DB_AUTO_CREATE", "false")
os.environ.setdefault("HELIUS_RPC_URL", "https://rpc.test.invalid/?api-key=test")
os.environ.setdefault("SECRET_KEY", "test-secret-key-0123456789abcdef")
os.environ.setdefault("APP_PASSWORD", "test-password")
os.environ.setdefault("LOG_FORMAT", "console")

from decimal import Decimal  # noqa: E402

import pytest  # noqa: E402

from core.database import build_engine  # noqa: E402
from services.cache_store import CacheStore  # noqa: E402

# Direcciones reales bien formadas (claves públicas conocidas de mainnet)
WALLET_A = "9WzDXwBbmkg8ZTbNMqUxvQRAyrZzDsGYdLVL9zYtAWWM"
WALLET_B = "HN7cABqLq46Es1jh92dQQisAq662SmxELLLsHHe4YWrH"
MINT_M1 = "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"
MINT_M2 = "DezXAZ8z7PnrnRJjz3wXBoRgixCa6xjnB7YaB1pPB263"


@pytest.fixture
async def store(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'cache.db'}")
    cache = CacheStore(engine)
    await cache.create_schema()
    yield cache
    await engine.dispose()


def holding_json(mint: str, amount: str, usd_value: str | None, symbol: str = "TKN") -> dict:
    return {
        "mint": mint,
        "amount": amount,
        "decimals": 6,
        "symbol": symbol,
        "name": f"{symbol} Token",
        "usd_value": usd_value,
    }


@pytest.fixture
def sample_tokens() -> list[dict]:
    return [holding_json(MINT_M1, "100", str(Decimal("50.0")), symbol="M1")]
