"""
Cliente HTTP para las APIs públicas de Jupiter (precios y catálogo de tokens).

Endpoints:
- Precios:  GET {JUPITER_API_URL}?ids=mint1,mint2 → {"data": {mint: {"price": "..."}}}
- Catálogo: GET {JUPITER_TOKENS_API_URL}               → [{address, symbol, name, logoURI}]
            GET {JUPITER_TOKENS_API_URL}/token/{mint}  → {address, symbol, name, logoURI}

Los precios llegan como string o número: se convierten con Decimal(str(x)), nunca float.
"""

from decimal import Decimal, InvalidOperation
from typing import Any

import httpx
import structlog

logger = structlog.get_logger(__name__)


class JupiterAPIError(Exception):
    def __init__(self, status_code: int, msg: str) -> None:
        self.status_code = status_code
        self.msg = msg
        super().__init__(f"Jupiter API error: {status_code} {msg}".rstrip())


def _to_decimal(value: Any) -> Decimal | None:
    if value is None or value == "":
        return None
    try:
        return Decimal(str(value))
    except InvalidOperation:
        return None


class JupiterClient:
    """
    Uso:
        async with JupiterClient(price_url, tokens_url) as jupiter:
            prices = await jupiter.get_prices([mint])

    El http_client es inyectable para tests.
    """

    def __init__(
        self,
        price_url: str = "https://lite-api.jup.ag/price/v2",
        tokens_url: str = "https://lite-api.jup.ag/tokens/v1",
        http_client: httpx.AsyncClient | None = None,
        timeout: float = 15.0,
    ) -> None:
        self.price_url = price_url.rstrip("/")
        self.tokens_url = tokens_url.rstrip("/")
        self._client = http_client or httpx.AsyncClient(timeout=httpx.Timeout(timeout))

    async def __aenter__(self) -> "JupiterClient":
        return self

    async def __aexit__(self, *_: object) -> None:
        await self.close()

    async def close(self) -> None:
        await self._client.aclose()

    async def _get(self, url: str, params: dict[str, str] | None = None) -> Any:
        response = await self._client.get(url, params=params)
        if response.status_code >= 400:
            raise JupiterAPIError(response.status_code, response.reason_phrase or "")
        return response.json()

    async def get_prices(self, mints: list[str]) -> dict[str, dict[str, Any]]:
        """
        Precios USD por mint. Los mints sin precio no aparecen en el resultado.
        Retorna {mint: {"price": Decimal, "extra": dict}}.
        """
        if not mints:
            return {}
        body = await self._get(self.price_url, params={"ids": ",".join(mints)})

        prices: dict[str, dict[str, Any]] = {}
        for mint, info in (body.get("data") or {}).items():
            if not info:
                continue
            price = _to_decimal(info.get("price"))
            if price is None:
                continue
            prices[mint] = {"price": price, "extra": info.get("extraInfo") or {}}
        return prices

    async def get_token_list(self) -> list[dict[str, Any]]:
        """Catálogo completo de tokens (una sola petición, respuesta grande)."""
        body = await self._get(self.tokens_url)
        if not isinstance(body, list):
            raise JupiterAPIError(200, "catálogo de tokens con formato inesperado")
        return body

    async def get_token(self, mint: str) -> dict[str, Any]:
        """Metadata de un solo mint. 404 si Jupiter no lo conoce."""
        return await self._get(f"{self.tokens_url}/token/{mint}")

    async def ping(self, mint: str) -> int:
        """Código HTTP de una consulta de precio mínima (health check)."""
        response = await self._client.get(self.price_url, params={"ids": mint})
        return response.status_code
