"""
Cliente JSON-RPC asíncrono para nodos Solana (Helius o RPC público).

Reglas:
- Solo los tres métodos que necesita la ingesta: getBalance,
  getTokenAccountsByOwner (jsonParsed) y getSlot (health check).
- Commitment "confirmed" en todas las lecturas.
- Sin reintentos aquí: los aplica el motor (cola + retry + fallback).
- La URL de Helius incluye la API key: NUNCA loguearla, usar el nombre del cliente.
"""

import itertools
from typing import Any

import httpx
import structlog

logger = structlog.get_logger(__name__)

COMMITMENT = "confirmed"


# ---------------------------------------------------------------------------
# Excepciones
# ---------------------------------------------------------------------------


class RpcError(Exception):
    def __init__(self, provider: str, code: int, msg: str, status_code: int | None = None) -> None:
        self.provider = provider
        self.code = code
        self.msg = msg
        self.status_code = status_code
        detail = f" (HTTP {status_code})" if status_code is not None else ""
        super().__init__(f"RPC {provider} error {code}: {msg}{detail}")


# ---------------------------------------------------------------------------
# Cliente
# ---------------------------------------------------------------------------


class SolanaRpcClient:
    """
    Uso:
        async with SolanaRpcClient(settings.HELIUS_RPC_URL, name="helius") as rpc:
            lamports = await rpc.get_balance(address)

    El http_client es inyectable para tests (httpx.MockTransport).
    """

    def __init__(
        self,
        url: str,
        name: str = "rpc",
        http_client: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
    ) -> None:
        self.name = name
        self._url = url
        self._ids = itertools.count(1)
        self._client = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout),
            headers={"Content-Type": "application/json"},
        )

    async def __aenter__(self) -> "SolanaRpcClient":
        return self

    async def __aexit__(self, *_: object) -> None:
        await self.close()

    async def close(self) -> None:
        await self._client.aclose()

    async def _call(self, method: str, params: list[Any] | None = None) -> Any:
        payload = {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": method,
            "params": params or [],
        }
        response = await self._client.post(self._url, json=payload)

        if response.status_code >= 400:
            logger.warning("rpc.http_error", provider=self.name, method=method, status=response.status_code)
            raise RpcError(self.name, -32000, response.reason_phrase or "HTTP error", response.status_code)

        body = response.json()
        if body.get("error"):
            error = body["error"]
            raise RpcError(self.name, int(error.get("code", -32000)), str(error.get("message", "")))
        if "result" not in body:
            raise RpcError(self.name, -32603, f"Respuesta sin result para {method}")
        return body["result"]

    # -----------------------------------------------------------------------
    # Métodos RPC
    # -----------------------------------------------------------------------

    async def get_balance(self, address: str) -> int:
        """Saldo nativo en lamports."""
        result = await self._call("getBalance", [address, {"commitment": COMMITMENT}])
        return int(result["value"])

    async def get_token_accounts_by_owner(self, address: str, program_id: str) -> list[dict]:
        """Cuentas de token del owner para un programa (SPL o Token-2022), parseadas."""
        result = await self._call(
            "getTokenAccountsByOwner",
            [
                address,
                {"programId": program_id},
                {"encoding": "jsonParsed", "commitment": COMMITMENT},
            ],
        )
        return list(result.get("value") or [])

    async def get_slot(self) -> int:
        return int(await self._call("getSlot", [{"commitment": COMMITMENT}]))
