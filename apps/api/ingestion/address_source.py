"""
Lectura de la lista de wallets desde CSV.

Formato: cabecera con una columna de grupo (wallet_id | id | group_id) y una
de dirección (wallet_address | address). Filas vacías se ignoran y las
direcciones repetidas se conservan una vez (gana la primera). Las direcciones
inválidas NO se filtran aquí: el orquestador las registra como fallo.
"""

import csv
from dataclasses import dataclass
from pathlib import Path

import structlog

logger = structlog.get_logger(__name__)

_ID_COLUMNS = ("wallet_id", "id", "group_id")
_ADDRESS_COLUMNS = ("wallet_address", "address")


class AddressSourceError(Exception):
    pass


@dataclass(frozen=True)
class WalletEntry:
    wallet_id: str
    address: str


@dataclass(frozen=True)
class CsvStats:
    total_entries: int
    unique_wallets: int
    duplicates: int


def _pick_column(fieldnames: list[str], candidates: tuple[str, ...]) -> str | None:
    normalized = {name.strip().lower(): name for name in fieldnames}
    for candidate in candidates:
        if candidate in normalized:
            return normalized[candidate]
    return None


def _read_rows(path: Path) -> list[WalletEntry]:
    if not path.exists():
        raise AddressSourceError(f"No existe el CSV de wallets: {path}")

    with path.open(newline="", encoding="utf-8-sig") as fh:
        reader = csv.DictReader(fh)
        fieldnames = reader.fieldnames or []
        id_col = _pick_column(fieldnames, _ID_COLUMNS)
        address_col = _pick_column(fieldnames, _ADDRESS_COLUMNS)
        if address_col is None:
            raise AddressSourceError(f"CSV sin columna de dirección ({'|'.join(_ADDRESS_COLUMNS)}): {path}")

        rows: list[WalletEntry] = []
        for row in reader:
            address = (row.get(address_col) or "").strip()
            if not address:
                continue
            wallet_id = (row.get(id_col) or "").strip() if id_col else ""
            rows.append(WalletEntry(wallet_id=wallet_id or address, address=address))
    return rows


def load_wallets(path: str | Path) -> list[WalletEntry]:
    """Wallets del CSV en orden, sin duplicados."""
    seen: set[str] = set()
    wallets: list[WalletEntry] = []
    for entry in _read_rows(Path(path)):
        if entry.address in seen:
            continue
        seen.add(entry.address)
        wallets.append(entry)
    logger.info("address_source.loaded", path=str(path), wallets=len(wallets))
    return wallets


def csv_stats(path: str | Path) -> CsvStats:
    rows = _read_rows(Path(path))
    unique = len({entry.address for entry in rows})
    return CsvStats(total_entries=len(rows), unique_wallets=unique, duplicates=len(rows) - unique)
