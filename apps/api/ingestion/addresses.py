"""
Validación de direcciones Solana.
Una dirección válida es una clave pública base58 de 32 bytes (solders.Pubkey).
La validación ocurre siempre antes de cualquier llamada de red.
"""

from solders.pubkey import Pubkey

# Mint de wrapped SOL: Jupiter lo usa como id del precio de SOL
NATIVE_MINT = "So11111111111111111111111111111111111111112"

TOKEN_PROGRAM_ID = "TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA"
TOKEN_2022_PROGRAM_ID = "TokenzQdBNbLqP5VEhdkAS6EPFLC1PHnBqCXEpPxuEb"


class InvalidAddressError(ValueError):
    def __init__(self, address: str) -> None:
        self.address = address
        super().__init__(f"Invalid Solana address: {address!r}")


def is_valid_address(address: str) -> bool:
    """True si address es una clave pública Solana bien formada."""
    if not address or address != address.strip():
        return False
    try:
        Pubkey.from_string(address)
    except Exception:
        return False
    return True


def validate_address(address: str) -> str:
    """Devuelve la dirección tal cual o lanza InvalidAddressError."""
    if not is_valid_address(address):
        raise InvalidAddressError(address)
    return address
