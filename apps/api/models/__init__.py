"""
Modelos SQLAlchemy. Importar aquí para que Alembic los detecte en autogenerate.
"""

from models.fetch_log import FetchLog
from models.portfolio_snapshot import PortfolioSnapshot
from models.system_metric import SystemMetric
from models.token_price import TokenPrice
from models.wallet_balance import WalletBalance

__all__ = [
    "FetchLog",
    "PortfolioSnapshot",
    "SystemMetric",
    "TokenPrice",
    "WalletBalance",
]
