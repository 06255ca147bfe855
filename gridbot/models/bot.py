"""Bot model — one grid trading configuration and its running counters."""

from datetime import datetime, timezone
from sqlmodel import SQLModel, Field


class Bot(SQLModel, table=True):
    __tablename__ = "bot"

    id: int | None = Field(default=None, primary_key=True)
    name: str = Field(default="", index=True)
    symbol: str  # ccxt unified symbol, e.g. "BTC/USDT"
    mode: str = "DEMO"  # "DEMO" or "REAL"
    status: str = Field(default="IDLE", index=True)  # "IDLE", "RUNNING", "STOPPED"
    is_active: bool = True  # cleared externally to make a running engine stop itself

    # Grid parameters
    capital: float
    buy_percentage: float = 10.0  # % of capital per buy
    buy_drop_percent: float = 1.0
    sell_profit_percent: float = 1.0

    # Risk (None or 0 disables)
    stop_loss_percent: float | None = None
    take_profit_percent: float | None = None
    trailing_stop_percent: float | None = None
    max_positions: int | None = 10
    max_daily_loss: float | None = None

    # Runtime state
    highest_price: float | None = None
    last_price: float | None = None
    total_profit: float = 0.0
    total_buys: int = 0
    total_sells: int = 0
    total_runtime_seconds: int = 0
    started_at: datetime | None = None
    last_activity_at: datetime | None = None

    # Fernet-encrypted exchange credentials; absent means public data only
    api_key_encrypted: str | None = None
    api_secret_encrypted: str | None = None

    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def has_credentials(self) -> bool:
        return bool(self.api_key_encrypted and self.api_secret_encrypted)
