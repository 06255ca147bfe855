"""Pydantic schemas for the Bot API."""

from datetime import datetime
from pydantic import BaseModel, Field, field_validator, model_validator

from gridbot.utils.constants import VALID_MODES

RISK_FIELDS = (
    "stop_loss_percent",
    "take_profit_percent",
    "trailing_stop_percent",
    "max_positions",
    "max_daily_loss",
)


def _validate_symbol(value: str) -> str:
    text = value.strip().upper()
    if "/" not in text:
        raise ValueError("must be a unified symbol like BTC/USDT")
    return text


def _validate_mode(value: str) -> str:
    mode = value.strip().upper()
    if mode not in VALID_MODES:
        raise ValueError(f"must be one of: {', '.join(VALID_MODES)}")
    return mode


class BotCreate(BaseModel):
    name: str = Field(default="", max_length=120)
    symbol: str = Field(min_length=3, max_length=32)
    mode: str = "DEMO"
    capital: float = Field(gt=0)
    buy_percentage: float = Field(default=10.0, gt=0, le=100)
    buy_drop_percent: float = Field(default=1.0, gt=0, lt=100)
    sell_profit_percent: float = Field(default=1.0, gt=0)
    stop_loss_percent: float | None = Field(default=None, ge=0, lt=100)
    take_profit_percent: float | None = Field(default=None, ge=0)
    trailing_stop_percent: float | None = Field(default=None, ge=0, lt=100)
    max_positions: int | None = Field(default=10, ge=1)
    max_daily_loss: float | None = Field(default=None, ge=0)
    api_key: str | None = None
    api_secret: str | None = None
    start: bool = False

    @field_validator("symbol")
    @classmethod
    def _check_symbol(cls, value: str) -> str:
        return _validate_symbol(value)

    @field_validator("mode")
    @classmethod
    def _check_mode(cls, value: str) -> str:
        return _validate_mode(value)

    @model_validator(mode="after")
    def _validate_credentials(self):
        if bool(self.api_key) != bool(self.api_secret):
            raise ValueError("api_key and api_secret must be given together")
        if self.mode == "REAL" and not self.api_key:
            raise ValueError("REAL mode requires api_key and api_secret")
        return self


class BotUpdate(BaseModel):
    name: str | None = Field(default=None, max_length=120)
    capital: float | None = Field(default=None, gt=0)
    buy_percentage: float | None = Field(default=None, gt=0, le=100)
    buy_drop_percent: float | None = Field(default=None, gt=0, lt=100)
    sell_profit_percent: float | None = Field(default=None, gt=0)
    stop_loss_percent: float | None = Field(default=None, ge=0, lt=100)
    take_profit_percent: float | None = Field(default=None, ge=0)
    trailing_stop_percent: float | None = Field(default=None, ge=0, lt=100)
    max_positions: int | None = Field(default=None, ge=1)
    max_daily_loss: float | None = Field(default=None, ge=0)
    is_active: bool | None = None

    @field_validator(
        "name", "capital", "buy_percentage", "buy_drop_percent", "sell_profit_percent", "is_active"
    )
    @classmethod
    def _reject_null(cls, value):
        # Columns are NOT NULL; omit the field to leave it unchanged
        if value is None:
            raise ValueError("may be omitted but not null")
        return value


class BotRead(BaseModel):
    id: int
    name: str
    symbol: str
    mode: str
    status: str
    is_active: bool
    capital: float
    buy_percentage: float
    buy_drop_percent: float
    sell_profit_percent: float
    stop_loss_percent: float | None
    take_profit_percent: float | None
    trailing_stop_percent: float | None
    max_positions: int | None
    max_daily_loss: float | None
    highest_price: float | None
    last_price: float | None
    total_profit: float
    total_buys: int
    total_sells: int
    total_runtime_seconds: int
    started_at: datetime | None
    last_activity_at: datetime | None
    has_credentials: bool
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}
