"""Broker-facing and robot-facing schemas.

These models are the typed contract between the shell, the orchestrator and
the broker client. Broker-native payloads never leave `broker_client`.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

EXPIRY_CHOICES = (60, 300, 900, 1800, 3600)


class TradeDirection(str, Enum):
    call = "CALL"
    put = "PUT"


class TradeOutcome(str, Enum):
    pending = "PENDING"
    win = "WIN"
    loss = "LOSS"


class RobotState(str, Enum):
    idle = "IDLE"
    running = "RUNNING"


class Credential(BaseModel):
    """Opaque broker auth. Both fields empty means unauthenticated."""

    model_config = ConfigDict(frozen=True)

    token: Optional[str] = None
    session_id: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return not (self.token or self.session_id)


class LoginCredentials(BaseModel):
    model_config = ConfigDict(frozen=True)

    email: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1, repr=False)


class UserProfile(BaseModel):
    id: str
    email: str
    name: str
    balance: Decimal = Decimal("0")


class LoginResult(BaseModel):
    success: bool
    message: Optional[str] = None
    user: Optional[UserProfile] = None


class Balance(BaseModel):
    model_config = ConfigDict(frozen=True)

    amount: Decimal
    currency: str = "USD"


class Asset(BaseModel):
    model_config = ConfigDict(extra="allow")

    symbol: str
    name: str


class TradeRequest(BaseModel):
    model_config = ConfigDict(frozen=True)

    direction: TradeDirection
    stake: Decimal = Field(..., gt=0)
    asset: str = Field(..., min_length=1)
    expiry_seconds: int = Field(..., gt=0)


class TradeReceipt(BaseModel):
    """Outcome of one placement attempt across all candidate endpoints.

    `simulated=True` means no endpoint confirmed the trade and the id was
    generated locally (SIMULATED fill).
    """

    model_config = ConfigDict(frozen=True)

    trade_id: str
    accepted: bool
    simulated: bool = False
    message: str = ""


class TradeRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    placed_at: datetime
    direction: TradeDirection
    stake: Decimal
    asset: str
    expiry_seconds: int
    outcome: TradeOutcome = TradeOutcome.pending
    simulated: bool = False
    profit: Optional[Decimal] = None
    message: Optional[str] = None


class TradeResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    trade_id: str
    outcome: TradeOutcome
    resolved: bool
    profit: Optional[Decimal] = None
    message: str = ""


class RobotConfiguration(BaseModel):
    model_config = ConfigDict(frozen=True)

    active: bool = False
    call_count: int = Field(2, ge=0)
    put_count: int = Field(3, ge=0)
    stake: Decimal = Field(Decimal("10"), gt=0)
    asset: str = Field("EURUSD", min_length=1)
    expiry_seconds: int = 60

    @model_validator(mode="after")
    def _validate_expiry(self) -> "RobotConfiguration":
        if self.expiry_seconds not in EXPIRY_CHOICES:
            raise ValueError(f"expiry_seconds must be one of {EXPIRY_CHOICES}")
        return self

    @property
    def trades_per_cycle(self) -> int:
        return self.call_count + self.put_count

    @property
    def required_balance(self) -> Decimal:
        return self.stake * self.trades_per_cycle

    def trade_request(self, direction: TradeDirection) -> TradeRequest:
        return TradeRequest(
            direction=direction,
            stake=self.stake,
            asset=self.asset,
            expiry_seconds=self.expiry_seconds,
        )


class RobotStatus(BaseModel):
    state: RobotState
    run_id: Optional[str] = None
    config: RobotConfiguration
    current_cycle: int = 0
    total_cycles: int = 0
    balance: Optional[Balance] = None
    last_error: Optional[str] = None
    trades_logged: int = 0


DEFAULT_ASSETS: List[Dict[str, Any]] = [
    {"symbol": "EURUSD", "name": "EUR/USD"},
    {"symbol": "GBPUSD", "name": "GBP/USD"},
    {"symbol": "USDJPY", "name": "USD/JPY"},
    {"symbol": "AUDUSD", "name": "AUD/USD"},
    {"symbol": "USDCAD", "name": "USD/CAD"},
    {"symbol": "EURGBP", "name": "EUR/GBP"},
    {"symbol": "EURJPY", "name": "EUR/JPY"},
    {"symbol": "GBPJPY", "name": "GBP/JPY"},
]


def default_assets() -> List[Asset]:
    return [Asset(**a) for a in DEFAULT_ASSETS]


__all__ = [
    "EXPIRY_CHOICES",
    "Asset",
    "Balance",
    "Credential",
    "LoginCredentials",
    "LoginResult",
    "RobotConfiguration",
    "RobotState",
    "RobotStatus",
    "TradeDirection",
    "TradeOutcome",
    "TradeReceipt",
    "TradeRecord",
    "TradeRequest",
    "TradeResult",
    "UserProfile",
    "default_assets",
]
