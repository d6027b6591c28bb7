"""Central configuration loader.

Read env vars (optionally from `.env`), expose typed config objects and defaults.
Keep this strategy-neutral: only wiring, broker endpoints, timings and storage.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from decimal import Decimal
from pathlib import Path
from typing import List, Optional


def _env_bool(name: str, default: bool = False) -> bool:
    val = os.getenv(name)
    if val is None:
        return default
    return val.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int) -> int:
    val = os.getenv(name)
    if val is None or val.strip() == "":
        return default
    return int(val)


def _env_float(name: str, default: float) -> float:
    val = os.getenv(name)
    if val is None or val.strip() == "":
        return default
    return float(val)


def _env_decimal(name: str, default: str) -> Decimal:
    val = os.getenv(name)
    if val is None or val.strip() == "":
        return Decimal(default)
    return Decimal(val.strip())


def _env_str(name: str, default: Optional[str] = None) -> Optional[str]:
    val = os.getenv(name)
    if val is None or val.strip() == "":
        return default
    return val.strip()


def _env_list(name: str, default: List[str], sep: str = ",") -> List[str]:
    val = os.getenv(name)
    if val is None or val.strip() == "":
        return default
    return [v.strip() for v in val.split(sep) if v.strip()]


DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/91.0.4472.124 Safari/537.36"
)


@dataclass(frozen=True)
class BrokerConfig:
    base_url: str = "https://api.investoption.com"
    # Login and trade placement get the long bound; reads get the short one.
    long_timeout_s: float = 10.0
    short_timeout_s: float = 5.0
    user_agent: str = DEFAULT_USER_AGENT
    origin: Optional[str] = "https://investoption.com"
    referer: Optional[str] = "https://investoption.com/"
    simulate_when_unavailable: bool = True
    default_balance: Decimal = Decimal("1000")
    default_currency: str = "USD"


@dataclass(frozen=True)
class CycleTiming:
    inter_trade_delay_s: float = 3.0
    inter_batch_delay_s: float = 5.0
    cycle_cooldown_s: float = 10.0


@dataclass(frozen=True)
class RobotDefaults:
    call_count: int = 2
    put_count: int = 3
    stake: Decimal = Decimal("10")
    asset: str = "EURUSD"
    expiry_seconds: int = 60


@dataclass(frozen=True)
class StorageConfig:
    session_path: Path = field(default_factory=lambda: Path.home() / ".option_robot" / "session.json")


@dataclass(frozen=True)
class UIConfig:
    host: str = "127.0.0.1"
    port: int = 8000
    cors_origins: List[str] = field(default_factory=lambda: ["*"])
    audit_buffer_size: int = 500


@dataclass(frozen=True)
class AppConfig:
    broker: BrokerConfig
    timing: CycleTiming
    robot: RobotDefaults
    storage: StorageConfig
    ui: UIConfig


def load_config() -> AppConfig:
    """Load configuration from environment."""
    broker = BrokerConfig(
        base_url=(_env_str("BROKER_BASE_URL") or BrokerConfig.base_url).rstrip("/"),
        long_timeout_s=_env_float("BROKER_LONG_TIMEOUT_S", 10.0),
        short_timeout_s=_env_float("BROKER_SHORT_TIMEOUT_S", 5.0),
        user_agent=_env_str("BROKER_USER_AGENT", DEFAULT_USER_AGENT) or DEFAULT_USER_AGENT,
        origin=_env_str("BROKER_ORIGIN", BrokerConfig.origin),
        referer=_env_str("BROKER_REFERER", BrokerConfig.referer),
        simulate_when_unavailable=_env_bool("BROKER_SIMULATE_UNAVAILABLE", True),
        default_balance=_env_decimal("BROKER_DEFAULT_BALANCE", "1000"),
        default_currency=_env_str("BROKER_DEFAULT_CURRENCY", "USD") or "USD",
    )

    timing = CycleTiming(
        inter_trade_delay_s=_env_float("ROBOT_INTER_TRADE_DELAY_S", 3.0),
        inter_batch_delay_s=_env_float("ROBOT_INTER_BATCH_DELAY_S", 5.0),
        cycle_cooldown_s=_env_float("ROBOT_CYCLE_COOLDOWN_S", 10.0),
    )

    robot = RobotDefaults(
        call_count=_env_int("ROBOT_CALL_COUNT", 2),
        put_count=_env_int("ROBOT_PUT_COUNT", 3),
        stake=_env_decimal("ROBOT_STAKE", "10"),
        asset=_env_str("ROBOT_ASSET", "EURUSD") or "EURUSD",
        expiry_seconds=_env_int("ROBOT_EXPIRY_SECONDS", 60),
    )

    session_path = _env_str("SESSION_STORE_PATH")
    storage = StorageConfig(session_path=Path(session_path).expanduser()) if session_path else StorageConfig()

    ui = UIConfig(
        host=_env_str("HOST", "127.0.0.1") or "127.0.0.1",
        port=_env_int("PORT", 8000),
        cors_origins=_env_list("UI_CORS_ORIGINS", ["*"]),
        audit_buffer_size=_env_int("AUDIT_BUFFER_SIZE", 500),
    )

    return AppConfig(broker=broker, timing=timing, robot=robot, storage=storage, ui=ui)


__all__ = [
    "AppConfig",
    "BrokerConfig",
    "CycleTiming",
    "RobotDefaults",
    "StorageConfig",
    "UIConfig",
    "load_config",
]
