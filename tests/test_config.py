import os
import sys
from decimal import Decimal
from pathlib import Path

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from option_robot.config import DEFAULT_USER_AGENT, load_config  # noqa: E402

_VARS = (
    "BROKER_BASE_URL",
    "BROKER_LONG_TIMEOUT_S",
    "BROKER_SIMULATE_UNAVAILABLE",
    "BROKER_DEFAULT_BALANCE",
    "BROKER_USER_AGENT",
    "ROBOT_INTER_TRADE_DELAY_S",
    "ROBOT_CALL_COUNT",
    "ROBOT_STAKE",
    "SESSION_STORE_PATH",
    "UI_CORS_ORIGINS",
)


def _clear(monkeypatch) -> None:
    for name in _VARS:
        monkeypatch.delenv(name, raising=False)


def test_defaults(monkeypatch) -> None:
    _clear(monkeypatch)
    cfg = load_config()

    assert cfg.broker.base_url == "https://api.investoption.com"
    assert cfg.broker.long_timeout_s == 10.0
    assert cfg.broker.short_timeout_s == 5.0
    assert cfg.broker.user_agent == DEFAULT_USER_AGENT
    assert cfg.broker.simulate_when_unavailable is True
    assert cfg.broker.default_balance == Decimal("1000")
    assert (cfg.timing.inter_trade_delay_s, cfg.timing.inter_batch_delay_s, cfg.timing.cycle_cooldown_s) == (3.0, 5.0, 10.0)
    assert (cfg.robot.call_count, cfg.robot.put_count, cfg.robot.stake) == (2, 3, Decimal("10"))
    assert cfg.robot.asset == "EURUSD"
    assert cfg.robot.expiry_seconds == 60
    assert cfg.storage.session_path.name == "session.json"
    assert cfg.ui.cors_origins == ["*"]


def test_env_overrides(monkeypatch, tmp_path) -> None:
    _clear(monkeypatch)
    monkeypatch.setenv("BROKER_BASE_URL", "http://localhost:9000/")
    monkeypatch.setenv("BROKER_LONG_TIMEOUT_S", "12.5")
    monkeypatch.setenv("BROKER_SIMULATE_UNAVAILABLE", "false")
    monkeypatch.setenv("BROKER_DEFAULT_BALANCE", "250.50")
    monkeypatch.setenv("ROBOT_INTER_TRADE_DELAY_S", "0")
    monkeypatch.setenv("ROBOT_CALL_COUNT", "4")
    monkeypatch.setenv("ROBOT_STAKE", "2.5")
    monkeypatch.setenv("SESSION_STORE_PATH", str(tmp_path / "s.json"))
    monkeypatch.setenv("UI_CORS_ORIGINS", "http://a.test, http://b.test")

    cfg = load_config()

    assert cfg.broker.base_url == "http://localhost:9000"
    assert cfg.broker.long_timeout_s == 12.5
    assert cfg.broker.simulate_when_unavailable is False
    assert cfg.broker.default_balance == Decimal("250.50")
    assert cfg.timing.inter_trade_delay_s == 0.0
    assert cfg.robot.call_count == 4
    assert cfg.robot.stake == Decimal("2.5")
    assert cfg.storage.session_path == Path(tmp_path / "s.json")
    assert cfg.ui.cors_origins == ["http://a.test", "http://b.test"]
