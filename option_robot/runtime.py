"""Robot runtime: the presentation contract exposed to the shell.

Wires config -> storage -> session -> broker client -> orchestrator and
hands the shell a single object with login/logout, start/stop, balance,
assets, trade log, counters and configuration.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from option_robot.config import AppConfig, load_config
from option_robot.data.audit import AuditManager
from option_robot.data.kv_store import JsonFileStore, KeyValueStore
from option_robot.data.session_store import SessionStore
from option_robot.execution.broker_client import BrokerClient
from option_robot.execution.schemas import (
    Asset,
    Balance,
    LoginCredentials,
    LoginResult,
    RobotConfiguration,
    RobotStatus,
    TradeRecord,
    TradeResult,
)
from option_robot.execution.transport import Transport
from option_robot.orchestrator.cycle import CycleOrchestrator, SleepFn


@dataclass
class RobotRuntime:
    config: AppConfig
    audit: AuditManager
    session: SessionStore
    client: BrokerClient
    orchestrator: CycleOrchestrator

    # ---- auth -----------------------------------------------------------

    async def login(self, email: str, password: str) -> LoginResult:
        result = await self.session.login(LoginCredentials(email=email, password=password))
        if result.success:
            await self.orchestrator.load_dashboard()
        return result

    async def logout(self) -> None:
        self.orchestrator.stop()
        await self.session.logout()

    def is_authenticated(self) -> bool:
        return self.session.is_authenticated()

    def user_email(self) -> Optional[str]:
        return self.session.user_email()

    # ---- robot ----------------------------------------------------------

    async def start(self, config: Optional[RobotConfiguration] = None) -> str:
        return await self.orchestrator.start(config)

    def stop(self) -> None:
        self.orchestrator.stop()

    def update_config(self, **changes: Any) -> RobotConfiguration:
        return self.orchestrator.update_config(**changes)

    def candidate_config(self, **changes: Any) -> RobotConfiguration:
        return self.orchestrator.candidate_config(**changes)

    @property
    def configuration(self) -> RobotConfiguration:
        return self.orchestrator.config

    def status(self) -> RobotStatus:
        return self.orchestrator.status()

    def counters(self) -> Dict[str, int]:
        return {
            "current_cycle": self.orchestrator.current_cycle,
            "total_cycles": self.orchestrator.total_cycles,
        }

    # ---- reads ----------------------------------------------------------

    async def get_balance(self) -> Balance:
        return await self.orchestrator.refresh_balance()

    async def get_assets(self) -> List[Asset]:
        return await self.orchestrator.load_assets()

    def history(self, limit: Optional[int] = None) -> List[TradeRecord]:
        items = self.orchestrator.history
        return items if limit is None else items[: max(0, int(limit))]

    async def resolve_trade(self, trade_id: str) -> TradeResult:
        return await self.orchestrator.resolve_trade(trade_id)

    def recent_events(self, limit: int = 50) -> List[Dict[str, Any]]:
        return [e.to_dict() for e in self.audit.recent(limit)]

    async def close(self) -> None:
        await self.orchestrator.shutdown()
        close = getattr(self.client.transport, "close", None)
        if callable(close):
            close()


def build_runtime(
    config: Optional[AppConfig] = None,
    *,
    storage: Optional[KeyValueStore] = None,
    transport: Optional[Transport] = None,
    sleep: Optional[SleepFn] = None,
) -> RobotRuntime:
    cfg = config or load_config()
    audit = AuditManager(max_events=cfg.ui.audit_buffer_size)
    session = SessionStore(storage if storage is not None else JsonFileStore(cfg.storage.session_path), audit=audit)
    client = BrokerClient(config=cfg.broker, session=session, transport=transport, audit=audit)
    session.attach(client)

    defaults = cfg.robot
    robot_cfg = RobotConfiguration(
        call_count=defaults.call_count,
        put_count=defaults.put_count,
        stake=defaults.stake,
        asset=defaults.asset,
        expiry_seconds=defaults.expiry_seconds,
    )
    kwargs: Dict[str, Any] = {"client": client, "timing": cfg.timing, "config": robot_cfg, "audit": audit}
    if sleep is not None:
        kwargs["sleep"] = sleep
    orchestrator = CycleOrchestrator(**kwargs)
    return RobotRuntime(config=cfg, audit=audit, session=session, client=client, orchestrator=orchestrator)


__all__ = ["RobotRuntime", "build_runtime"]
