"""Trade-cycle orchestrator.

One cycle:
  CALL x call_count -> inter-batch delay -> PUT x put_count -> log -> refresh balance

Placements are strictly sequential with a fixed delay between consecutive
placements of a batch (rate limiting / anti-bot, not strategy). While the
configuration stays active the run task sleeps a cooldown and loops; `stop()`
only clears the flag, which is checked before each new cycle begins.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional
from uuid import uuid4

from option_robot.config import CycleTiming
from option_robot.data.audit import AuditContext, AuditManager, utc_now
from option_robot.execution.broker_client import BrokerClient
from option_robot.execution.errors import InsufficientBalance, RobotBusy
from option_robot.execution.schemas import (
    Asset,
    Balance,
    RobotConfiguration,
    RobotState,
    RobotStatus,
    TradeDirection,
    TradeOutcome,
    TradeRecord,
    TradeResult,
)

logger = logging.getLogger(__name__)

SleepFn = Callable[[float], Awaitable[Any]]


def generate_run_id(*, prefix: str = "run") -> str:
    ts = utc_now().strftime("%Y%m%d_%H%M%S")
    return f"{prefix}_{ts}_{uuid4().hex[:8]}"


@dataclass(frozen=True)
class CycleReport:
    cycle: int
    records: List[TradeRecord]
    balance: Optional[Balance]


class CycleOrchestrator:
    def __init__(
        self,
        *,
        client: BrokerClient,
        timing: Optional[CycleTiming] = None,
        config: Optional[RobotConfiguration] = None,
        audit: Optional[AuditManager] = None,
        sleep: SleepFn = asyncio.sleep,
    ):
        self.client = client
        self.timing = timing or CycleTiming()
        self.audit = audit or AuditManager()
        self._sleep = sleep

        self._config = (config or RobotConfiguration()).model_copy(update={"active": False})
        self._history: List[TradeRecord] = []
        self._task: Optional[asyncio.Task] = None
        self._stop_event: Optional[asyncio.Event] = None
        self.run_id: Optional[str] = None
        self.current_cycle = 0
        self.total_cycles = 0
        self.balance: Optional[Balance] = None
        self.assets: List[Asset] = []
        self.last_error: Optional[str] = None

    # ---- state ----------------------------------------------------------

    @property
    def config(self) -> RobotConfiguration:
        return self._config

    @property
    def state(self) -> RobotState:
        if self._task is not None and not self._task.done():
            return RobotState.running
        return RobotState.idle

    @property
    def history(self) -> List[TradeRecord]:
        """Trade log, newest cycle first."""
        return list(self._history)

    def status(self) -> RobotStatus:
        return RobotStatus(
            state=self.state,
            run_id=self.run_id,
            config=self._config,
            current_cycle=self.current_cycle,
            total_cycles=self.total_cycles,
            balance=self.balance,
            last_error=self.last_error,
            trades_logged=len(self._history),
        )

    def _ctx(self) -> AuditContext:
        return AuditContext(run_id=self.run_id, cycle=self.current_cycle + 1 if self.run_id else None)

    def candidate_config(self, **changes: Any) -> RobotConfiguration:
        """Current configuration with `changes` applied and validated; nothing is committed."""
        changes.pop("active", None)
        merged = self._config.model_dump()
        merged.update({k: v for k, v in changes.items() if v is not None})
        merged["active"] = False
        return RobotConfiguration.model_validate(merged)

    def update_config(self, **changes: Any) -> RobotConfiguration:
        """Change stake/asset/counts/expiry. Only allowed while IDLE."""
        if self.state == RobotState.running:
            raise RobotBusy("Stop the robot before changing its configuration")
        self._config = self.candidate_config(**changes)
        self.audit.log("config_updated", {"config": self._config})
        return self._config

    # ---- reads ----------------------------------------------------------

    async def refresh_balance(self) -> Balance:
        self.balance = await self.client.fetch_balance()
        return self.balance

    async def load_assets(self) -> List[Asset]:
        self.assets = await self.client.fetch_assets()
        return self.assets

    async def load_dashboard(self) -> None:
        """Balance and assets are independent; load them concurrently."""
        await asyncio.gather(self.refresh_balance(), self.load_assets())

    # ---- control --------------------------------------------------------

    def _preflight(self, config: RobotConfiguration) -> None:
        required = config.required_balance
        available = self.balance.amount if self.balance is not None else None
        if available is None or available < required:
            raise InsufficientBalance(required=required, available=available)

    async def start(self, config: Optional[RobotConfiguration] = None) -> str:
        """Validate, flip to RUNNING and spawn the run task. Returns the run id.

        `config` replaces the current configuration only once the pre-flight
        guard has passed; a refused start leaves it untouched.
        """
        if self.state == RobotState.running:
            raise RobotBusy("Robot is already running")
        candidate = config if config is not None else self._config
        self._preflight(candidate)

        self._config = candidate.model_copy(update={"active": True})
        self.current_cycle = 0
        self.last_error = None
        self.run_id = generate_run_id()
        self._stop_event = asyncio.Event()
        self.audit.log("robot_start", {"config": self._config}, ctx=AuditContext(run_id=self.run_id))
        self._task = asyncio.create_task(self._run(), name=f"option-robot-{self.run_id}")
        return self.run_id

    def stop(self) -> None:
        """Cooperative stop: the in-flight cycle finishes, no new cycle begins."""
        if not self._config.active:
            return
        self._config = self._config.model_copy(update={"active": False})
        if self._stop_event is not None:
            self._stop_event.set()
        self.audit.log("robot_stop_requested", {"current_cycle": self.current_cycle}, ctx=AuditContext(run_id=self.run_id))

    async def wait(self) -> None:
        """Wait for the run task to finish (after stop or a fatal error)."""
        task = self._task
        if task is not None:
            await asyncio.shield(task)

    async def shutdown(self) -> None:
        """Stop and cancel the run task (process shutdown only)."""
        self.stop()
        task = self._task
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    # ---- run loop -------------------------------------------------------

    async def _run(self) -> None:
        ctx = AuditContext(run_id=self.run_id)
        try:
            while self._config.active:
                await self.run_cycle()
                if not self._config.active:
                    break
                await self._cooldown()
        except asyncio.CancelledError:
            self._config = self._config.model_copy(update={"active": False})
            raise
        except Exception as e:
            self._config = self._config.model_copy(update={"active": False})
            self.last_error = f"{type(e).__name__}: {e}"
            logger.exception("Trade cycle failed; robot stopped")
            self.audit.log("cycle_failed", {"error": self.last_error}, ctx=self._ctx(), level=logging.ERROR)
        finally:
            self.audit.log(
                "robot_idle",
                {"current_cycle": self.current_cycle, "total_cycles": self.total_cycles},
                ctx=ctx,
            )

    async def _cooldown(self) -> None:
        """Sleep the inter-cycle cooldown; a stop request cuts it short."""
        sleeper = asyncio.ensure_future(self._sleep(self.timing.cycle_cooldown_s))
        if self._stop_event is None:
            await sleeper
            return
        stopper = asyncio.ensure_future(self._stop_event.wait())
        try:
            await asyncio.wait({sleeper, stopper}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for t in (sleeper, stopper):
                if not t.done():
                    t.cancel()
            await asyncio.gather(sleeper, stopper, return_exceptions=True)

    async def _place_batch(
        self,
        direction: TradeDirection,
        count: int,
        config: RobotConfiguration,
        records: List[TradeRecord],
    ) -> None:
        request = config.trade_request(direction)
        for i in range(count):
            receipt = await self.client.place_trade(request)
            record = TradeRecord(
                id=receipt.trade_id or f"{direction.value.lower()}_{int(utc_now().timestamp() * 1000)}_{i}",
                placed_at=utc_now(),
                direction=direction,
                stake=request.stake,
                asset=request.asset,
                expiry_seconds=request.expiry_seconds,
                outcome=TradeOutcome.pending if receipt.accepted else TradeOutcome.loss,
                simulated=receipt.simulated,
                message=receipt.message or None,
            )
            records.append(record)
            if i < count - 1:
                await self._sleep(self.timing.inter_trade_delay_s)

    async def run_cycle(self) -> CycleReport:
        """Execute one full CALL-then-PUT cycle with the current configuration."""
        config = self._config
        ctx = self._ctx()
        self.audit.log("cycle_start", {"calls": config.call_count, "puts": config.put_count}, ctx=ctx)

        records: List[TradeRecord] = []
        try:
            await self._place_batch(TradeDirection.call, config.call_count, config, records)
            await self._sleep(self.timing.inter_batch_delay_s)
            await self._place_batch(TradeDirection.put, config.put_count, config, records)
        finally:
            # Placed trades are logged even when the cycle dies half-way.
            self._history[:0] = records

        self.current_cycle += 1
        self.total_cycles += 1
        balance = await self.refresh_balance()
        self.audit.log(
            "cycle_complete",
            {
                "trades": len(records),
                "simulated": sum(1 for r in records if r.simulated),
                "rejected": sum(1 for r in records if r.outcome == TradeOutcome.loss),
                "balance": balance,
            },
            ctx=ctx,
        )
        return CycleReport(cycle=self.current_cycle, records=records, balance=balance)

    # ---- results --------------------------------------------------------

    async def resolve_trade(self, trade_id: str) -> TradeResult:
        """Explicitly query a trade's outcome and update its log record."""
        idx = next((i for i, r in enumerate(self._history) if r.id == trade_id), None)
        if idx is None:
            raise KeyError(trade_id)
        record = self._history[idx]
        if record.outcome != TradeOutcome.pending:
            return TradeResult(
                trade_id=trade_id,
                outcome=record.outcome,
                resolved=True,
                profit=record.profit,
                message="Already resolved",
            )
        if record.simulated:
            return TradeResult(
                trade_id=trade_id,
                outcome=TradeOutcome.pending,
                resolved=False,
                message="SIMULATED trade has no broker result",
            )

        result = await self.client.fetch_trade_result(trade_id)
        if result.resolved:
            updates: Dict[str, Any] = {"outcome": result.outcome, "message": result.message}
            if result.profit is not None:
                updates["profit"] = result.profit
            # Re-locate: the history may have grown while awaiting.
            for i, r in enumerate(self._history):
                if r.id == trade_id:
                    self._history[i] = r.model_copy(update=updates)
                    break
            self.audit.log("trade_resolved", {"trade_id": trade_id, "outcome": result.outcome})
        return result


__all__ = ["CycleOrchestrator", "CycleReport", "generate_run_id"]
