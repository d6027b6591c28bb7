"""FastAPI API for the presentation shell.

Thin HTTP mapping of `RobotRuntime`: login/logout, balance, assets, robot
config/start/stop/status, trade log, explicit result resolution and recent
audit events. Single local user: the broker session *is* the auth state.
"""

from __future__ import annotations

import os
from contextlib import asynccontextmanager
from decimal import Decimal
from typing import Any, AsyncIterator, Dict, List, Optional

from dotenv import load_dotenv
from fastapi import Depends, FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from option_robot.data.audit import jsonify, utc_now
from option_robot.execution.errors import InsufficientBalance, RobotBusy
from option_robot.runtime import RobotRuntime, build_runtime


def _parse_origins(value: str) -> List[str]:
    v = (value or "*").strip()
    if v == "*":
        return ["*"]
    return [p.strip() for p in v.split(",") if p.strip()]


def _out(model: Any) -> Any:
    """Pydantic model (or list of them) -> JSON-safe dict with numeric decimals."""
    if isinstance(model, list):
        return [_out(m) for m in model]
    if hasattr(model, "model_dump"):
        return jsonify(model.model_dump())
    return jsonify(model)


class LoginRequest(BaseModel):
    email: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)


class ConfigUpdate(BaseModel):
    call_count: Optional[int] = Field(None, ge=0)
    put_count: Optional[int] = Field(None, ge=0)
    stake: Optional[Decimal] = Field(None, gt=0)
    asset: Optional[str] = Field(None, min_length=1)
    expiry_seconds: Optional[int] = None

    def changes(self) -> Dict[str, Any]:
        return {k: v for k, v in self.model_dump().items() if v is not None}


def create_app(runtime: Optional[RobotRuntime] = None) -> FastAPI:
    # Uvicorn does not automatically load `.env` unless you pass `--env-file`.
    load_dotenv(override=False)

    rt = runtime or build_runtime()

    @asynccontextmanager
    async def _lifespan(_app: FastAPI) -> AsyncIterator[None]:
        yield
        await rt.close()

    app = FastAPI(title="Option Robot API", version="0.1.0", lifespan=_lifespan)
    app.state.runtime = rt

    allowed_origins = _parse_origins(os.getenv("UI_CORS_ORIGINS", ",".join(rt.config.ui.cors_origins)))
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    async def get_runtime() -> RobotRuntime:
        return app.state.runtime

    async def require_session(r: RobotRuntime = Depends(get_runtime)) -> RobotRuntime:
        if not r.is_authenticated():
            raise HTTPException(status_code=401, detail="not_authenticated")
        return r

    @app.get("/api/health")
    async def health(r: RobotRuntime = Depends(get_runtime)) -> Dict[str, Any]:
        return {
            "ok": True,
            "time": utc_now().isoformat(),
            "authenticated": r.is_authenticated(),
            "state": r.status().state.value,
        }

    @app.post("/api/login")
    async def login(req: LoginRequest, r: RobotRuntime = Depends(get_runtime)) -> Dict[str, Any]:
        result = await r.login(req.email, req.password)
        if not result.success:
            raise HTTPException(status_code=401, detail=result.message or "Login failed")
        return _out(result)

    @app.post("/api/logout")
    async def logout(r: RobotRuntime = Depends(get_runtime)) -> Dict[str, Any]:
        await r.logout()
        return {"ok": True}

    @app.get("/api/session")
    async def session(r: RobotRuntime = Depends(get_runtime)) -> Dict[str, Any]:
        return {"authenticated": r.is_authenticated(), "email": r.user_email()}

    @app.get("/api/balance")
    async def balance(r: RobotRuntime = Depends(get_runtime)) -> Dict[str, Any]:
        return _out(await r.get_balance())

    @app.get("/api/assets")
    async def assets(r: RobotRuntime = Depends(get_runtime)) -> Dict[str, Any]:
        return {"assets": _out(await r.get_assets())}

    @app.get("/api/robot/config")
    async def get_config(r: RobotRuntime = Depends(get_runtime)) -> Dict[str, Any]:
        return _out(r.configuration)

    @app.put("/api/robot/config")
    async def put_config(req: ConfigUpdate, r: RobotRuntime = Depends(get_runtime)) -> Dict[str, Any]:
        try:
            cfg = r.update_config(**req.changes())
        except RobotBusy as e:
            raise HTTPException(status_code=409, detail=str(e)) from e
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e)) from e
        return _out(cfg)

    @app.post("/api/robot/start")
    async def start(
        req: Optional[ConfigUpdate] = None,
        r: RobotRuntime = Depends(require_session),
    ) -> Dict[str, Any]:
        try:
            cfg = r.candidate_config(**req.changes()) if req is not None and req.changes() else None
            run_id = await r.start(cfg)
        except RobotBusy as e:
            raise HTTPException(status_code=409, detail=str(e)) from e
        except InsufficientBalance as e:
            raise HTTPException(status_code=400, detail=str(e)) from e
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e)) from e
        return {"ok": True, "run_id": run_id}

    @app.post("/api/robot/stop")
    async def stop(r: RobotRuntime = Depends(get_runtime)) -> Dict[str, Any]:
        r.stop()
        return _out(r.status())

    @app.get("/api/robot/status")
    async def status(r: RobotRuntime = Depends(get_runtime)) -> Dict[str, Any]:
        return _out(r.status())

    @app.get("/api/trades")
    async def trades(
        limit: int = Query(100, ge=1, le=1000),
        r: RobotRuntime = Depends(get_runtime),
    ) -> Dict[str, Any]:
        return {"trades": _out(r.history(limit)), **r.counters()}

    @app.post("/api/trades/{trade_id}/resolve")
    async def resolve(trade_id: str, r: RobotRuntime = Depends(require_session)) -> Dict[str, Any]:
        try:
            result = await r.resolve_trade(trade_id)
        except KeyError as e:
            raise HTTPException(status_code=404, detail="trade_not_found") from e
        return _out(result)

    @app.get("/api/events")
    async def events(
        limit: int = Query(50, ge=1, le=500),
        r: RobotRuntime = Depends(get_runtime),
    ) -> Dict[str, Any]:
        return {"events": r.recent_events(limit)}

    return app


__all__ = ["create_app"]
