"""Broker HTTP client with candidate-endpoint probing.

The broker's real API contract is unknown, so every logical operation owns an
ordered list of candidate paths. `_probe` walks that list once: the first
candidate that answers with a recognizable success shape wins and no further
attempts are made. When all candidates fail, reads fall back to safe defaults,
trade placement falls back to a SIMULATED fill (configurable) and login raises
`AuthError`.

Only this layer builds broker-native payloads and headers.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Protocol, Tuple
from uuid import uuid4

from option_robot.config import BrokerConfig
from option_robot.data.audit import AuditManager
from option_robot.execution.errors import (
    AuthError,
    BrokerError,
    BrokerUnavailable,
    CandidatesExhausted,
    NetworkError,
    ShapeMismatch,
    TradeRejected,
)
from option_robot.execution.normalize import RawResponse, normalize, parse_session_id, pick, to_decimal
from option_robot.execution.schemas import (
    Asset,
    Balance,
    Credential,
    LoginCredentials,
    TradeOutcome,
    TradeReceipt,
    TradeRequest,
    TradeResult,
    UserProfile,
    default_assets,
)
from option_robot.execution.transport import RequestsTransport, Transport

logger = logging.getLogger(__name__)


class Operation(str, Enum):
    login = "login"
    logout = "logout"
    profile = "profile"
    balance = "balance"
    place_trade = "place_trade"
    trade_result = "trade_result"
    assets = "assets"


@dataclass(frozen=True)
class Candidate:
    path: str
    long_timeout: bool = False
    # Accept a 2xx body without any explicit success marker.
    allow_bare: bool = True
    # Restrict the request body to these keys (None = send everything).
    body_keys: Optional[Tuple[str, ...]] = None


CANDIDATES: Dict[Operation, Tuple[Candidate, ...]] = {
    Operation.login: (
        Candidate("/login", long_timeout=True),
        Candidate("/auth/login", long_timeout=True),
        Candidate("/login", long_timeout=True, body_keys=("email", "password")),
    ),
    Operation.logout: (
        Candidate("/logout"),
        Candidate("/auth/logout"),
        Candidate("/api/logout"),
    ),
    Operation.profile: (
        Candidate("/getProfile"),
        Candidate("/profile"),
        Candidate("/user/profile"),
        Candidate("/api/profile"),
    ),
    Operation.balance: (
        Candidate("/getProfile"),
        Candidate("/profile"),
        Candidate("/balance"),
        Candidate("/getBalance"),
    ),
    Operation.place_trade: (
        Candidate("/buyOption", long_timeout=True),
        Candidate("/trade", long_timeout=True),
        Candidate("/option/buy", long_timeout=True),
        Candidate("/api/trade", long_timeout=True),
    ),
    Operation.trade_result: (
        Candidate("/getOptionResult", allow_bare=False),
        Candidate("/trade/result", allow_bare=False),
        Candidate("/option/result", allow_bare=False),
    ),
    Operation.assets: (
        Candidate("/getInitData", allow_bare=False),
        Candidate("/assets", allow_bare=False),
        Candidate("/getAssets", allow_bare=False),
        Candidate("/api/assets", allow_bare=False),
    ),
}


class SessionLike(Protocol):
    def current_credential(self) -> Optional[Credential]: ...

    @property
    def generation(self) -> int: ...

    def adopt_session_id(self, session_id: str, *, generation: Optional[int] = None) -> None: ...


@dataclass(frozen=True)
class ProbeOutcome:
    payload: Any
    response: RawResponse
    path: str
    attempts: int


@dataclass(frozen=True)
class LoginOutcome:
    credential: Credential
    user: UserProfile
    path: str


def local_trade_id() -> str:
    return f"local_{int(time.time() * 1000)}_{uuid4().hex[:6]}"


def _require_assets(payload: Any) -> None:
    assets = payload.get("assets") if isinstance(payload, Mapping) else None
    if not isinstance(assets, list) or not assets:
        raise ShapeMismatch("Response has no assets list")


def _trade_outcome(payload: Any) -> Optional[TradeOutcome]:
    if not isinstance(payload, Mapping):
        return None
    if "win" in payload and payload.get("win") is not None:
        return TradeOutcome.win if payload.get("win") else TradeOutcome.loss
    for key in ("outcome", "result", "status"):
        val = payload.get(key)
        if isinstance(val, str) and val.strip().upper() in {"WIN", "WON"}:
            return TradeOutcome.win
        if isinstance(val, str) and val.strip().upper() in {"LOSS", "LOSE", "LOST"}:
            return TradeOutcome.loss
    return None


def _require_outcome(payload: Any) -> None:
    if _trade_outcome(payload) is None:
        raise ShapeMismatch("Response carries no trade outcome")


def _asset_from(raw: Any) -> Optional[Asset]:
    if isinstance(raw, str) and raw.strip():
        return Asset(symbol=raw.strip(), name=raw.strip())
    if not isinstance(raw, Mapping):
        return None
    symbol = pick(raw, "symbol", "asset", "name", "id")
    if symbol is None:
        return None
    name = pick(raw, "name", "title", "symbol") or symbol
    extra = {str(k): v for k, v in raw.items() if k not in {"symbol", "name"}}
    return Asset(symbol=str(symbol), name=str(name), **extra)


class BrokerClient:
    """Candidate-probing broker client bound to one Session Store."""

    def __init__(
        self,
        *,
        config: BrokerConfig,
        session: SessionLike,
        transport: Optional[Transport] = None,
        audit: Optional[AuditManager] = None,
    ):
        self.config = config
        self.session = session
        self.transport: Transport = transport or RequestsTransport()
        self.audit = audit

    # ---- plumbing -------------------------------------------------------

    def _url(self, path: str) -> str:
        return f"{self.config.base_url.rstrip('/')}{path}"

    def _headers(self, credential: Optional[Credential] = None) -> Dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json, text/plain, */*",
            "User-Agent": self.config.user_agent,
            "X-Requested-With": "XMLHttpRequest",
        }
        if self.config.origin:
            headers["Origin"] = self.config.origin
        if self.config.referer:
            headers["Referer"] = self.config.referer

        cred = credential if credential is not None else self.session.current_credential()
        if cred is not None and cred.token:
            headers["Authorization"] = f"Bearer {cred.token}"
        if cred is not None and cred.session_id:
            headers["Cookie"] = f"ssid={cred.session_id}"
        return headers

    def _authenticated(self) -> bool:
        cred = self.session.current_credential()
        return cred is not None and not cred.is_empty

    def _audit(self, event_type: str, payload: Dict[str, Any], *, level: int = logging.INFO) -> None:
        if self.audit is not None:
            self.audit.log(event_type, payload, level=level)

    async def _probe(
        self,
        operation: Operation,
        body: Mapping[str, Any],
        *,
        credential: Optional[Credential] = None,
        adopt_cookies: bool = True,
        accept: Optional[Callable[[Any], None]] = None,
    ) -> ProbeOutcome:
        """Try each candidate of `operation` in order; return the first success."""
        failures: List[Tuple[str, BrokerError]] = []
        for attempt, cand in enumerate(CANDIDATES[operation], start=1):
            payload = dict(body) if cand.body_keys is None else {k: body[k] for k in cand.body_keys if k in body}
            timeout = self.config.long_timeout_s if cand.long_timeout else self.config.short_timeout_s
            generation = self.session.generation
            try:
                resp = await self.transport.post(
                    self._url(cand.path),
                    json=payload,
                    headers=self._headers(credential),
                    timeout=timeout,
                )
            except NetworkError as e:
                logger.debug("%s via %s failed: %s", operation.value, cand.path, e)
                failures.append((cand.path, e))
                continue

            if adopt_cookies:
                ssid = parse_session_id(resp.set_cookies)
                if ssid:
                    self.session.adopt_session_id(ssid, generation=generation)

            try:
                data = normalize(resp, allow_bare=cand.allow_bare)
                if accept is not None:
                    accept(data)
            except ShapeMismatch as e:
                logger.debug("%s via %s not accepted: %s", operation.value, cand.path, e)
                failures.append((cand.path, e))
                continue

            return ProbeOutcome(payload=data, response=resp, path=cand.path, attempts=attempt)

        raise CandidatesExhausted(operation.value, failures)

    # ---- auth -----------------------------------------------------------

    async def login(self, credentials: LoginCredentials) -> LoginOutcome:
        """Authenticate and return the new Credential; raises `AuthError`.

        Does not touch the Session Store: persisting is the caller's job so a
        failed login never leaves partial state behind.
        """
        body = {
            "email": credentials.email,
            "password": credentials.password,
            "platform": "web",
            "remember": True,
        }
        try:
            outcome = await self._probe(Operation.login, body, adopt_cookies=False)
        except CandidatesExhausted as e:
            raise AuthError(self._login_failure_message(e)) from e

        resp_body = outcome.response.body
        token = pick(resp_body, "token", "accessToken", "access_token") or pick(
            outcome.payload, "token", "accessToken", "access_token"
        )
        credential = Credential(
            token=str(token) if token else None,
            session_id=parse_session_id(outcome.response.set_cookies),
        )
        if credential.is_empty:
            logger.warning("Login accepted via %s but no token or session cookie was issued", outcome.path)

        profile = await self._fetch_profile_payload(credential=credential) if not credential.is_empty else None
        merged: Dict[str, Any] = {}
        if isinstance(outcome.payload, Mapping):
            merged.update(outcome.payload)
        if isinstance(profile, Mapping):
            merged.update({k: v for k, v in profile.items() if v is not None})
        user = self._user_from(merged, fallback_email=credentials.email)

        self._audit("broker_login", {"path": outcome.path, "attempts": outcome.attempts, "email": credentials.email})
        return LoginOutcome(credential=credential, user=user, path=outcome.path)

    @staticmethod
    def _login_failure_message(exc: CandidatesExhausted) -> str:
        mismatches = [err for _path, err in exc.failures if isinstance(err, ShapeMismatch)]
        for err in mismatches:
            if err.broker_message:
                return err.broker_message
        if exc.rejection is not None:
            return "Invalid credentials"
        for err in mismatches:
            if err.status is not None and not 200 <= err.status < 300:
                return f"Error {err.status}"
        if mismatches:
            return "Invalid credentials"
        return "Could not reach the broker. Check your connection and try again."

    async def logout(self) -> str:
        """Best-effort logout notification; returns the path that answered."""
        outcome = await self._probe(Operation.logout, {})
        return outcome.path

    # ---- reads ----------------------------------------------------------

    @staticmethod
    def _user_from(data: Mapping[str, Any], *, fallback_email: str) -> UserProfile:
        user_id = pick(data, "userId", "id")
        email = pick(data, "email") or fallback_email
        return UserProfile(
            id=str(user_id) if user_id is not None else "1",
            email=str(email),
            name=str(pick(data, "name") or email),
            balance=to_decimal(pick(data, "balance")) or to_decimal(0),
        )

    async def _fetch_profile_payload(self, *, credential: Optional[Credential] = None) -> Optional[Mapping[str, Any]]:
        try:
            outcome = await self._probe(
                Operation.profile,
                {},
                credential=credential,
                adopt_cookies=credential is None,
            )
        except CandidatesExhausted as e:
            logger.info("Profile unavailable: %s", e)
            return None
        return outcome.payload if isinstance(outcome.payload, Mapping) else None

    async def fetch_profile(self, *, fallback_email: str = "") -> Optional[UserProfile]:
        if not self._authenticated():
            return None
        data = await self._fetch_profile_payload()
        if data is None:
            return None
        return self._user_from(data, fallback_email=fallback_email)

    def default_balance(self) -> Balance:
        return Balance(amount=self.config.default_balance, currency=self.config.default_currency)

    async def fetch_balance(self) -> Balance:
        """Current balance; never raises on broker failure (default balance instead)."""
        if not self._authenticated():
            self._audit("balance_fallback", {"reason": "no_session"}, level=logging.WARNING)
            return self.default_balance()
        try:
            outcome = await self._probe(Operation.balance, {})
        except CandidatesExhausted as e:
            self._audit("balance_fallback", {"reason": str(e)}, level=logging.WARNING)
            return self.default_balance()

        data = outcome.payload
        amount = to_decimal(pick(data, "balance", "amount")) or to_decimal(0)
        currency = pick(data, "currency") or self.config.default_currency
        return Balance(amount=amount, currency=str(currency))

    async def fetch_assets(self) -> List[Asset]:
        """Tradable assets; falls back to the static FX list."""
        if not self._authenticated():
            return default_assets()
        try:
            outcome = await self._probe(Operation.assets, {}, accept=_require_assets)
        except CandidatesExhausted as e:
            self._audit("assets_fallback", {"reason": str(e)}, level=logging.WARNING)
            return default_assets()

        assets = [a for a in (_asset_from(raw) for raw in outcome.payload["assets"]) if a is not None]
        return assets or default_assets()

    async def fetch_trade_result(self, trade_id: str) -> TradeResult:
        """Query the outcome of a placed trade. Unresolved results stay PENDING."""
        unresolved = TradeResult(
            trade_id=trade_id,
            outcome=TradeOutcome.pending,
            resolved=False,
            message="Result not available from broker",
        )
        if not self._authenticated():
            return unresolved

        body: Dict[str, Any] = {"tradeId": trade_id, "id": trade_id}
        if str(trade_id).isdigit():
            body["optionId"] = int(trade_id)
        try:
            outcome = await self._probe(Operation.trade_result, body, accept=_require_outcome)
        except CandidatesExhausted as e:
            self._audit("trade_result_fallback", {"trade_id": trade_id, "reason": str(e)}, level=logging.WARNING)
            return unresolved

        result = _trade_outcome(outcome.payload) or TradeOutcome.pending
        return TradeResult(
            trade_id=trade_id,
            outcome=result,
            resolved=True,
            profit=to_decimal(pick(outcome.payload, "profit", "payout")),
            message="Trade won" if result == TradeOutcome.win else "Trade lost",
        )

    # ---- trading --------------------------------------------------------

    async def place_trade(self, request: TradeRequest, *, strict: bool = False) -> TradeReceipt:
        """Place one option.

        - confirmed by a candidate -> accepted receipt with the broker id
        - explicitly rejected everywhere -> `accepted=False` (or `TradeRejected` when strict)
        - no endpoint answered -> SIMULATED receipt, or `BrokerUnavailable` when
          `simulate_when_unavailable` is off
        """
        option_type = request.direction.value.lower()
        body = {
            "asset": request.asset,
            "amount": float(request.stake),
            "time": request.expiry_seconds,
            "action": option_type,
            "direction": option_type,
            "type": option_type,
            "isDemo": False,
        }

        failure: Optional[CandidatesExhausted] = None
        if self._authenticated():
            try:
                outcome = await self._probe(Operation.place_trade, body)
            except CandidatesExhausted as e:
                failure = e
            else:
                broker_id = pick(outcome.payload, "id", "tradeId", "optionId")
                trade_id = str(broker_id) if broker_id is not None else local_trade_id()
                self._audit(
                    "trade_placed",
                    {"trade_id": trade_id, "path": outcome.path, "attempts": outcome.attempts, "request": request},
                )
                return TradeReceipt(trade_id=trade_id, accepted=True, message="Trade placed")

        rejection_path, rejection = failure.first_rejection() if failure is not None else (None, None)
        if rejection is not None:
            self._audit(
                "trade_rejected",
                {"path": rejection_path, "reason": str(rejection), "request": request},
                level=logging.WARNING,
            )
            if strict:
                raise TradeRejected(str(rejection), path=rejection_path)
            return TradeReceipt(trade_id=local_trade_id(), accepted=False, message=str(rejection))

        reason = str(failure) if failure is not None else "no broker session"
        if not self.config.simulate_when_unavailable:
            raise BrokerUnavailable(f"Trade not placed: {reason}")

        trade_id = local_trade_id()
        self._audit(
            "trade_simulated",
            {"trade_id": trade_id, "reason": reason, "request": request},
            level=logging.WARNING,
        )
        return TradeReceipt(
            trade_id=trade_id,
            accepted=True,
            simulated=True,
            message="SIMULATED: no broker endpoint confirmed the trade",
        )


__all__ = [
    "CANDIDATES",
    "BrokerClient",
    "Candidate",
    "LoginOutcome",
    "Operation",
    "ProbeOutcome",
    "local_trade_id",
]
