"""Broker client tests: candidate probing, headers, fallbacks, trades.

Run:
  pytest tests/test_broker_client.py

Uses an in-process fake transport; no network required.
"""

import asyncio
import os
import sys
from decimal import Decimal

import pytest

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from broker_fakes import FakeTransport, fail, make_client, ok  # noqa: E402
from option_robot.data.audit import AuditManager  # noqa: E402
from option_robot.data.session_store import SESSION_ID_KEY  # noqa: E402
from option_robot.execution.broker_client import CANDIDATES, Operation  # noqa: E402
from option_robot.execution.errors import (  # noqa: E402
    AuthError,
    BrokerUnavailable,
    CandidatesExhausted,
    NetworkError,
    ShapeMismatch,
    TradeRejected,
)
from option_robot.execution.schemas import (  # noqa: E402
    DEFAULT_ASSETS,
    LoginCredentials,
    TradeDirection,
    TradeOutcome,
    TradeRequest,
)


def _request(direction: TradeDirection = TradeDirection.call) -> TradeRequest:
    return TradeRequest(direction=direction, stake=Decimal("10"), asset="EURUSD", expiry_seconds=60)


def _reject_all_trades(message: str = "Market closed") -> dict:
    return {c.path: ok({"isSuccessful": False, "message": message}) for c in CANDIDATES[Operation.place_trade]}


def test_first_successful_candidate_wins_and_stops_probing() -> None:
    t = FakeTransport(
        routes={
            # /getProfile: unrouted -> connection refused
            "/profile": fail({"detail": "boom"}, status=500),
            "/balance": ok({"success": True, "data": {"balance": 250, "currency": "EUR"}}),
            "/getBalance": ok({"success": True, "data": {"balance": 1}}),
        }
    )
    client = make_client(t)

    bal = asyncio.run(client.fetch_balance())

    assert bal.amount == Decimal("250")
    assert bal.currency == "EUR"
    assert t.paths() == ["/getProfile", "/profile", "/balance"]


def test_headers_carry_token_cookie_and_client_identity() -> None:
    t = FakeTransport(routes={"/getProfile": ok({"isSuccessful": True, "result": {"balance": 10}})})
    client = make_client(t, token="tok-1", session_id="ss-1")

    asyncio.run(client.fetch_balance())

    h = t.calls[0].headers
    assert h["Authorization"] == "Bearer tok-1"
    assert h["Cookie"] == "ssid=ss-1"
    assert h["X-Requested-With"] == "XMLHttpRequest"
    assert h["Content-Type"] == "application/json"
    assert "Mozilla" in h["User-Agent"]


def test_timeouts_long_for_trades_short_for_reads() -> None:
    t = FakeTransport(
        routes={
            "/getProfile": ok({"isSuccessful": True, "result": {"balance": 10}}),
            "/buyOption": ok({"isSuccessful": True, "result": {"id": 1}}),
        }
    )
    client = make_client(t)

    asyncio.run(client.fetch_balance())
    asyncio.run(client.place_trade(_request()))

    assert [c.timeout for c in t.calls] == [5.0, 10.0]


def test_balance_falls_back_to_default_when_every_candidate_fails() -> None:
    audit = AuditManager()
    t = FakeTransport()
    client = make_client(t, audit=audit)

    bal = asyncio.run(client.fetch_balance())

    assert bal.amount == Decimal("1000")
    assert bal.currency == "USD"
    assert len(t.calls) == len(CANDIDATES[Operation.balance])
    assert audit.recent(1)[0].event_type == "balance_fallback"


def test_reads_without_session_never_hit_the_network() -> None:
    t = FakeTransport()
    client = make_client(t, token=None)

    bal = asyncio.run(client.fetch_balance())
    assets = asyncio.run(client.fetch_assets())

    assert bal.amount == Decimal("1000")
    assert [a.symbol for a in assets] == [a["symbol"] for a in DEFAULT_ASSETS]
    assert t.calls == []


def test_assets_require_marker_and_list() -> None:
    t = FakeTransport(
        routes={
            # Bare 2xx is not enough for assets.
            "/getInitData": ok({"assets": [{"symbol": "XAUUSD", "name": "Gold"}]}),
            "/assets": ok(
                {
                    "isSuccessful": True,
                    "result": {"assets": [{"symbol": "BTCUSD", "name": "Bitcoin", "payout": 85}, "ETHUSD"]},
                }
            ),
        }
    )
    client = make_client(t)

    assets = asyncio.run(client.fetch_assets())

    assert [a.symbol for a in assets] == ["BTCUSD", "ETHUSD"]
    assert assets[0].name == "Bitcoin"
    assert t.paths() == ["/getInitData", "/assets"]


def test_assets_fall_back_to_static_list() -> None:
    t = FakeTransport(routes={"/getInitData": ok({"isSuccessful": True, "result": {"assets": []}})})
    client = make_client(t)

    assets = asyncio.run(client.fetch_assets())

    assert len(assets) == 8
    assert assets[0].symbol == "EURUSD"


def test_place_trade_confirmed_by_broker() -> None:
    t = FakeTransport(routes={"/buyOption": ok({"isSuccessful": True, "result": {"id": 987}})})
    client = make_client(t)

    receipt = asyncio.run(client.place_trade(_request(TradeDirection.put)))

    assert receipt.accepted is True
    assert receipt.simulated is False
    assert receipt.trade_id == "987"
    body = t.calls[0].json
    assert body["asset"] == "EURUSD"
    assert body["amount"] == 10.0
    assert body["time"] == 60
    assert body["direction"] == "put"
    assert body["isDemo"] is False


def test_place_trade_simulated_when_no_endpoint_answers() -> None:
    audit = AuditManager()
    t = FakeTransport()
    client = make_client(t, audit=audit)

    receipt = asyncio.run(client.place_trade(_request()))

    assert receipt.accepted is True
    assert receipt.simulated is True
    assert receipt.trade_id.startswith("local_")
    assert receipt.message.startswith("SIMULATED")
    assert len(t.calls) == len(CANDIDATES[Operation.place_trade])
    assert audit.recent(1)[0].event_type == "trade_simulated"


def test_place_trade_without_simulation_raises() -> None:
    t = FakeTransport()
    client = make_client(t, simulate_when_unavailable=False)

    with pytest.raises(BrokerUnavailable):
        asyncio.run(client.place_trade(_request()))


def test_rejected_trade_is_not_accepted_or_raises_when_strict() -> None:
    t = FakeTransport(routes=_reject_all_trades())
    client = make_client(t)

    receipt = asyncio.run(client.place_trade(_request()))
    assert receipt.accepted is False
    assert receipt.simulated is False
    assert receipt.message == "Market closed"

    with pytest.raises(TradeRejected) as ei:
        asyncio.run(client.place_trade(_request(), strict=True))
    assert ei.value.path == "/buyOption"


def test_set_cookie_session_id_is_adopted_and_persisted() -> None:
    t = FakeTransport(
        routes={"/getProfile": ok({"isSuccessful": True, "result": {"balance": 10}}, cookies=("ssid=new123; Path=/",))}
    )
    client = make_client(t)

    asyncio.run(client.fetch_balance())

    assert client.session.current_credential().session_id == "new123"
    assert client.session.storage.get(SESSION_ID_KEY) == "new123"


def test_login_success_sets_credential_and_merges_profile() -> None:
    t = FakeTransport(
        routes={
            "/login": ok({"success": True, "token": "tok-9"}, cookies=("ssid=s1; Path=/; HttpOnly",)),
            "/getProfile": ok({"isSuccessful": True, "result": {"userId": 42, "name": "Ann", "balance": 77.5}}),
        }
    )
    client = make_client(t, token=None)

    outcome = asyncio.run(client.login(LoginCredentials(email="ann@example.com", password="pw")))

    assert outcome.credential.token == "tok-9"
    assert outcome.credential.session_id == "s1"
    assert outcome.user.id == "42"
    assert outcome.user.name == "Ann"
    assert outcome.user.email == "ann@example.com"
    assert outcome.user.balance == Decimal("77.5")
    # Profile request authenticated with the fresh credential.
    profile_call = t.calls[1]
    assert profile_call.headers["Authorization"] == "Bearer tok-9"
    assert profile_call.headers["Cookie"] == "ssid=s1"
    # The client itself does not persist anything.
    assert client.session.current_credential() is None


def test_login_falls_back_to_minimal_body() -> None:
    def _login(json):
        if "platform" in json:
            return fail(None, status=422)
        return ok({"isSuccessful": True, "result": {"token": "t"}})

    t = FakeTransport(routes={"/login": _login, "/auth/login": fail(None, status=404)})
    client = make_client(t, token=None)

    outcome = asyncio.run(client.login(LoginCredentials(email="a@b.com", password="pw")))

    assert outcome.credential.token == "t"
    assert t.paths()[:3] == ["/login", "/auth/login", "/login"]
    assert t.calls[2].json == {"email": "a@b.com", "password": "pw"}
    assert outcome.user.id == "1"


def test_login_failure_surfaces_broker_message() -> None:
    rejected = fail({"isSuccessful": False, "message": "Wrong password"}, status=401)
    t = FakeTransport(routes={"/login": rejected, "/auth/login": rejected})
    client = make_client(t, token=None)

    with pytest.raises(AuthError) as ei:
        asyncio.run(client.login(LoginCredentials(email="a@b.com", password="bad")))
    assert str(ei.value) == "Wrong password"


def test_login_failure_when_broker_unreachable() -> None:
    client = make_client(FakeTransport(), token=None)

    with pytest.raises(AuthError) as ei:
        asyncio.run(client.login(LoginCredentials(email="a@b.com", password="pw")))
    assert "connection" in str(ei.value).lower()


def test_trade_result_win_and_unresolved_fallback() -> None:
    t = FakeTransport(routes={"/getOptionResult": ok({"isSuccessful": True, "result": {"win": True, "profit": 8.5}})})
    client = make_client(t)

    res = asyncio.run(client.fetch_trade_result("123"))
    assert res.resolved is True
    assert res.outcome == TradeOutcome.win
    assert res.profit == Decimal("8.5")
    assert t.calls[0].json["optionId"] == 123

    empty = make_client(FakeTransport())
    res = asyncio.run(empty.fetch_trade_result("local_1_abc"))
    assert res.resolved is False
    assert res.outcome == TradeOutcome.pending


def test_fetch_profile_requires_session() -> None:
    t = FakeTransport(routes={"/getProfile": ok({"isSuccessful": True, "result": {"id": 3, "email": "p@x.io", "balance": 12}})})

    assert asyncio.run(make_client(t, token=None).fetch_profile()) is None
    assert t.calls == []

    profile = asyncio.run(make_client(t).fetch_profile())
    assert profile.id == "3"
    assert profile.email == "p@x.io"
    assert profile.balance == Decimal("12")


def test_candidates_exhausted_reports_first_rejection() -> None:
    refused = NetworkError("connection refused")
    unknown = ShapeMismatch("no success marker", status=500)
    first = ShapeMismatch("Amount too low", status=200, rejected=True, broker_message="Amount too low")
    second = ShapeMismatch("Market closed", status=200, rejected=True, broker_message="Market closed")

    exc = CandidatesExhausted(
        "trade", [("/buyOption", refused), ("/trade", unknown), ("/option/buy", first), ("/api/trade", second)]
    )

    assert exc.first_rejection() == ("/option/buy", first)
    assert exc.rejection is first
    assert str(exc).startswith("trade: all candidate endpoints failed (/buyOption: connection refused;")


def test_candidates_exhausted_without_rejection() -> None:
    exc = CandidatesExhausted("balance", [("/getProfile", NetworkError("reset"))])

    assert exc.first_rejection() == (None, None)
    assert exc.rejection is None
    assert str(CandidatesExhausted("balance", [])) == "balance: all candidate endpoints failed (no candidates)"
