import os
import sys
from datetime import datetime, timezone
from decimal import Decimal

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from option_robot.data.audit import AuditContext, AuditManager, jsonify  # noqa: E402
from option_robot.execution.schemas import Balance, TradeDirection  # noqa: E402


def test_jsonify_handles_domain_types() -> None:
    out = jsonify(
        {
            "direction": TradeDirection.put,
            "stake": Decimal("2.5"),
            "at": datetime(2024, 1, 1, tzinfo=timezone.utc),
            "balance": Balance(amount=Decimal("10"), currency="USD"),
            "ids": ("a", 1),
        }
    )
    assert out == {
        "direction": "PUT",
        "stake": 2.5,
        "at": "2024-01-01T00:00:00+00:00",
        "balance": {"amount": "10", "currency": "USD"},
        "ids": ["a", 1],
    }


def test_buffer_is_bounded_and_newest_first() -> None:
    audit = AuditManager(max_events=3)
    for i in range(5):
        audit.log("cycle_complete" if i % 2 else "cycle_start", {"i": i}, ctx=AuditContext(run_id="run_x", cycle=i))

    recent = audit.recent(10)
    assert [e.payload["i"] for e in recent] == [4, 3, 2]
    assert [e.payload["i"] for e in audit.recent(10, event_type="cycle_complete")] == [3]
    d = recent[0].to_dict()
    assert d["run_id"] == "run_x"
    assert d["cycle"] == 4
    assert d["level"] == "INFO"

    audit.clear()
    assert audit.recent() == []
