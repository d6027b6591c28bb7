"""Error taxonomy for the broker client and the robot."""

from __future__ import annotations

from decimal import Decimal
from typing import Optional, Sequence, Tuple


class BrokerError(RuntimeError):
    pass


class NetworkError(BrokerError):
    """No usable response (connection refused, DNS, reset...)."""


class RequestTimeout(NetworkError):
    pass


class ShapeMismatch(BrokerError):
    """Response arrived but carries no recognizable success shape."""

    def __init__(
        self,
        message: str,
        *,
        status: Optional[int] = None,
        rejected: bool = False,
        broker_message: Optional[str] = None,
    ):
        super().__init__(message)
        self.status = status
        self.rejected = rejected
        self.broker_message = broker_message


class CandidatesExhausted(BrokerError):
    """Every candidate endpoint of one operation failed."""

    def __init__(self, operation: str, failures: Sequence[Tuple[str, BrokerError]]):
        self.operation = operation
        self.failures = list(failures)
        detail = "; ".join(f"{path}: {err}" for path, err in self.failures) or "no candidates"
        super().__init__(f"{operation}: all candidate endpoints failed ({detail})")

    def first_rejection(self) -> Tuple[Optional[str], Optional[ShapeMismatch]]:
        """(path, error) of the first explicit broker rejection, or (None, None)."""
        for path, err in self.failures:
            if isinstance(err, ShapeMismatch) and err.rejected:
                return path, err
        return None, None

    @property
    def rejection(self) -> Optional[ShapeMismatch]:
        return self.first_rejection()[1]


class AuthError(BrokerError):
    pass


class TradeRejected(BrokerError):
    def __init__(self, message: str, *, path: Optional[str] = None):
        super().__init__(message)
        self.path = path


class BrokerUnavailable(BrokerError):
    """Every candidate endpoint failed and simulation is disabled."""


class InsufficientBalance(RuntimeError):
    """Pre-flight guard: the known balance cannot fund one full cycle."""

    def __init__(self, *, required: Decimal, available: Optional[Decimal]):
        if available is None:
            msg = f"Balance not loaded; need {required} to run one cycle"
        else:
            msg = f"Insufficient balance: {available} available, {required} required per cycle"
        super().__init__(msg)
        self.required = required
        self.available = available


class RobotBusy(RuntimeError):
    pass


__all__ = [
    "AuthError",
    "BrokerError",
    "BrokerUnavailable",
    "CandidatesExhausted",
    "InsufficientBalance",
    "NetworkError",
    "RequestTimeout",
    "RobotBusy",
    "ShapeMismatch",
    "TradeRejected",
]
