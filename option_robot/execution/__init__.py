"""Execution layer (only place that talks to the broker HTTP API).

Keep this package `__init__` lightweight to avoid import cycles.
Import concrete modules directly, e.g.:
  - `from option_robot.execution.broker_client import BrokerClient`
  - `from option_robot.execution.normalize import normalize`
"""

__all__: list[str] = []
