"""Data layer package (persistence + audit).

Keep this package `__init__` lightweight to avoid import cycles.
Import concrete modules directly, e.g.:
  - `from option_robot.data.kv_store import JsonFileStore`
  - `from option_robot.data.audit import AuditManager`
"""

__all__: list[str] = []
