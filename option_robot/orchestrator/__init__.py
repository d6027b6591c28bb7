"""Cycle orchestration (start/stop, timed CALL/PUT batches)."""
