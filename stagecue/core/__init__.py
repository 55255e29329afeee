"""Arbitration primitives shared by the trigger detector."""
from .queues import ArbitrationQueue, DropEvent, MAX_PENDING_EVENTS

__all__ = ["ArbitrationQueue", "DropEvent", "MAX_PENDING_EVENTS"]
