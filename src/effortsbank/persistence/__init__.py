"""Persistence layer — event log and state storage."""

from effortsbank.persistence.event_log import EventLog, EventRecord, EventKind
from effortsbank.persistence.state_store import StateStore

__all__ = ["EventLog", "EventRecord", "EventKind", "StateStore"]
