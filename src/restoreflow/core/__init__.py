"""Core infrastructure shared by the supervisor, preview and installer."""

from restoreflow.core.events import EventChannel, EventStream

__all__ = ["EventChannel", "EventStream"]
