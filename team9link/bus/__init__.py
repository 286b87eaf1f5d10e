"""Inbound event bus for team9link."""

from team9link.bus.events import IncomingMessage, TransportEvent
from team9link.bus.queue import EventBus

__all__ = ["EventBus", "IncomingMessage", "TransportEvent"]
