"""Event system for supervisor lifecycle notifications."""

from gitreload.events.bus import EventBus
from gitreload.events.types import Event, EventType

__all__ = ["Event", "EventBus", "EventType"]
