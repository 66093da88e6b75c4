"""Routing event tracking."""

from photoroute.tracking.tracker import EventTracker, RoutingEvent

__all__ = ["EventTracker", "RoutingEvent"]
