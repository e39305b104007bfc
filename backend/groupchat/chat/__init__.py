"""Real-time group chat.

Components:
    - MessageLog: bounded per-group message history
    - PinManager: time-expiring pinned messages
    - SessionRegistry / BroadcastRouter: live connections and event fan-out
    - SessionHub: the websocket protocol on top of all of the above
"""
from .hub import SessionHub, build_hub, get_hub, set_hub

__all__ = ["SessionHub", "build_hub", "get_hub", "set_hub"]
