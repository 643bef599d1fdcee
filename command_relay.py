# command_relay.py
from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass, field
from typing import Optional, Tuple

from zan_errors import AuthError, StateError
from zan_rcon import (
    AdminsEvent,
    ConnectEvent,
    ErrorEvent,
    Event,
    MapEvent,
    MessageEvent,
    PlayersEvent,
    RconSession,
)

logger = logging.getLogger("zanbot.relay")

# \x1c starts a color escape: one code character, or a [name] in brackets.
_COLOR_RE = re.compile(r"\x1c(?:\[[^\]]*\]|.)", re.S)


def strip_colors(text: str) -> str:
    return _COLOR_RE.sub("", text or "")


def relay_line(session: RconSession, line: str) -> bool:
    """
    Forwards a chat line to the server. Only "say <text>" is relayed;
    returns True if a command went out.
    """
    line = (line or "").strip()
    head, _, rest = line.partition(" ")
    if head.lower() != "say":
        return False

    rest = rest.strip()
    if not rest:
        return False

    try:
        session.send_command(f"say {rest}")
    except StateError as e:
        logger.info("Chat line dropped: %s", e)
        return False
    return True


def format_event(event: Event) -> str:
    if isinstance(event, ConnectEvent):
        return "[rcon] connected"
    if isinstance(event, MessageEvent):
        return strip_colors(event.text).rstrip("\n")
    if isinstance(event, PlayersEvent):
        if not event.names:
            return "[players] (none)"
        return "[players] " + ", ".join(strip_colors(n) for n in event.names)
    if isinstance(event, AdminsEvent):
        return f"[admins] {event.count}"
    if isinstance(event, MapEvent):
        return f"[map] {event.name}"
    if isinstance(event, ErrorEvent):
        if isinstance(event.cause, AuthError):
            return f"[rcon refused] {event.cause}"
        return f"[rcon error] {event.cause}"
    return f"[event] {event!r}"


@dataclass
class ServerStatus:
    """Last known server state, built from the session's notifications."""

    connected: bool = False
    map_name: Optional[str] = None
    players: Tuple[str, ...] = ()
    admins: int = 0
    last_error: Optional[str] = None
    updated_ts: float = field(default_factory=time.time)

    def apply(self, event: Event) -> None:
        if isinstance(event, ConnectEvent):
            self.connected = True
            self.last_error = None
        elif isinstance(event, PlayersEvent):
            self.players = tuple(event.names)
        elif isinstance(event, AdminsEvent):
            self.admins = event.count
        elif isinstance(event, MapEvent):
            self.map_name = event.name
        elif isinstance(event, ErrorEvent):
            self.last_error = str(event.cause)
        else:
            return
        self.updated_ts = time.time()

    def sync(self, session: RconSession) -> None:
        """Drops cached server data once the session is gone."""
        if not session.connected:
            self.connected = False
            self.players = ()
            self.admins = 0
            self.map_name = None
