# zan_errors.py
from __future__ import annotations


class RconError(Exception):
    """Base class for everything the RCON engine reports."""


# ------------------ Malformed datagrams ------------------
class ProtocolError(RconError):
    pass


class UnterminatedString(ProtocolError):
    pass


class MalformedSalt(ProtocolError):
    pass


class TruncatedPacket(ProtocolError):
    pass


class HuffmanError(ProtocolError):
    pass


class UnexpectedPacket(ProtocolError):
    """A well-formed packet that the current session state does not allow."""


# ------------------ Handshake refused ------------------
class AuthError(RconError):
    OLD_PROTOCOL = "old_protocol"
    BANNED = "banned"
    INVALID_PASSWORD = "invalid_password"

    def __init__(self, reason: str, message: str):
        super().__init__(message)
        self.reason = reason


class UnrecognizedWire(RconError):
    def __init__(self, type_code: int, subtype: int | None = None):
        if subtype is None:
            msg = f"Unrecognized response type {type_code}"
        else:
            msg = f"Unrecognized update subtype {subtype}"
        super().__init__(msg)
        self.type_code = type_code
        self.subtype = subtype


class StateError(RconError):
    """Operation not allowed in the session's current state."""


class NetworkError(RconError):
    pass
