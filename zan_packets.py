# zan_packets.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple, Union

from zan_errors import MalformedSalt, TruncatedPacket, UnterminatedString
from zan_proto import (
    CLRC_BEGINCONNECTION,
    CLRC_COMMAND,
    CLRC_DISCONNECT,
    CLRC_PASSWORD,
    CLRC_PONG,
    SALT_PACKET_LENGTH,
    SVRC_BANNED,
    SVRC_INVALIDPASSWORD,
    SVRC_LOGGEDIN,
    SVRC_MESSAGE,
    SVRC_OLDPROTOCOL,
    SVRC_SALT,
    SVRC_UPDATE,
    SVRCU_ADMINCOUNT,
    SVRCU_MAP,
    SVRCU_PLAYERDATA,
)


# ------------------ Client packets ------------------
@dataclass(frozen=True)
class BeginConnection:
    protocol_version: int


@dataclass(frozen=True)
class Password:
    hex_digest: str


@dataclass(frozen=True)
class Pong:
    pass


@dataclass(frozen=True)
class Command:
    text: str


@dataclass(frozen=True)
class Disconnect:
    pass


ClientPacket = Union[BeginConnection, Password, Pong, Command, Disconnect]


# ------------------ Server packets ------------------
@dataclass(frozen=True)
class OldProtocol:
    pass


@dataclass(frozen=True)
class Banned:
    pass


@dataclass(frozen=True)
class Salt:
    salt: bytes


@dataclass(frozen=True)
class LoggedIn:
    pass


@dataclass(frozen=True)
class InvalidPassword:
    pass


@dataclass(frozen=True)
class Message:
    text: str


@dataclass(frozen=True)
class PlayerData:
    names: Tuple[str, ...]


@dataclass(frozen=True)
class AdminCount:
    count: int


@dataclass(frozen=True)
class MapUpdate:
    name: str


@dataclass(frozen=True)
class Unknown:
    """Type code (or update subtype) this client does not understand."""

    type_code: int
    subtype: int | None = None


ServerPacket = Union[
    OldProtocol, Banned, Salt, LoggedIn, InvalidPassword,
    Message, PlayerData, AdminCount, MapUpdate, Unknown,
]


# ------------------ Strings ------------------
def read_string(buf: bytes, offset: int = 0) -> tuple[str, int]:
    """Returns the NUL-terminated string at offset and the offset just past its NUL."""
    z = buf.find(b"\x00", offset)
    if z == -1:
        raise UnterminatedString(f"Null-terminator not found after offset {offset}")
    return buf[offset:z].decode("utf-8", errors="replace"), z + 1


def write_string(buf: bytearray, value: str, offset: int) -> int:
    data = value.encode("utf-8") + b"\x00"
    buf[offset:offset + len(data)] = data
    return offset + len(data)


# ------------------ Encode ------------------
def encode_client_packet(packet: ClientPacket) -> bytes:
    if isinstance(packet, BeginConnection):
        return bytes([CLRC_BEGINCONNECTION, packet.protocol_version & 0xFF])
    if isinstance(packet, Password):
        buf = bytearray([CLRC_PASSWORD])
        write_string(buf, packet.hex_digest, 1)
        return bytes(buf)
    if isinstance(packet, Command):
        buf = bytearray([CLRC_COMMAND])
        write_string(buf, packet.text, 1)
        return bytes(buf)
    if isinstance(packet, Pong):
        return bytes([CLRC_PONG])
    if isinstance(packet, Disconnect):
        return bytes([CLRC_DISCONNECT])
    raise TypeError(f"Not a client packet: {packet!r}")


# ------------------ Decode ------------------
def _byte_at(data: bytes, offset: int, what: str) -> int:
    if offset >= len(data):
        raise TruncatedPacket(f"Packet too short for {what} (length {len(data)})")
    return data[offset]


def _decode_salt(data: bytes) -> Salt:
    if len(data) != SALT_PACKET_LENGTH:
        raise MalformedSalt(
            f"Salt packet must be {SALT_PACKET_LENGTH} bytes (got {len(data)})"
        )
    return Salt(bytes(data[1:SALT_PACKET_LENGTH - 1]))


def _decode_update(data: bytes) -> ServerPacket:
    subtype = _byte_at(data, 1, "update subtype")

    if subtype == SVRCU_PLAYERDATA:
        count = _byte_at(data, 2, "player count")
        names = []
        offset = 3
        for _ in range(count):
            name, offset = read_string(data, offset)
            names.append(name)
        return PlayerData(tuple(names))

    if subtype == SVRCU_ADMINCOUNT:
        return AdminCount(_byte_at(data, 2, "admin count"))

    if subtype == SVRCU_MAP:
        name, _ = read_string(data, 2)
        return MapUpdate(name)

    return Unknown(SVRC_UPDATE, subtype)


_EMPTY_PACKETS = {
    SVRC_OLDPROTOCOL: OldProtocol,
    SVRC_BANNED: Banned,
    SVRC_LOGGEDIN: LoggedIn,
    SVRC_INVALIDPASSWORD: InvalidPassword,
}


def decode_server_packet(data: bytes) -> ServerPacket:
    data = bytes(data)
    type_code = _byte_at(data, 0, "type code")

    if type_code in _EMPTY_PACKETS:
        return _EMPTY_PACKETS[type_code]()
    if type_code == SVRC_SALT:
        return _decode_salt(data)
    if type_code == SVRC_MESSAGE:
        text, _ = read_string(data, 1)
        return Message(text)
    if type_code == SVRC_UPDATE:
        return _decode_update(data)
    return Unknown(type_code)
