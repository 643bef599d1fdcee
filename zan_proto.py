# zan_proto.py
from __future__ import annotations

import json
from pathlib import Path

# Client -> server
CLRC_BEGINCONNECTION = 52
CLRC_PASSWORD = 53
CLRC_COMMAND = 54
CLRC_PONG = 55
CLRC_DISCONNECT = 56

# Server -> client
SVRC_OLDPROTOCOL = 32
SVRC_BANNED = 33
SVRC_SALT = 34
SVRC_LOGGEDIN = 35
SVRC_INVALIDPASSWORD = 36
SVRC_MESSAGE = 37
SVRC_UPDATE = 38

# SVRC_UPDATE subtypes
SVRCU_PLAYERDATA = 0
SVRCU_ADMINCOUNT = 1
SVRCU_MAP = 2

PROTOCOL_VERSION = 3
DEFAULT_PORT = 10666
KEEPALIVE_SECONDS = 5.0

SALT_LENGTH = 32
SALT_PACKET_LENGTH = 1 + SALT_LENGTH + 1  # code + salt + NUL

# Huffman framing
HUFFMAN_RAW_MARKER = 0xFF

# Symbol weights for text-heavy traffic, indexed by byte value: NUL
# terminators, space, lower-case letters and digits dominate. This is the
# codec default for local use; it is not the table Zandronum servers use.
TEXT_FREQUENCIES: tuple[float, ...] = (
    1200, 20, 20, 20, 20, 20, 20, 20, 20, 20, 300, 20, 20, 20, 20, 20,  # 0x00
    20, 20, 20, 20, 20, 20, 20, 20, 20, 20, 20, 20, 150, 20, 20, 20,  # 0x10
    900, 40, 40, 40, 40, 40, 40, 40, 40, 40, 40, 40, 60, 40, 120, 40,  # 0x20
    150, 150, 150, 150, 150, 150, 150, 150, 150, 150, 40, 40, 40, 40, 40, 40,  # 0x30
    40, 80, 80, 80, 80, 80, 80, 80, 80, 80, 80, 80, 80, 80, 80, 80,  # 0x40
    80, 80, 80, 80, 80, 80, 80, 80, 80, 80, 80, 40, 40, 40, 40, 60,  # 0x50
    40, 330, 60, 140, 170, 500, 90, 85, 200, 290, 10, 35, 180, 110, 280, 300,  # 0x60
    90, 8, 250, 260, 360, 120, 45, 80, 15, 75, 8, 15, 15, 15, 15, 15,  # 0x70
    5, 5, 5, 5, 5, 5, 5, 5, 5, 5, 5, 5, 5, 5, 5, 5,  # 0x80
    5, 5, 5, 5, 5, 5, 5, 5, 5, 5, 5, 5, 5, 5, 5, 5,  # 0x90
    5, 5, 5, 5, 5, 5, 5, 5, 5, 5, 5, 5, 5, 5, 5, 5,  # 0xA0
    5, 5, 5, 5, 5, 5, 5, 5, 5, 5, 5, 5, 5, 5, 5, 5,  # 0xB0
    5, 5, 5, 5, 5, 5, 5, 5, 5, 5, 5, 5, 5, 5, 5, 5,  # 0xC0
    5, 5, 5, 5, 5, 5, 5, 5, 5, 5, 5, 5, 5, 5, 5, 5,  # 0xD0
    5, 5, 5, 5, 5, 5, 5, 5, 5, 5, 5, 5, 5, 5, 5, 5,  # 0xE0
    5, 5, 5, 5, 5, 5, 5, 5, 5, 5, 5, 5, 5, 5, 5, 5,  # 0xF0
)


def validate_frequency_table(values) -> tuple[float, ...]:
    table = tuple(float(v) for v in values)
    if len(table) != 256:
        raise ValueError(f"Frequency table must have 256 entries (got {len(table)})")
    if any(v < 0 for v in table):
        raise ValueError("Frequency table weights must be non-negative")
    return table


def load_frequency_table(path: str | None = None, *, allow_bundled: bool = False) -> tuple[float, ...]:
    """
    Reads a JSON file holding a flat list of 256 weights, the table the
    server was built with. Without a path the bundled TEXT_FREQUENCIES are
    only returned when allow_bundled is set: no Zandronum server uses them,
    so falling back silently would produce datagrams the server cannot read.
    """
    if not path:
        if not allow_bundled:
            raise ValueError(
                "No Huffman frequency table configured: set ZAN_HUFFMAN_FREQS_FILE to a JSON "
                "list of the server's 256 weights, or ZAN_HUFFMAN_USE_BUNDLED=1 to use the "
                "bundled text table (not wire-compatible with Zandronum servers)"
            )
        return validate_frequency_table(TEXT_FREQUENCIES)
    raw = json.loads(Path(path).read_text(encoding="utf-8"))
    if not isinstance(raw, list):
        raise ValueError(f"{path}: expected a JSON list of 256 numbers")
    return validate_frequency_table(raw)
