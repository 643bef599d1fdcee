# tests/conftest.py
import asyncio

import pytest

from zan_huffman import HuffmanCodec
from zan_proto import SVRC_MESSAGE, SVRC_SALT, SVRC_UPDATE
from zan_rcon import Event, RconSession

SERVER = ("127.0.0.1", 10666)


class FakeTransport:
    def __init__(self, codec: HuffmanCodec):
        self.codec = codec
        self.sent = []  # (raw payload, address, port)

    def send(self, data: bytes, address: str, port: int) -> None:
        self.sent.append((self.codec.decode(data), address, port))

    def payloads(self):
        return [p for p, _, _ in self.sent]

    def close(self) -> None:
        pass


async def fake_resolver(host: str) -> str:
    return SERVER[0]


async def settle(rounds: int = 3) -> None:
    for _ in range(rounds):
        await asyncio.sleep(0)


# ------------------ Server-side fixtures ------------------
def salt_packet(salt: bytes) -> bytes:
    return bytes([SVRC_SALT]) + salt + b"\x00"


def message_packet(text: str) -> bytes:
    return bytes([SVRC_MESSAGE]) + text.encode("utf-8") + b"\x00"


def players_packet(names) -> bytes:
    body = b"".join(n.encode("utf-8") + b"\x00" for n in names)
    return bytes([SVRC_UPDATE, 0, len(names)]) + body


def update_packet(subtype: int, payload: bytes) -> bytes:
    return bytes([SVRC_UPDATE, subtype]) + payload


@pytest.fixture
def codec():
    return HuffmanCodec()


@pytest.fixture
def transport(codec):
    return FakeTransport(codec)


@pytest.fixture
def session(codec, transport):
    return RconSession(transport, codec=codec, resolver=fake_resolver, keepalive_interval=0.02)


@pytest.fixture
def events(session):
    seen = []
    session.add_listener(Event, seen.append)
    return seen


@pytest.fixture
def deliver(session, codec):
    """Feeds a raw server payload to the session as if it came from the server."""
    def _deliver(raw: bytes, address: str = SERVER[0], port: int = SERVER[1]) -> None:
        session.datagram_received(codec.encode(raw), address, port)
    return _deliver
