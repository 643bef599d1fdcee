# tests/test_packets.py
import pytest

from conftest import message_packet, players_packet, salt_packet, update_packet
from zan_errors import MalformedSalt, TruncatedPacket, UnterminatedString
from zan_packets import (
    AdminCount,
    Banned,
    BeginConnection,
    Command,
    Disconnect,
    InvalidPassword,
    LoggedIn,
    MapUpdate,
    Message,
    OldProtocol,
    Password,
    PlayerData,
    Pong,
    Salt,
    Unknown,
    decode_server_packet,
    encode_client_packet,
    read_string,
    write_string,
)
from zan_proto import SVRC_UPDATE


# ------------------ Strings ------------------
def test_read_string_returns_next_offset():
    buf = b"\x01abc\x00de\x00"
    assert read_string(buf, 1) == ("abc", 5)
    assert read_string(buf, 5) == ("de", 8)


def test_read_empty_string():
    assert read_string(b"\x00", 0) == ("", 1)


def test_read_string_without_terminator():
    with pytest.raises(UnterminatedString):
        read_string(b"\x25hello", 1)


def test_write_string():
    buf = bytearray(b"\x36")
    end = write_string(buf, "say hi", 1)
    assert bytes(buf) == b"\x36say hi\x00"
    assert end == 8


# ------------------ Client packets ------------------
def test_encode_begin_connection():
    assert encode_client_packet(BeginConnection(3)) == bytes([52, 3])


def test_encode_password():
    digest = "0123456789abcdef0123456789abcdef"
    assert encode_client_packet(Password(digest)) == bytes([53]) + digest.encode() + b"\x00"


def test_encode_command():
    assert encode_client_packet(Command("map MAP01")) == b"\x36map MAP01\x00"


def test_encode_single_byte_packets():
    assert encode_client_packet(Pong()) == bytes([55])
    assert encode_client_packet(Disconnect()) == bytes([56])


def test_encode_rejects_server_packet():
    with pytest.raises(TypeError):
        encode_client_packet(LoggedIn())


# ------------------ Server packets ------------------
@pytest.mark.parametrize(
    "raw, expected",
    [
        (bytes([32]), OldProtocol()),
        (bytes([33]), Banned()),
        (bytes([35]), LoggedIn()),
        (bytes([36]), InvalidPassword()),
        (salt_packet(b"S" * 32), Salt(b"S" * 32)),
        (message_packet("Player joined."), Message("Player joined.")),
        (message_packet(""), Message("")),
        (players_packet(["alice", "bob", ""]), PlayerData(("alice", "bob", ""))),
        (players_packet([]), PlayerData(())),
        (update_packet(1, b"\x02"), AdminCount(2)),
        (update_packet(2, b"MAP07\x00"), MapUpdate("MAP07")),
        (update_packet(2, b"\x00"), MapUpdate("")),
    ],
)
def test_decode_server_packets(raw, expected):
    assert decode_server_packet(raw) == expected


def test_player_names_advance_by_encoded_length():
    packet = decode_server_packet(players_packet(["Jörg", "Łukasz", "x"]))
    assert packet.names == ("Jörg", "Łukasz", "x")


def test_salt_keeps_raw_bytes():
    salt = bytes(range(1, 33))
    assert decode_server_packet(salt_packet(salt)).salt == salt


@pytest.mark.parametrize("length", [0, 31, 33])
def test_salt_with_wrong_length(length):
    raw = bytes([34]) + b"A" * length + b"\x00"
    with pytest.raises(MalformedSalt):
        decode_server_packet(raw)


def test_unknown_type():
    assert decode_server_packet(bytes([99, 1, 2])) == Unknown(99)


def test_unknown_update_subtype():
    assert decode_server_packet(update_packet(7, b"")) == Unknown(SVRC_UPDATE, 7)


def test_empty_datagram():
    with pytest.raises(TruncatedPacket):
        decode_server_packet(b"")


@pytest.mark.parametrize(
    "raw, error",
    [
        (bytes([38]), TruncatedPacket),
        (bytes([38, 0]), TruncatedPacket),
        (bytes([38, 1]), TruncatedPacket),
        (bytes([37]) + b"no terminator", UnterminatedString),
        (bytes([38, 2]) + b"MAP01", UnterminatedString),
        (bytes([38, 0, 3]) + b"one\x00two\x00", UnterminatedString),
    ],
)
def test_layout_violations(raw, error):
    with pytest.raises(error):
        decode_server_packet(raw)
