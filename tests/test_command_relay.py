# tests/test_command_relay.py
import pytest

from command_relay import ServerStatus, format_event, relay_line, strip_colors
from conftest import SERVER, salt_packet, settle
from zan_errors import AuthError, NetworkError
from zan_proto import CLRC_COMMAND
from zan_rcon import AdminsEvent, ConnectEvent, ErrorEvent, MapEvent, MessageEvent, PlayersEvent


async def logged_in(session, deliver):
    session.connect("secret", SERVER[1], "localhost")
    await settle()
    deliver(salt_packet(b"x" * 32))
    deliver(bytes([35]))


def test_strip_colors():
    assert strip_colors("\x1cGred\x1c- plain") == "red plain"
    assert strip_colors("\x1c[Gold]Player\x1c[White] joined") == "Player joined"
    assert strip_colors("") == ""


@pytest.mark.asyncio
async def test_say_line_is_relayed(session, transport, deliver):
    await logged_in(session, deliver)

    assert relay_line(session, "say hello everyone") is True
    assert transport.payloads()[-1] == bytes([CLRC_COMMAND]) + b"say hello everyone\x00"
    session.abort()


@pytest.mark.asyncio
@pytest.mark.parametrize("line", ["", "say", "say   ", "kick bob", "sayhello"])
async def test_other_lines_are_ignored(session, transport, deliver, line):
    await logged_in(session, deliver)
    sent = len(transport.sent)

    assert relay_line(session, line) is False
    assert len(transport.sent) == sent
    session.abort()


def test_say_while_disconnected_sends_nothing(session, transport):
    assert relay_line(session, "say hi") is False
    assert transport.sent == []


@pytest.mark.parametrize(
    "event, text",
    [
        (ConnectEvent(), "[rcon] connected"),
        (MessageEvent("\x1cDalice: hi\n"), "alice: hi"),
        (PlayersEvent(()), "[players] (none)"),
        (PlayersEvent(("a", "b")), "[players] a, b"),
        (AdminsEvent(2), "[admins] 2"),
        (MapEvent("MAP01"), "[map] MAP01"),
        (ErrorEvent(AuthError(AuthError.BANNED, "You are banned from the server.")),
         "[rcon refused] You are banned from the server."),
        (ErrorEvent(NetworkError("no route")), "[rcon error] no route"),
    ],
)
def test_format_event(event, text):
    assert format_event(event) == text


def test_server_status_tracks_events():
    status = ServerStatus()
    status.apply(ConnectEvent())
    status.apply(MapEvent("MAP03"))
    status.apply(PlayersEvent(("alice",)))
    status.apply(AdminsEvent(1))

    assert status.connected
    assert status.map_name == "MAP03"
    assert status.players == ("alice",)
    assert status.admins == 1

    status.apply(ErrorEvent(NetworkError("gone")))
    assert status.last_error == "gone"


def test_server_status_sync_clears_when_disconnected(session):
    status = ServerStatus(connected=True, map_name="MAP01", players=("a",), admins=1)
    status.sync(session)
    assert not status.connected
    assert status.players == () and status.map_name is None and status.admins == 0
