# zan_rcon.py
"""
Zandronum RCON session over UDP.

One RconSession talks to one server. All work happens on the asyncio loop
that called connect(): inbound datagrams are handled to completion one at a
time, and the keepalive task shares the same loop, so session state is
never touched concurrently.
"""
from __future__ import annotations

import asyncio
import enum
import hashlib
import inspect
import logging
import socket
import sys
import threading
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol, Set, Tuple, Type

from zan_errors import (
    AuthError,
    MalformedSalt,
    NetworkError,
    ProtocolError,
    StateError,
    UnexpectedPacket,
    UnrecognizedWire,
)
from zan_huffman import HuffmanCodec
from zan_packets import (
    AdminCount,
    Banned,
    BeginConnection,
    ClientPacket,
    Command,
    Disconnect,
    InvalidPassword,
    LoggedIn,
    MapUpdate,
    Message,
    OldProtocol,
    PlayerData,
    Pong,
    Password,
    Salt,
    ServerPacket,
    Unknown,
    decode_server_packet,
    encode_client_packet,
)
from zan_proto import KEEPALIVE_SECONDS, PROTOCOL_VERSION

logger = logging.getLogger("zanbot.rcon")


class SessionState(enum.Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


# ------------------ Events ------------------
class Event:
    """Base class for everything a session emits. Listening on Event receives all of them."""


@dataclass(frozen=True)
class ConnectEvent(Event):
    pass


@dataclass(frozen=True)
class ErrorEvent(Event):
    cause: Exception


@dataclass(frozen=True)
class MessageEvent(Event):
    text: str


@dataclass(frozen=True)
class PlayersEvent(Event):
    names: Tuple[str, ...]


@dataclass(frozen=True)
class AdminsEvent(Event):
    count: int


@dataclass(frozen=True)
class MapEvent(Event):
    name: str


Listener = Callable[[Any], Any]


# ------------------ Collaborators ------------------
class DatagramSender(Protocol):
    def send(self, data: bytes, address: str, port: int) -> None: ...


Resolver = Callable[[str], Awaitable[str]]


async def resolve_ipv4(host: str) -> str:
    loop = asyncio.get_running_loop()
    try:
        infos = await loop.getaddrinfo(host, None, family=socket.AF_INET, type=socket.SOCK_DGRAM)
    except (OSError, UnicodeError, ValueError) as e:
        # an over-long or empty label fails IDNA encoding before any lookup
        raise NetworkError(f"Could not resolve {host!r}: {e}") from e
    if not infos:
        raise NetworkError(f"No IPv4 address for {host!r}")
    return infos[0][4][0]


class UDPTransport(asyncio.DatagramProtocol):
    """asyncio datagram endpoint feeding one session."""

    def __init__(self, deliver: Callable[[bytes, str, int], None]):
        self._deliver = deliver
        self._transport: Optional[asyncio.DatagramTransport] = None

    def connection_made(self, transport) -> None:
        self._transport = transport

    def datagram_received(self, data: bytes, addr) -> None:
        self._deliver(data, addr[0], addr[1])

    def error_received(self, exc: Exception) -> None:
        # ICMP port unreachable and friends; UDP has no connection to drop.
        logger.warning("UDP error: %s", exc)

    def connection_lost(self, exc: Optional[Exception]) -> None:
        self._transport = None

    def send(self, data: bytes, address: str, port: int) -> None:
        if self._transport is None:
            raise NetworkError("UDP endpoint is closed")
        self._transport.sendto(data, (address, port))

    def close(self) -> None:
        if self._transport is not None:
            self._transport.close()


# ------------------ Session ------------------
class RconSession:
    def __init__(
        self,
        transport: Optional[DatagramSender] = None,
        *,
        codec: Optional[HuffmanCodec] = None,
        resolver: Resolver = resolve_ipv4,
        keepalive_interval: float = KEEPALIVE_SECONDS,
        protocol_version: int = PROTOCOL_VERSION,
    ):
        self.transport = transport
        self.codec = codec or HuffmanCodec()
        self.resolver = resolver
        self.keepalive_interval = keepalive_interval
        self.protocol_version = protocol_version

        self._state = SessionState.DISCONNECTED
        self._password: Optional[str] = None
        self._address: Optional[str] = None
        self._port: Optional[int] = None
        self._connect_task: Optional[asyncio.Task] = None
        self._keepalive_task: Optional[asyncio.Task] = None
        self._on_ready: List[Callable[[], Any]] = []
        self._listeners: Dict[Type[Event], List[Listener]] = {}
        self._listener_tasks: Set[asyncio.Future] = set()

        self._handlers = {
            OldProtocol: self._on_refused,
            Banned: self._on_refused,
            InvalidPassword: self._on_refused,
            Salt: self._on_salt,
            LoggedIn: self._on_logged_in,
            Message: self._on_notification,
            PlayerData: self._on_notification,
            AdminCount: self._on_notification,
            MapUpdate: self._on_notification,
            Unknown: self._on_unknown,
        }

    # ---- properties ----
    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def connected(self) -> bool:
        return self._state is SessionState.CONNECTED

    @property
    def address(self) -> Optional[str]:
        return self._address

    @property
    def port(self) -> Optional[int]:
        return self._port

    # ---- listeners ----
    def add_listener(self, event_type: Type[Event], callback: Listener) -> None:
        self._listeners.setdefault(event_type, []).append(callback)

    def remove_listener(self, event_type: Type[Event], callback: Listener) -> None:
        try:
            self._listeners.get(event_type, []).remove(callback)
        except ValueError:
            pass

    def listen(self, event_type: Type[Event] = Event):
        """Decorator form of add_listener."""
        def deco(fn: Listener) -> Listener:
            self.add_listener(event_type, fn)
            return fn
        return deco

    def _emit(self, event: Event) -> None:
        if isinstance(event, ErrorEvent):
            logger.warning("RCON error: %s", event.cause)

        callbacks = list(self._listeners.get(type(event), []))
        if type(event) is not Event:
            callbacks += self._listeners.get(Event, [])

        for cb in callbacks:
            try:
                result = cb(event)
                if inspect.isawaitable(result):
                    self._track_listener(asyncio.ensure_future(result), cb, event)
            except Exception:
                logger.exception("Listener %r failed on %s", cb, type(event).__name__)

    def _track_listener(self, task: asyncio.Future, cb: Listener, event: Event) -> None:
        self._listener_tasks.add(task)

        def done(t: asyncio.Future) -> None:
            self._listener_tasks.discard(t)
            if t.cancelled():
                return
            exc = t.exception()
            if exc is not None:
                logger.error("Listener %r failed on %s", cb, type(event).__name__, exc_info=exc)

        task.add_done_callback(done)

    # ---- public operations ----
    def connect(self, password: str, port: int, host: str,
                on_ready: Optional[Callable[[], Any]] = None) -> None:
        """Starts the handshake and returns at once; must run inside the event loop.

        Completion is reported by a ConnectEvent (and on_ready), failure by
        an ErrorEvent.
        """
        if self._state is not SessionState.DISCONNECTED:
            raise StateError(f"connect() while {self._state.value}")
        if self.transport is None:
            raise StateError("Session has no transport")
        loop = asyncio.get_running_loop()

        self._state = SessionState.CONNECTING
        self._password = password
        self._port = port
        self._address = None
        if on_ready is not None:
            self._on_ready.append(on_ready)

        logger.info("Connecting to %s:%s", host, port)
        self._connect_task = loop.create_task(self._begin(host))

    def disconnect(self) -> None:
        if self._state is not SessionState.CONNECTED:
            raise StateError(f"disconnect() while {self._state.value}")
        logger.info("Disconnecting from %s:%s", self._address, self._port)
        self._send(Disconnect())
        self._reset()

    def send_command(self, text: str) -> None:
        if self._state is not SessionState.CONNECTED:
            raise StateError(f"send_command() while {self._state.value}")
        self._send(Command(text))

    def abort(self) -> None:
        """Drops the session locally, in any state, without telling the server."""
        if self._state is not SessionState.DISCONNECTED:
            logger.info("Session aborted while %s", self._state.value)
        self._reset()

    # ---- inbound ----
    def datagram_received(self, data: bytes, address: str, port: int) -> None:
        if self._state is SessionState.DISCONNECTED:
            return
        if address != self._address or port != self._port:
            logger.debug("Ignoring datagram from %s:%s", address, port)
            return

        try:
            packet = decode_server_packet(self.codec.decode(data))
        except MalformedSalt as e:
            if self._state is SessionState.CONNECTING:
                self._reset()
            self._emit(ErrorEvent(e))
            return
        except ProtocolError as e:
            self._emit(ErrorEvent(e))
            return

        self._handlers[type(packet)](packet)

    def _on_refused(self, packet: ServerPacket) -> None:
        name = type(packet).__name__
        if self._state is not SessionState.CONNECTING:
            self._emit(ErrorEvent(UnexpectedPacket(f"{name} response while not connecting.")))
            return

        if isinstance(packet, OldProtocol):
            err = AuthError(AuthError.OLD_PROTOCOL, "RCON protocol is out of date.")
        elif isinstance(packet, Banned):
            err = AuthError(AuthError.BANNED, "You are banned from the server.")
        else:
            err = AuthError(AuthError.INVALID_PASSWORD, "Invalid password.")
        self._reset()
        self._emit(ErrorEvent(err))

    def _on_salt(self, packet: Salt) -> None:
        if self._state is not SessionState.CONNECTING:
            self._emit(ErrorEvent(UnexpectedPacket("Salt response while not connecting.")))
            return
        # fresh MD5 context per salt
        digest = hashlib.md5(packet.salt + self._password.encode("utf-8")).hexdigest()
        self._send(Password(digest))

    def _on_logged_in(self, packet: LoggedIn) -> None:
        if self._state is not SessionState.CONNECTING:
            self._emit(ErrorEvent(UnexpectedPacket("LoggedIn response while not connecting.")))
            return

        self._state = SessionState.CONNECTED
        self._keepalive_task = asyncio.get_running_loop().create_task(self._keepalive())
        logger.info("Logged in to %s:%s", self._address, self._port)
        self._emit(ConnectEvent())

        ready, self._on_ready = self._on_ready, []
        for cb in ready:
            try:
                cb()
            except Exception:
                logger.exception("on_ready callback failed")

    def _on_notification(self, packet: ServerPacket) -> None:
        name = type(packet).__name__
        if self._state is not SessionState.CONNECTED:
            self._emit(ErrorEvent(UnexpectedPacket(f"{name} response while not connected.")))
            return

        if isinstance(packet, Message):
            self._emit(MessageEvent(packet.text))
        elif isinstance(packet, PlayerData):
            self._emit(PlayersEvent(packet.names))
        elif isinstance(packet, AdminCount):
            self._emit(AdminsEvent(packet.count))
        else:
            self._emit(MapEvent(packet.name))

    def _on_unknown(self, packet: Unknown) -> None:
        self._emit(ErrorEvent(UnrecognizedWire(packet.type_code, packet.subtype)))

    # ---- internals ----
    async def _begin(self, host: str) -> None:
        try:
            address = await self.resolver(host)
        except Exception as e:
            err = e if isinstance(e, NetworkError) else NetworkError(f"Could not resolve {host!r}: {e}")
            self._connect_task = None
            self._reset()
            self._emit(ErrorEvent(err))
            return

        self._connect_task = None
        if self._state is not SessionState.CONNECTING:
            return
        self._address = address
        self._send(BeginConnection(self.protocol_version))

    async def _keepalive(self) -> None:
        while self._state is SessionState.CONNECTED:
            await asyncio.sleep(self.keepalive_interval)
            if self._state is not SessionState.CONNECTED:
                break
            logger.debug("Sending keepalive to %s:%s", self._address, self._port)
            self._send(Pong())

    def _send(self, packet: ClientPacket) -> None:
        try:
            self.transport.send(self.codec.encode(encode_client_packet(packet)), self._address, self._port)
        except (NetworkError, OSError) as e:
            self._emit(ErrorEvent(e if isinstance(e, NetworkError) else NetworkError(str(e))))

    def _reset(self) -> None:
        current = asyncio.current_task() if _loop_running() else None
        for task in (self._keepalive_task, self._connect_task, *self._listener_tasks):
            if task is not None and task is not current and not task.done():
                task.cancel()
        self._keepalive_task = None
        self._connect_task = None
        self._state = SessionState.DISCONNECTED
        self._password = None
        self._address = None
        self._port = None
        self._on_ready = []


def _loop_running() -> bool:
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return False
    return True


async def connect_server(
    password: str,
    port: int,
    host: str,
    on_ready: Optional[Callable[[], Any]] = None,
    **options,
) -> RconSession:
    """Opens a UDP endpoint, builds a session on it and starts connecting."""
    loop = asyncio.get_running_loop()
    session = RconSession(**options)
    udp, _ = await loop.create_datagram_endpoint(
        lambda: UDPTransport(session.datagram_received),
        local_addr=("0.0.0.0", 0),
    )
    session.transport = udp
    session.connect(password, port, host, on_ready)
    return session


# ------------------ Console ------------------
async def _console(cfg, table) -> int:
    from command_relay import format_event

    session = await connect_server(
        cfg.RCON_PASSWORD,
        cfg.RCON_PORT,
        cfg.RCON_HOST,
        codec=HuffmanCodec(table),
        keepalive_interval=cfg.KEEPALIVE_SECONDS,
        protocol_version=cfg.PROTOCOL_VERSION,
    )
    failed = asyncio.Event()

    @session.listen()
    def _print(event: Event) -> None:
        print(format_event(event), flush=True)
        if isinstance(event, ErrorEvent) and session.state is SessionState.DISCONNECTED:
            failed.set()

    loop = asyncio.get_running_loop()
    lines: asyncio.Queue = asyncio.Queue()
    threading.Thread(target=_pump_stdin, args=(loop, lines), daemon=True).start()

    reader = loop.create_task(_read_lines(session, lines))
    waiter = loop.create_task(failed.wait())
    try:
        await asyncio.wait({reader, waiter}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        for t in (reader, waiter):
            t.cancel()
        if session.connected:
            session.disconnect()
        else:
            session.abort()
        session.transport.close()
    return 1 if failed.is_set() else 0


def _pump_stdin(loop: asyncio.AbstractEventLoop, lines: asyncio.Queue) -> None:
    for line in sys.stdin:
        loop.call_soon_threadsafe(lines.put_nowait, line)
    loop.call_soon_threadsafe(lines.put_nowait, None)


async def _read_lines(session: RconSession, lines: asyncio.Queue) -> None:
    while True:
        line = await lines.get()
        if line is None:
            return
        line = line.strip()
        if not line:
            continue
        try:
            session.send_command(line)
        except StateError as e:
            print(f"[not sent] {e}", flush=True)


def main() -> None:
    import argparse

    from config import load_rcon_config
    from zan_proto import load_frequency_table

    cfg = load_rcon_config()
    ap = argparse.ArgumentParser(description="Interactive Zandronum RCON console")
    ap.add_argument("--host", default=cfg.RCON_HOST)
    ap.add_argument("--port", type=int, default=cfg.RCON_PORT)
    ap.add_argument("--password", default=cfg.RCON_PASSWORD)
    ap.add_argument("--freqs", default=cfg.HUFFMAN_FREQS_FILE, help="JSON list of the server's 256 Huffman weights")
    ap.add_argument("-v", "--verbose", action="store_true")
    args = ap.parse_args()

    if not args.password:
        raise SystemExit("RCON password missing (--password or ZAN_RCON_PASSWORD)")
    try:
        table = load_frequency_table(args.freqs, allow_bundled=cfg.HUFFMAN_USE_BUNDLED)
    except (OSError, ValueError) as e:
        raise SystemExit(str(e))

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
    )
    cfg = cfg.with_endpoint(args.host, args.port, args.password)
    try:
        code = asyncio.run(_console(cfg, table))
    except KeyboardInterrupt:
        code = 0
    raise SystemExit(code)


if __name__ == "__main__":
    main()
