"""Shared fixtures: packet factory, scripted transport and a local feed server."""

import asyncio
import contextlib

import pytest
import pytest_asyncio

from errors import RequestTimeoutError, TransportError
from normalize import Packet, RequestKind, encode_packet

SYMBOLS = ["MSFT", "AAPL", "AMZN", "META"]


def build_packet(seq: int) -> Packet:
    return Packet(
        symbol=SYMBOLS[seq % len(SYMBOLS)],
        side="B" if seq % 2 else "S",
        quantity=seq * 10,
        price=1000 + seq,
        sequence=seq,
    )


class ScriptedTransport:
    """In-memory stand-in for TransportSession."""

    def __init__(self, available, bulk, drops=None, bulk_error=None, bulk_error_after=None):
        self.available = set(available)
        self.bulk = list(bulk)
        self.drops = dict(drops or {})
        self.bulk_error = bulk_error
        self.bulk_error_after = bulk_error_after
        self.requests = []

    async def send_and_await_all(self, kind=RequestKind.SEND_ALL):
        if self.bulk_error is not None:
            raise self.bulk_error
        for seq in self.bulk:
            yield build_packet(seq)
        if self.bulk_error_after is not None:
            raise self.bulk_error_after

    async def send_and_await_one(self, kind, target_sequence, timeout_ms):
        self.requests.append(target_sequence)
        if self.drops.get(target_sequence, 0) > 0:
            self.drops[target_sequence] -= 1
            raise TransportError(f"dropped {target_sequence}")
        if target_sequence not in self.available:
            raise RequestTimeoutError(f"no answer for {target_sequence}")
        return build_packet(target_sequence)


class FeedServer:
    """
    Local TCP server speaking the feed protocol.

    behaviors maps a sequence to how a single-packet request for it is
    answered: "silent" (never answers), "close" (closes at once),
    "partial" (sends a truncated frame). Sequences outside `sequences`
    are answered with an immediate close. replacements swaps in custom
    packets for given sequences, in both bulk and single answers.
    """

    def __init__(self, sequences=range(1, 15), bulk=None, behaviors=None, trailing=b"", replacements=None):
        self.packets = {seq: build_packet(seq) for seq in sequences}
        self.packets.update(replacements or {})
        self.bulk = list(bulk) if bulk is not None else sorted(self.packets)
        self.behaviors = dict(behaviors or {})
        self.trailing = trailing
        self.requests = []
        self.open_connections = 0
        self.silent_released = asyncio.Event()
        self.server = None
        self.port = None

    async def start(self):
        self.server = await asyncio.start_server(self._handle, "127.0.0.1", 0)
        self.port = self.server.sockets[0].getsockname()[1]
        return self

    async def stop(self):
        self.server.close()
        await self.server.wait_closed()

    async def _handle(self, reader, writer):
        self.open_connections += 1
        try:
            request = await reader.readexactly(2)
            kind, param = request[0], request[1]
            self.requests.append((kind, param))

            if kind == RequestKind.SEND_ALL:
                for seq in self.bulk:
                    writer.write(encode_packet(self.packets[seq]))
                writer.write(self.trailing)
                await writer.drain()
            elif kind == RequestKind.SEND_ONE:
                behavior = self.behaviors.get(param)
                if behavior == "silent":
                    # Returns once the client gives up and closes its side
                    await reader.read()
                    self.silent_released.set()
                elif behavior == "partial":
                    writer.write(encode_packet(self.packets[param])[:9])
                    await writer.drain()
                elif behavior != "close" and param in self.packets:
                    writer.write(encode_packet(self.packets[param]))
                    await writer.drain()
        except (asyncio.IncompleteReadError, ConnectionError):
            pass
        finally:
            self.open_connections -= 1
            writer.close()
            with contextlib.suppress(ConnectionError):
                await writer.wait_closed()


@pytest.fixture
def make_packet():
    return build_packet


@pytest.fixture
def scripted_transport():
    return ScriptedTransport


@pytest_asyncio.fixture
async def feed_server():
    servers = []

    async def factory(**kwargs):
        server = await FeedServer(**kwargs).start()
        servers.append(server)
        return server

    yield factory

    for server in servers:
        await server.stop()


@pytest_asyncio.fixture
async def unused_port():
    """A port nothing listens on."""
    server = await asyncio.start_server(lambda r, w: None, "127.0.0.1", 0)
    port = server.sockets[0].getsockname()[1]
    server.close()
    await server.wait_closed()
    return port
