"""Tests for TransportSession against a local feed server."""

import asyncio

import pytest

from errors import MalformedFrameError, RequestTimeoutError, TransportError
from normalize import RequestKind
from transport import TransportSession


async def collect(stream):
    return [packet async for packet in stream]


class TestSendAndAwaitAll:
    @pytest.mark.asyncio
    async def test_streams_every_frame_until_close(self, feed_server):
        server = await feed_server(bulk=[9, 1, 4, 14])
        session = TransportSession("127.0.0.1", server.port)

        packets = await collect(session.send_and_await_all(RequestKind.SEND_ALL))

        assert [p.sequence for p in packets] == [9, 1, 4, 14]
        assert server.requests == [(1, 0)]

    @pytest.mark.asyncio
    async def test_small_reads_reassemble_frames(self, feed_server):
        server = await feed_server(bulk=[1, 2, 3])
        session = TransportSession("127.0.0.1", server.port, read_chunk_size=5)

        packets = await collect(session.send_and_await_all())

        assert [p.sequence for p in packets] == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_empty_transfer(self, feed_server):
        server = await feed_server(bulk=[])
        session = TransportSession("127.0.0.1", server.port)

        assert await collect(session.send_and_await_all()) == []

    @pytest.mark.asyncio
    async def test_trailing_bytes_raise_after_complete_frames(self, feed_server):
        server = await feed_server(bulk=[1, 2], trailing=b"\x00" * 4)
        session = TransportSession("127.0.0.1", server.port)
        received = []

        with pytest.raises(MalformedFrameError):
            async for packet in session.send_and_await_all():
                received.append(packet.sequence)

        assert received == [1, 2]

    @pytest.mark.asyncio
    async def test_refused_connection(self, unused_port):
        session = TransportSession("127.0.0.1", unused_port)

        with pytest.raises(TransportError):
            await collect(session.send_and_await_all())


class TestSendAndAwaitOne:
    @pytest.mark.asyncio
    async def test_returns_requested_packet(self, feed_server, make_packet):
        server = await feed_server()
        session = TransportSession("127.0.0.1", server.port)

        packet = await session.send_and_await_one(RequestKind.SEND_ONE, 6, timeout_ms=2000)

        assert packet == make_packet(6)
        assert server.requests == [(2, 6)]

    @pytest.mark.asyncio
    async def test_each_call_uses_fresh_connection(self, feed_server):
        server = await feed_server()
        session = TransportSession("127.0.0.1", server.port)

        for seq in (1, 2, 3):
            await session.send_and_await_one(RequestKind.SEND_ONE, seq, timeout_ms=2000)
        await asyncio.sleep(0.05)

        assert len(server.requests) == 3
        assert server.open_connections == 0

    @pytest.mark.asyncio
    async def test_timeout_releases_connection(self, feed_server, make_packet):
        server = await feed_server(behaviors={5: "silent"})
        session = TransportSession("127.0.0.1", server.port)

        with pytest.raises(RequestTimeoutError):
            await session.send_and_await_one(RequestKind.SEND_ONE, 5, timeout_ms=200)

        # The server only sees EOF if the client closed its socket
        await asyncio.wait_for(server.silent_released.wait(), timeout=2)

        packet = await session.send_and_await_one(RequestKind.SEND_ONE, 6, timeout_ms=2000)
        assert packet == make_packet(6)

    @pytest.mark.asyncio
    async def test_close_without_answer(self, feed_server):
        server = await feed_server(behaviors={3: "close"})
        session = TransportSession("127.0.0.1", server.port)

        with pytest.raises(TransportError):
            await session.send_and_await_one(RequestKind.SEND_ONE, 3, timeout_ms=2000)

    @pytest.mark.asyncio
    async def test_truncated_frame(self, feed_server):
        server = await feed_server(behaviors={4: "partial"})
        session = TransportSession("127.0.0.1", server.port)

        with pytest.raises(MalformedFrameError):
            await session.send_and_await_one(RequestKind.SEND_ONE, 4, timeout_ms=2000)

    @pytest.mark.asyncio
    async def test_refused_connection(self, unused_port):
        session = TransportSession("127.0.0.1", unused_port)

        with pytest.raises(TransportError):
            await session.send_and_await_one(RequestKind.SEND_ONE, 1, timeout_ms=2000)
