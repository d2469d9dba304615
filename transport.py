import asyncio
import logging
from typing import AsyncIterator, Optional

from errors import MalformedFrameError, RequestTimeoutError, TransportError
from normalize import FRAME_SIZE, Packet, RequestKind, decode_packet, encode_request, split_frames

logger = logging.getLogger(__name__)


class TransportSession:
    """
    One short-lived TCP connection per request against the feed server.
    Connections are never reused: every call connects, sends its 2-byte
    request, reads the answer and closes, whatever the outcome.
    """
    def __init__(
        self,
        host: str,
        port: int,
        connect_timeout_ms: Optional[int] = None,
        read_chunk_size: int = 4096,
    ):
        self.host = host
        self.port = port
        self.connect_timeout_ms = connect_timeout_ms
        self.read_chunk_size = read_chunk_size

    async def _connect(self, timeout_s: Optional[float] = None):
        try:
            return await asyncio.wait_for(
                asyncio.open_connection(self.host, self.port), timeout=timeout_s
            )
        except asyncio.TimeoutError as e:
            raise TransportError(
                f"Timed out connecting to {self.host}:{self.port}"
            ) from e
        except OSError as e:
            raise TransportError(f"Cannot connect to {self.host}:{self.port}: {e}") from e

    @staticmethod
    async def _close(writer: asyncio.StreamWriter) -> None:
        writer.close()
        try:
            await writer.wait_closed()
        except OSError as e:
            # Peer already reset the socket
            logger.debug("Ignoring error while closing connection: %s", e)

    async def _exchange_one(self, request: bytes) -> bytes:
        reader, writer = await self._connect()
        try:
            writer.write(request)
            await writer.drain()
            return await reader.readexactly(FRAME_SIZE)
        except asyncio.IncompleteReadError as e:
            if e.partial:
                raise MalformedFrameError(
                    f"Connection closed after {len(e.partial)} of {FRAME_SIZE} frame bytes"
                ) from e
            raise TransportError("Connection closed by server without a response") from e
        except OSError as e:
            raise TransportError(f"Connection fault: {e}") from e
        finally:
            await self._close(writer)

    async def send_and_await_one(
        self, kind: RequestKind, target_sequence: int, timeout_ms: int
    ) -> Packet:
        """
        Sends a single request and waits for exactly one frame.

        The deadline covers connect, send and receive. When it expires the
        pending exchange is cancelled, which closes its connection before
        RequestTimeoutError reaches the caller.
        """
        logger.debug("Requesting packet with sequence %d", target_sequence)
        request = encode_request(kind, target_sequence)
        try:
            frame = await asyncio.wait_for(
                self._exchange_one(request), timeout=timeout_ms / 1000
            )
        except asyncio.TimeoutError as e:
            raise RequestTimeoutError(
                f"Request for sequence {target_sequence} timed out after {timeout_ms} ms"
            ) from e
        return decode_packet(frame)

    async def send_and_await_all(
        self, kind: RequestKind = RequestKind.SEND_ALL
    ) -> AsyncIterator[Packet]:
        """
        Async generator over every packet of a bulk transfer.

        Frames are yielded as soon as they are complete. The transfer ends
        when the server closes the connection; leftover bytes that do not
        form a whole frame raise MalformedFrameError at that point.
        """
        connect_timeout = (
            self.connect_timeout_ms / 1000 if self.connect_timeout_ms else None
        )
        reader, writer = await self._connect(connect_timeout)
        logger.info("Connected to server %s:%d", self.host, self.port)
        try:
            writer.write(encode_request(kind))
            await writer.drain()

            buffer = b""
            while True:
                chunk = await reader.read(self.read_chunk_size)
                if not chunk:
                    break
                buffer += chunk
                complete = len(buffer) - len(buffer) % FRAME_SIZE
                if complete:
                    for packet in split_frames(buffer[:complete]):
                        yield packet
                    buffer = buffer[complete:]

            if buffer:
                raise MalformedFrameError(
                    f"Bulk transfer ended with {len(buffer)} trailing bytes"
                )
        except OSError as e:
            raise TransportError(f"Bulk transfer failed: {e}") from e
        finally:
            await self._close(writer)
            logger.info("Connection closed")
