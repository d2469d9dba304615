import struct
from enum import IntEnum

from pydantic import BaseModel, ConfigDict, Field

from errors import MalformedFrameError

FRAME_SIZE = 17
REQUEST_SIZE = 2

# The request carries the target sequence in one unsigned byte
MAX_ENCODABLE_SEQUENCE = 0xFF

INT32_MIN = -(2 ** 31)
INT32_MAX = 2 ** 31 - 1

# symbol, side, quantity, price, sequence
_FRAME = struct.Struct(">4sciii")

# Single-byte text decoding: every byte maps to one character
_TEXT_ENCODING = "latin-1"


class RequestKind(IntEnum):
    SEND_ALL = 1
    SEND_ONE = 2


class Packet(BaseModel):
    model_config = ConfigDict(frozen=True)

    symbol: str = Field(min_length=4, max_length=4)
    side: str = Field(min_length=1, max_length=1, serialization_alias="buySellIndicator")
    quantity: int = Field(ge=INT32_MIN, le=INT32_MAX)
    price: int = Field(ge=INT32_MIN, le=INT32_MAX)
    sequence: int = Field(ge=INT32_MIN, le=INT32_MAX)

    def to_record(self) -> dict:
        return self.model_dump(by_alias=True)


def encode_request(kind: RequestKind, target_sequence: int = 0) -> bytes:
    """
    Builds the 2-byte request sent to the feed server.
    The target sequence travels in a single unsigned byte.
    """
    request = bytearray(REQUEST_SIZE)
    request[0] = int(kind) & 0xFF
    request[1] = target_sequence & MAX_ENCODABLE_SEQUENCE
    return bytes(request)


def decode_packet(frame: bytes) -> Packet:
    """
    Converts one raw 17-byte big-endian frame into a Packet.
    Text fields are taken byte for byte; only a short frame is rejected.
    """
    if len(frame) < FRAME_SIZE:
        raise MalformedFrameError(
            f"Frame too short: expected {FRAME_SIZE} bytes, got {len(frame)}"
        )

    symbol, side, quantity, price, sequence = _FRAME.unpack_from(frame)
    return Packet(
        symbol=symbol.decode(_TEXT_ENCODING),
        side=side.decode(_TEXT_ENCODING),
        quantity=quantity,
        price=price,
        sequence=sequence,
    )


def split_frames(data: bytes) -> list[Packet]:
    """
    Decodes a bulk payload of back-to-back frames.
    There is no delimiter or length prefix, so the payload must be an exact
    multiple of the frame size.
    """
    if len(data) % FRAME_SIZE != 0:
        raise MalformedFrameError(
            f"Bulk payload of {len(data)} bytes is not a multiple of {FRAME_SIZE}"
        )
    return [decode_packet(data[i:i + FRAME_SIZE]) for i in range(0, len(data), FRAME_SIZE)]


def encode_packet(packet: Packet) -> bytes:
    return _FRAME.pack(
        packet.symbol.encode(_TEXT_ENCODING),
        packet.side.encode(_TEXT_ENCODING),
        packet.quantity,
        packet.price,
        packet.sequence,
    )
