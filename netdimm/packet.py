from typing import Tuple

from netdimm.exceptions import NetDimmException
from netdimm.structs import BytesLike, ByteBuilder, Struct


HEADER_LENGTH: int = 4
MAX_PAYLOAD_LENGTH: int = 0xFFFF

# Flag bit set on the final packet of a multi-packet response.
FLAG_LAST_CHUNK: int = 0x01

_HEADER = Struct("<I", ["header"])
_MEMORY_REQUEST = Struct("<Ii", ["address", "size"])
_PEEK_REQUEST = Struct("<II", ["address", "type"])


class NetDimmPacket:
    def __init__(self, pktid: int, flags: int, data: bytes = b'') -> None:
        if pktid < 0 or pktid > 0xFF:
            raise NetDimmException(f"Packet ID {pktid} does not fit in a byte!")
        if flags < 0 or flags > 0xFF:
            raise NetDimmException(f"Packet flags {flags} do not fit in a byte!")
        if len(data) > MAX_PAYLOAD_LENGTH:
            raise NetDimmException(f"Packet data of {len(data)} bytes is too long to send!")

        self.pktid = pktid
        self.flags = flags
        self.data = data

    def __repr__(self) -> str:
        return f"NetDimmPacket(pktid={hex(self.pktid)}, flags={hex(self.flags)}, length={self.length})"

    @property
    def length(self) -> int:
        return len(self.data)

    @property
    def last_chunk(self) -> bool:
        return (self.flags & FLAG_LAST_CHUNK) != 0


# Both requests and responses follow this header with length data bytes
# after. Some have the ability to send/receive variable length (like send/recv
# dimm packets) and some require a specific length or they do not return.
#
# Header words are packed as little-endian bytes and are as such: AABBCCCC
# AA -   Packet type. Any of 256 values, but in practice most are unrecognized.
# BB -   Flags. The bottom bit marks the last packet of a multi-packet transfer.
# CCCC - Length of the data in bytes that follows this header, not including the 4
#        header bytes.
def encode_header(pktid: int, flags: int, length: int) -> bytes:
    return _HEADER.pack(
        ((pktid & 0xFF) << 24) |  # noqa: W504
        ((flags & 0xFF) << 16) |  # noqa: W504
        (length & 0xFFFF)
    )


def decode_header(data: BytesLike) -> Tuple[int, int, int]:
    header = _HEADER.unpack(data)[0]
    return ((header >> 24) & 0xFF, (header >> 16) & 0xFF, header & 0xFFFF)


def encode_packet(packet: NetDimmPacket) -> bytes:
    builder = ByteBuilder(encode_header(packet.pktid, packet.flags, packet.length))
    builder.append_bytes(packet.data)
    return builder.build()


class NetDimmPacketFactory:
    NOOP: int = 0x01
    DOWNLOAD_CHUNK: int = 0x04
    READ_MEMORY_ADDRESS: int = 0x05
    HOST_PEEK: int = 0x10
    READ_CONTROL_DATA: int = 0x16
    GET_INFO: int = 0x18

    @staticmethod
    def noop() -> NetDimmPacket:
        return NetDimmPacket(NetDimmPacketFactory.NOOP, 0x00)

    @staticmethod
    def get_info() -> NetDimmPacket:
        return NetDimmPacket(NetDimmPacketFactory.GET_INFO, 0x00)

    @staticmethod
    def read_memory_address(address: int, size: int) -> NetDimmPacket:
        return NetDimmPacket(NetDimmPacketFactory.READ_MEMORY_ADDRESS, 0x00, _MEMORY_REQUEST.pack(address, size))

    @staticmethod
    def read_control_data() -> NetDimmPacket:
        return NetDimmPacket(NetDimmPacketFactory.READ_CONTROL_DATA, 0x00)

    @staticmethod
    def host_peek(address: int, type: int) -> NetDimmPacket:
        return NetDimmPacket(NetDimmPacketFactory.HOST_PEEK, 0x00, _PEEK_REQUEST.pack(address, type))
