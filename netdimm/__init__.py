from netdimm.connection import DEFAULT_PORT, NetDimmConnection
from netdimm.exceptions import (
    NetDimmException,
    CodecError,
    FormatArityError,
    TruncatedDataError,
    NetDimmConnectionError,
    NotConnectedError,
    TruncatedFrameError,
    UnexpectedResponseError,
    ProtocolError,
)
from netdimm.netdimm import NetDimmVersionEnum, CRCStatusEnum, PeekPokeTypeEnum, NetDimmInfo, NetDimm
from netdimm.packet import NetDimmPacket, NetDimmPacketFactory
from netdimm.structs import ByteBuilder, Struct, StructField, pack, unpack, unpack_single

__all__ = [
    "DEFAULT_PORT",
    "NetDimmConnection",
    "NetDimmException",
    "CodecError",
    "FormatArityError",
    "TruncatedDataError",
    "NetDimmConnectionError",
    "NotConnectedError",
    "TruncatedFrameError",
    "UnexpectedResponseError",
    "ProtocolError",
    "NetDimmVersionEnum",
    "CRCStatusEnum",
    "PeekPokeTypeEnum",
    "NetDimmInfo",
    "NetDimmPacket",
    "NetDimmPacketFactory",
    "NetDimm",
    "ByteBuilder",
    "Struct",
    "StructField",
    "pack",
    "unpack",
    "unpack_single",
]
