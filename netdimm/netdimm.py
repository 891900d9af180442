#!/usr/bin/env python3
# Triforce Netfirm Toolbox, put into the public domain.
# Please attribute properly, but only if you want.
import math
import os
import zlib
from contextlib import contextmanager
from enum import Enum
from types import TracebackType
from typing import Any, Callable, Generator, List, NamedTuple, Optional, Type, Union, cast

from arcadeutils import FileBytes

from netdimm.connection import DEFAULT_PORT, NetDimmConnection
from netdimm.exceptions import NetDimmException, NotConnectedError, ProtocolError, UnexpectedResponseError
from netdimm.packet import NetDimmPacket, NetDimmPacketFactory
from netdimm.structs import Struct, unpack_single


class NetDimmVersionEnum(Enum):
    VERSION_UNKNOWN = "UNKNOWN"
    VERSION_1_02 = "1.02"
    VERSION_2_03 = "2.03"
    VERSION_2_06 = "2.06"
    VERSION_2_13 = "2.13"
    VERSION_2_17 = "2.17"
    VERSION_3_01 = "3.01"
    VERSION_3_03 = "3.03"
    VERSION_3_12 = "3.12"
    VERSION_3_17 = "3.17"
    VERSION_4_01 = "4.01"
    VERSION_4_02 = "4.02"


class CRCStatusEnum(Enum):
    STATUS_CHECKING = 1
    STATUS_VALID = 2
    STATUS_INVALID = 3
    STATUS_BAD_MEMORY = 4
    STATUS_DISABLED = 5


class PeekPokeTypeEnum(Enum):
    # Retrieve a single byte.
    TYPE_BYTE = 1
    # Retrieve a short (two bytes).
    TYPE_SHORT = 2
    # Retrieve a long (4 bytes).
    TYPE_LONG = 3


class NetDimmInfo:
    def __init__(
        self,
        current_game_crc: int,
        current_game_size: int,
        game_crc_status: CRCStatusEnum,
        memory_size: int,
        firmware_version: NetDimmVersionEnum,
        available_game_memory: int,
        control_address: int,
    ) -> None:
        self.current_game_crc = current_game_crc
        self.current_game_size = current_game_size
        self.game_crc_status = game_crc_status
        self.memory_size = memory_size
        self.firmware_version = firmware_version
        self.available_game_memory = available_game_memory
        self.control_address = control_address

    def __repr__(self) -> str:
        return (
            f"NetDimmInfo(current_game_crc={hex(self.current_game_crc)}, current_game_size={self.current_game_size}, "
            f"game_crc_status={self.game_crc_status}, memory_size={self.memory_size}, "
            f"firmware_version={self.firmware_version}, available_game_memory={self.available_game_memory}, "
            f"control_address={hex(self.control_address)})"
        )


class InfoPayload(NamedTuple):
    unknown: int
    version: int
    game_memory: int
    dimm_memory: int
    crc: int


class ControlPayload(NamedTuple):
    success: int
    value: int


INFO_PAYLOAD = Struct("<HHHHI", InfoPayload._fields)
CONTROL_PAYLOAD = Struct("<II", ControlPayload._fields)

# System registers that the net dimm firmware exposes through memory downloads.
CRC_STATUS_ADDRESS: int = 0xFFFEFFE0
GAME_SIZE_ADDRESS: int = 0xFFFF0004

# Size of the sequence/address/unused header in front of every download chunk.
DOWNLOAD_CHUNK_HEADER_LENGTH: int = 10

# How much we ask for per download request when receiving larger regions.
RECEIVE_CHUNK_LENGTH: int = 0x8000


def firmware_version_string(version: int) -> str:
    version_high = (version >> 8) & 0xFF
    version_low = version & 0xFF
    return f"{version_high:02x}.{version_low:02x}"


def firmware_version_from_string(version_str: str) -> NetDimmVersionEnum:
    # The high byte is rendered with a leading zero, but versions are known by
    # their short name, so "03.17" needs to match "3.17".
    high, _, low = version_str.partition(".")
    normalized = f"{high.lstrip('0') or '0'}.{low}"
    try:
        return NetDimmVersionEnum(normalized)
    except ValueError:
        return NetDimmVersionEnum.VERSION_UNKNOWN


def crc_status_from_code(crc_info: int) -> CRCStatusEnum:
    if crc_info in {0, 1}:
        # CRC is not started or running, unknown.
        return CRCStatusEnum.STATUS_CHECKING
    elif crc_info == 2:
        # CRC passes, game should be good to run!
        return CRCStatusEnum.STATUS_VALID
    elif crc_info == 3:
        # CRC failed, need to send a new game!
        return CRCStatusEnum.STATUS_INVALID
    elif crc_info == 4:
        # DIMM memory is not supported?
        return CRCStatusEnum.STATUS_BAD_MEMORY
    elif crc_info == 5:
        # CRC is disabled, no checking done.
        return CRCStatusEnum.STATUS_DISABLED
    else:
        raise ProtocolError(f"Unable to determine CRC status from value {crc_info}!")


class NetDimm:
    @staticmethod
    def crc(data: Union[bytes, FileBytes]) -> int:
        crc: int = 0
        if isinstance(data, bytes):
            crc = zlib.crc32(data, crc)
        elif isinstance(data, FileBytes):
            # Do this in chunks so we don't accidentally load the whole file.
            for offset in range(0, len(data), RECEIVE_CHUNK_LENGTH):
                crc = zlib.crc32(data[offset:(offset + RECEIVE_CHUNK_LENGTH)], crc)
        else:
            raise NetDimmException(f"Cannot compute CRC over {type(data).__name__}!")
        return (~crc) & 0xFFFFFFFF

    def __init__(
        self,
        ip: str,
        port: int = DEFAULT_PORT,
        timeout: Optional[float] = None,
        log: Optional[Callable[..., Any]] = None,
    ) -> None:
        self.ip: str = ip
        self.port: int = port
        self.log: Optional[Callable[..., Any]] = log
        self.version: NetDimmVersionEnum = NetDimmVersionEnum.VERSION_UNKNOWN
        self.conn: Optional[NetDimmConnection] = None

        # With no timeout given here or in the environment, socket operations block forever.
        if timeout is None:
            env_timeout = os.environ.get('NETDIMM_TIMEOUT_SECONDS')
            if env_timeout:
                try:
                    timeout = float(env_timeout)
                except ValueError as e:
                    raise NetDimmException(f"Invalid NETDIMM_TIMEOUT_SECONDS value {env_timeout!r}!") from e
        if timeout is not None and (not math.isfinite(timeout) or timeout <= 0):
            raise NetDimmException(f"Invalid timeout {timeout!r}, it must be a positive number of seconds!")
        self.timeout: Optional[float] = timeout

    def __repr__(self) -> str:
        return f"NetDimm(ip={repr(self.ip)}, port={repr(self.port)}, version={repr(self.version)}, timeout={repr(self.timeout)})"

    def __enter__(self) -> "NetDimm":
        self.initialise()
        return self

    def __exit__(
        self,
        exc_type: Optional[Type[BaseException]],
        exc_value: Optional[BaseException],
        traceback: Optional[TracebackType],
    ) -> None:
        self.close()

    def initialise(self) -> None:
        if self.conn is not None:
            return

        conn = NetDimmConnection(self.ip, port=self.port, timeout=self.timeout)
        conn.connect()
        self.conn = conn

    def close(self) -> None:
        if self.conn is not None:
            conn = self.conn
            self.conn = None
            conn.close()

    @contextmanager
    def connection(self) -> Generator[None, None, None]:
        if self.conn is not None:
            # We are already connected!
            yield
            return

        self.initialise()
        try:
            yield
        finally:
            self.close()

    def send_packet(self, packet: NetDimmPacket) -> None:
        if self.conn is None:
            raise NotConnectedError("Not connected to NetDimm")
        self.conn.send_packet(packet)

    def recv_packet(self) -> NetDimmPacket:
        if self.conn is None:
            raise NotConnectedError("Not connected to NetDimm")
        return self.conn.recv_packet()

    def info(self) -> NetDimmInfo:
        with self.connection():
            # Ask for DIMM firmware info and such.
            info = self.get_info()

            # Update our own system information based on the returned version.
            self.version = info.firmware_version
            return info

    def get_info(self) -> NetDimmInfo:
        with self.connection():
            self.send_packet(NetDimmPacketFactory.get_info())

            # Get the info from the DIMM.
            response = self.recv_packet()
            if response.pktid != NetDimmPacketFactory.GET_INFO:
                raise UnexpectedResponseError("Unexpected data returned from get info packet!")
            if response.length != 12:
                raise UnexpectedResponseError("Unexpected data length returned from get info packet!")

            # The first short is "0xC" on every NetDimm seen so far and nothing uses it.
            # At least on firmware 3.17 this is hardcoded, so it might be the protocol version?
            payload = INFO_PAYLOAD.unpack_into(InfoPayload, response.data)
            firmware_version = firmware_version_from_string(firmware_version_string(payload.version))

            # Now, query if the game CRC is valid.
            crc_status = self.get_crc_information()

            # Now, query the size of the game loaded in bytes.
            game_size = self.get_game_size()
            if game_size == 0 and payload.crc == 0 and crc_status == CRCStatusEnum.STATUS_VALID:
                # We stamped this with an invalid setup and the next transfer was interrupted.
                crc_status = CRCStatusEnum.STATUS_INVALID

            # Now, query the BIOS control word.
            control = self.read_host_control()

            return NetDimmInfo(
                current_game_crc=payload.crc,
                current_game_size=game_size,
                game_crc_status=crc_status,
                memory_size=payload.dimm_memory,
                firmware_version=firmware_version,
                available_game_memory=payload.game_memory << 20,
                control_address=control,
            )

    def get_crc_information(self) -> CRCStatusEnum:
        # Read the system register that the net dimm firmware uses to communicate the
        # current CRC status.
        return crc_status_from_code(cast(int, unpack_single("<I", self.download(CRC_STATUS_ADDRESS, 4))))

    def get_game_size(self) -> int:
        # Read the system register that the net dimm firmware uses to store the game
        # size after the last transfer finished.
        return cast(int, unpack_single("<I", self.download(GAME_SIZE_ADDRESS, 4)))

    def read_host_control(self) -> int:
        with self.connection():
            # Read the control data location from the host that the net dimm is plugged into.
            self.send_packet(NetDimmPacketFactory.read_control_data())
            response = self.recv_packet()
            if response.pktid != NetDimmPacketFactory.HOST_PEEK:
                # Yes, its buggy for this, and they reused the peek ID.
                raise UnexpectedResponseError("Unexpected data returned from control read packet!")
            if response.length != 8:
                raise UnexpectedResponseError("Unexpected data length returned from control read packet!")
            return CONTROL_PAYLOAD.unpack_into(ControlPayload, response.data).value

    def download(self, addr: int, size: int) -> bytes:
        # This appears to have access to not just the dimm bank on the net dimm, but also
        # some system registers and status. System registers are mirrored so the address
        # 0x3ffeffe0 is the same as 0xfffeffe0.
        with self.connection():
            self.send_packet(NetDimmPacketFactory.read_memory_address(addr, size))

            # Read the data back. The flags byte will be 0x80 if the requested data size was
            # too big, and 0x81 on the last packet. The net dimm will continue sending
            # packets until all data has been returned, so only that bit ends the transfer.
            data: List[bytes] = []

            while True:
                chunk = self.recv_packet()

                if chunk.pktid != NetDimmPacketFactory.DOWNLOAD_CHUNK:
                    # Yes, they have a bug and they used the upload packet type here.
                    raise UnexpectedResponseError("Unexpected data returned from download packet!")
                if chunk.length <= DOWNLOAD_CHUNK_HEADER_LENGTH:
                    raise UnexpectedResponseError("Unexpected data length returned from download packet!")

                # The header holds a sequence number, the address and an unused short. The
                # firmware always sends chunks back in order, so it can be safely discarded.
                data.append(chunk.data[DOWNLOAD_CHUNK_HEADER_LENGTH:])

                if chunk.last_chunk:
                    # We finished!
                    return b"".join(data)

    def receive_chunk(self, offset: int, length: int) -> bytes:
        with self.connection():
            data: List[bytes] = []
            address: int = 0

            while address < length:
                # Get next chunk size.
                amount = min(length - address, RECEIVE_CHUNK_LENGTH)

                # Get next chunk.
                chunk = self.download(offset + address, amount)
                data.append(chunk)
                address += len(chunk)

            return b''.join(data)

    def receive(
        self,
        progress_callback: Optional[Callable[[int, int], None]] = None,
        info: Optional[NetDimmInfo] = None,
    ) -> Optional[bytes]:
        with self.connection():
            # Callers that already asked for info can hand it over instead of asking again.
            if info is None:
                info = self.get_info()

            if info.game_crc_status not in {CRCStatusEnum.STATUS_VALID, CRCStatusEnum.STATUS_DISABLED} or info.current_game_size <= 0:
                return None

            # First, signal back to calling code that we've started
            if progress_callback:
                progress_callback(0, info.current_game_size)

            data: List[bytes] = []
            address: int = 0

            while address < info.current_game_size:
                # Display progress if we're in CLI mode.
                self.__print("%08x %d%%\r" % (address, int(float(address * 100) / float(info.current_game_size))), newline=False)

                amount = min(info.current_game_size - address, RECEIVE_CHUNK_LENGTH)
                chunk = self.download(address, amount)
                data.append(chunk)
                address += len(chunk)

                if progress_callback:
                    progress_callback(address, info.current_game_size)

            self.__print("length: %08x" % address)
            return b''.join(data)

    def peek(self, addr: int, type: PeekPokeTypeEnum) -> int:
        # Type is the size of the data being requested. It appears that at least on naomi,
        # the addresses must be properly aligned to their size. So byte can have any address,
        # short must not be on odd addresses and long must be on multiples of 4.
        self.__validate_address(addr, type)

        with self.connection():
            self.send_packet(NetDimmPacketFactory.host_peek(addr, type.value))
            response = self.recv_packet()
            if response.pktid != NetDimmPacketFactory.HOST_PEEK:
                raise UnexpectedResponseError("Unexpected data returned from peek packet!")
            if response.length != 8:
                raise UnexpectedResponseError("Unexpected data length returned from peek packet!")
            return CONTROL_PAYLOAD.unpack_into(ControlPayload, response.data).value

    def __print(self, string: str, newline: bool = True) -> None:
        if self.log is not None:
            try:
                self.log(string, newline=newline)
            except TypeError:
                self.log(string, end=os.linesep if newline else "")

    def __validate_address(self, addr: int, type: PeekPokeTypeEnum) -> None:
        if type == PeekPokeTypeEnum.TYPE_BYTE:
            # Any address can be read as a byte.
            return
        if type == PeekPokeTypeEnum.TYPE_SHORT:
            if addr & 0x1 != 0:
                raise NetDimmException("Cannot have misaligned address for peek and SHORT data type!")
            return
        if type == PeekPokeTypeEnum.TYPE_LONG:
            if addr & 0x3 != 0:
                raise NetDimmException("Cannot have misaligned address for peek and LONG data type!")
            return
        raise NetDimmException("Logic error!")
