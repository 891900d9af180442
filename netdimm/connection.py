import socket
from types import TracebackType
from typing import List, Optional, Type

from netdimm.exceptions import NetDimmConnectionError, NotConnectedError, TruncatedFrameError
from netdimm.packet import HEADER_LENGTH, NetDimmPacket, NetDimmPacketFactory, decode_header, encode_packet


DEFAULT_PORT: int = 10703


class NetDimmConnection:
    """
    A single TCP connection to a NetDimm, framing packets in both directions.

    Connections are strictly one-shot. Once closed, a connection cannot be
    reopened and a new one must be made instead. The protocol is half-duplex,
    so every packet sent is followed by reading its response(s) before the next
    packet goes out. Nothing here retries, and any failure leaves the connection
    in an unknown state, so callers should close it and start over.
    """

    def __init__(self, ip: str, port: int = DEFAULT_PORT, timeout: Optional[float] = None) -> None:
        self.ip: str = ip
        self.port: int = port
        self.timeout: Optional[float] = timeout
        self.sock: Optional[socket.socket] = None
        self.__closed: bool = False

    def __repr__(self) -> str:
        return f"NetDimmConnection(ip={repr(self.ip)}, port={repr(self.port)}, timeout={repr(self.timeout)})"

    def __enter__(self) -> "NetDimmConnection":
        self.connect()
        return self

    def __exit__(
        self,
        exc_type: Optional[Type[BaseException]],
        exc_value: Optional[BaseException],
        traceback: Optional[TracebackType],
    ) -> None:
        self.close()

    @property
    def connected(self) -> bool:
        return self.sock is not None

    def connect(self) -> None:
        if self.__closed:
            raise NetDimmConnectionError("Connection to NetDimm was already closed")
        if self.sock is not None:
            raise NetDimmConnectionError("Already connected to NetDimm")

        # Port is tcp/10703. Note that this port is only open on
        # - all Type-3 triforces,
        # - pre-type3 triforces jumpered to satellite mode.
        try:
            sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        except OSError as e:
            raise NetDimmConnectionError("Could not connect to NetDimm") from e

        try:
            sock.settimeout(self.timeout)
            sock.connect((self.ip, self.port))
        except (OSError, ValueError) as e:
            sock.close()
            raise NetDimmConnectionError("Could not connect to NetDimm") from e
        self.sock = sock

        try:
            # Sending this packet is not strictly necessary, but transfergame.exe
            # sends it. It maps to a NOP packet at least on 3.17 firmware, but
            # having the net dimm accept it is a good indication that you are talking
            # to an actual net dimm and not some random thing listening on port 10703.
            self.send_packet(NetDimmPacketFactory.noop())
        except NetDimmConnectionError as e:
            self.close()
            raise NetDimmConnectionError("Could not connect to NetDimm") from e

    def close(self) -> None:
        self.__closed = True
        if self.sock is not None:
            sock = self.sock
            self.sock = None
            sock.close()

    def send_packet(self, packet: NetDimmPacket) -> None:
        if self.sock is None:
            raise NotConnectedError("Not connected to NetDimm")

        try:
            self.sock.sendall(encode_packet(packet))
        except OSError as e:
            raise NetDimmConnectionError("Could not send data to NetDimm") from e

    def recv_packet(self) -> NetDimmPacket:
        if self.sock is None:
            raise NotConnectedError("Not connected to NetDimm")

        # First read the header to get the packet length.
        pktid, flags, length = decode_header(self.__read(HEADER_LENGTH))

        # Read optional data.
        data = self.__read(length) if length > 0 else b''
        return NetDimmPacket(pktid, flags, data)

    write_packet = send_packet
    read_packet = recv_packet

    def __read(self, num: int) -> bytes:
        if self.sock is None:
            raise NotConnectedError("Not connected to NetDimm")

        # Receive exactly num bytes, since TCP is free to split the frame up however it wants.
        res: List[bytes] = []
        left: int = num

        while left > 0:
            try:
                ret = self.sock.recv(left)
            except OSError as e:
                raise NetDimmConnectionError("Could not receive data from NetDimm") from e
            if not ret:
                raise TruncatedFrameError(f"NetDimm closed the connection with {left} of {num} expected bytes outstanding")
            left -= len(ret)
            res.append(ret)

        return b"".join(res)
