import os
import unittest
from typing import List, Sequence, Tuple
from unittest.mock import MagicMock, patch

# We import internal stuff here since we want to test the decoding helpers
# as well as the public interfaces.
from netdimm.netdimm import (
    NetDimm,
    NetDimmInfo,
    NetDimmVersionEnum,
    CRCStatusEnum,
    PeekPokeTypeEnum,
    crc_status_from_code,
    firmware_version_from_string,
    firmware_version_string,
)
from netdimm.exceptions import NetDimmException, NotConnectedError, ProtocolError, UnexpectedResponseError
from netdimm.packet import NetDimmPacket
from netdimm.structs import pack


def chunk(data: bytes, last: bool = True) -> NetDimmPacket:
    return NetDimmPacket(0x04, 0x81 if last else 0x80, b"\x00" * 10 + data)


def info_packet(version: int = 0x0317, game_memory: int = 0x1D0, dimm_memory: int = 512, crc: int = 0x12345678) -> NetDimmPacket:
    return NetDimmPacket(0x18, 0x00, pack("<HHHHI", 0xC, version, game_memory, dimm_memory, crc))


def control_packet(value: int) -> NetDimmPacket:
    return NetDimmPacket(0x10, 0x00, pack("<II", 1, value))


def info_responses(
    version: int = 0x0317,
    crc: int = 0x12345678,
    status: int = 2,
    game_size: int = 0x100000,
    control: int = 0xC0DE00,
) -> List[NetDimmPacket]:
    return [
        info_packet(version=version, crc=crc),
        chunk(pack("<I", status)),
        chunk(pack("<I", game_size)),
        control_packet(control),
    ]


class TestNetDimm(unittest.TestCase):
    def setUp(self) -> None:
        # Make sure a developer's environment doesn't leak into the configuration tests.
        patcher = patch.dict(os.environ, {"NETDIMM_TIMEOUT_SECONDS": ""})
        patcher.start()
        self.addCleanup(patcher.stop)

    def spawn_netdimm(self, responses: Sequence[NetDimmPacket]) -> Tuple[NetDimm, MagicMock]:
        conn = MagicMock()
        conn.recv_packet.side_effect = list(responses)
        netdimm = NetDimm("1.2.3.4")
        netdimm.conn = conn
        return (netdimm, conn)

    def sent(self, conn: MagicMock) -> List[Tuple[int, int, bytes]]:
        return [(c.args[0].pktid, c.args[0].flags, c.args[0].data) for c in conn.send_packet.call_args_list]

    def test_download_chunks(self) -> None:
        netdimm, conn = self.spawn_netdimm([
            chunk(b"AA", last=False),
            chunk(b"BB", last=False),
            chunk(b"CC", last=True),
        ])

        self.assertEqual(netdimm.download(0x1000, 6), b"AABBCC")
        self.assertEqual(conn.recv_packet.call_count, 3)
        self.assertEqual(self.sent(conn), [(0x05, 0x00, b"\x00\x10\x00\x00\x06\x00\x00\x00")])

    def test_download_ignores_requested_size(self) -> None:
        netdimm, _ = self.spawn_netdimm([chunk(b"ABCDEFGH")])
        self.assertEqual(netdimm.download(0x1000, 4), b"ABCDEFGH")

    def test_download_wrong_id(self) -> None:
        netdimm, _ = self.spawn_netdimm([NetDimmPacket(0x05, 0x81, b"\x00" * 12)])
        with self.assertRaises(UnexpectedResponseError):
            netdimm.download(0x1000, 2)

    def test_download_short_chunk(self) -> None:
        netdimm, _ = self.spawn_netdimm([NetDimmPacket(0x04, 0x81, b"\x00" * 10)])
        with self.assertRaises(UnexpectedResponseError):
            netdimm.download(0x1000, 2)

    def test_crc_status_mapping(self) -> None:
        self.assertEqual(crc_status_from_code(0), CRCStatusEnum.STATUS_CHECKING)
        self.assertEqual(crc_status_from_code(1), CRCStatusEnum.STATUS_CHECKING)
        self.assertEqual(crc_status_from_code(2), CRCStatusEnum.STATUS_VALID)
        self.assertEqual(crc_status_from_code(3), CRCStatusEnum.STATUS_INVALID)
        self.assertEqual(crc_status_from_code(4), CRCStatusEnum.STATUS_BAD_MEMORY)
        self.assertEqual(crc_status_from_code(5), CRCStatusEnum.STATUS_DISABLED)
        with self.assertRaises(ProtocolError):
            crc_status_from_code(6)

    def test_get_crc_information(self) -> None:
        netdimm, conn = self.spawn_netdimm([chunk(pack("<I", 4))])

        self.assertEqual(netdimm.get_crc_information(), CRCStatusEnum.STATUS_BAD_MEMORY)
        self.assertEqual(self.sent(conn), [(0x05, 0x00, b"\xe0\xff\xfe\xff\x04\x00\x00\x00")])

    def test_get_crc_information_unknown(self) -> None:
        netdimm, _ = self.spawn_netdimm([chunk(pack("<I", 6))])
        with self.assertRaises(ProtocolError):
            netdimm.get_crc_information()

    def test_get_game_size(self) -> None:
        netdimm, conn = self.spawn_netdimm([chunk(pack("<I", 0x01000000))])

        self.assertEqual(netdimm.get_game_size(), 0x01000000)
        self.assertEqual(self.sent(conn), [(0x05, 0x00, b"\x04\x00\xff\xff\x04\x00\x00\x00")])

    def test_read_host_control(self) -> None:
        netdimm, conn = self.spawn_netdimm([control_packet(0x8C000000)])

        self.assertEqual(netdimm.read_host_control(), 0x8C000000)
        self.assertEqual(self.sent(conn), [(0x16, 0x00, b"")])

    def test_read_host_control_bad_response(self) -> None:
        netdimm, _ = self.spawn_netdimm([NetDimmPacket(0x16, 0x00, b"\x00" * 8)])
        with self.assertRaises(UnexpectedResponseError):
            netdimm.read_host_control()

        netdimm, _ = self.spawn_netdimm([NetDimmPacket(0x10, 0x00, b"\x00" * 4)])
        with self.assertRaises(UnexpectedResponseError):
            netdimm.read_host_control()

    def test_get_info(self) -> None:
        netdimm, conn = self.spawn_netdimm(info_responses())

        info = netdimm.get_info()
        self.assertEqual(info.current_game_crc, 0x12345678)
        self.assertEqual(info.current_game_size, 0x100000)
        self.assertEqual(info.game_crc_status, CRCStatusEnum.STATUS_VALID)
        self.assertEqual(info.memory_size, 512)
        self.assertEqual(info.firmware_version, NetDimmVersionEnum.VERSION_3_17)
        self.assertEqual(info.available_game_memory, 0x1D0 << 20)
        self.assertEqual(info.control_address, 0xC0DE00)

        # Everything happens in order over the one connection.
        self.assertEqual(
            [pktid for pktid, _, _ in self.sent(conn)],
            [0x18, 0x05, 0x05, 0x16],
        )
        self.assertEqual(conn.recv_packet.call_count, 4)
        conn.close.assert_not_called()

    def test_get_info_bad_length(self) -> None:
        netdimm, _ = self.spawn_netdimm([NetDimmPacket(0x18, 0x00, b"\x00" * 10)])
        with self.assertRaises(UnexpectedResponseError):
            netdimm.get_info()

    def test_get_info_bad_id(self) -> None:
        netdimm, _ = self.spawn_netdimm([NetDimmPacket(0x19, 0x00, b"\x00" * 12)])
        with self.assertRaises(UnexpectedResponseError):
            netdimm.get_info()

    def test_get_info_empty_game_quirk(self) -> None:
        netdimm, _ = self.spawn_netdimm(info_responses(crc=0, status=2, game_size=0))
        self.assertEqual(netdimm.get_info().game_crc_status, CRCStatusEnum.STATUS_INVALID)

    def test_get_info_no_quirk_with_crc(self) -> None:
        netdimm, _ = self.spawn_netdimm(info_responses(crc=0x1234, status=2, game_size=0))
        self.assertEqual(netdimm.get_info().game_crc_status, CRCStatusEnum.STATUS_VALID)

    def test_get_info_unknown_version(self) -> None:
        netdimm, _ = self.spawn_netdimm(info_responses(version=0x0999))
        self.assertEqual(netdimm.get_info().firmware_version, NetDimmVersionEnum.VERSION_UNKNOWN)

    def test_version_strings(self) -> None:
        self.assertEqual(firmware_version_string(0x0102), "01.02")
        self.assertEqual(firmware_version_string(0x0317), "03.17")
        self.assertEqual(firmware_version_from_string("01.02"), NetDimmVersionEnum.VERSION_1_02)
        self.assertEqual(firmware_version_from_string("04.02"), NetDimmVersionEnum.VERSION_4_02)
        self.assertEqual(firmware_version_from_string("09.99"), NetDimmVersionEnum.VERSION_UNKNOWN)
        self.assertEqual(firmware_version_from_string("00.00"), NetDimmVersionEnum.VERSION_UNKNOWN)

    def test_info_opens_and_closes_connection(self) -> None:
        conn = MagicMock()
        conn.recv_packet.side_effect = info_responses(version=0x0402)

        with patch('netdimm.netdimm.NetDimmConnection', return_value=conn) as connection:
            netdimm = NetDimm("1.2.3.4")
            info = netdimm.info()

        connection.assert_called_once_with("1.2.3.4", port=10703, timeout=None)
        conn.connect.assert_called_once_with()
        conn.close.assert_called_once_with()
        self.assertEqual(info.firmware_version, NetDimmVersionEnum.VERSION_4_02)
        self.assertEqual(netdimm.version, NetDimmVersionEnum.VERSION_4_02)
        self.assertIsNone(netdimm.conn)

    def test_initialise_keeps_connection(self) -> None:
        conn = MagicMock()
        conn.recv_packet.side_effect = [chunk(pack("<I", 5)), chunk(pack("<I", 0x10))]

        with patch('netdimm.netdimm.NetDimmConnection', return_value=conn) as connection:
            with NetDimm("1.2.3.4", port=1234, timeout=3.0) as netdimm:
                self.assertEqual(netdimm.get_crc_information(), CRCStatusEnum.STATUS_DISABLED)
                self.assertEqual(netdimm.get_game_size(), 0x10)
                conn.close.assert_not_called()

        connection.assert_called_once_with("1.2.3.4", port=1234, timeout=3.0)
        conn.close.assert_called_once_with()

    def test_connection_closed_on_error(self) -> None:
        conn = MagicMock()
        conn.recv_packet.side_effect = [NetDimmPacket(0x18, 0x00, b"")]

        with patch('netdimm.netdimm.NetDimmConnection', return_value=conn):
            netdimm = NetDimm("1.2.3.4")
            with self.assertRaises(UnexpectedResponseError):
                netdimm.info()

        conn.close.assert_called_once_with()
        self.assertIsNone(netdimm.conn)

    def test_raw_packets_require_connection(self) -> None:
        netdimm = NetDimm("1.2.3.4")
        with self.assertRaises(NotConnectedError):
            netdimm.send_packet(NetDimmPacket(0x01, 0x00))
        with self.assertRaises(NotConnectedError):
            netdimm.recv_packet()

    def test_timeout_from_environment(self) -> None:
        with patch.dict(os.environ, {"NETDIMM_TIMEOUT_SECONDS": "7"}):
            self.assertEqual(NetDimm("1.2.3.4").timeout, 7.0)
            self.assertEqual(NetDimm("1.2.3.4", timeout=2).timeout, 2)
        with patch.dict(os.environ, {"NETDIMM_TIMEOUT_SECONDS": "soon"}):
            with self.assertRaises(NetDimmException):
                NetDimm("1.2.3.4")
        self.assertIsNone(NetDimm("1.2.3.4").timeout)

    def test_receive(self) -> None:
        netdimm, conn = self.spawn_netdimm(info_responses(status=5, game_size=0x8004) + [
            chunk(b"\x01" * 0x4000, last=False),
            chunk(b"\x01" * 0x4000, last=True),
            chunk(b"\x02" * 4),
        ])
        progress: List[Tuple[int, int]] = []

        data = netdimm.receive(progress_callback=lambda cur, tot: progress.append((cur, tot)))
        self.assertEqual(data, b"\x01" * 0x8000 + b"\x02" * 4)
        self.assertEqual(progress, [(0, 0x8004), (0x8000, 0x8004), (0x8004, 0x8004)])
        self.assertEqual(
            self.sent(conn)[4:],
            [
                (0x05, 0x00, pack("<Ii", 0, 0x8000)),
                (0x05, 0x00, pack("<Ii", 0x8000, 4)),
            ],
        )

    def test_timeout_rejects_bad_values(self) -> None:
        for value in ["-1", "0", "nan", "inf"]:
            with self.subTest(value=value):
                with patch.dict(os.environ, {"NETDIMM_TIMEOUT_SECONDS": value}):
                    with self.assertRaises(NetDimmException):
                        NetDimm("1.2.3.4")

        for timeout in [-1.0, 0, float("nan")]:
            with self.subTest(timeout=timeout):
                with self.assertRaises(NetDimmException):
                    NetDimm("1.2.3.4", timeout=timeout)

    def test_receive_with_known_info(self) -> None:
        netdimm, conn = self.spawn_netdimm([chunk(b"ABCD")])
        info = NetDimmInfo(
            current_game_crc=0x1234,
            current_game_size=4,
            game_crc_status=CRCStatusEnum.STATUS_VALID,
            memory_size=512,
            firmware_version=NetDimmVersionEnum.VERSION_3_17,
            available_game_memory=0x1D0 << 20,
            control_address=0xC0DE00,
        )

        self.assertEqual(netdimm.receive(info=info), b"ABCD")
        self.assertEqual(self.sent(conn), [(0x05, 0x00, pack("<Ii", 0, 4))])

    def test_receive_no_game(self) -> None:
        netdimm, conn = self.spawn_netdimm(info_responses(status=3))
        self.assertIsNone(netdimm.receive())
        self.assertEqual(len(self.sent(conn)), 4)

    def test_receive_logs_progress(self) -> None:
        logs: List[Tuple[str, bool]] = []
        netdimm, _ = self.spawn_netdimm(info_responses(game_size=4) + [chunk(b"ABCD")])
        netdimm.log = lambda msg, newline: logs.append((msg, newline))

        self.assertEqual(netdimm.receive(), b"ABCD")
        self.assertEqual(logs, [("00000000 0%\r", False), ("length: 00000004", True)])

    def test_receive_chunk(self) -> None:
        netdimm, conn = self.spawn_netdimm([
            chunk(b"\xAA" * 0x8000),
            chunk(b"\xBB" * 0x10),
        ])

        self.assertEqual(netdimm.receive_chunk(0x100, 0x8010), b"\xAA" * 0x8000 + b"\xBB" * 0x10)
        self.assertEqual(
            self.sent(conn),
            [
                (0x05, 0x00, pack("<Ii", 0x100, 0x8000)),
                (0x05, 0x00, pack("<Ii", 0x8100, 0x10)),
            ],
        )

    def test_peek(self) -> None:
        netdimm, conn = self.spawn_netdimm([control_packet(0xDEADBEEF)])

        self.assertEqual(netdimm.peek(0xC0DE10, PeekPokeTypeEnum.TYPE_LONG), 0xDEADBEEF)
        self.assertEqual(self.sent(conn), [(0x10, 0x00, pack("<II", 0xC0DE10, 3))])

    def test_peek_misaligned(self) -> None:
        netdimm, conn = self.spawn_netdimm([])

        with self.assertRaises(NetDimmException):
            netdimm.peek(0xC0DE11, PeekPokeTypeEnum.TYPE_SHORT)
        with self.assertRaises(NetDimmException):
            netdimm.peek(0xC0DE12, PeekPokeTypeEnum.TYPE_LONG)
        conn.send_packet.assert_not_called()

    def test_crc(self) -> None:
        self.assertEqual(NetDimm.crc(b""), 0xFFFFFFFF)
        self.assertEqual(NetDimm.crc(b"123456789"), (~0xCBF43926) & 0xFFFFFFFF)

    def test_log_print_style(self) -> None:
        printed: List[Tuple[str, str]] = []

        def fake_print(msg: str, end: str = os.linesep) -> None:
            printed.append((msg, end))

        netdimm, _ = self.spawn_netdimm(info_responses(game_size=4) + [chunk(b"ABCD")])
        netdimm.log = fake_print

        self.assertEqual(netdimm.receive(), b"ABCD")
        self.assertEqual(printed, [("00000000 0%\r", ""), ("length: 00000004", os.linesep)])
