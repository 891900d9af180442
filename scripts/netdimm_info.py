#!/usr/bin/env python3
# Triforce Netfirm Toolbox, put into the public domain.
# Please attribute properly, but only if you want.
import argparse
import sys
from netdimm import NetDimm, NetDimmException, CRCStatusEnum, DEFAULT_PORT
from netdimm.log import log


def main() -> int:
    parser = argparse.ArgumentParser(description="Tools for requesting info from a NetDimm for Naomi/Chihiro/Triforce.")
    parser.add_argument(
        "ip",
        metavar="IP",
        type=str,
        help="The IP address that the NetDimm is configured on.",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=DEFAULT_PORT,
        help=f"The TCP port the NetDimm listens on. Defaults to {DEFAULT_PORT}.",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Seconds to wait on the NetDimm before giving up. Defaults to waiting forever.",
    )

    args = parser.parse_args()

    log("Requesting...")
    try:
        netdimm = NetDimm(args.ip, port=args.port, timeout=args.timeout, log=log)
        info = netdimm.info()
    except NetDimmException as e:
        log(f"Failed to request info: {e}")
        return 1

    validity = {
        CRCStatusEnum.STATUS_CHECKING: "checking...",
        CRCStatusEnum.STATUS_VALID: "valid",
        CRCStatusEnum.STATUS_INVALID: "invalid",
        CRCStatusEnum.STATUS_BAD_MEMORY: "bad memory module",
        CRCStatusEnum.STATUS_DISABLED: "startup crc checking disabled",
    }[info.game_crc_status]

    print(f"DIMM Firmware Version: {info.firmware_version.value}")
    print(f"DIMM Memory Size: {info.memory_size} MB")
    print(f"Available Game Memory Size: {int(info.available_game_memory / 1024 / 1024)} MB")
    print(f"Current Game CRC: {hex(info.current_game_crc)[2:]} ({int(info.current_game_size / 1024 / 1024)} MB) ({validity})")
    print(f"Host Control Address: {hex(info.control_address)}")

    return 0


if __name__ == "__main__":
    sys.exit(main())
