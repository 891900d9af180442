#!/usr/bin/env python3
# Triforce Netfirm Toolbox, put into the public domain.
# Please attribute properly, but only if you want.
import argparse
import sys
from netdimm import NetDimm, NetDimmException, DEFAULT_PORT
from netdimm.log import log


def main() -> int:
    parser = argparse.ArgumentParser(description="Tools for receiving images from NetDimm for Naomi/Chihiro/Triforce.")
    parser.add_argument(
        "ip",
        metavar="IP",
        type=str,
        help="The IP address that the NetDimm is configured on.",
    )
    parser.add_argument(
        "image",
        metavar="IMAGE",
        type=str,
        help="The image file we should write after receiving from to the NetDimm.",
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
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Display progress while receiving.",
    )

    args = parser.parse_args()

    log("receiving...")
    try:
        netdimm = NetDimm(args.ip, port=args.port, timeout=args.timeout, log=log if args.verbose else None)
        with netdimm:
            info = netdimm.info()
            data = netdimm.receive(info=info)
    except NetDimmException as e:
        log(f"Failed to receive image: {e}")
        return 1

    if not data:
        log("no valid game exists on net dimm!")
        return 0

    # The stamped CRC is over the image as it was sent, so a mismatch points at a bad transfer.
    # We still write what we got, so it can be inspected.
    crc = NetDimm.crc(data)
    if crc != info.current_game_crc:
        log(f"warning: received image CRC {hex(crc)} does not match net dimm CRC {hex(info.current_game_crc)}!")

    with open(args.image, "wb") as fp:
        fp.write(data)

    log("ok!")
    return 0


if __name__ == "__main__":
    sys.exit(main())
