import os
import sys
import threading


lock: threading.Lock = threading.Lock()


def log(msg: str, *, newline: bool = True) -> None:
    # Progress lines end in a carriage return and no newline, so they overwrite each other.
    with lock:
        sys.stderr.write(msg + (os.linesep if newline else ""))
        sys.stderr.flush()
