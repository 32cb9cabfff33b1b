from __future__ import annotations

import os


def daemonize() -> None:
    """Detach from the controlling terminal (double fork, setsid, chdir /).

    Standard streams are redirected to /dev/null; an already opened output
    file keeps its descriptor.
    """
    if os.fork() > 0:
        os._exit(0)
    os.setsid()
    if os.fork() > 0:
        os._exit(0)
    os.chdir("/")
    devnull = os.open(os.devnull, os.O_RDWR)
    try:
        for fd in (0, 1, 2):
            os.dup2(devnull, fd)
    finally:
        if devnull > 2:
            os.close(devnull)
