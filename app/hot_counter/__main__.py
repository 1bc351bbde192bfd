"""
Entry point: ``python -m hot_counter`` or the ``hot-counter`` console script.
"""

import os
import sys
import time
import resource
import threading
from typing import Optional, Sequence

from .config import ConfigError, HelpWanted, load_config
from .logs import log_json, make_logger
from .server import ListenError, Service, install_signal_handlers
from .web import create_app


def _memory_mb() -> int:
    # ru_maxrss is in kilobytes on Linux
    return resource.getrusage(resource.RUSAGE_SELF).ru_maxrss // 1024


def run(argv: Optional[Sequence[str]] = None, stop: Optional[threading.Event] = None) -> int:
    log = make_logger(sys.stderr)

    try:
        cfg = load_config(argv)
    except HelpWanted as e:
        print(e.text)
        return 0
    except ConfigError as e:
        log_json(log.error, "error", err=f"parsing config: {e}")
        return 1

    log_json(
        log.info,
        "starting service...",
        startup=int(time.time()),
        cpu=os.cpu_count(),
        memory=f"{_memory_mb()} MB",
        config=cfg.describe(),
    )
    try:
        if stop is None:
            stop = threading.Event()
            install_signal_handlers(stop)

        service = Service(cfg, create_app(cfg), log)
        try:
            service.run(stop)
        except ListenError as e:
            log_json(log.error, "error", err=str(e))
            return 1
        return 0
    finally:
        log_json(log.info, "service stopped")


def main() -> None:
    sys.exit(run())


if __name__ == "__main__":
    main()
