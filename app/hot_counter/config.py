"""Service configuration from defaults, environment variables and flags.

Flags win over environment variables, which win over the defaults. Durations
are written the way operators usually write them (``500ms``, ``5s``, ``2m``,
``1m30s``) or as a bare number of seconds.
"""

import os
import re
import math
import argparse
import secrets
from dataclasses import dataclass, field, asdict
from typing import Mapping, Optional, Sequence

from . import __version__
from .logs import SERVICE_NAME


class ServiceError(Exception):
    pass


class ConfigError(ServiceError):
    pass


class HelpWanted(Exception):
    """Raised for ``--help`` and ``--version``; ``text`` is what to print."""

    def __init__(self, text: str):
        super().__init__(text)
        self.text = text


DESCRIPTION = f"{SERVICE_NAME} web service"

_UNITS = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0}
_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ms|s|m|h)")


def parse_duration(value: str) -> float:
    text = value.strip()
    try:
        seconds = float(text)
    except ValueError:
        pos = 0
        seconds = 0.0
        for match in _DURATION_PART.finditer(text):
            if match.start() != pos:
                break
            seconds += float(match.group(1)) * _UNITS[match.group(2)]
            pos = match.end()
        if not text or pos != len(text):
            raise argparse.ArgumentTypeError(f"invalid duration {value!r}")
    if not math.isfinite(seconds) or seconds < 0:
        raise argparse.ArgumentTypeError(f"invalid duration {value!r}")
    return seconds


def _format_duration(seconds: float) -> str:
    if seconds < 1:
        return f"{seconds * 1000:g}ms"
    return f"{seconds:g}s"


def _port(value: str) -> int:
    try:
        port = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid port {value!r}") from None
    if not 0 <= port <= 65535:
        raise argparse.ArgumentTypeError(f"port out of range: {port}")
    return port


def _path(value: str) -> str:
    if not value.startswith("/"):
        raise argparse.ArgumentTypeError(f"path must start with '/': {value!r}")
    if value == "/" or value.startswith("/assets/"):
        raise argparse.ArgumentTypeError(f"path is reserved: {value!r}")
    return value


@dataclass
class Config:
    port: int = 8080
    host: str = "127.0.0.1"
    health_path: str = "/healthz"
    version_path: str = "/version"
    read_timeout: float = 5.0
    write_timeout: float = 10.0
    idle_timeout: float = 120.0
    shutdown_timeout: float = 5.0
    secret_key: str = field(default_factory=lambda: secrets.token_hex(32), repr=False)
    build: str = "dev"

    def describe(self) -> dict:
        settings = asdict(self)
        settings["secret_key"] = "xxxxxx"
        for name in ("read_timeout", "write_timeout", "idle_timeout", "shutdown_timeout"):
            settings[name] = _format_duration(settings[name])
        return settings


class _Parser(argparse.ArgumentParser):
    def error(self, message):
        raise ConfigError(message)


def _parser(env: Mapping[str, str]) -> _Parser:
    defaults = Config(secret_key="")
    parser = _Parser(
        prog=SERVICE_NAME,
        description=DESCRIPTION,
        add_help=False,
        epilog="Every option can also be set with the upper-case environment variable "
               "of the same name, e.g. PORT or SHUTDOWN_TIMEOUT.",
    )
    parser.add_argument("-h", "--help", action="store_true", help="show this help and exit")
    parser.add_argument("-v", "--version", action="store_true", help="show version information and exit")
    parser.add_argument("--port", type=_port, default=env.get("PORT", str(defaults.port)))
    parser.add_argument("--host", default=env.get("HOST", defaults.host))
    parser.add_argument("--health-path", type=_path, default=env.get("HEALTH_PATH", defaults.health_path))
    parser.add_argument("--version-path", type=_path, default=env.get("VERSION_PATH", defaults.version_path))
    parser.add_argument("--read-timeout", type=parse_duration, default=env.get("READ_TIMEOUT", "5s"))
    parser.add_argument("--write-timeout", type=parse_duration, default=env.get("WRITE_TIMEOUT", "10s"))
    parser.add_argument("--idle-timeout", type=parse_duration, default=env.get("IDLE_TIMEOUT", "120s"))
    parser.add_argument("--shutdown-timeout", type=parse_duration, default=env.get("SHUTDOWN_TIMEOUT", "5s"))
    parser.add_argument("--secret-key", default=env.get("SECRET_KEY"), help="session cookie signing key")
    return parser


def version_text(build: str) -> str:
    return f"Version: {__version__}\nBuild: {build}\nDesc: {DESCRIPTION}"


def load_config(argv: Optional[Sequence[str]] = None, environ: Optional[Mapping[str, str]] = None) -> Config:
    env = os.environ if environ is None else environ
    parser = _parser(env)
    args = parser.parse_args(argv)

    build = env.get("APP_BUILD", "dev")
    if args.help:
        raise HelpWanted(parser.format_help())
    if args.version:
        raise HelpWanted(version_text(build))
    if args.health_path == args.version_path:
        raise ConfigError(f"health and version paths collide: {args.health_path}")

    cfg = Config(
        port=args.port,
        host=args.host,
        health_path=args.health_path,
        version_path=args.version_path,
        read_timeout=args.read_timeout,
        write_timeout=args.write_timeout,
        idle_timeout=args.idle_timeout,
        shutdown_timeout=args.shutdown_timeout,
        build=build,
    )
    if args.secret_key:
        cfg.secret_key = args.secret_key
    return cfg
