"""Configuration: frozen dataclass built from YAML file, env vars and CLI args."""

import argparse
import logging
import os
from dataclasses import dataclass, fields

import yaml

logger = logging.getLogger(__name__)

ENV_PREFIX = "LOGREAD_"


class ConfigError(ValueError):
    """An option value is missing or invalid."""


@dataclass(frozen=True)
class Config:
    socket_path: str = "/var/run/logd.sock"
    lines: int = 0
    filter_pattern: str | None = None
    remote_host: str | None = None
    remote_port: int | None = None
    udp: bool = False
    null_trailer: bool = False
    log_file: str | None = None
    log_size: int = 0  # bytes, 0 = never rotate
    pid_file: str | None = None
    hostname: str | None = None
    prefix: str | None = None
    timestamp: bool = False
    template: str | None = None
    follow: bool = False
    retry_delay: float = 1.0
    stats_interval: float = 0.0
    log_level: str = "INFO"

    @property
    def sink_type(self) -> str:
        if self.remote_host and self.remote_port:
            return "network"
        if self.log_file:
            return "file"
        return "stdout"


def _parse_bool(value) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("true", "1", "yes")


def _parse_int(name: str, value, minimum: int | None = 0) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ConfigError(f"{name} must be an integer, got {value!r}") from None
    if minimum is not None and number < minimum:
        raise ConfigError(f"{name} must be >= {minimum}, got {number}")
    return number


def _parse_float(name: str, value, minimum: float = 0.0) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ConfigError(f"{name} must be a number, got {value!r}") from None
    if number < minimum:
        raise ConfigError(f"{name} must be >= {minimum}, got {number}")
    return number


def size_kb_to_bytes(value) -> int:
    """Rotation size is given in KB and rounded up to at least 1 KB."""
    return max(1, _parse_int("log_size", value, minimum=None)) * 1024


def _parse_port(value) -> int:
    port = _parse_int("remote_port", value, minimum=1)
    if port > 65535:
        raise ConfigError(f"remote_port must be <= 65535, got {port}")
    return port


def _parse_level(value) -> str:
    level = str(value).strip().upper()
    if not isinstance(logging.getLevelName(level), int):
        raise ConfigError(f"unknown log_level {value!r}")
    return level


_CONVERTERS = {
    "lines": lambda v: _parse_int("lines", v),
    "remote_port": _parse_port,
    "udp": _parse_bool,
    "null_trailer": _parse_bool,
    "log_size": size_kb_to_bytes,
    "timestamp": _parse_bool,
    "follow": _parse_bool,
    "retry_delay": lambda v: _parse_float("retry_delay", v, minimum=0.001),
    "stats_interval": lambda v: _parse_float("stats_interval", v),
    "log_level": _parse_level,
}

FIELD_NAMES = tuple(f.name for f in fields(Config))


def build_cli_parser() -> argparse.ArgumentParser:
    # -h is the hostname option, so help is --help only
    parser = argparse.ArgumentParser(
        prog="logread-shipper",
        description="Ship log records to stdout, a rotated file, or a remote syslog server.",
        add_help=False,
        argument_default=argparse.SUPPRESS,
    )
    parser.add_argument("--help", action="help", help="Show this help and exit")
    parser.add_argument("-s", "--socket", dest="socket_path", help="Path to the log source socket")
    parser.add_argument("-l", "--lines", type=int, help="Only the last COUNT messages")
    parser.add_argument("-e", "--filter", dest="filter_pattern", help="Filter messages with a regexp")
    parser.add_argument(
        "-r", "--remote", nargs=2, metavar=("SERVER", "PORT"),
        help="Stream messages to a server",
    )
    parser.add_argument("-F", "--file", dest="log_file", help="Log file")
    parser.add_argument("-S", "--size", dest="log_size", type=int, help="Log size in KB before rotation")
    parser.add_argument("-p", "--pid-file", dest="pid_file", help="PID file")
    parser.add_argument("-h", "--hostname", help="Add hostname to the message")
    parser.add_argument("-P", "--prefix", help="Prefix custom text to streamed messages")
    parser.add_argument("-T", "--template", help="Custom log output template")
    parser.add_argument("-f", "--follow", action="store_true", help="Follow log messages")
    parser.add_argument("-u", "--udp", action="store_true", help="Use UDP as the protocol")
    parser.add_argument("-t", "--timestamp", action="store_true", help="Add an extra timestamp")
    parser.add_argument(
        "-0", "--null-trailer", dest="null_trailer", action="store_true",
        help="Use \\0 instead of \\n as trailer when using TCP",
    )
    parser.add_argument("--retry-delay", type=float, help="Seconds between reconnect attempts (default: 1.0)")
    parser.add_argument("--stats-interval", type=float, help="Log delivery stats every N seconds (default: off)")
    parser.add_argument("--log-level", help="Diagnostic log level (default: INFO)")
    parser.add_argument("--config", help="Path to YAML config file")
    return parser


def load_yaml_config(path: str | None) -> dict:
    """Load option values from a YAML file. Returns empty dict if no path."""
    if not path:
        return {}
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except FileNotFoundError:
        logger.warning("Config file %s not found, using defaults", path)
        return {}
    except yaml.YAMLError as e:
        raise ConfigError(f"invalid YAML in {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"{path} must contain a mapping of options")

    unknown = sorted(set(data) - set(FIELD_NAMES))
    if unknown:
        logger.warning("Ignoring unknown options in %s: %s", path, ", ".join(unknown))
    logger.info("Loaded YAML config from %s", path)
    return {k: v for k, v in data.items() if k in FIELD_NAMES}


def env_overrides(environ=None) -> dict:
    """Collect LOGREAD_<FIELD> environment variables."""
    if environ is None:
        environ = os.environ
    return {
        name: environ[ENV_PREFIX + name.upper()]
        for name in FIELD_NAMES
        if ENV_PREFIX + name.upper() in environ
    }


def cli_overrides(args: argparse.Namespace) -> dict:
    values = {k: v for k, v in vars(args).items() if k in FIELD_NAMES}
    if "remote" in vars(args):
        values["remote_host"], values["remote_port"] = args.remote
    return values


def build_config(values: dict) -> Config:
    """Validate raw option values and build a Config."""
    kwargs = {}
    for name, value in values.items():
        if value is None:
            continue
        convert = _CONVERTERS.get(name, str)
        kwargs[name] = convert(value)

    if ("remote_host" in kwargs) != ("remote_port" in kwargs):
        raise ConfigError("remote_host and remote_port must be given together")
    return Config(**kwargs)


def load_config(argv: list[str] | None = None, environ=None) -> Config:
    """Build Config from defaults <- YAML file <- env vars <- CLI args."""
    args = build_cli_parser().parse_args(argv)
    if environ is None:
        environ = os.environ

    values = load_yaml_config(
        getattr(args, "config", None) or environ.get(ENV_PREFIX + "CONFIG")
    )
    values.update(env_overrides(environ))
    values.update(cli_overrides(args))
    return build_config(values)
