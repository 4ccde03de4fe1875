"""Render LogEvents as text: syslog-style lines or user templates."""

import logging
import time
from datetime import datetime, timezone
from enum import IntEnum

from logread.records import LogEvent, Source

logger = logging.getLogger(__name__)

# Rendered text, terminator included, must fit in this many bytes
RENDER_CAPACITY = 512
MAX_RENDER_LEN = RENDER_CAPACITY - 1

UNKNOWN_NAME = "<unknown>"

# Same order as the C library tables: the first name listed for a code wins.
FACILITY_NAMES = (
    ("auth", 4),
    ("authpriv", 10),
    ("cron", 9),
    ("daemon", 3),
    ("ftp", 11),
    ("kern", 0),
    ("lpr", 6),
    ("mail", 2),
    ("mark", 24),
    ("news", 7),
    ("security", 4),
    ("syslog", 5),
    ("user", 1),
    ("uucp", 8),
    ("local0", 16),
    ("local1", 17),
    ("local2", 18),
    ("local3", 19),
    ("local4", 20),
    ("local5", 21),
    ("local6", 22),
    ("local7", 23),
)

SEVERITY_NAMES = (
    ("alert", 1),
    ("crit", 2),
    ("debug", 7),
    ("emerg", 0),
    ("err", 3),
    ("error", 3),
    ("info", 6),
    ("none", 0x10),
    ("notice", 5),
    ("panic", 0),
    ("warn", 4),
    ("warning", 4),
)

FACILITY_MASK = 0x03F8
SEVERITY_MASK = 0x07

SOURCE_NAMES = {
    Source.KERNEL: "kernel",
    Source.SYSLOG: "syslog",
    Source.INTERNAL: "internal",
}


class RenderError(ValueError):
    """A record could not be rendered and must be dropped."""


class TemplateOverflowError(RenderError):
    """The rendered text would not fit in RENDER_CAPACITY."""


def code_name(code: int, table) -> str:
    for name, value in table:
        if value == code:
            return name
    return UNKNOWN_NAME


def facility_name(priority: int) -> str:
    return code_name((priority & FACILITY_MASK) >> 3, FACILITY_NAMES)


def severity_name(priority: int) -> str:
    return code_name(priority & SEVERITY_MASK, SEVERITY_NAMES)


def source_name(source: int) -> str:
    return SOURCE_NAMES.get(source, "-")


def ctime_text(seconds: int) -> str:
    """Fixed-width ctime text in local time, e.g. 'Tue Nov 14 22:13:20 2023'."""
    try:
        return time.ctime(seconds)
    except (OverflowError, OSError, ValueError) as e:
        raise RenderError(f"timestamp {seconds} out of range: {e}") from e


def short_timestamp(event: LogEvent) -> str:
    return f"[{event.seconds}.{event.millis:03d}] "


def rfc3339_timestamp(event: LogEvent) -> str:
    """UTC timestamp with millisecond precision, e.g. 2023-11-14T22:13:20.000Z."""
    try:
        moment = datetime.fromtimestamp(event.seconds, tz=timezone.utc)
    except (OverflowError, OSError, ValueError) as e:
        raise RenderError(f"timestamp {event.seconds} out of range: {e}") from e
    return f"{moment:%Y-%m-%dT%H:%M:%S}.{event.millis:03d}Z"


def byte_len(text: str) -> int:
    return len(text.encode("utf-8"))


def truncate(text: str, limit: int) -> str:
    """Cut text to at most limit UTF-8 bytes without splitting a character."""
    raw = text.encode("utf-8")
    if len(raw) <= limit:
        return text
    return raw[:limit].decode("utf-8", errors="ignore")


class Field(IntEnum):
    MESSAGE = 0
    PRIORITY = 1
    SOURCE = 2
    TIMESTAMP = 3
    RFC3339 = 4

    @property
    def placeholder(self) -> str:
        return f"%{self.name.lower()}%"


class Template:
    """A template string split once into literal text and Field placeholders.

    Scanning picks the leftmost placeholder; placeholders starting at the
    same position resolve in Field order. Text inserted for a placeholder
    is never rescanned.
    """

    def __init__(self, text: str):
        self.text = text
        self.segments: tuple = tuple(self._scan(text))

    @staticmethod
    def _scan(text: str):
        pos = 0
        while True:
            hit = None
            for field in Field:
                index = text.find(field.placeholder, pos)
                if index != -1 and (hit is None or index < hit[0]):
                    hit = (index, field)
            if hit is None:
                break

            index, field = hit
            if index > pos:
                yield text[pos:index]
            yield field
            pos = index + len(field.placeholder)

        if pos < len(text):
            yield text[pos:]

    @property
    def fields(self) -> set:
        return {s for s in self.segments if isinstance(s, Field)}

    def render(self, values: dict) -> str:
        """Substitute values for placeholders.

        Each substitution is checked against the capacity with the rest of
        the template still unexpanded, so no intermediate result may exceed
        MAX_RENDER_LEN bytes.

        Raises:
            TemplateOverflowError: If the template or an expansion is too long.
        """
        remaining = byte_len(self.text)
        if remaining > MAX_RENDER_LEN:
            raise TemplateOverflowError(
                "size of template is larger than the internal buffer"
            )

        parts = []
        length = 0
        for segment in self.segments:
            if isinstance(segment, Field):
                value = values[segment]
                remaining -= len(segment.placeholder)
                if length + byte_len(value) + remaining > MAX_RENDER_LEN:
                    raise TemplateOverflowError(
                        "size of log is larger than the internal buffer"
                    )
            else:
                value = segment
                remaining -= byte_len(segment)
            parts.append(value)
            length += byte_len(value)
        return "".join(parts)


class LineFormatter:
    """Default rendering for stdout and file sinks.

    <ctime> [<short ts> ]<facility>.<severity>[ kernel:] <message>
    """

    def __init__(self, timestamp: bool = False):
        self._timestamp = timestamp

    def __call__(self, event: LogEvent) -> str:
        stamp = short_timestamp(event) if self._timestamp else ""
        # Annotated when source is falsy, not when it equals Source.KERNEL
        kernel = "" if event.source else " kernel:"
        line = (
            f"{ctime_text(event.seconds)} {stamp}"
            f"{facility_name(event.priority)}.{severity_name(event.priority)}"
            f"{kernel} {event.message}"
        )
        return truncate(line, MAX_RENDER_LEN - 1) + "\n"


class SyslogFormatter:
    """Default rendering for network sinks, BSD syslog style.

    <PRI>Mmm dd hh:mm:ss [<short ts> ][<hostname> ][<prefix>: ][kernel: ]<message>

    The trailer is left to the sink.
    """

    def __init__(
        self,
        timestamp: bool = False,
        hostname: str | None = None,
        prefix: str | None = None,
    ):
        self._timestamp = timestamp
        self._hostname = hostname
        self._prefix = prefix

    def __call__(self, event: LogEvent) -> str:
        parts = [f"<{event.priority}>", ctime_text(event.seconds)[4:20]]
        if self._timestamp:
            parts.append(short_timestamp(event))
        if self._hostname:
            parts.append(f"{self._hostname} ")
        if self._prefix:
            parts.append(f"{self._prefix}: ")
        if event.source == Source.KERNEL:
            parts.append("kernel: ")
        parts.append(event.message)
        return truncate("".join(parts), MAX_RENDER_LEN)


class TemplateFormatter:
    """Renders events through a Template.

    With newline=True (stdout and file sinks) exactly one newline is
    appended; if the text already fills the capacity its last character is
    replaced by the newline.
    """

    def __init__(self, template: Template, newline: bool = True):
        self._template = template
        self._newline = newline

    def values(self, event: LogEvent) -> dict:
        wanted = self._template.fields
        values = {
            Field.MESSAGE: event.message,
            Field.PRIORITY: str(event.priority),
            Field.SOURCE: source_name(event.source),
        }
        if Field.TIMESTAMP in wanted:
            values[Field.TIMESTAMP] = short_timestamp(event)
        if Field.RFC3339 in wanted:
            values[Field.RFC3339] = rfc3339_timestamp(event)
        return values

    def __call__(self, event: LogEvent) -> str:
        text = self._template.render(self.values(event))
        if not self._newline:
            return text
        if byte_len(text) >= MAX_RENDER_LEN:
            text = truncate(text, MAX_RENDER_LEN - 1)
        return text + "\n"


def build_formatter(config):
    """Pick the renderer for the configured sink and options."""
    network = config.sink_type == "network"
    if config.template is not None:
        logger.info("Using output template %r", config.template)
        return TemplateFormatter(Template(config.template), newline=not network)
    if network:
        return SyslogFormatter(
            timestamp=config.timestamp,
            hostname=config.hostname,
            prefix=config.prefix,
        )
    return LineFormatter(timestamp=config.timestamp)
