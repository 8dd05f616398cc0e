"""Timestamp decoding for the datetime encodings a Quickwit index can emit.

Values come straight out of decoded JSON, so they are either strings
(RFC 3339, RFC 2822 or a custom strftime layout) or numbers (unix
timestamps in a fixed unit). Instants are handled as integer epoch
nanoseconds; `parse_time` wraps them into a UTC datetime, which only keeps
microsecond precision.
"""

from __future__ import annotations

import re
from datetime import datetime, timedelta, timezone

ISO8601 = "iso8601"
RFC2822 = "rfc2822"  # named timezone
RFC2822Z = "rfc2822z"  # numeric offset
RFC3339 = "rfc3339"
TIMESTAMP_SECS = "unix_timestamp_secs"
TIMESTAMP_MILLIS = "unix_timestamp_millis"
TIMESTAMP_MICROS = "unix_timestamp_micros"
TIMESTAMP_NANOS = "unix_timestamp_nanos"

RFC2822_LAYOUT = "%a, %d %b %Y %T %Z"
RFC2822Z_LAYOUT = "%a, %d %b %Y %T %z"

# Nanoseconds per unit of each numeric encoding
NUMERIC_FORMATS = {
    TIMESTAMP_SECS: 1_000_000_000,
    TIMESTAMP_MILLIS: 1_000_000,
    TIMESTAMP_MICROS: 1_000,
    TIMESTAMP_NANOS: 1,
}

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

_RFC3339_RE = re.compile(
    r"^(\d{4}-\d{2}-\d{2})[Tt ](\d{2}:\d{2}:\d{2})(?:\.(\d+))?([Zz]|[+-]\d{2}:?\d{2})$"
)

# strptime has no %T / %F
_LAYOUT_EXPANSIONS = {"%T": "%H:%M:%S", "%F": "%Y-%m-%d"}


class TimeParseError(ValueError):
    """A raw value cannot be decoded with the requested encoding."""


def parse_time(value, time_output_format: str) -> datetime:
    """Decode `value` into a UTC datetime given the index's output format."""
    return ns_to_datetime(parse_time_ns(value, time_output_format))


def parse_time_ns(value, time_output_format: str) -> int:
    """Decode `value` into epoch nanoseconds given the index's output format.

    Strings are only accepted for the textual encodings and numbers only for
    the unix timestamp encodings; any other combination is an error. Floats
    are truncated toward zero before scaling.
    """
    if isinstance(value, str):
        if time_output_format in (ISO8601, RFC3339):
            return _parse_rfc3339_ns(value)
        if time_output_format == RFC2822:
            return _parse_layout_ns(value, RFC2822_LAYOUT)
        if time_output_format == RFC2822Z:
            return _parse_layout_ns(value, RFC2822Z_LAYOUT)
        if time_output_format in NUMERIC_FORMATS or not time_output_format:
            raise _incoherent(value, time_output_format)
        return _parse_layout_ns(value, time_output_format)

    if time_output_format not in NUMERIC_FORMATS:
        raise _incoherent(value, time_output_format)
    return _truncate(value) * NUMERIC_FORMATS[time_output_format]


def parse_to_time_ns(value) -> int:
    """Decode a value when no output format is configured.

    Strings must be RFC 3339. The unit of a number is inferred from its
    magnitude, which holds for any instant between 1973 and 5138.
    """
    if isinstance(value, str):
        return _parse_rfc3339_ns(value)
    number = _truncate(value)
    magnitude = abs(number)
    if magnitude >= 10**17:
        return number
    if magnitude >= 10**14:
        return number * 1_000
    if magnitude >= 10**11:
        return number * 1_000_000
    return number * 1_000_000_000


def format_time_ns(ns: int, time_output_format: str):
    """Encode epoch nanoseconds with an output format (inverse of parse_time_ns)."""
    if time_output_format in NUMERIC_FORMATS:
        return ns // NUMERIC_FORMATS[time_output_format]
    if time_output_format in (ISO8601, RFC3339):
        return format_rfc3339_nano(ns)
    instant = ns_to_datetime(ns)
    if time_output_format == RFC2822:
        return instant.strftime("%a, %d %b %Y %H:%M:%S GMT")
    if time_output_format == RFC2822Z:
        return instant.strftime("%a, %d %b %Y %H:%M:%S %z")
    return instant.strftime(_expand_layout(time_output_format))


def format_rfc3339_nano(ns: int) -> str:
    """Render epoch nanoseconds as an RFC 3339 UTC string, trailing zeros trimmed."""
    seconds, fraction = divmod(ns, 1_000_000_000)
    text = (EPOCH + timedelta(seconds=seconds)).strftime("%Y-%m-%dT%H:%M:%S")
    if fraction:
        text += "." + f"{fraction:09d}".rstrip("0")
    return text + "Z"


def ns_to_datetime(ns: int) -> datetime:
    return EPOCH + timedelta(microseconds=ns // 1_000)


def datetime_to_ns(instant: datetime) -> int:
    if instant.tzinfo is None:
        instant = instant.replace(tzinfo=timezone.utc)
    delta = instant - EPOCH
    return (delta.days * 86_400 + delta.seconds) * 1_000_000_000 + delta.microseconds * 1_000


# ── Internal helpers ──────────────────────────────────────────────────


def _parse_rfc3339_ns(value: str) -> int:
    match = _RFC3339_RE.match(value.strip())
    if not match:
        raise TimeParseError(f"cannot parse {value!r} as RFC3339")
    date_part, time_part, fraction, offset = match.groups()
    try:
        base = datetime.fromisoformat(f"{date_part}T{time_part}")
    except ValueError as e:
        raise TimeParseError(f"cannot parse {value!r} as RFC3339: {e}") from e

    ns = datetime_to_ns(base.replace(tzinfo=timezone.utc))
    if fraction:
        ns += int(fraction[:9].ljust(9, "0"))
    if offset not in ("Z", "z"):
        sign = -1 if offset[0] == "-" else 1
        digits = offset[1:].replace(":", "")
        offset_seconds = int(digits[:2]) * 3600 + int(digits[2:]) * 60
        ns -= sign * offset_seconds * 1_000_000_000
    return ns


def _parse_layout_ns(value: str, layout: str) -> int:
    try:
        parsed = datetime.strptime(value, _expand_layout(layout))
    except ValueError as e:
        raise TimeParseError(f"cannot parse {value!r} with layout {layout!r}: {e}") from e
    return datetime_to_ns(parsed)


def _expand_layout(layout: str) -> str:
    for directive, expansion in _LAYOUT_EXPANSIONS.items():
        layout = layout.replace(directive, expansion)
    return layout


def _truncate(value) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise TimeParseError(
            f"unsupported timestamp value of type {type(value).__name__}: {value!r}"
        )
    try:
        return int(value)
    except (OverflowError, ValueError) as e:
        raise TimeParseError(f"cannot convert {value!r} to a timestamp") from e


def _incoherent(value, time_output_format: str) -> TimeParseError:
    return TimeParseError(
        f"incoherent inputs: timeOutputFormat: {time_output_format!r} "
        f"value: {value!r} ({type(value).__name__})"
    )
