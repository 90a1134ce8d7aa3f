"""Tolerant parser for OTA calendar feeds (RFC-5545 flavoured text).

The parser is a pure function of its input: no I/O, no clock, and no
exception escapes for a malformed event. Broken events are dropped and the
rest of the document is still returned.

Pipeline:
- unfold physical lines into logical lines
- segment ``BEGIN:VEVENT`` / ``END:VEVENT`` spans (nested components skipped)
- extract known properties, tolerating ``;PARAM=...`` annotations
- normalize dates (date-only values are pinned to the checkout hour)
- infer guest count / guest name / channel from free text

Known gaps: ``TZID`` parameters are not resolved against a timezone
database, and recurrence rules are ignored.
"""

from __future__ import annotations

import hashlib
import logging
import re
from collections.abc import Iterator
from dataclasses import dataclass, field
from datetime import datetime, time, timedelta, tzinfo

from icalendar import vDate, vDatetime, vDuration, vText

from staysync.config import FeedsConfig
from staysync.feeds.models import MAX_GUEST_COUNT, EventStatus, NormalizedEvent

logger = logging.getLogger(__name__)

BEGIN_EVENT = "BEGIN:VEVENT"
END_EVENT = "END:VEVENT"
CALENDAR_MARKER = "BEGIN:VCALENDAR"
GENERATED_UID_PREFIX = "generated-"

_LINE_BREAK_RE = re.compile(r"\r\n|\n|\r")
_ISO_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_CANCELLED_KEYWORDS = frozenset({"CANCELLED", "CANCELED"})

# Digit runs longer than this are never read as a head count.
_MAX_COUNT_DIGITS = 4

_GUESTS_RE = re.compile(r"\b(?:guests|ospiti)\s*[:=]\s*(\d+)", re.IGNORECASE)
_ADULTS_RE = re.compile(r"\b(?:adults?|adulti)\s*[:=]\s*(\d+)", re.IGNORECASE)
_CHILDREN_RE = re.compile(r"\b(?:children|child|bambini)\s*[:=]\s*(\d+)", re.IGNORECASE)
_GUEST_LINE_RE = re.compile(
    r"\b(?:guest\s+name|guest|ospite|nome\s+ospite)\s*[:=]\s*([^\n]+)", re.IGNORECASE
)
_SUMMARY_CHANNEL_NAME_RE = re.compile(
    r"(?:airbnb|booking\.com|vrbo|smoobu)\s*[-:]\s*([^\d\n()][^\n()]*)", re.IGNORECASE
)
_SUMMARY_NAME_COUNT_RE = re.compile(r"^(.+?)\s*\((\d+)\)\s*$")
_SUMMARY_CONFIRMED_RE = re.compile(r"reservation\s+confirmed\s*[-–]\s*(.+)", re.IGNORECASE)

_CHANNEL_MARKERS = (
    ("booking.com", "booking.com"),
    ("airbnb", "airbnb"),
    ("vrbo", "vrbo"),
    ("smoobu", "smoobu"),
)


@dataclass(frozen=True)
class ParseOptions:
    """Knobs applied during date normalization and heuristics.

    ``assumed_tz`` is the zone feed wall-clock times are interpreted in. UTC
    (``Z``) values are converted into it; ``None`` means the process's local
    zone.
    """

    assumed_tz: tzinfo | None = None
    checkout_hour: int = 10
    default_guest_count: int = 2

    @classmethod
    def from_config(cls, feeds: FeedsConfig) -> ParseOptions:
        return cls(
            assumed_tz=feeds.tzinfo,
            checkout_hour=feeds.checkout_hour,
            default_guest_count=feeds.default_guest_count,
        )


@dataclass(frozen=True)
class ContentLine:
    """One ``NAME;PARAM=VALUE:value`` logical line."""

    name: str
    params: dict[str, str]
    value: str


@dataclass
class _RawEvent:
    properties: dict[str, ContentLine] = field(default_factory=dict)
    common_names: list[str] = field(default_factory=list)

    def value(self, name: str) -> str | None:
        line = self.properties.get(name)
        return line.value if line is not None else None


# ---------------------------------------------------------------------------
# Lexing
# ---------------------------------------------------------------------------


def unfold_lines(raw_text: str) -> list[str]:
    """Join continuation lines (leading space or tab) onto the previous logical line."""
    logical: list[str] = []
    for physical in _LINE_BREAK_RE.split(raw_text):
        if physical[:1] in (" ", "\t") and logical:
            logical[-1] += physical[1:]
        else:
            logical.append(physical)
    return logical


def _split_outside_quotes(text: str, separator: str, maxsplit: int = -1) -> list[str]:
    parts: list[str] = []
    current: list[str] = []
    in_quotes = False
    for char in text:
        if char == '"':
            in_quotes = not in_quotes
        if char == separator and not in_quotes and (maxsplit < 0 or len(parts) < maxsplit):
            parts.append("".join(current))
            current = []
            continue
        current.append(char)
    parts.append("".join(current))
    return parts


def parse_content_line(line: str) -> ContentLine | None:
    """Split a logical line into name, parameters and value.

    Returns ``None`` for lines without a ``:`` separator.
    """
    head_and_value = _split_outside_quotes(line, ":", maxsplit=1)
    if len(head_and_value) != 2:
        return None
    head, value = head_and_value
    name, *raw_params = _split_outside_quotes(head, ";")
    name = name.strip().upper()
    if not name:
        return None
    params: dict[str, str] = {}
    for raw_param in raw_params:
        key, sep, param_value = raw_param.partition("=")
        if sep:
            params[key.strip().upper()] = param_value.strip().strip('"')
    return ContentLine(name=name, params=params, value=value.strip())


def iter_event_blocks(lines: list[str]) -> Iterator[list[str]]:
    """Yield the inner lines of each complete VEVENT.

    Text outside a BEGIN/END pair is ignored. A VEVENT interrupted by another
    ``BEGIN:VEVENT`` or by the end of the document is dropped. Nested
    components (``VALARM``) are skipped so their properties never leak into
    the event.
    """
    current: list[str] | None = None
    nested_depth = 0
    for line in lines:
        marker = line.strip().upper()
        if marker == BEGIN_EVENT:
            if current is not None:
                logger.debug("Dropping unterminated VEVENT (new BEGIN before END)")
            current = []
            nested_depth = 0
            continue
        if current is None:
            continue
        if marker == END_EVENT and nested_depth == 0:
            yield current
            current = None
            continue
        if marker.startswith("BEGIN:"):
            nested_depth += 1
        elif marker.startswith("END:") and nested_depth > 0:
            nested_depth -= 1
        elif nested_depth == 0:
            current.append(line)
    if current is not None:
        logger.debug("Dropping unterminated VEVENT at end of document")


# ---------------------------------------------------------------------------
# Value normalization
# ---------------------------------------------------------------------------


def unescape_text(value: str) -> str:
    """Decode RFC-5545 TEXT escapes (newline, comma, semicolon, backslash)."""
    return str(vText.from_ical(value))


def _to_wall_clock(value: datetime, options: ParseOptions) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(options.assumed_tz).replace(tzinfo=None)


def normalize_date_value(
    value: str,
    params: dict[str, str] | None = None,
    *,
    options: ParseOptions = ParseOptions(),
) -> datetime:
    """Convert a DTSTART/DTEND value into a naive wall-clock datetime.

    Date-only values (``YYYYMMDD``) become the checkout hour of that date.
    ``YYYYMMDDTHHMMSS`` values are taken at face value; a trailing ``Z`` is
    converted from UTC into the assumed zone. ``TZID`` is not consulted.

    Raises
    ------
    ValueError
        If the value is not a recognised date or date-time.
    """
    value = value.strip()
    params = params or {}

    if _ISO_DATE_RE.match(value):
        value = value.replace("-", "")
    if len(value) == 8:
        return datetime.combine(vDate.from_ical(value), time(options.checkout_hour))

    if params.get("VALUE", "").upper() == "DATE":
        raise ValueError(f"VALUE=DATE with non-date value: {value!r}")

    try:
        parsed = vDatetime.from_ical(value)
    except ValueError:
        parsed = datetime.fromisoformat(value)
    return _to_wall_clock(parsed, options)


def parse_duration(value: str) -> timedelta:
    """Parse an ISO-8601 duration (``P1D``, ``PT2H30M``, ``P1W``).

    Raises
    ------
    ValueError
        If the value is malformed, empty (``P``) or not positive.
    """
    duration = vDuration.from_ical(value.strip().upper())
    if duration <= timedelta(0):
        raise ValueError(f"Duration must be positive: {value!r}")
    return duration


def normalize_status(value: str | None) -> EventStatus:
    if value is not None and value.strip().upper() in _CANCELLED_KEYWORDS:
        return EventStatus.CANCELED
    return EventStatus.CONFIRMED


# ---------------------------------------------------------------------------
# Heuristics
# ---------------------------------------------------------------------------


def _bounded_int(digits: str) -> int | None:
    return int(digits) if len(digits) <= _MAX_COUNT_DIGITS else None


def infer_guest_count(text: str, default: int = 2) -> int:
    """Best-effort guest count from ``Guests: N`` / ``Ospiti: N`` labels.

    Falls back to adults + children, then to *default*. Counts outside
    ``1..MAX_GUEST_COUNT`` are treated as noise and yield *default*.
    """
    match = _GUESTS_RE.search(text)
    if match is not None:
        count = _bounded_int(match.group(1))
        if count is None or not 0 < count <= MAX_GUEST_COUNT:
            return default
        return count

    total = 0
    for pattern in (_ADULTS_RE, _CHILDREN_RE):
        match = pattern.search(text)
        if match is None:
            continue
        count = _bounded_int(match.group(1))
        if count is None:
            return default
        total += count
    return total if 0 < total <= MAX_GUEST_COUNT else default


def infer_guest_name(summary: str, description: str, common_names: list[str]) -> str | None:
    for name in common_names:
        if name.strip():
            return name.strip()

    match = _GUEST_LINE_RE.search(description)
    if match is not None and match.group(1).strip():
        return match.group(1).strip()

    for pattern in (_SUMMARY_CHANNEL_NAME_RE, _SUMMARY_NAME_COUNT_RE, _SUMMARY_CONFIRMED_RE):
        match = pattern.search(summary)
        if match is not None and match.group(1).strip():
            return match.group(1).strip()
    return None


def detect_channel(*texts: str) -> str:
    haystack = " ".join(texts).lower()
    for marker, channel in _CHANNEL_MARKERS:
        if marker in haystack:
            return channel
    return "other"


def fallback_uid(start_raw: str, end_raw: str, summary: str) -> str:
    """Deterministic uid for events that carry none.

    Derived from the raw start, end and summary so re-fetching an unchanged
    feed maps the event onto the same reservation row.
    """
    digest = hashlib.sha256(f"{start_raw}|{end_raw}|{summary}".encode()).hexdigest()
    return f"{GENERATED_UID_PREFIX}{digest[:32]}"


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def _collect_properties(block: list[str]) -> _RawEvent:
    raw = _RawEvent()
    for line in block:
        content = parse_content_line(line)
        if content is None:
            continue
        if content.name in ("ATTENDEE", "ORGANIZER"):
            common_name = content.params.get("CN")
            if common_name:
                raw.common_names.append(common_name)
            continue
        raw.properties[content.name] = content
    return raw


def _build_event(raw: _RawEvent, options: ParseOptions) -> NormalizedEvent | None:
    dtstart = raw.properties.get("DTSTART")
    if dtstart is None or not dtstart.value:
        logger.debug("Dropping VEVENT without DTSTART")
        return None
    try:
        start = normalize_date_value(dtstart.value, dtstart.params, options=options)
    except ValueError:
        logger.debug("Dropping VEVENT with unparseable DTSTART %r", dtstart.value)
        return None

    end: datetime | None = None
    dtend = raw.properties.get("DTEND")
    if dtend is not None and dtend.value:
        try:
            end = normalize_date_value(dtend.value, dtend.params, options=options)
        except ValueError:
            logger.debug("Dropping VEVENT with unparseable DTEND %r", dtend.value)
            return None
    elif (duration := raw.value("DURATION")) is not None:
        try:
            end = start + parse_duration(duration)
        except ValueError:
            logger.debug("Ignoring malformed DURATION %r", duration)

    summary = unescape_text(raw.value("SUMMARY") or "")
    description = unescape_text(raw.value("DESCRIPTION") or "")
    location = unescape_text(raw.value("LOCATION") or "")

    uid = (raw.value("UID") or "").strip()
    uid_generated = not uid
    if uid_generated:
        uid = fallback_uid(dtstart.value, dtend.value if dtend is not None else "", summary)

    return NormalizedEvent(
        uid=uid,
        start=start,
        end=end,
        status=normalize_status(raw.value("STATUS")),
        summary=summary,
        description=description,
        guest_count=infer_guest_count(f"{summary}\n{description}", options.default_guest_count),
        guest_name=infer_guest_name(summary, description, raw.common_names),
        channel=detect_channel(summary, description, location),
        uid_generated=uid_generated,
    )


def parse_feed(raw_text: str, options: ParseOptions | None = None) -> list[NormalizedEvent]:
    """Parse a calendar document into normalized events, in document order.

    Never raises for malformed events; they are skipped.
    """
    options = options or ParseOptions()
    events: list[NormalizedEvent] = []
    for block in iter_event_blocks(unfold_lines(raw_text)):
        event = _build_event(_collect_properties(block), options)
        if event is not None:
            events.append(event)
    return events


def looks_like_calendar(raw_text: str) -> bool:
    """True when *raw_text* carries a VCALENDAR envelope."""
    return CALENDAR_MARKER in raw_text.upper()
