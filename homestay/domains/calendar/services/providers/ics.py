"""ICS feed provider: published iCalendar URLs fetched with conditional GET."""

from __future__ import annotations

import logging
import re
from datetime import datetime, timedelta
from datetime import timezone as dt_timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple
from urllib.parse import urlsplit
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import requests
from dateutil.rrule import rruleset, rrulestr
from flask import current_app

from homestay.domains.calendar.errors import IcsFeedError
from homestay.domains.calendar.schemas import ProviderCalendar
from homestay.domains.calendar.services.providers.base import ProviderEventPage, shift_months

logger = logging.getLogger(__name__)

USER_AGENT = "Homestay/1.0 (Calendar Sync)"

ERROR_UNREACHABLE = "Calendar link unreachable"
ERROR_EXPIRED = "Calendar link expired, replace it"
ERROR_AUTH_REQUIRED = "Calendar requires login, use a public link"
ERROR_INVALID_FORMAT = "Invalid calendar format"
ERROR_TOO_LARGE = "Calendar file too large"
ERROR_TOO_MANY_EVENTS = "Too many events. Use a smaller calendar."
ERROR_TIMEOUT = "Calendar took too long to load"
ERROR_UNKNOWN = "Could not sync calendar"

_DURATION_RE = re.compile(
    r"^(?P<sign>[+-])?P(?:(?P<weeks>\d+)W)?(?:(?P<days>\d+)D)?"
    r"(?:T(?:(?P<hours>\d+)H)?(?:(?P<minutes>\d+)M)?(?:(?P<seconds>\d+)S)?)?$"
)

Property = Tuple[str, Dict[str, str], str]


def normalize_feed_url(url: str) -> str:
    url = (url or "").strip()
    if url.lower().startswith("webcal://"):
        return "https://" + url[len("webcal://"):]
    return url


def mask_feed_url(feed_url: str) -> str:
    """Hide the secret part of a feed link: keep the host and the first path segment."""
    try:
        parts = urlsplit(normalize_feed_url(feed_url))
    except ValueError:
        return "webcal://****"
    if not parts.hostname:
        return "webcal://****"
    segments = parts.path.split("/")
    if len(segments) <= 3:
        masked_path = "/".join(segments[:-1]) + "/****"
    else:
        masked_path = f"/{segments[1]}/.../****.ics"
    return f"webcal://{parts.netloc}{masked_path}"


# --- Parsing -----------------------------------------------------------------


def unfold_lines(content: str) -> List[str]:
    """Join continuation lines (leading space or tab) onto their parent line."""
    normalized = content.replace("\r\n", "\n").replace("\r", "\n")
    lines: List[str] = []
    for line in normalized.split("\n"):
        if line[:1] in (" ", "\t") and lines:
            lines[-1] += line[1:]
        elif line:
            lines.append(line)
    return lines


def _split_property(line: str) -> Optional[Property]:
    # The value starts at the first colon outside a quoted parameter.
    in_quotes = False
    for idx, char in enumerate(line):
        if char == '"':
            in_quotes = not in_quotes
        elif char == ":" and not in_quotes:
            head, value = line[:idx], line[idx + 1:]
            break
    else:
        return None

    name, *raw_params = head.split(";")
    params: Dict[str, str] = {}
    for raw in raw_params:
        if "=" in raw:
            key, val = raw.split("=", 1)
            params[key.upper()] = val.strip('"')
    return name.upper(), params, value


_ESCAPE_RE = re.compile(r"\\([\\;,nN])")


def _unescape(text: str) -> str:
    return _ESCAPE_RE.sub(lambda m: "\n" if m.group(1) in "nN" else m.group(1), text)


def _components(lines: List[str], kind: str) -> List[List[Property]]:
    """Collect top-level components of one type, skipping nested ones such as VALARM."""
    components: List[List[Property]] = []
    current: Optional[List[Property]] = None
    depth = 0
    for line in lines:
        upper = line.upper()
        if upper.startswith("BEGIN:"):
            if upper == f"BEGIN:{kind}" and current is None:
                current = []
                depth = 0
                continue
            if current is not None:
                depth += 1
            continue
        if upper.startswith("END:"):
            if current is not None:
                if depth == 0 and upper == f"END:{kind}":
                    components.append(current)
                    current = None
                else:
                    depth -= 1
            continue
        if current is not None and depth == 0:
            prop = _split_property(line)
            if prop is not None:
                current.append(prop)
    return components


def _calendar_property(lines: List[str], name: str) -> Optional[str]:
    for line in lines:
        if line.upper().startswith("BEGIN:VEVENT"):
            return None
        prop = _split_property(line)
        if prop and prop[0] == name:
            return prop[2].strip()
    return None


def _zone(tzid: Optional[str]):
    if not tzid:
        return None
    try:
        return ZoneInfo(tzid)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning(f"Unknown ICS timezone {tzid!r}, treating times as UTC")
        return None


def _to_utc(value: datetime, zone) -> datetime:
    if zone is None:
        return value
    return value.replace(tzinfo=zone).astimezone(dt_timezone.utc).replace(tzinfo=None)


def parse_ics_datetime(value: str, params: Optional[Dict[str, str]] = None) -> Tuple[datetime, bool]:
    """
    Parse a DATE or DATE-TIME value.

    Returns (naive datetime, all_day). UTC values (trailing Z) are returned
    in UTC; other values are local to their TZID, which the caller converts.
    """
    params = params or {}
    raw = value.strip().strip('"')
    all_day = params.get("VALUE", "").upper() == "DATE" or len(raw) == 8
    if all_day:
        return datetime.strptime(raw[:8], "%Y%m%d"), True
    return datetime.strptime(raw.rstrip("Z")[:15], "%Y%m%dT%H%M%S"), False


def parse_duration(value: str) -> timedelta:
    found = _DURATION_RE.match(value.strip())
    if not found:
        raise ValueError(f"invalid duration {value!r}")
    parts = {k: int(v) for k, v in found.groupdict().items() if v and k != "sign"}
    delta = timedelta(
        weeks=parts.get("weeks", 0),
        days=parts.get("days", 0),
        hours=parts.get("hours", 0),
        minutes=parts.get("minutes", 0),
        seconds=parts.get("seconds", 0),
    )
    return -delta if found.group("sign") == "-" else delta


def _until_in_utc(rrule: str, zone) -> str:
    """Rewrite UNTIL as a UTC date-time so it agrees with a zone-aware DTSTART."""
    parts = []
    for part in rrule.strip().split(";"):
        key, _, value = part.partition("=")
        if key.upper() == "UNTIL" and value:
            until, all_day = parse_ics_datetime(value)
            if all_day:
                # A DATE bound includes every occurrence on that day.
                until = until.replace(hour=23, minute=59, second=59)
            if not value.strip().endswith("Z"):
                until = _to_utc(until, zone)
            part = f"UNTIL={until:%Y%m%dT%H%M%SZ}"
        parts.append(part)
    return ";".join(parts)


def build_series(
    rrule: Optional[str],
    dtstart: datetime,
    zone=None,
    exdates: Iterable[datetime] = (),
    rdates: Iterable[datetime] = (),
) -> rruleset:
    """
    Build the occurrence set of a recurring event.

    `dtstart` is local to `zone` (UTC when None). `exdates` and `rdates` are
    naive UTC. Occurrences come out zone-aware, keeping local wall-clock
    time across DST changes.
    """
    start = dtstart.replace(tzinfo=zone or dt_timezone.utc)
    if rrule:
        series = rrulestr(_until_in_utc(rrule, zone), dtstart=start, forceset=True)
    else:
        series = rruleset()
        series.rdate(start)
    for value in rdates:
        series.rdate(value.replace(tzinfo=dt_timezone.utc))
    for value in exdates:
        series.exdate(value.replace(tzinfo=dt_timezone.utc))
    return series


def _occurrence_id(uid: str, start_utc: datetime) -> str:
    return f"{uid}_{start_utc:%Y%m%dT%H%M%SZ}"


class _FeedParser:
    """Turns unfolded ICS lines into provider event payloads."""

    def __init__(self, window_start: datetime, window_end: datetime, max_events: int, source_id: Optional[str]):
        self.window_start = window_start
        self.window_end = window_end
        self.max_events = max_events
        self.source_id = source_id
        self.events: List[Dict[str, Any]] = []

    def _fail(self, reason: str) -> IcsFeedError:
        logger.warning(f"ICS feed for source {self.source_id} rejected: {reason}")
        return IcsFeedError(self.source_id, ERROR_INVALID_FORMAT)

    def _add(self, payload: Dict[str, Any]) -> None:
        if len(self.events) >= self.max_events:
            raise IcsFeedError(self.source_id, ERROR_TOO_MANY_EVENTS)
        self.events.append(payload)

    def _time(self, props: Dict[str, Property], name: str, default_zone) -> Optional[Tuple[datetime, bool, Optional[str]]]:
        prop = props.get(name)
        if prop is None:
            return None
        _, params, value = prop
        try:
            parsed, all_day = parse_ics_datetime(value, params)
        except ValueError as e:
            raise self._fail(f"bad {name} {value!r}") from e
        if all_day or value.strip().endswith("Z"):
            return parsed, all_day, params.get("TZID")
        zone = _zone(params.get("TZID")) or default_zone
        return _to_utc(parsed, zone), all_day, params.get("TZID")

    def parse(self, lines: List[str]) -> List[Dict[str, Any]]:
        calendar_tzid = _calendar_property(lines, "X-WR-TIMEZONE")
        default_zone = _zone(calendar_tzid)

        masters: List[Tuple[Dict[str, Property], Dict[str, List[Property]]]] = []
        overrides: Dict[str, Dict[str, Property]] = {}
        for component in _components(lines, "VEVENT"):
            props: Dict[str, Property] = {}
            date_lists: Dict[str, List[Property]] = {"EXDATE": [], "RDATE": []}
            for prop in component:
                if prop[0] in date_lists:
                    date_lists[prop[0]].append(prop)
                else:
                    props.setdefault(prop[0], prop)
            if "UID" not in props or "DTSTART" not in props:
                raise self._fail("VEVENT without UID or DTSTART")
            if "RECURRENCE-ID" in props:
                rid = self._time(props, "RECURRENCE-ID", default_zone)
                overrides[_occurrence_id(props["UID"][2].strip(), rid[0])] = props
            else:
                masters.append((props, date_lists))

        for props, date_lists in masters:
            self._expand(props, date_lists, overrides, default_zone, calendar_tzid)
        for occurrence_id, props in overrides.items():
            self._add(self._payload(props, occurrence_id, default_zone, calendar_tzid))
        return self.events

    def _payload(
        self,
        props: Dict[str, Property],
        external_id: str,
        default_zone,
        calendar_tzid: Optional[str],
        start: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        start_info = self._time(props, "DTSTART", default_zone)
        first_start, all_day, tzid = start_info
        end_info = self._time(props, "DTEND", default_zone)

        if end_info is not None:
            duration = end_info[0] - first_start
        elif "DURATION" in props:
            try:
                duration = parse_duration(props["DURATION"][2])
            except ValueError as e:
                raise self._fail(str(e)) from e
        else:
            duration = timedelta(days=1) if all_day else timedelta(hours=1)
        if duration <= timedelta(0):
            duration = timedelta(days=1) if all_day else timedelta(hours=1)

        occurrence_start = start or first_start

        def text(name: str) -> Optional[str]:
            prop = props.get(name)
            return _unescape(prop[2]) if prop and prop[2] else None

        updated = None
        if "LAST-MODIFIED" in props:
            try:
                updated, _ = parse_ics_datetime(props["LAST-MODIFIED"][2])
            except ValueError:
                updated = None

        status = (text("STATUS") or "confirmed").lower()
        rrule = props["RRULE"][2] if "RRULE" in props else None
        location = text("LOCATION")
        return {
            "external_id": external_id,
            "title": (text("SUMMARY") or "Untitled Event")[:255],
            "start": occurrence_start,
            "end": occurrence_start + duration,
            "all_day": all_day,
            "recurrence_rule": rrule,
            "recurrence_id": props["UID"][2].strip() if rrule or "RECURRENCE-ID" in props else None,
            "status": status,
            "updated": updated,
            "timezone": tzid or calendar_tzid,
            "description": text("DESCRIPTION"),
            "location": location[:512] if location else None,
        }

    def _dates(self, props: List[Property], default_zone) -> List[datetime]:
        """Parse EXDATE/RDATE values to naive UTC."""
        values: List[datetime] = []
        for name, params, value in props:
            for raw in value.split(","):
                try:
                    parsed, all_day = parse_ics_datetime(raw, params)
                except ValueError as e:
                    raise self._fail(f"bad {name} {raw!r}") from e
                if not all_day and not raw.strip().endswith("Z"):
                    parsed = _to_utc(parsed, _zone(params.get("TZID")) or default_zone)
                values.append(parsed)
        return values

    def _expand(self, props, date_lists, overrides, default_zone, calendar_tzid) -> None:
        uid = props["UID"][2].strip()
        rrule = props["RRULE"][2] if "RRULE" in props else None
        if rrule is None and not date_lists["RDATE"]:
            self._add(self._payload(props, uid, default_zone, calendar_tzid))
            return

        _, params, value = props["DTSTART"]
        try:
            local_start, all_day = parse_ics_datetime(value, params)
        except ValueError as e:
            raise self._fail(f"bad DTSTART {value!r}") from e
        zone = None if all_day or value.strip().endswith("Z") else (_zone(params.get("TZID")) or default_zone)

        try:
            series = build_series(
                rrule,
                local_start,
                zone,
                exdates=self._dates(date_lists["EXDATE"], default_zone),
                rdates=self._dates(date_lists["RDATE"], default_zone),
            )
        except ValueError as e:
            raise self._fail(f"bad RRULE for {uid}: {e}") from e

        window_end = self.window_end.replace(tzinfo=dt_timezone.utc)
        for occurrence in series:
            if occurrence > window_end:
                break
            start = occurrence.astimezone(dt_timezone.utc).replace(tzinfo=None)
            if start < self.window_start:
                continue
            occurrence_id = _occurrence_id(uid, start)
            if occurrence_id in overrides:
                continue
            self._add(self._payload(props, occurrence_id, default_zone, calendar_tzid, start=start))


def parse_ics(
    content: str,
    window_start: datetime,
    window_end: datetime,
    max_events: int,
    source_id: Optional[str] = None,
) -> List[Dict[str, Any]]:
    """Parse an iCalendar document into provider event payloads, expanding recurrences."""
    lines = unfold_lines(content)
    if not lines or lines[0].upper() != "BEGIN:VCALENDAR":
        raise IcsFeedError(source_id, ERROR_INVALID_FORMAT)
    return _FeedParser(window_start, window_end, max_events, source_id).parse(lines)


class IcsFeedProvider:
    """
    Reads a published iCalendar feed.

    The calendar id is the feed URL and the cursor is the ETag of the last
    response, sent back as If-None-Match. Every fetch is a full snapshot.
    """

    def __init__(self, feed_url: Optional[str] = None, source_id: Optional[str] = None) -> None:
        config = current_app.config
        self.feed_url = feed_url
        self.source_id = source_id
        self.timeout = config["PROVIDER_TIMEOUT_SECONDS"]
        self.max_bytes = config["ICS_MAX_BYTES"]
        self.max_events = config["ICS_MAX_EVENTS"]
        self.past_months = config["SYNC_PAST_MONTHS"]
        self.future_months = config["SYNC_FUTURE_MONTHS"]

    def _fetch(self, url: str, etag: Optional[str]) -> Tuple[Optional[str], Optional[str]]:
        """Return (body, etag); body is None when the feed is unchanged."""
        headers = {"User-Agent": USER_AGENT, "Accept": "text/calendar, application/ics"}
        if etag:
            headers["If-None-Match"] = etag

        try:
            resp = requests.get(normalize_feed_url(url), headers=headers, timeout=self.timeout)
        except requests.Timeout as e:
            logger.error(f"ICS feed timed out for source {self.source_id}: {e}")
            raise IcsFeedError(self.source_id, ERROR_TIMEOUT) from e
        except requests.RequestException as e:
            logger.error(f"ICS feed request failed for source {self.source_id}: {e}")
            raise IcsFeedError(self.source_id, ERROR_UNREACHABLE) from e

        status = resp.status_code
        if status == 304:
            return None, resp.headers.get("ETag") or etag
        if status != 200:
            if status in (401, 403):
                message = ERROR_AUTH_REQUIRED
            elif status in (404, 410):
                message = ERROR_EXPIRED
            elif status >= 500:
                message = ERROR_UNREACHABLE
            else:
                message = ERROR_UNKNOWN
            logger.error(f"ICS feed for source {self.source_id} returned {status}")
            raise IcsFeedError(self.source_id, message)

        declared = resp.headers.get("Content-Length")
        if declared and declared.isdigit() and int(declared) > self.max_bytes:
            raise IcsFeedError(self.source_id, ERROR_TOO_LARGE)
        body = resp.content
        if len(body) > self.max_bytes:
            raise IcsFeedError(self.source_id, ERROR_TOO_LARGE)
        return body.decode("utf-8", errors="replace"), resp.headers.get("ETag")

    def list_calendars(self) -> List[ProviderCalendar]:
        if not self.feed_url:
            return []
        body, _ = self._fetch(self.feed_url, None)
        lines = unfold_lines(body or "")
        name = _calendar_property(lines, "X-WR-CALNAME") or "Calendar"
        return [ProviderCalendar(id=self.feed_url, name=_unescape(name), is_primary=True)]

    def list_events(self, calendar_id: str, since_cursor: Optional[str] = None) -> ProviderEventPage:
        body, etag = self._fetch(calendar_id, since_cursor)
        if body is None:
            return ProviderEventPage(next_cursor=etag, not_modified=True)

        now = datetime.utcnow()
        window_start = shift_months(now, -self.past_months)
        window_end = shift_months(now, self.future_months)
        events = parse_ics(
            body,
            window_start=window_start,
            window_end=window_end,
            max_events=self.max_events,
            source_id=self.source_id,
        )
        return ProviderEventPage(
            events=events,
            next_cursor=etag,
            full_snapshot=True,
            window_start=window_start,
            window_end=window_end,
        )


__all__ = [
    "IcsFeedProvider",
    "build_series",
    "mask_feed_url",
    "normalize_feed_url",
    "parse_duration",
    "parse_ics",
    "parse_ics_datetime",
    "unfold_lines",
]
