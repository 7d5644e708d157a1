from __future__ import annotations
"""Format-sniffing log parser.

Each supported format is a small matcher object exposing ``try_parse``.  The
router walks :data:`FORMAT_MATCHERS` in priority order and keeps the first
structural match; the generic fallback accepts anything that survives the
length check.
"""

import json
import logging
import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

from .. import config
from . import extractors as ex
from .models import UNKNOWN_ADDRESS, Category, NormalizedEvent, ParseResult, Severity

logger = logging.getLogger(__name__)

# Only the ``T`` separator counts, so macOS unified lines fall through.
ISO_TIMESTAMP_PATTERN = re.compile(
    r"(?<!\d)(\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}(?:\.\d+)?(?:[Zz]|[+-]\d{2}:?\d{2})?)"
)
ISO_ANYWHERE_PATTERN = re.compile(r"\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}\S*")
WINDOWS_EVENT_MARKERS = ("<Event>", "<System>")
MAC_UNIFIED_PATTERN = re.compile(
    r"(\d{4}-\d{2}-\d{2})\s+(\d{2}:\d{2}:\d{2})\.(\d+)([+-]\d{4})\s+\d+x[0-9a-f]+\s+\[([^\]]+)\](.*)",
    re.IGNORECASE,
)
MAC_LEGACY_PATTERN = re.compile(
    r"^([A-Za-z]{3})\s+(\d{1,2})\s+(\d{2}:\d{2}:\d{2})\s+(\S+)\s+([^\[:]+?)(?:\[\d+\])?\s*:\s*(.+)$"
)
HTTP_ACCESS_PATTERN = re.compile(
    r"(\d{1,3}(?:\.\d{1,3}){3}).*?\[([^\]]+)\].*?\"([A-Z]+)\s+(\S+)[^\"]*\"\s+(\d{3})(?:\s+(\d+|-))?"
)
SYSLOG_PATTERN = re.compile(
    r"^([A-Za-z]{3})\s+(\d{1,2})\s+(\d{2}:\d{2}:\d{2})\s+(\S+)\s+([^\s\[:]+)(?:\[\d+\])?\s*:\s*(.+)$"
)
DB_KEYWORD_PATTERN = re.compile(r"QUERY|EXECUTE|UPDATE|DELETE|INSERT", re.IGNORECASE)
DB_STATEMENT_PATTERN = re.compile(r"(?:QUERY|EXECUTE|UPDATE|DELETE|INSERT)\s+(.+)", re.IGNORECASE)
DB_HOST_PATTERN = re.compile(r"host[=:]?\s*(\d+\.\d+\.\d+\.\d+)", re.IGNORECASE)
EMBEDDED_DATETIME_PATTERN = re.compile(r"(\d{4}-\d{2}-\d{2}[T\s]\d{2}:\d{2}:\d{2})")

# Windows logon-family event IDs are attributed to authentication.
WINDOWS_AUTH_EVENT_IDS = {"4624", "4625", "4634", "4648", "4771", "4776"}
WINDOWS_LEVELS = {
    "1": Severity.CRITICAL,
    "2": Severity.ERROR,
    "3": Severity.WARNING,
    "4": Severity.INFO,
    "5": Severity.INFO,
}

# Accepted JSON keys per logical field, in precedence order.
JSON_TIMESTAMP_KEYS = ("timestamp", "time", "ts")
JSON_ADDRESS_KEYS = ("source_ip", "sourceIp", "src")
JSON_MESSAGE_KEYS = ("message", "msg", "content")
JSON_CATEGORY_KEYS = ("type", "level")
JSON_SEVERITY_KEYS = ("severity", "level")


def _first_present(data: Dict[str, Any], keys: Sequence[str]) -> Any:
    for key in keys:
        value = data.get(key)
        if value not in (None, ""):
            return value
    return None


def _embedded_iso(line: str) -> Optional[re.Match]:
    # Windows event XML carries its own SystemTime and has a dedicated matcher.
    if any(marker in line for marker in WINDOWS_EVENT_MARKERS):
        return None
    return ISO_TIMESTAMP_PATTERN.search(line)


class FormatMatcher:
    """Base strategy: return an event when ``line`` has this format's shape."""

    name = "generic"

    def try_parse(self, line: str, now: datetime) -> Optional[NormalizedEvent]:
        raise NotImplementedError

    @staticmethod
    def _event(line, timestamp, address, category, message, severity) -> NormalizedEvent:
        return NormalizedEvent(
            timestamp=timestamp,
            source_address=address or UNKNOWN_ADDRESS,
            category=category,
            message=message,
            severity=severity,
            raw_line=line,
        )


class JsonMatcher(FormatMatcher):
    name = "json"

    def try_parse(self, line, now):
        if not (line.startswith("{") and line.endswith("}")):
            return None
        try:
            data = json.loads(line)
        except json.JSONDecodeError:
            return None
        if not isinstance(data, dict):
            return None

        serialized = json.dumps(data)
        timestamp = self._timestamp(_first_present(data, JSON_TIMESTAMP_KEYS)) or now
        address = _first_present(data, JSON_ADDRESS_KEYS)
        if not isinstance(address, str):
            address = ex.extract_ip(serialized)
        message = _first_present(data, JSON_MESSAGE_KEYS)
        message = str(message) if message is not None else serialized[:200]

        raw_category = str(_first_present(data, JSON_CATEGORY_KEYS) or "").lower()
        if raw_category == "authentication":
            raw_category = Category.AUTH.value
        try:
            category = Category(raw_category)
        except ValueError:
            category = Category.SYSTEM

        severity = None
        for key in JSON_SEVERITY_KEYS:
            severity = ex.normalize_severity(data.get(key))
            if severity:
                break
        return self._event(
            line, timestamp, address, category, message,
            severity or ex.severity_from_keywords(message),
        )

    @staticmethod
    def _timestamp(value: Any) -> Optional[datetime]:
        if isinstance(value, bool):
            return None
        if isinstance(value, (int, float)):
            return ex.parse_epoch(value)
        if isinstance(value, str):
            return ex.parse_iso_timestamp(value)
        return None


class KubernetesMatcher(FormatMatcher):
    name = "kubernetes"

    def try_parse(self, line, now):
        match = _embedded_iso(line)
        if not match or ("namespace=" not in line and "pod=" not in line):
            return None
        timestamp = ex.parse_iso_timestamp(match.group(1)) or now
        tags = {}
        for tag in ("namespace", "pod", "container"):
            found = re.search(rf"{tag}=(\S+)", line)
            tags[tag] = found.group(1) if found else None
        body = ISO_ANYWHERE_PATTERN.sub("", line).strip()
        prefix = f"[{tags['namespace'] or '-'}/{tags['pod'] or '-'}/{tags['container'] or 'app'}]"
        return self._event(
            line, timestamp, ex.extract_ip(line), Category.APPLICATION,
            f"{prefix} {body}", ex.severity_from_keywords(body),
        )


class ContainerMatcher(FormatMatcher):
    name = "container"

    def try_parse(self, line, now):
        match = _embedded_iso(line)
        if not match:
            return None
        timestamp = ex.parse_iso_timestamp(match.group(1)) or now
        message = " ".join(ISO_ANYWHERE_PATTERN.sub("", line).split()) or line
        return self._event(
            line, timestamp, ex.extract_ip(line), Category.APPLICATION,
            message, ex.severity_from_keywords(message),
        )


class MacUnifiedMatcher(FormatMatcher):
    name = "mac_unified"

    def try_parse(self, line, now):
        match = MAC_UNIFIED_PATTERN.search(line)
        if not match:
            return None
        date, clock, fraction, offset, process, message = match.groups()
        try:
            timestamp = datetime.strptime(
                f"{date} {clock}.{fraction[:6]}{offset}", "%Y-%m-%d %H:%M:%S.%f%z"
            )
        except ValueError:
            timestamp = now
        message = message.strip()
        return self._event(
            line, timestamp, ex.extract_ip(line), ex.category_from_process(process),
            f"[{process}] {message}", ex.severity_from_keywords(message),
        )


class MacLegacyMatcher(FormatMatcher):
    name = "mac_legacy"

    def try_parse(self, line, now):
        if "@" in line or "[" in line:
            return None
        match = MAC_LEGACY_PATTERN.match(line)
        if not match:
            return None
        month, day, clock, host, process, message = match.groups()
        timestamp = ex.parse_syslog_timestamp(month, day, clock, now)
        if timestamp is None:
            return None
        process = process.strip()
        return self._event(
            line, timestamp, ex.extract_ip(line), ex.category_from_process(process),
            f"[{host}/{process}] {message}", ex.severity_from_keywords(message),
        )


class HttpAccessMatcher(FormatMatcher):
    name = "http_access"

    def try_parse(self, line, now):
        match = HTTP_ACCESS_PATTERN.search(line)
        if not match:
            return None
        address, date, method, path, status, size = match.groups()
        size = size if size and size.isdigit() else "0"
        if status.startswith("5"):
            severity = Severity.ERROR
        elif status.startswith("4"):
            severity = Severity.WARNING
        else:
            severity = Severity.INFO
        return self._event(
            line, ex.parse_http_date(date) or now, address, Category.APPLICATION,
            f"{method} {path} - HTTP {status} ({size} bytes)", severity,
        )


class SyslogMatcher(FormatMatcher):
    name = "syslog"

    def try_parse(self, line, now):
        match = SYSLOG_PATTERN.match(line)
        if not match:
            return None
        month, day, clock, _host, service, message = match.groups()
        timestamp = ex.parse_syslog_timestamp(month, day, clock, now)
        if timestamp is None:
            return None
        return self._event(
            line, timestamp, ex.extract_ip(line), ex.category_from_service(service),
            message, ex.severity_from_keywords(message),
        )


class WindowsEventMatcher(FormatMatcher):
    name = "windows_event"

    def try_parse(self, line, now):
        if not any(marker in line for marker in WINDOWS_EVENT_MARKERS):
            return None
        event_id = re.search(r"<EventID[^>]*>(\d+)<", line)
        level = re.search(r"<Level>(\d+)<", line)
        text = re.search(r"(?:<Data[^>]*>|<Message>)([^<]+)<", line)
        time_text = re.search(r"<SystemTime>([^<]+)<", line) or re.search(r'SystemTime="([^"]+)"', line)

        timestamp = (ex.parse_iso_timestamp(time_text.group(1)) if time_text else None) or now
        severity = WINDOWS_LEVELS.get(level.group(1) if level else "4", Severity.INFO)
        message = text.group(1).strip() if text else line
        category = Category.SYSTEM
        if event_id:
            message = f"[EventID {event_id.group(1)}] {message}"
            if event_id.group(1) in WINDOWS_AUTH_EVENT_IDS:
                category = Category.AUTH
        return self._event(line, timestamp, ex.extract_ip(line), category, message, severity)


class DatabaseAuditMatcher(FormatMatcher):
    name = "database_audit"

    def try_parse(self, line, now):
        if not DB_KEYWORD_PATTERN.search(line):
            return None
        statement = DB_STATEMENT_PATTERN.search(line)
        host = DB_HOST_PATTERN.search(line)
        when = EMBEDDED_DATETIME_PATTERN.search(line)
        message = statement.group(1) if statement else line
        timestamp = (ex.parse_iso_timestamp(when.group(1)) if when else None) or now
        address = host.group(1) if host else ex.extract_ip(line)
        return self._event(
            line, timestamp, address, Category.SYSTEM,
            f"[Database] {message}", ex.severity_from_keywords(message),
        )


class FallbackMatcher(FormatMatcher):
    name = "generic"

    def try_parse(self, line, now):
        return self._event(
            line, now, ex.extract_ip(line), Category.SYSTEM,
            line, ex.severity_from_keywords(line),
        )


FORMAT_MATCHERS: List[FormatMatcher] = [
    JsonMatcher(),
    KubernetesMatcher(),
    ContainerMatcher(),
    MacUnifiedMatcher(),
    MacLegacyMatcher(),
    HttpAccessMatcher(),
    SyslogMatcher(),
    WindowsEventMatcher(),
    DatabaseAuditMatcher(),
    FallbackMatcher(),
]


def detect_format(line: str, now: Optional[datetime] = None) -> Optional[str]:
    """Return the name of the matcher that would handle ``line``."""
    line = line.strip()
    if len(line) < config.MIN_LINE_LENGTH:
        return None
    now = now or datetime.now(timezone.utc)
    for matcher in FORMAT_MATCHERS:
        if matcher.try_parse(line, now) is not None:
            return matcher.name
    return None


def parse_line(raw: str, now: Optional[datetime] = None) -> Optional[NormalizedEvent]:
    """Parse one raw line; ``None`` for blank or trivially short lines."""
    line = raw.strip()
    if len(line) < config.MIN_LINE_LENGTH:
        return None
    now = now or datetime.now(timezone.utc)
    for matcher in FORMAT_MATCHERS:
        event = matcher.try_parse(line, now)
        if event is not None:
            return event
    return None


def parse_batch(content: str, now: Optional[datetime] = None) -> ParseResult:
    """Parse a whole submission, collecting events and per-line errors."""
    now = now or datetime.now(timezone.utc)
    result = ParseResult()
    errors: List[str] = []

    for number, line in enumerate(content.split("\n"), start=1):
        if not line.strip():
            continue
        result.total_lines += 1
        try:
            event = parse_line(line, now=now)
        except Exception as e:
            errors.append(f"Line {number}: {e}")
            continue
        if event is None:
            errors.append(f"Line {number}: Could not parse log format")
            continue
        result.events.append(event)
        result.parsed_lines += 1

    result.errors = errors[: config.MAX_PARSE_ERRORS]
    logger.debug(f"Parsed {result.parsed_lines}/{result.total_lines} lines ({len(errors)} errors)")
    return result


LOG_SHAPE_PATTERNS = [
    SYSLOG_PATTERN,
    ex.IP_PATTERN,
    re.compile(r"\d{4}[-/]\d{2}[-/]\d{2}"),
    re.compile(r"\d{2}:\d{2}:\d{2}"),
]


def looks_like_log_content(content: str) -> bool:
    """Cheap pre-check that a blob resembles log data at all."""
    if not content or len(content) < config.MIN_LINE_LENGTH:
        return False
    lines = [ln for ln in content.split("\n") if ln.strip()]
    if not lines:
        return False
    shaped = sum(1 for ln in lines if any(p.search(ln) for p in LOG_SHAPE_PATTERNS))
    return shaped >= min(len(lines) * 0.3, 1)


SAMPLE_LOG_LINES = [
    "Jan 16 10:30:00 server sshd[1234]: Failed password for admin from 192.168.1.100 port 22 ssh2",
    "Jan 16 10:25:00 firewall kernel: DROP IN=eth0 SRC=10.0.0.50 DST=192.168.1.1 PROTO=TCP DPT=22",
    '192.168.1.100 - - [16/Jan/2025:10:30:00 +0000] "GET /admin HTTP/1.1" 401 0',
    '10.0.0.50 admin [16/Jan/2025:10:35:22 +0000] "POST /login HTTP/1.1" 403 512',
    "2024-01-16 10:32:15.456+0000 2345x6789 [com.apple.sshd] ERROR: Multiple failed SSH login attempts detected from 10.0.0.50",
    "Jul 15 14:40:00 MacBook-Pro kernel: CRITICAL: Firewall blocked malicious traffic from 10.0.0.50",
    "2024-01-16T10:30:00.123456789Z container-web ERROR Connection refused from 192.168.1.100",
    "2024-01-16T10:31:45 namespace=security pod=firewall-agent container=firewall CRITICAL Multiple failed SSH attempts from 192.168.1.100",
    '{"timestamp":"2024-01-16T10:30:00Z","source_ip":"192.168.1.100","severity":"error","message":"Unauthorized access attempt to /admin","type":"auth"}',
    "<Event><System><EventID>4625</EventID><Level>2</Level><Computer>SERVER-01</Computer><SystemTime>2024-01-16T10:30:00Z</SystemTime></System><EventData><Data>Administrator</Data><Data>10.0.0.50</Data></EventData></Event>",
    "EXECUTE user=root host=192.168.1.100 database=accounts query=SELECT * FROM users WHERE 1=1 timestamp=2024-01-16 10:30:00",
]
