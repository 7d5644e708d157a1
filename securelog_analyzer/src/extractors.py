from __future__ import annotations
"""Leaf helpers that pull addresses, severities, categories and timestamps
out of raw log text.  Every function here is pure."""

import re
from datetime import datetime, timezone
from typing import Optional, Union

from .models import Category, Severity

# Octet-shaped tokens only; ``999.1.1.1`` is accepted on purpose.
IP_PATTERN = re.compile(r"\b(?:\d{1,3}\.){3}\d{1,3}\b")

MONTHS = {
    "jan": 1, "feb": 2, "mar": 3, "apr": 4, "may": 5, "jun": 6,
    "jul": 7, "aug": 8, "sep": 9, "oct": 10, "nov": 11, "dec": 12,
}

# Ordered: the first bucket with a matching keyword wins.
SEVERITY_KEYWORDS = [
    (Severity.CRITICAL, ["critical", "emergency", "panic", "fatal"]),
    (Severity.ERROR, ["fail", "error", "denied", "invalid", "rejected"]),
    (Severity.WARNING, ["warning", "warn", "blocked", "suspicious"]),
]

SEVERITY_ALIASES = {
    "info": Severity.INFO,
    "information": Severity.INFO,
    "notice": Severity.INFO,
    "debug": Severity.INFO,
    "warning": Severity.WARNING,
    "warn": Severity.WARNING,
    "error": Severity.ERROR,
    "err": Severity.ERROR,
    "critical": Severity.CRITICAL,
    "crit": Severity.CRITICAL,
    "fatal": Severity.CRITICAL,
    "emergency": Severity.CRITICAL,
}

# macOS process name fragments, checked in this order.
PROCESS_CATEGORIES = [
    (Category.AUTH, ["ssh", "auth", "loginwindow", "sudo"]),
    (Category.FIREWALL, ["firewall", "pf"]),
    (Category.APPLICATION, ["apache", "nginx", "httpd"]),
    (Category.NETWORK, ["network", "wifi", "interface"]),
]

# Linux syslog service fragments.  ``kernel`` and ``eth`` only mean firewall
# and network traffic on syslog hosts.
SERVICE_CATEGORIES = [
    (Category.AUTH, ["ssh", "auth", "sudo", "pam"]),
    (Category.FIREWALL, ["firewall", "iptables", "ufw", "kernel"]),
    (Category.APPLICATION, ["apache", "nginx", "httpd"]),
    (Category.NETWORK, ["network", "eth", "wlan"]),
]


def extract_ip(text: str) -> Optional[str]:
    """Return the first IPv4-looking token in ``text``."""
    match = IP_PATTERN.search(text)
    return match.group(0) if match else None


def severity_from_keywords(message: str) -> Severity:
    lowered = message.lower()
    for severity, keywords in SEVERITY_KEYWORDS:
        if any(k in lowered for k in keywords):
            return severity
    return Severity.INFO


def normalize_severity(value: object) -> Optional[Severity]:
    """Map an explicit severity label to :class:`Severity`, or ``None``."""
    if not isinstance(value, str):
        return None
    return SEVERITY_ALIASES.get(value.strip().lower())


def _category_from(name: str, table) -> Category:
    lowered = name.lower()
    for category, fragments in table:
        if any(f in lowered for f in fragments):
            return category
    return Category.SYSTEM


def category_from_process(name: str) -> Category:
    """Category for a macOS process name."""
    return _category_from(name, PROCESS_CATEGORIES)


def category_from_service(name: str) -> Category:
    """Category for a syslog service name."""
    return _category_from(name, SERVICE_CATEGORIES)


def ensure_aware(value: datetime) -> datetime:
    """Interpret naive datetimes as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def parse_iso_timestamp(text: str) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp, tolerating ``Z`` and nanosecond fractions."""
    value = text.strip().replace("Z", "+00:00").replace("z", "+00:00")
    # ``fromisoformat`` accepts at most microseconds.
    value = re.sub(r"(\.\d{6})\d+", r"\1", value)
    value = re.sub(r"\.(\d{1,5})(?!\d)", lambda m: "." + m.group(1).ljust(6, "0"), value)
    value = re.sub(r"([+-]\d{2})(\d{2})$", r"\1:\2", value)
    try:
        return ensure_aware(datetime.fromisoformat(value))
    except ValueError:
        return None


def parse_epoch(value: Union[int, float]) -> Optional[datetime]:
    # Values this large are JavaScript-style milliseconds.
    seconds = value / 1000.0 if value > 1e11 else float(value)
    try:
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None


def parse_syslog_timestamp(month: str, day: str, clock: str, now: datetime) -> Optional[datetime]:
    """Build a timestamp for ``Mon DD HH:MM:SS``; the year is taken from ``now``."""
    month_index = MONTHS.get(month[:3].lower())
    if month_index is None:
        return None
    try:
        hour, minute, second = (int(p) for p in clock.split(":"))
        return datetime(now.year, month_index, int(day), hour, minute, second, tzinfo=timezone.utc)
    except ValueError:
        return None


def parse_http_date(text: str) -> Optional[datetime]:
    """Parse ``16/Jan/2024:10:30:00 +0000`` style access log dates."""
    for fmt in ("%d/%b/%Y:%H:%M:%S %z", "%d/%b/%Y:%H:%M:%S"):
        try:
            return ensure_aware(datetime.strptime(text.strip(), fmt))
        except ValueError:
            continue
    return None
