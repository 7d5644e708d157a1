from __future__ import annotations
"""Groups normalized events by source address and counts attack indicators."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from .models import UNKNOWN_ADDRESS, NormalizedEvent

# Phrase lists are matched against the lower-cased message; within one family
# the first hit short-circuits, so an event adds at most 1 per family.
FAILED_AUTH_PHRASES = [
    "failed password",
    "invalid user",
    "authentication failure",
    "server refused our key",
    "permission denied",
]
SQL_INJECTION_PHRASES = ["' or '1'='1", "union select", "drop table", "--", "exec(", "replace(", "concat(", "char(", "0x"]
MALWARE_PHRASES = [
    "wget", "curl", "/bin/bash", "base64 -d", "powershell", "meterpreter", "ransomware",
    "backdoor", "botnet", "trojan", "worm", "virus", "spyware",
]
DDOS_PHRASES = [
    "429", "service unavailable", "connection reset", "too many requests",
    "rate limit", "timeout", "connection refused",
]
HTTP_DENIED_MARKERS = [" 401 ", ' 401"', "status=401", " 403 ", "status=403"]
LOGIN_ENDPOINTS = ["/login", "login", "/signin", "wp-login.php", "/admin/login", "/api/auth", "/authenticate"]


def _matches_any(text: str, phrases: List[str]) -> bool:
    return any(p in text for p in phrases)


@dataclass
class SourceAggregate:
    """Raw counters for one source address, rebuilt on every analysis pass."""

    address: str
    failed_auth_count: int = 0
    sql_injection_count: int = 0
    malware_count: int = 0
    ddos_count: int = 0
    http_denied_count: int = 0
    login_endpoint_count: int = 0
    total_events: int = 0
    last_seen: Optional[datetime] = None
    messages: List[str] = field(default_factory=list)
    events: List[NormalizedEvent] = field(default_factory=list)

    def add(self, event: NormalizedEvent) -> None:
        text = event.message or event.raw_line or ""
        lowered = text.lower()

        self.total_events += 1
        self.events.append(event)
        self.messages.append(text)
        if self.last_seen is None or event.timestamp > self.last_seen:
            self.last_seen = event.timestamp

        if _matches_any(lowered, FAILED_AUTH_PHRASES):
            self.failed_auth_count += 1
        if _matches_any(lowered, SQL_INJECTION_PHRASES):
            self.sql_injection_count += 1
        if _matches_any(lowered, MALWARE_PHRASES):
            self.malware_count += 1
        if _matches_any(lowered, DDOS_PHRASES):
            self.ddos_count += 1
        if _matches_any(lowered, HTTP_DENIED_MARKERS):
            self.http_denied_count += 1
        if _matches_any(lowered, LOGIN_ENDPOINTS):
            self.login_endpoint_count += 1

    @property
    def attack_types(self) -> List[str]:
        attacks = []
        if self.failed_auth_count > 0:
            attacks.append("ssh_bruteforce")
        if self.sql_injection_count > 0:
            attacks.append("sql_injection")
        if self.http_denied_count > 0 and self.login_endpoint_count > 0:
            attacks.append("web_bruteforce")
        if self.malware_count > 0:
            attacks.append("malware_suspicious_activity")
        if self.ddos_count > 0:
            attacks.append("ddos_attack")
        return attacks

    @property
    def suspicious_event_count(self) -> int:
        return (
            self.failed_auth_count
            + self.sql_injection_count
            + self.malware_count
            + self.http_denied_count
            + self.login_endpoint_count
        )

    def describe(self) -> str:
        parts = []
        if self.failed_auth_count:
            parts.append(f"{self.failed_auth_count} failed auth attempts")
        if self.sql_injection_count:
            parts.append(f"{self.sql_injection_count} SQLi indicator(s)")
        if self.malware_count:
            parts.append(f"{self.malware_count} malware indicator(s)")
        if self.ddos_count:
            parts.append(f"{self.ddos_count} DDoS indicator(s)")
        if self.http_denied_count:
            parts.append(f"{self.http_denied_count} HTTP 401/403 responses")
        if self.login_endpoint_count:
            parts.append(f"{self.login_endpoint_count} login endpoint accesses")
        return "; ".join(parts) if parts else "No clear indicators"


def aggregate_by_address(events: Iterable[NormalizedEvent]) -> Dict[str, SourceAggregate]:
    """Group ``events`` by exact source address string."""
    aggregates: Dict[str, SourceAggregate] = {}
    for event in events:
        address = event.source_address or UNKNOWN_ADDRESS
        if address not in aggregates:
            aggregates[address] = SourceAggregate(address=address)
        aggregates[address].add(event)
    return aggregates
