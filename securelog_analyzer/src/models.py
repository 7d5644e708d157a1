from __future__ import annotations
"""Data model shared by the parser, the scoring engine and reputation fusion."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

# Sentinel used when no network address can be attributed to an event.
UNKNOWN_ADDRESS = "unknown"


class Severity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class Category(str, Enum):
    AUTH = "auth"
    SYSTEM = "system"
    FIREWALL = "firewall"
    APPLICATION = "application"
    NETWORK = "network"


class ThreatLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class Trend(str, Enum):
    IMPROVING = "improving"
    STABLE = "stable"
    DECLINING = "declining"


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


@dataclass(frozen=True)
class NormalizedEvent:
    """One parsed log line in canonical form."""

    timestamp: datetime
    source_address: str
    category: Category
    message: str
    severity: Severity
    raw_line: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": _iso(self.timestamp),
            "source_address": self.source_address,
            "category": self.category.value,
            "message": self.message,
            "severity": self.severity.value,
            "raw_line": self.raw_line,
        }


@dataclass
class ParseResult:
    """Outcome of parsing one submission."""

    events: List[NormalizedEvent] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    total_lines: int = 0
    parsed_lines: int = 0

    @property
    def succeeded(self) -> bool:
        return self.parsed_lines > 0

    @property
    def message(self) -> str:
        if not self.succeeded:
            return "Could not parse any log entries"
        return f"Parsed {self.parsed_lines} of {self.total_lines} log lines"

    def to_dict(self, include_events: bool = False) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "succeeded": self.succeeded,
            "message": self.message,
            "errors": list(self.errors),
            "total_lines": self.total_lines,
            "parsed_lines": self.parsed_lines,
        }
        if include_events:
            result["events"] = [e.to_dict() for e in self.events]
        return result


@dataclass(frozen=True)
class Finding:
    """An explainable claim made by one detection method about a source."""

    method: str
    confidence: float
    description: str
    evidence: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "method": self.method,
            "confidence": self.confidence,
            "description": self.description,
            "evidence": list(self.evidence),
        }


@dataclass(frozen=True)
class ReputationRecord:
    """Abuse reputation of one address, from AbuseIPDB or the local store."""

    address: str
    abuse_score: int
    report_count: int
    last_reported_at: Optional[datetime]
    is_listed: bool
    country: str
    organization: str
    trend: Trend
    categories: List[str]
    risk_level: RiskLevel
    source: str = "local"
    updated_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "address": self.address,
            "abuse_score": self.abuse_score,
            "report_count": self.report_count,
            "last_reported_at": _iso(self.last_reported_at),
            "is_listed": self.is_listed,
            "country": self.country,
            "organization": self.organization,
            "trend": self.trend.value,
            "categories": list(self.categories),
            "risk_level": self.risk_level.value,
            "source": self.source,
            "updated_at": _iso(self.updated_at),
        }


@dataclass
class ThreatRecord:
    """Final, explainable risk assessment of one source address."""

    source_address: str
    score: int
    level: ThreatLevel
    findings: List[Finding]
    primary_category: str
    confidence: float
    reasoning: str
    recommendations: List[str]
    composite_score: int = 0
    reputation_boost: float = 0.0
    reputation: Optional[ReputationRecord] = None
    event_count: int = 0
    failed_logins: int = 0
    last_seen: Optional[datetime] = None
    attack_types: List[str] = field(default_factory=list)
    description: str = ""
    suspicious: bool = False
    # one entry per attack type: label plus prioritized remediation measures
    remediation: List[Dict[str, Any]] = field(default_factory=list)
    # bucket-based preview over the raw counters, may disagree with ``score``
    direct_preview: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source_address": self.source_address,
            "score": self.score,
            "level": self.level.value,
            "findings": [f.to_dict() for f in self.findings],
            "primary_category": self.primary_category,
            "confidence": self.confidence,
            "reasoning": self.reasoning,
            "recommendations": list(self.recommendations),
            "composite_score": self.composite_score,
            "reputation_boost": self.reputation_boost,
            "reputation": self.reputation.to_dict() if self.reputation else None,
            "event_count": self.event_count,
            "failed_logins": self.failed_logins,
            "last_seen": _iso(self.last_seen),
            "attack_types": list(self.attack_types),
            "description": self.description,
            "suspicious": self.suspicious,
            "remediation": list(self.remediation),
            "direct_preview": self.direct_preview,
        }
