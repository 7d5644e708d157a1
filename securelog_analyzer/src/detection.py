from __future__ import annotations
"""The five independent detection methods.

Every detector takes a slice of :class:`NormalizedEvent` (normally the events
of one source address) and returns zero or more :class:`Finding` objects.
They share no state, so callers may run them concurrently and in any order.
"""

import math
import re
from dataclasses import dataclass
from datetime import timezone
from typing import List, Optional, Sequence

import numpy as np

from .. import config
from .models import Category, Finding, NormalizedEvent, Severity
from .utils import round_half_up

SSH_BRUTE_FORCE = re.compile(
    r"failed password|invalid user|authentication failure|permission denied|refused our key", re.I
)
SQL_INJECTION = re.compile(r"'\s?or\s?'|union\s?select|drop\s?table|exec\(|base64|0x", re.I)
MALWARE_INDICATORS = re.compile(
    r"wget\s|curl\s|base64.*-d|powershell|meterpreter|ransomware|backdoor|botnet|trojan|worm|virus|spyware",
    re.I,
)
DDOS_ATTACK = re.compile(r"429|service unavailable|too many requests|connection reset|rate limit|timeout", re.I)
WEB_SHELL_UPLOAD = re.compile(r"\.php|\.jsp|\.asp|\.cgi|\.exe|\.sh\s|webshell|c99shell", re.I)
PRIVILEGE_ESCALATION = re.compile(r"sudo|su\s|root|administrator|setuid", re.I)
UNAUTHORIZED_ACCESS = re.compile(r"401|403|denied|forbidden|not allowed", re.I)
PATH_TOKEN = re.compile(r"/\S+")

# Method names double as keys of the composite scorer's weight table.
SSH_BRUTE_FORCE_METHOD = "SSH Brute Force Pattern Detection"
SQL_INJECTION_METHOD = "SQL Injection Signature Detection"
MALWARE_METHOD = "Malware Indicators Detection"
DDOS_METHOD = "DDoS Attack Pattern Detection"
WEB_SHELL_METHOD = "Web Shell Upload Detection"
PRIVILEGE_ESCALATION_METHOD = "Privilege Escalation Attempt Detection"
REQUEST_RATE_METHOD = "Request Rate Anomaly Detection"
ERROR_RATE_METHOD = "Error Rate Anomaly Detection"
FAILED_AUTH_SPIKE_METHOD = "Failed Authentication Spike Detection"
ATTACK_WINDOW_METHOD = "Concentrated Attack Window Detection"
RAPID_FIRE_METHOD = "Rapid-Fire Event Detection"
CRITICAL_ESCALATION_METHOD = "Critical Severity Escalation Detection"
ERROR_ESCALATION_METHOD = "Error Level Escalation Detection"
DISTRIBUTED_ATTACK_METHOD = "Distributed Attack Correlation Detection"
MULTI_VECTOR_METHOD = "Multi-Vector Attack Detection"


@dataclass(frozen=True)
class Signature:
    method: str
    pattern: "re.Pattern[str]"
    min_matches: int
    base: float
    increment: float
    cap: float
    evidence_limit: int
    description: str
    auth_only: bool = False


SIGNATURES = [
    Signature(SSH_BRUTE_FORCE_METHOD, SSH_BRUTE_FORCE, 3, 80, 5, 99, 3,
              "Detected {n} SSH authentication failures matching known brute force patterns", auth_only=True),
    Signature(SQL_INJECTION_METHOD, SQL_INJECTION, 1, 85, 10, 99, 2,
              "Detected {n} SQL injection attack signatures in logs"),
    Signature(MALWARE_METHOD, MALWARE_INDICATORS, 1, 75, 8, 98, 2,
              "Detected {n} suspicious commands associated with malware behavior"),
    Signature(DDOS_METHOD, DDOS_ATTACK, 1, 70, 5, 95, 2,
              "Detected {n} indicators of distributed denial of service attacks"),
    Signature(WEB_SHELL_METHOD, WEB_SHELL_UPLOAD, 1, 80, 10, 99, 2,
              "Detected {n} suspicious file uploads matching web shell patterns"),
    Signature(PRIVILEGE_ESCALATION_METHOD, PRIVILEGE_ESCALATION, 2, 70, 5, 90, 2,
              "Detected {n} attempts to escalate privileges", auth_only=True),
]


@dataclass(frozen=True)
class Baseline:
    """Expected behavior of a benign source."""

    requests_per_hour: float = config.BASELINE_REQUESTS_PER_HOUR
    failed_auth_per_day: float = config.BASELINE_FAILED_AUTH_PER_DAY


def _text(event: NormalizedEvent) -> str:
    return event.message or event.raw_line or ""


def _epoch_seconds(events: Sequence[NormalizedEvent]) -> np.ndarray:
    return np.array([e.timestamp.timestamp() for e in events], dtype=np.float64)


def detect_by_patterns(events: Sequence[NormalizedEvent]) -> List[Finding]:
    findings: List[Finding] = []
    for sig in SIGNATURES:
        matches = [
            e for e in events
            if (not sig.auth_only or e.category == Category.AUTH) and sig.pattern.search(_text(e))
        ]
        if len(matches) < sig.min_matches:
            continue
        findings.append(Finding(
            method=sig.method,
            confidence=min(sig.base + len(matches) * sig.increment, sig.cap),
            description=sig.description.format(n=len(matches)),
            evidence=[_text(e) for e in matches[: sig.evidence_limit]],
        ))
    return findings


def detect_anomalies(events: Sequence[NormalizedEvent], baseline: Optional[Baseline] = None) -> List[Finding]:
    if not events:
        return []
    baseline = baseline or Baseline()
    findings: List[Finding] = []

    stamps = _epoch_seconds(events)
    hours_span = float(stamps.max() - stamps.min()) / 3600.0
    rate = len(events) / max(hours_span, 1.0)
    if rate > baseline.requests_per_hour * 3:
        ratio = rate / baseline.requests_per_hour
        findings.append(Finding(
            method=REQUEST_RATE_METHOD,
            confidence=round(min(60 + math.log(ratio) * 20, 90), 1),
            description=(
                f"Unusually high request rate detected: {round_half_up(rate)} requests/hour "
                f"(baseline: {baseline.requests_per_hour:g})"
            ),
            evidence=[f"Rate spike: {round_half_up(ratio)}x normal traffic"],
        ))

    error_count = sum(1 for e in events if e.severity in (Severity.ERROR, Severity.CRITICAL))
    error_ratio = error_count / len(events)
    if error_ratio > 0.3:
        findings.append(Finding(
            method=ERROR_RATE_METHOD,
            confidence=round(min(50 + error_ratio * 50, 85), 1),
            description=f"Elevated error rate detected: {error_ratio * 100:.1f}% of logs are errors",
            evidence=[f"{error_count} error logs out of {len(events)}", "Baseline error rate typically < 10%"],
        ))

    failed_auth = [
        e for e in events
        if e.category == Category.AUTH
        and (SSH_BRUTE_FORCE.search(_text(e)) or UNAUTHORIZED_ACCESS.search(_text(e)))
    ]
    if len(failed_auth) > baseline.failed_auth_per_day * 2:
        findings.append(Finding(
            method=FAILED_AUTH_SPIKE_METHOD,
            confidence=min(70 + len(failed_auth) * 5, 95),
            description=f"Spike in failed authentication attempts: {len(failed_auth)} failures detected",
            evidence=[_text(e) for e in failed_auth[:3]],
        ))
    return findings


def detect_temporal_patterns(events: Sequence[NormalizedEvent]) -> List[Finding]:
    if len(events) < 5:
        return []
    findings: List[Finding] = []

    hours = np.array([e.timestamp.astimezone(timezone.utc).hour for e in events], dtype=np.int64)
    per_hour = np.bincount(hours, minlength=24)
    average = len(events) / max(int(np.count_nonzero(per_hour)), 1)
    peaks = np.flatnonzero(per_hour > average * 3)
    if 0 < len(peaks) <= 2:
        findings.append(Finding(
            method=ATTACK_WINDOW_METHOD,
            confidence=65,
            description=(
                "Attack activity concentrated in specific time window(s) - "
                "characteristic of automated attacks"
            ),
            evidence=[f"{int(per_hour[h])} events at hour {int(h)}:00" for h in peaks],
        ))

    ordered = np.sort(_epoch_seconds(events))[:20]
    rapid = int(np.count_nonzero(np.diff(ordered) < 1.0))
    if rapid >= 3:
        findings.append(Finding(
            method=RAPID_FIRE_METHOD,
            confidence=75,
            description=f"Detected {rapid} events occurring in rapid succession (< 1 second apart)",
            evidence=[
                "Rapid event sequence matches automated/scripted attack behavior",
                "Manual user activity typically has > 1 second gaps",
            ],
        ))
    return findings


def detect_severity_escalation(events: Sequence[NormalizedEvent]) -> List[Finding]:
    if len(events) < 3:
        return []
    counts = {s: 0 for s in Severity}
    for e in events:
        counts[e.severity] += 1

    if counts[Severity.CRITICAL]:
        evidence = [f"{counts[Severity.CRITICAL]} CRITICAL level events"]
        if counts[Severity.ERROR]:
            evidence.append(f"Progressive escalation from ERROR ({counts[Severity.ERROR]}) to CRITICAL")
        return [Finding(
            method=CRITICAL_ESCALATION_METHOD,
            confidence=85,
            description="Escalation to CRITICAL severity detected - indicates severe system compromise or attack",
            evidence=evidence,
        )]
    if counts[Severity.ERROR]:
        return [Finding(
            method=ERROR_ESCALATION_METHOD,
            confidence=70,
            description="Multiple ERROR level events indicate system issues or attack progression",
            evidence=[f"{counts[Severity.ERROR]} ERROR level events detected"],
        )]
    return []


def detect_correlations(events: Sequence[NormalizedEvent]) -> List[Finding]:
    """Cross-indicator checks.

    The distributed-attack check needs events from many addresses, so it only
    fires when this is given the whole event set rather than one source slice.
    """
    findings: List[Finding] = []

    addresses = {e.source_address for e in events}
    endpoints = set()
    for e in events:
        token = PATH_TOKEN.search(_text(e))
        if token:
            endpoints.add(token.group(0))
    if len(addresses) >= 5 and 1 <= len(endpoints) <= 3:
        findings.append(Finding(
            method=DISTRIBUTED_ATTACK_METHOD,
            confidence=75,
            description=(
                f"Multiple source IPs ({len(addresses)}) targeting same endpoint(s) - "
                "indicates coordinated attack"
            ),
            evidence=[
                f"{len(addresses)} unique source IPs detected",
                f"{len(endpoints)} unique target endpoint(s): {', '.join(sorted(endpoints))}",
            ],
        ))

    families = [
        ("Brute force", SSH_BRUTE_FORCE),
        ("SQL injection", SQL_INJECTION),
        ("Malware", MALWARE_INDICATORS),
    ]
    present = [name for name, pattern in families if any(pattern.search(_text(e)) for e in events)]
    if len(present) >= 2:
        findings.append(Finding(
            method=MULTI_VECTOR_METHOD,
            confidence=80,
            description="Multiple attack vectors detected in same incident - suggests sophisticated attacker",
            evidence=[" + ".join(present) + " detected"],
        ))
    return findings


def run_detection_methods(
    events: Sequence[NormalizedEvent], baseline: Optional[Baseline] = None
) -> List[Finding]:
    """Apply all five detectors to one event slice."""
    findings: List[Finding] = []
    findings.extend(detect_by_patterns(events))
    findings.extend(detect_anomalies(events, baseline))
    findings.extend(detect_temporal_patterns(events))
    findings.extend(detect_severity_escalation(events))
    findings.extend(detect_correlations(events))
    return findings
