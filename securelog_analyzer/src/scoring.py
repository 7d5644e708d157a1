from __future__ import annotations
"""Composite and direct threat scorers plus the recommendation tables.

The composite scorer is used by the full pipeline; the direct scorer is a
quick preview over two counters.  The two are deliberately independent and
may return different levels for the same source.
"""

from collections import Counter
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Sequence

from .models import Finding, ThreatLevel
from .utils import round_half_up

METHOD_WEIGHTS: Dict[str, int] = {
    "SQL Injection Signature Detection": 40,
    "Web Shell Upload Detection": 35,
    "Malware Indicators Detection": 38,
    "SSH Brute Force Pattern Detection": 25,
    "DDoS Attack Pattern Detection": 30,
    "Critical Severity Escalation Detection": 35,
    "Multi-Vector Attack Detection": 40,
    "Distributed Attack Correlation Detection": 35,
    "Rapid-Fire Event Detection": 20,
    "Concentrated Attack Window Detection": 15,
    "Request Rate Anomaly Detection": 18,
    "Error Rate Anomaly Detection": 20,
    "Failed Authentication Spike Detection": 25,
    "Privilege Escalation Attempt Detection": 28,
}
DEFAULT_METHOD_WEIGHT = 20
MAX_WEIGHT_TOTAL = sum(METHOD_WEIGHTS.values())

HIGH_THRESHOLD = 70
MEDIUM_THRESHOLD = 40

FAILED_LOGIN_BUCKETS = [(5, 70), (3, 30), (1, 10)]
REPEATED_ACCESS_CAP = 30

# Substring of a method name -> attack category, in tie-break order.
CATEGORY_MARKERS = [
    ("SQL Injection", "SQL Injection"),
    ("SSH Brute Force", "SSH Brute Force"),
    ("Malware", "Malware"),
    ("DDoS", "DDoS"),
    ("Web Shell", "Web Shell Upload"),
]
DEFAULT_CATEGORY = "Suspicious Activity"

LEVEL_RECOMMENDATIONS = {
    ThreatLevel.HIGH: [
        "CRITICAL: Block source IP immediately on firewall",
        "Isolate affected systems from network if locally originated",
        "Preserve logs and evidence for forensic analysis",
        "Alert security team immediately",
    ],
    ThreatLevel.MEDIUM: [
        "Monitor source IP closely for escalation",
        "Implement rate limiting to slow attack",
        "Review access logs for successful breaches",
    ],
    ThreatLevel.LOW: [],
}

CATEGORY_RECOMMENDATIONS = {
    "SSH Brute Force": [
        "Disable password authentication, use SSH keys only",
        "Implement fail2ban or similar rate limiting",
        "Change SSH port from default 22",
    ],
    "SQL Injection": [
        "Apply Web Application Firewall (WAF) rules immediately",
        "Audit database for unauthorized modifications",
        "Review application code for parameterized queries",
    ],
    "Malware": [
        "Run full antivirus/malware scan on affected systems",
        "Check for persistence mechanisms and backdoors",
        "Rotate all credentials used on affected systems",
    ],
    "DDoS": [
        "Activate DDoS mitigation service",
        "Setup rate limiting and CAPTCHA challenges",
        "Consider triggering CDN/WAF protections",
    ],
}

DIRECT_RECOMMENDATIONS = {
    ThreatLevel.LOW: "Continue monitoring. No immediate action required.",
    ThreatLevel.MEDIUM: "Monitor closely. Implement rate limiting and review access patterns.",
    ThreatLevel.HIGH: "Immediate action required. Consider blocking this IP address and investigating the source.",
}

ATTACK_TYPE_LABELS = {
    "ssh_bruteforce": "SSH Brute Force Attack",
    "sql_injection": "SQL Injection Attack",
    "malware_suspicious_activity": "Malware/Suspicious Activity",
    "ddos_attack": "DDoS Attack",
    "web_bruteforce": "Web Application Brute Force",
}


@dataclass(frozen=True)
class RemediationMeasure:
    title: str
    priority: str
    steps: List[str] = field(default_factory=list)


REMEDIATION_MEASURES: Dict[str, List[RemediationMeasure]] = {
    "ssh_bruteforce": [
        RemediationMeasure("Immediate Actions", "critical", [
            "Block the source IP immediately using firewall rules",
            "Review SSH logs for successful unauthorized access",
            "Check for unauthorized SSH keys in ~/.ssh/authorized_keys",
            "Generate new SSH key pairs if any compromise is suspected",
        ]),
        RemediationMeasure("Short-term Hardening", "high", [
            "Change SSH port from default 22 to a non-standard port",
            "Disable password authentication - use key-based auth only",
            "Implement fail2ban or similar intrusion prevention tool",
            "Configure AccountLockout policies after N failed attempts",
        ]),
        RemediationMeasure("Long-term Security", "high", [
            "Enable 2FA/MFA for privileged accounts",
            "Implement VPN or bastion host for SSH access",
            "Use key management solutions for automated key rotation",
            "Regular security audits and penetration testing",
        ]),
    ],
    "sql_injection": [
        RemediationMeasure("Immediate Actions", "critical", [
            "Take the affected application offline or disable vulnerable endpoints",
            "Check database logs for unauthorized queries or data exfiltration",
            "Verify database user privileges and revoke unnecessary permissions",
            "Check for SQL modification timestamps on tables",
        ]),
        RemediationMeasure("Vulnerability Remediation", "critical", [
            "Use parameterized queries/prepared statements in all database code",
            "Implement input validation and sanitization",
            "Apply Web Application Firewall (WAF) rules",
            "Implement database query logging and monitoring",
        ]),
        RemediationMeasure("Post-Breach Actions", "high", [
            "Audit all database access logs for the incident period",
            "Check for data breach disclosure requirements",
            "Update security policies and code review processes",
            "Implement automated SQL injection scanning in CI/CD pipeline",
        ]),
    ],
    "malware_suspicious_activity": [
        RemediationMeasure("Immediate Actions", "critical", [
            "Isolate the affected system from network immediately",
            "Preserve system logs and memory dumps for forensic analysis",
            "Disable network access to prevent command & control communication",
            "Capture network traffic for investigation",
        ]),
        RemediationMeasure("Malware Removal", "critical", [
            "Boot system in Safe Mode if possible",
            "Run updated antivirus and malware scanners",
            "Check for persistence mechanisms (startup folders, scheduled tasks, services)",
            "Review running processes for suspicious activity",
        ]),
        RemediationMeasure("Post-Remediation", "high", [
            "Patch all software and operating systems to latest versions",
            "Change all credentials used on the compromised system",
            "Rebuild system from trusted media if compromise is severe",
            "Implement EDR (Endpoint Detection & Response) solutions",
        ]),
    ],
    "ddos_attack": [
        RemediationMeasure("Immediate Mitigation", "critical", [
            "Activate DDoS mitigation service",
            "Enable rate limiting on web servers",
            "Block suspicious IP ranges at network perimeter",
            "Notify your ISP and hosting provider immediately",
        ]),
        RemediationMeasure("Traffic Filtering", "high", [
            "Implement geo-blocking if attack originates from unexpected regions",
            "Use behavioral analysis to identify and block bot traffic",
            "Configure connection limits per IP address",
            "Implement CAPTCHA challenges for suspicious traffic patterns",
        ]),
        RemediationMeasure("Infrastructure Hardening", "high", [
            "Scale infrastructure to handle increased traffic",
            "Route traffic through Content Delivery Network (CDN)",
            "Implement anycast network for better traffic distribution",
            "Set up monitoring and alerting for traffic anomalies",
        ]),
    ],
    "web_bruteforce": [
        RemediationMeasure("Immediate Actions", "critical", [
            "Block or rate-limit requests from the source IP",
            "Review web server logs for successful unauthorized logins",
            "Check for web shell uploads or suspicious file modifications",
            "Force password reset for all user accounts",
        ]),
        RemediationMeasure("Access Control Enhancement", "high", [
            "Implement account lockout policy (e.g., 5 failed attempts = 30 min lockout)",
            "Enable multi-factor authentication (MFA) for all users",
            "Implement CAPTCHA after N failed login attempts",
            "Use Web Application Firewall (WAF) rules for authentication endpoints",
        ]),
        RemediationMeasure("Monitoring & Detection", "medium", [
            "Implement login attempt monitoring and alerting",
            "Log all failed authentication attempts with details",
            "Use security intelligence tools to detect credential stuffing",
            "Monitor for lateral movement attempts post-breach",
        ]),
    ],
}


def score_to_level(score: float) -> ThreatLevel:
    if score >= HIGH_THRESHOLD:
        return ThreatLevel.HIGH
    if score >= MEDIUM_THRESHOLD:
        return ThreatLevel.MEDIUM
    return ThreatLevel.LOW


def composite_score(findings: Sequence[Finding]) -> int:
    """Weighted normalization of findings into 0..100.

    Contributions are divided by the sum of every weight in the table, so a
    single finding can never reach 100 on its own.
    """
    if not findings:
        return 0
    weighted = sum(f.confidence / 100.0 * METHOD_WEIGHTS.get(f.method, DEFAULT_METHOD_WEIGHT) for f in findings)
    return min(round_half_up(weighted / MAX_WEIGHT_TOTAL * 100), 100)


@dataclass(frozen=True)
class DirectScore:
    score: int
    level: ThreatLevel
    breakdown: Dict[str, int]
    is_malicious: bool
    recommendation: str

    def to_dict(self) -> Dict[str, object]:
        return {
            "score": self.score,
            "level": self.level.value,
            "breakdown": dict(self.breakdown),
            "is_malicious": self.is_malicious,
            "recommendation": self.recommendation,
        }


def direct_score(failed_logins: int, repeated_access: int, extra_points: int = 0) -> DirectScore:
    """Bucket-based preview score over the aggregator's raw counters."""
    failed_score = 0
    for minimum, points in FAILED_LOGIN_BUCKETS:
        if failed_logins >= minimum:
            failed_score = points
            break
    repeated_score = min(round_half_up(repeated_access * 0.5), REPEATED_ACCESS_CAP)

    score = max(0, min(failed_score + repeated_score + extra_points, 100))
    level = score_to_level(score)
    return DirectScore(
        score=score,
        level=level,
        breakdown={
            "failed_login_score": failed_score,
            "repeated_access_score": repeated_score,
            "extra_points": extra_points,
        },
        is_malicious=level == ThreatLevel.HIGH,
        recommendation=DIRECT_RECOMMENDATIONS[level],
    )


def primary_category(findings: Sequence[Finding]) -> str:
    counts: Counter = Counter()
    for f in findings:
        for marker, category in CATEGORY_MARKERS:
            if marker in f.method:
                counts[category] += 1
    if not counts:
        return DEFAULT_CATEGORY
    # ties resolve to the category seen first
    return counts.most_common(1)[0][0]


def generate_recommendations(primary: str, level: ThreatLevel, findings: Sequence[Finding]) -> List[str]:
    recommendations = list(LEVEL_RECOMMENDATIONS[level])
    recommendations.extend(CATEGORY_RECOMMENDATIONS.get(primary, []))
    for f in findings:
        if f.confidence > 80:
            recommendations.append(f"High confidence detection ({f.confidence:g}%): {f.method}")
    return recommendations


def average_confidence(findings: Sequence[Finding]) -> int:
    if not findings:
        return 0
    return round_half_up(sum(f.confidence for f in findings) / len(findings))


def remediation_measures(attack_type: str) -> List[RemediationMeasure]:
    return list(REMEDIATION_MEASURES.get(attack_type, []))


def attack_type_label(attack_type: str) -> str:
    return ATTACK_TYPE_LABELS.get(attack_type, attack_type.replace("_", " "))


def remediation_plan(attack_types: Sequence[str]) -> List[Dict[str, Any]]:
    """Labelled remediation measures for each detected attack type."""
    return [
        {
            "attack_type": attack_type,
            "label": attack_type_label(attack_type),
            "measures": [asdict(m) for m in remediation_measures(attack_type)],
        }
        for attack_type in attack_types
    ]
