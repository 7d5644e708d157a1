from __future__ import annotations
"""Fuse a composite behavioral score with a reputation record."""

from datetime import datetime
from typing import List, Optional, Sequence

from .models import Finding, ReputationRecord, ThreatRecord
from .reputation import reputation_boost, reputation_confidence, reputation_recommendations
from .scoring import average_confidence, primary_category, score_to_level
from .utils import round_half_up


def merge_recommendations(*groups: Sequence[str]) -> List[str]:
    """Concatenate groups, dropping case-insensitive repeats."""
    merged: List[str] = []
    seen = set()
    for group in groups:
        for item in group:
            key = item.lower()
            if key in seen:
                continue
            seen.add(key)
            merged.append(item)
    return merged


def build_reasoning(composite: int, findings: Sequence[Finding], boost: float, reputation: ReputationRecord) -> str:
    top = sorted(findings, key=lambda f: f.confidence, reverse=True)[:3]
    if top:
        summary = "; ".join(f"{f.method} ({f.confidence:g}% confidence): {f.description}" for f in top)
        behavior = f"Composite threat score {composite}/100 based on: {summary}."
    else:
        behavior = "No threats detected."
    sign = "+" if boost > 0 else ""
    return (
        f"{behavior} IP reputation impact: {sign}{boost:.1f} points "
        f"({reputation.risk_level.value.upper()} risk)."
    )


def fuse(
    composite_score: int,
    reputation: ReputationRecord,
    findings: Sequence[Finding],
    base_recommendations: Sequence[str],
    now: Optional[datetime] = None,
) -> ThreatRecord:
    boost = reputation_boost(reputation, now)
    final = round_half_up(max(0.0, min(100.0, composite_score + boost)))
    confidence = min(100.0, (average_confidence(findings) + reputation_confidence(reputation)) / 2)

    return ThreatRecord(
        source_address=reputation.address,
        score=final,
        level=score_to_level(final),
        findings=list(findings),
        primary_category=primary_category(findings),
        confidence=round(confidence, 1),
        reasoning=build_reasoning(composite_score, findings, boost, reputation),
        recommendations=merge_recommendations(base_recommendations, reputation_recommendations(reputation)),
        composite_score=composite_score,
        reputation_boost=round(boost, 1),
        reputation=reputation,
    )
