from __future__ import annotations
"""日誌讀取與威脅分析核心流程"""

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Protocol, Sequence

from .. import config
from .aggregator import SourceAggregate, aggregate_by_address
from .detection import Baseline, detect_correlations, run_detection_methods
from .fusion import fuse
from .log_parser import looks_like_log_content, parse_batch
from .models import Finding, NormalizedEvent, ThreatLevel, ThreatRecord
from .reputation import ReputationClient
from .scoring import (
    composite_score,
    direct_score,
    generate_recommendations,
    primary_category,
    remediation_plan,
    score_to_level,
)
from .utils import read_lines

# 模組層級記錄器，供其他函式使用
logger = logging.getLogger(__name__)


class EventStore(Protocol):
    """事件儲存介面；分析流程只會呼叫 ``list``"""

    def append(self, owner_id: str, events: Sequence[NormalizedEvent]) -> None: ...

    def list(self, owner_id: str) -> List[NormalizedEvent]: ...

    def remove(self, owner_id: str, event_id: str) -> bool: ...


def _detect_all(
    aggregates: Dict[str, SourceAggregate], baseline: Optional[Baseline]
) -> Dict[str, List[Finding]]:
    """以執行緒池對每個來源位址執行所有偵測方法"""

    findings: Dict[str, List[Finding]] = {}
    with ThreadPoolExecutor(max_workers=config.DETECTION_WORKERS) as executor:
        future_to_address = {
            executor.submit(run_detection_methods, agg.events, baseline): address
            for address, agg in aggregates.items()
        }
        for future in as_completed(future_to_address):
            findings[future_to_address[future]] = future.result()
    return findings


def analyse_events(
    events: Sequence[NormalizedEvent],
    reputation_client: Optional[ReputationClient] = None,
    baseline: Optional[Baseline] = None,
    now: Optional[datetime] = None,
) -> List[ThreatRecord]:
    """依來源位址彙整事件並產生威脅紀錄，分數由高至低排序"""

    if not events:
        return []
    now = now or datetime.now(timezone.utc)
    client = reputation_client or ReputationClient()

    aggregates = aggregate_by_address(events)
    findings_by_address = _detect_all(aggregates, baseline)
    # 信譽查詢依序進行，由 client 控制批次間隔
    reputations = client.lookup_many(aggregates.keys(), now=now)

    records: List[ThreatRecord] = []
    for address, agg in aggregates.items():
        findings = findings_by_address[address]
        composite = composite_score(findings)
        base = generate_recommendations(primary_category(findings), score_to_level(composite), findings)
        record = fuse(composite, reputations[address], findings, base, now=now)
        record.source_address = address
        record.event_count = agg.total_events
        record.failed_logins = agg.failed_auth_count
        record.last_seen = agg.last_seen
        record.attack_types = agg.attack_types
        record.description = agg.describe()
        record.suspicious = agg.suspicious_event_count > 0
        record.remediation = remediation_plan(record.attack_types)
        record.direct_preview = direct_score(agg.failed_auth_count, agg.total_events).to_dict()
        records.append(record)

    records.sort(key=lambda r: (-r.score, r.source_address))
    high = sum(1 for r in records if r.level == ThreatLevel.HIGH)
    logger.info(f"Analysed {len(events)} events from {len(records)} sources ({high} high risk)")
    return records


def _summary(records: Iterable[ThreatRecord]) -> Dict[str, int]:
    summary = {level.value: 0 for level in ThreatLevel}
    for r in records:
        summary[r.level.value] += 1
    return summary


def analyse_content(
    content: str,
    reputation_client: Optional[ReputationClient] = None,
    baseline: Optional[Baseline] = None,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """解析整段日誌文字並回傳報告字典"""

    now = now or datetime.now(timezone.utc)
    looks_like_logs = looks_like_log_content(content)
    if content.strip() and not looks_like_logs:
        logger.warning("Submitted content does not resemble log data; parsing anyway")
    parsed = parse_batch(content, now=now)
    if not parsed.succeeded:
        logger.warning(parsed.message)
    threats = analyse_events(parsed.events, reputation_client, baseline, now=now)
    # 跨來源的關聯分析只列入報告，不計入個別來源分數
    campaign = detect_correlations(parsed.events) if parsed.events else []
    return {
        "generated_at": now.isoformat(),
        "parse": parsed.to_dict(),
        "looks_like_logs": looks_like_logs,
        "summary": _summary(threats),
        "threats": [t.to_dict() for t in threats],
        "campaign_findings": [f.to_dict() for f in campaign],
    }


def analyse_lines(
    lines: Sequence[str],
    reputation_client: Optional[ReputationClient] = None,
    baseline: Optional[Baseline] = None,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """分析多行日誌並回傳報告"""

    return analyse_content("\n".join(lines), reputation_client, baseline, now)


def process_logs(
    log_paths: Sequence[Path],
    reputation_client: Optional[ReputationClient] = None,
    baseline: Optional[Baseline] = None,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """讀取指定的日誌檔 (含 .gz/.bz2) 並回傳分析報告"""

    all_lines: List[str] = []
    for p in log_paths:
        if not p.exists() or not p.is_file():
            logger.warning(f"Skipping missing log file {p}")
            continue
        try:
            all_lines.extend(read_lines(p))
        except OSError as e:
            logger.error(f"Failed reading {p}: {e}")
    return analyse_lines(all_lines, reputation_client, baseline, now)


def analyse_owner(
    store: EventStore,
    owner_id: str,
    reputation_client: Optional[ReputationClient] = None,
    baseline: Optional[Baseline] = None,
    now: Optional[datetime] = None,
) -> List[ThreatRecord]:
    """重新分析某擁有者目前的全部事件；每次都從頭計算"""

    return analyse_events(store.list(owner_id), reputation_client, baseline, now)
