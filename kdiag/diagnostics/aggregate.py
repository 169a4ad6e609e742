"""Result aggregation: pure tallies and report assembly (no I/O)."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from kdiag.core.models import CheckResult, CheckStatus, DiagnosticReport, Summary


def rfc3339_now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def summarize(results: Iterable[CheckResult]) -> Summary:
    counts = {s: 0 for s in CheckStatus}
    for r in results:
        counts[r.status] += 1
    return Summary(
        total=sum(counts.values()),
        passed=counts[CheckStatus.PASSED],
        failed=counts[CheckStatus.FAILED],
        warnings=counts[CheckStatus.WARNING],
        skipped=counts[CheckStatus.SKIPPED],
    )


def build_report(
    target: str,
    results: Sequence[CheckResult],
    metadata: Optional[Dict[str, Any]] = None,
    *,
    timestamp: Optional[str] = None,
) -> DiagnosticReport:
    checks = list(results)
    return DiagnosticReport(
        target=target,
        timestamp=timestamp or rfc3339_now(),
        checks=checks,
        summary=summarize(checks),
        metadata=dict(metadata or {}),
    )


def combine(
    target: str,
    sections: Sequence[Tuple[str, Sequence[CheckResult]]],
    metadata: Optional[Dict[str, Any]] = None,
    *,
    timestamp: Optional[str] = None,
) -> DiagnosticReport:
    """
    Merge per-resource result sequences into one report without re-running checks.

    Each check name is prefixed with its section label, e.g. "Pod web-1: Pod Status".
    """
    merged: List[CheckResult] = []
    for label, results in sections:
        merged.extend(r.renamed(f"{label}: {r.name}") for r in results)
    return build_report(target, merged, metadata, timestamp=timestamp)
