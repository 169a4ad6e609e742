from __future__ import annotations

import re

import pytest
from fakes import make_pod
from pydantic import ValidationError

from kdiag.core.errors import AccessDeniedError, TargetUnreachableError
from kdiag.core.models import CheckResult, CheckStatus, Summary
from kdiag.diagnostics.aggregate import build_report, combine, summarize
from kdiag.diagnostics.domains import WORKLOAD
from kdiag.diagnostics.engine import DiagnosticEngine


def _r(name: str, status: CheckStatus) -> CheckResult:
    return CheckResult(name=name, status=status, message=name)


def test_summary_counts_add_up() -> None:
    statuses = [CheckStatus.PASSED] * 3 + [CheckStatus.FAILED] * 2 + [CheckStatus.WARNING] + [CheckStatus.SKIPPED] * 4
    summary = summarize(_r(str(i), s) for i, s in enumerate(statuses))
    assert (summary.passed, summary.failed, summary.warnings, summary.skipped) == (3, 2, 1, 4)
    assert summary.total == summary.passed + summary.failed + summary.warnings + summary.skipped == 10


def test_summary_rejects_counts_that_do_not_add_up() -> None:
    with pytest.raises(ValidationError, match="does not equal"):
        Summary(total=5, passed=1)
    assert Summary(total=2, failed=1, skipped=1).total == 2


def test_summary_is_order_independent() -> None:
    results = [_r("a", CheckStatus.FAILED), _r("b", CheckStatus.PASSED), _r("c", CheckStatus.WARNING)]
    assert summarize(results) == summarize(list(reversed(results)))


def test_build_report_stamps_rfc3339_utc() -> None:
    report = build_report("pod/web-1", [], {"namespace": "default"})
    assert re.fullmatch(r"\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}Z", report.timestamp)
    assert report.summary.total == 0
    assert report.metadata == {"namespace": "default"}


def test_combine_prefixes_names_without_rerunning() -> None:
    report = combine(
        "pods/default",
        [("Pod web-1", [_r("Pod Status", CheckStatus.PASSED)]), ("Pod web-2", [_r("Pod Status", CheckStatus.FAILED)])],
        timestamp="2024-05-01T11:00:00Z",
    )
    assert [c.name for c in report.checks] == ["Pod web-1: Pod Status", "Pod web-2: Pod Status"]
    assert report.summary.failed == 1
    assert report.timestamp == "2024-05-01T11:00:00Z"


def test_bulk_mode_combines_in_listing_order(fake_provider) -> None:
    fake_provider.add(make_pod("web-1"), make_pod("web-2", phase="Failed"), make_pod("web-3"))
    engine = DiagnosticEngine(WORKLOAD, fake_provider)

    report = engine.diagnose_all("default", selection=["basic"], concurrency=3)

    assert report.target == "pods/default"
    assert [c.name for c in report.checks] == [
        "Pod web-1: Pod Status",
        "Pod web-2: Pod Status",
        "Pod web-3: Pod Status",
    ]
    assert report.summary.failed == 1
    assert report.metadata["resourceCount"] == 3
    # Listed objects are reused as primaries.
    assert not any(c[0] == "get" and c[1] == "Pod" for c in fake_provider.calls)


def test_bulk_across_namespaces_labels_with_namespace(fake_provider) -> None:
    fake_provider.add(make_pod("web-1", namespace="shop"), make_pod("api-1", namespace="billing"))
    report = DiagnosticEngine(WORKLOAD, fake_provider).diagnose_all(None, selection=["basic"])
    assert sorted(c.name for c in report.checks) == ["Pod billing/api-1: Pod Status", "Pod shop/web-1: Pod Status"]
    assert report.target == "pods/all-namespaces"


def test_bulk_mode_with_no_pods_reports_discovery_skip(fake_provider) -> None:
    report = DiagnosticEngine(WORKLOAD, fake_provider).diagnose_all("empty")
    assert len(report.checks) == 1
    check = report.checks[0]
    assert check.name == "Pod Discovery"
    assert check.status == CheckStatus.SKIPPED
    assert check.message == "No pods found in namespace 'empty'"
    assert report.summary.skipped == 1


def test_bulk_listing_failure_is_fatal(fake_provider) -> None:
    fake_provider.list_errors["Pod"] = AccessDeniedError("pods forbidden", status=403)
    with pytest.raises(TargetUnreachableError):
        DiagnosticEngine(WORKLOAD, fake_provider).diagnose_all("default")


def test_bulk_report_lists_unavailable_dependents_per_resource(fake_provider) -> None:
    fake_provider.add(make_pod("web-1"), make_pod("web-2", node=None))
    fake_provider.fail("Node", "node-a", AccessDeniedError("nodes forbidden", status=403))

    report = DiagnosticEngine(WORKLOAD, fake_provider).diagnose_all("default", selection=["basic"])

    assert report.metadata["unavailable"] == ["Pod web-1: Node/node-a: forbidden"]
