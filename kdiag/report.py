"""Human-readable report renderer.

Rendering is deterministic: same report in, same text out. Colors are opt-in.
"""

from __future__ import annotations

from typing import Dict, List

from kdiag.core.models import CheckResult, CheckStatus, DiagnosticReport

_ICONS: Dict[CheckStatus, str] = {
    CheckStatus.PASSED: "PASS",
    CheckStatus.FAILED: "FAIL",
    CheckStatus.WARNING: "WARN",
    CheckStatus.SKIPPED: "SKIP",
}

_COLORS: Dict[CheckStatus, str] = {
    CheckStatus.PASSED: "\033[32m",
    CheckStatus.FAILED: "\033[31m",
    CheckStatus.WARNING: "\033[33m",
    CheckStatus.SKIPPED: "\033[90m",
}
_RESET = "\033[0m"


def _status_tag(status: CheckStatus, color: bool) -> str:
    tag = f"[{_ICONS[status]}]"
    if color:
        return f"{_COLORS[status]}{tag}{_RESET}"
    return tag


def _render_check(check: CheckResult, lines: List[str], *, color: bool, verbose: bool) -> None:
    lines.append(f"{_status_tag(check.status, color)} {check.name}: {check.message}")
    if check.suggestion and check.status is not CheckStatus.PASSED:
        lines.append(f"       -> {check.suggestion}")
    if check.error:
        lines.append(f"       error: {check.error}")
    # Details are noise on healthy checks unless asked for.
    if check.details and (verbose or check.status in (CheckStatus.FAILED, CheckStatus.WARNING)):
        for key in sorted(check.details):
            lines.append(f"       {key}: {check.details[key]}")


def render_table(report: DiagnosticReport, *, color: bool = False, verbose: bool = False) -> str:
    lines: List[str] = [f"Diagnostics for {report.target} ({report.timestamp})", ""]
    for check in report.checks:
        _render_check(check, lines, color=color, verbose=verbose)

    s = report.summary
    lines.append("")
    lines.append(
        f"Summary: {s.total} checks, {s.passed} passed, {s.failed} failed, "
        f"{s.warnings} warnings, {s.skipped} skipped"
    )
    unavailable = report.metadata.get("unavailable") or []
    if unavailable:
        lines.append("Unavailable dependents (results involving them are not conclusive):")
        for item in unavailable:
            lines.append(f"  - {item}")
    return "\n".join(lines) + "\n"
