"""Deterministic remediation heuristics shared by the check catalogs.

Messages are mapped into stable buckets so suggestions stay consistent across checks.
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional, Tuple

from kdiag.core.models import Absence, CheckResult, CheckStatus, SubjectInfo
from kdiag.core.objects import container_statuses, dig, waiting_state

FAILING_WAITING_REASONS = frozenset({"CrashLoopBackOff", "ImagePullBackOff", "ErrImagePull", "InvalidImageName"})


def is_pod_failing(pod: Dict[str, Any]) -> bool:
    """
    Cheap "is this pod in trouble" gate for expensive work (log capture, logs check).

    Biased toward false positives: any restart counts.
    """
    if dig(pod, "status", "phase") in ("Failed", "Pending"):
        return True

    for cs in container_statuses(pod):
        waiting = waiting_state(cs)
        if waiting and waiting.get("reason") in FAILING_WAITING_REASONS:
            return True
        if int(cs.get("restartCount") or 0) > 0:
            return True
    return False


def classify_pull_error(msg: str) -> Tuple[str, str]:
    """
    Map an image pull error message into a stable bucket.
    Returns: (bucket, evidence_snippet)
    """
    s = (msg or "").strip()
    sl = s.lower()

    if "not found" in sl or "notfound" in sl or "manifest unknown" in sl:
        return "not_found", s[:220]

    if any(x in sl for x in ("unauthorized", "authentication", "denied", "forbidden", "no basic auth credentials")):
        return "auth", s[:220]

    if "rate limit" in sl or "toomanyrequests" in sl:
        return "rate_limit", s[:220]

    if any(x in sl for x in ("timeout", "connection", "no such host", "i/o timeout", "dial tcp")):
        return "network", s[:220]

    return "unknown", s[:220]


def image_pull_suggestion(image: str, message: str) -> str:
    bucket, _ = classify_pull_error(message)
    if bucket == "not_found":
        return f"Image not found - verify image name and tag: {image}"
    if bucket == "auth":
        return "Check registry credentials and image pull secrets"
    if bucket == "rate_limit":
        return "Registry rate limit exceeded - configure pull secrets or use mirror registry"
    if bucket == "network":
        return "Check network connectivity to registry and DNS resolution"
    return "Check image name, registry accessibility, and authentication"


def scheduling_suggestion(events: Iterable[Dict[str, Any]]) -> str:
    suggestions: List[str] = []

    def add(s: str) -> None:
        if s not in suggestions:
            suggestions.append(s)

    for ev in events:
        if ev.get("reason") != "FailedScheduling":
            continue
        msg = ev.get("message") or ""
        if "Insufficient" in msg:
            add("Insufficient resources - scale cluster or reduce resource requests")
        if "node(s) had taint" in msg or "untolerated taint" in msg:
            add("Node taints prevent scheduling - add tolerations or remove taints")
        if "didn't match node selector" in msg or "didn't match Pod's node affinity" in msg:
            add("Node selector mismatch - verify node labels")
        if "unbound immediate PersistentVolumeClaims" in msg:
            add("Pending volume claims - check PersistentVolumeClaim binding and storage class")

    if not suggestions:
        suggestions.append("Check node availability, resource requirements, and scheduling constraints")
    return "; ".join(suggestions)


def unverified_result(name: str, absence: Absence, message: str, *, create_hint: str = "") -> CheckResult:
    """A dependent we could not read: WARNING, never PASSED."""
    return CheckResult(
        name=name,
        status=CheckStatus.WARNING,
        message=message,
        suggestion=absence_suggestion(absence, create_hint=create_hint),
        details={"reason": absence.reason},
    )


def events_unavailable(info: SubjectInfo, name: str) -> Optional[CheckResult]:
    absence = info.absence("Event")
    if absence is None:
        return None
    return unverified_result(name, absence, "Events could not be read; issues cannot be ruled out")


def absence_suggestion(absence: Absence, *, create_hint: str = "") -> str:
    """Suggestion for a dependent that could not be read; denied and missing differ."""
    if absence.reason == "forbidden":
        return (
            f"Could not verify {absence.kind} '{absence.name}': access denied. "
            f"Grant get/list on {absence.kind.lower()} resources or rerun with broader credentials"
        )
    if absence.reason == "deadline":
        return f"Lookup of {absence.kind} '{absence.name}' timed out - rerun with a longer --timeout"
    if absence.reason == "not_found":
        return create_hint or f"Create {absence.kind} '{absence.name}' or fix the reference to it"
    return f"Lookup of {absence.kind} '{absence.name}' failed - check API server health and rerun"
