"""Cluster check catalog: API server connectivity, node health, control plane and DNS pods."""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence

from kdiag.core.models import Absence, CheckResult, CheckStatus, ResourceRef, SubjectInfo
from kdiag.core.objects import (
    CONTROL_PLANE_COMPONENTS,
    CONTROL_PLANE_SELECTOR,
    DNS_SELECTOR,
    SYSTEM_NAMESPACE,
    dig,
    labels_of,
    name_of,
    node_condition_issues,
)
from kdiag.diagnostics.registry import CheckOptions, CheckRegistry
from kdiag.diagnostics.suggestions import unverified_result

PASSED = CheckStatus.PASSED
FAILED = CheckStatus.FAILED
WARNING = CheckStatus.WARNING

CLUSTER_REF = ResourceRef(kind="Cluster", namespace="", name="")

SLOW_RESPONSE_SECONDS = 5.0

_NODE_SUGGESTIONS = {
    "NotReady": "Check node status with 'kubectl describe node'",
    "MemoryPressure": "Free up memory or add more nodes",
    "DiskPressure": "Clean up disk space or add storage",
    "PIDPressure": "Reduce running processes or increase PID limits",
    "NetworkUnavailable": "Check network configuration and CNI",
}


def _listed(info: SubjectInfo, kind: str, key: str) -> Optional[Absence]:
    """The absence for a list call keyed by `key`, or None when the list succeeded."""
    absence = info.absence(kind, key)
    if absence is None and kind not in info.dependents:
        absence = Absence(kind=kind, name=key, reason="error", detail="not gathered")
    return absence


def _is_running(pod: Dict[str, Any]) -> bool:
    return dig(pod, "status", "phase") == "Running"


def _system_pods(info: SubjectInfo, label: str, values: Sequence[str]) -> List[Dict[str, Any]]:
    return [p for p in info.dependents_of("Pod") if labels_of(p).get(label) in values]


def check_connectivity(info: SubjectInfo, options: CheckOptions) -> CheckResult:
    version = dig(info.primary, "version", "gitVersion", default="unknown") or "unknown"
    raw = dig(info.primary, "status", "responseSeconds", default="0") or "0"
    seconds = float(raw)
    details = {"serverVersion": version, "responseTime": f"{seconds:.3f}s"}
    message = f"Connected to API server {version} (response time: {seconds:.3f}s)"
    if seconds > SLOW_RESPONSE_SECONDS:
        return CheckResult(
            name="API Server Connectivity",
            status=WARNING,
            message=f"{message} - slow response",
            suggestion="API server response is slow, check network connectivity and API server load",
            details=details,
        )
    return CheckResult(name="API Server Connectivity", status=PASSED, message=message, details=details)


def check_nodes(info: SubjectInfo, options: CheckOptions) -> List[CheckResult]:
    absence = _listed(info, "Node", "all")
    if absence is not None:
        return [unverified_result("Node Health Overview", absence, "Cluster nodes could not be listed")]

    nodes = sorted(info.dependents_of("Node"), key=name_of)
    if not nodes:
        return [
            CheckResult(
                name="Node Health Overview",
                status=FAILED,
                message="No nodes found in cluster",
                suggestion="Ensure the cluster has at least one node",
                details={"totalNodes": "0", "readyNodes": "0"},
            )
        ]

    per_node: List[CheckResult] = []
    ready = 0
    for node in nodes:
        issues = node_condition_issues(node)
        node_ready = "NotReady" not in issues
        if node_ready:
            ready += 1
        if not issues:
            continue
        per_node.append(
            CheckResult(
                name=f"Node: {name_of(node)}",
                status=FAILED if not node_ready else WARNING,
                message=f"Node has issues: {', '.join(issues)}",
                suggestion=_NODE_SUGGESTIONS.get(issues[0], "Check node logs and status for more details"),
                details={"node": name_of(node), "issues": ", ".join(issues), "ready": str(node_ready).lower()},
            )
        )

    total = len(nodes)
    details = {"totalNodes": str(total), "readyNodes": str(ready)}
    if not per_node:
        overview = CheckResult(
            name="Node Health Overview",
            status=PASSED,
            message=f"All {total} nodes are healthy and ready",
            details=details,
        )
    else:
        problem = [r.details["node"] for r in per_node]
        overview = CheckResult(
            name="Node Health Overview",
            status=FAILED if ready == 0 else WARNING,
            message=f"{ready}/{total} nodes ready, {len(problem)} nodes with issues",
            suggestion="Check the individual node issues below",
            details={**details, "problemNodes": ", ".join(problem)},
        )
    return [overview] + per_node


def check_control_plane(info: SubjectInfo, options: CheckOptions) -> List[CheckResult]:
    absence = _listed(info, "Pod", CONTROL_PLANE_SELECTOR)
    if absence is not None:
        return [unverified_result("Control Plane Overview", absence, "Control plane components could not be listed")]

    components: Dict[str, List[Dict[str, Any]]] = {}
    for pod in _system_pods(info, "component", CONTROL_PLANE_COMPONENTS):
        components.setdefault(labels_of(pod)["component"], []).append(pod)

    if not components:
        return [
            CheckResult(
                name="Control Plane Overview",
                status=WARNING,
                message="No control plane components found (might be a managed cluster)",
                suggestion="Managed clusters (EKS, GKE, AKS) run the control plane outside the cluster",
                details={"componentsFound": "0"},
            )
        ]

    results: List[CheckResult] = []
    for component in sorted(components):
        pods = components[component]
        running = sum(1 for p in pods if _is_running(p))
        details = {"component": component, "runningPods": str(running), "totalPods": str(len(pods))}
        if running == 0:
            results.append(
                CheckResult(
                    name=f"Control Plane: {component}",
                    status=FAILED,
                    message=f"{component}: no pods running",
                    suggestion=f"Restart {component} or check its configuration",
                    details=details,
                )
            )
        elif running < len(pods):
            results.append(
                CheckResult(
                    name=f"Control Plane: {component}",
                    status=WARNING,
                    message=f"{component}: {running}/{len(pods)} pods running",
                    suggestion=f"Check {component} pod logs: kubectl logs -n {SYSTEM_NAMESPACE} -l component={component}",
                    details=details,
                )
            )
        else:
            results.append(
                CheckResult(
                    name=f"Control Plane: {component}",
                    status=PASSED,
                    message=f"{component}: {running}/{len(pods)} pods running",
                    details=details,
                )
            )

    healthy = all(r.status is PASSED for r in results)
    overview = CheckResult(
        name="Control Plane Overview",
        status=PASSED if healthy else WARNING,
        message="Control plane components are healthy" if healthy else "Some control plane components have issues",
        suggestion=None if healthy else "Check the individual component results below",
        details={"componentsFound": str(len(components))},
    )
    return [overview] + results


def check_dns(info: SubjectInfo, options: CheckOptions) -> CheckResult:
    absence = _listed(info, "Pod", DNS_SELECTOR)
    if absence is not None:
        return unverified_result("DNS Health", absence, "DNS pods could not be listed")

    pods = _system_pods(info, "k8s-app", ("kube-dns", "coredns"))
    if not pods:
        return CheckResult(
            name="DNS Health",
            status=FAILED,
            message=f"No DNS pods found in {SYSTEM_NAMESPACE} namespace",
            suggestion="Install CoreDNS or kube-dns for cluster DNS resolution",
            details={"dnsPodsRunning": "0", "dnsPodsTotal": "0"},
        )

    running = sum(1 for p in pods if _is_running(p))
    details = {"dnsPodsRunning": str(running), "dnsPodsTotal": str(len(pods))}
    if running == 0:
        return CheckResult(
            name="DNS Health",
            status=FAILED,
            message="No DNS pods are running",
            suggestion="Check DNS pod logs and restart the DNS deployment",
            details=details,
        )
    if running < len(pods):
        return CheckResult(
            name="DNS Health",
            status=WARNING,
            message=f"DNS partially functional: {running}/{len(pods)} pods running",
            suggestion="Some DNS pods are not running, check pod status and logs",
            details=details,
        )
    return CheckResult(
        name="DNS Health",
        status=PASSED,
        message=f"DNS is healthy: {running}/{len(pods)} pods running",
        details=details,
    )


def build_cluster_registry() -> CheckRegistry:
    return CheckRegistry(
        {
            "connectivity": check_connectivity,
            "nodes": check_nodes,
            "control-plane": check_control_plane,
            "dns": check_dns,
        }
    )


def default_cluster_selection(info: SubjectInfo) -> List[str]:
    return ["connectivity", "nodes", "control-plane", "dns"]
