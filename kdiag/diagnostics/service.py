"""Service check catalog: existence, configuration, selector, endpoints and ports."""

from __future__ import annotations

from typing import Any, Dict, List

from kdiag.core.models import Absence, CheckResult, CheckStatus, SubjectInfo
from kdiag.core.objects import age_of, dig, is_pod_ready, selector_string
from kdiag.diagnostics.registry import CheckOptions, CheckRegistry
from kdiag.diagnostics.suggestions import unverified_result

PASSED = CheckStatus.PASSED
FAILED = CheckStatus.FAILED
WARNING = CheckStatus.WARNING

NODE_PORT_RANGE = (30000, 32767)
_PROTOCOLS = ("TCP", "UDP", "SCTP")


def _ports(svc: Dict[str, Any]) -> List[Dict[str, Any]]:
    return list(dig(svc, "spec", "ports", default=[]) or [])


def _selector(svc: Dict[str, Any]) -> Dict[str, str]:
    return dict(dig(svc, "spec", "selector", default={}) or {})


def _is_external_name(svc: Dict[str, Any]) -> bool:
    return dig(svc, "spec", "type") == "ExternalName"


def _external_name_skip(name: str) -> CheckResult:
    return CheckResult(
        name=name,
        status=CheckStatus.SKIPPED,
        message="ExternalName services resolve by DNS and have no selector or endpoints",
    )


def check_existence(info: SubjectInfo, options: CheckOptions) -> CheckResult:
    svc = info.primary
    return CheckResult(
        name="Service Existence",
        status=PASSED,
        message="Service exists",
        details={
            "name": info.ref.name,
            "namespace": info.ref.namespace,
            "type": dig(svc, "spec", "type", default="ClusterIP") or "ClusterIP",
            "created": dig(svc, "metadata", "creationTimestamp", default="") or "",
            "age": age_of(svc, info.gathered_at),
        },
    )


def check_configuration(info: SubjectInfo, options: CheckOptions) -> CheckResult:
    svc = info.primary
    svc_type = dig(svc, "spec", "type", default="ClusterIP") or "ClusterIP"
    ports = _ports(svc)
    issues: List[str] = []

    if not ports and svc_type != "ExternalName":
        issues.append("Service has no ports defined")

    names = [p.get("name") for p in ports if p.get("name")]
    for dup in sorted({n for n in names if names.count(n) > 1}):
        issues.append(f"Duplicate port name {dup}")

    if svc_type == "NodePort":
        lo, hi = NODE_PORT_RANGE
        for p in ports:
            node_port = p.get("nodePort")
            # Unset until the API server allocates one.
            if node_port and not lo <= int(node_port) <= hi:
                issues.append(f"NodePort {node_port} outside default range {lo}-{hi}")
    elif svc_type == "ExternalName" and not dig(svc, "spec", "externalName"):
        issues.append("ExternalName service has no externalName")

    details = {
        "serviceType": svc_type,
        "portCount": str(len(ports)),
        "hasSelector": str(bool(_selector(svc))).lower(),
    }

    if svc_type == "LoadBalancer" and not dig(svc, "status", "loadBalancer", "ingress"):
        return CheckResult(
            name="Service Configuration",
            status=WARNING,
            message="LoadBalancer external address is still pending" + (f"; {'; '.join(issues)}" if issues else ""),
            suggestion="Check the cloud controller manager and load balancer quota",
            details=details,
        )

    if issues:
        return CheckResult(
            name="Service Configuration",
            status=FAILED,
            message=f"Service configuration issues: {'; '.join(issues)}",
            suggestion="Fix the service spec and re-apply it",
            details={**details, "issues": "; ".join(issues)},
        )
    return CheckResult(name="Service Configuration", status=PASSED, message="Service configuration is valid", details=details)


def check_selector(info: SubjectInfo, options: CheckOptions) -> CheckResult:
    svc = info.primary
    if _is_external_name(svc):
        return _external_name_skip("Service Selector")
    selector = _selector(svc)
    if not selector:
        return CheckResult(
            name="Service Selector",
            status=WARNING,
            message="Service has no selector; endpoints must be managed manually",
            suggestion="Add a selector matching the target pod labels, or maintain Endpoints yourself",
            details={"hasSelector": "false"},
        )

    sel = selector_string(selector)
    if "Pod" not in info.dependents:
        absence = info.absence("Pod", sel) or Absence(kind="Pod", name=sel, reason="error", detail="not gathered")
        return unverified_result("Service Selector", absence, "Pods matching the selector could not be listed")

    pods = info.dependents_of("Pod")
    ready = sum(1 for p in pods if is_pod_ready(p))
    details = {"selector": sel, "matchingPods": str(len(pods)), "readyPods": str(ready)}

    if not pods:
        return CheckResult(
            name="Service Selector",
            status=FAILED,
            message="No pods match the service selector",
            suggestion=f"Check pod labels: kubectl get pods -n {info.ref.namespace} -l {sel}",
            details=details,
        )
    if ready == 0:
        return CheckResult(
            name="Service Selector",
            status=WARNING,
            message=f"{len(pods)} pods match the selector but none are ready",
            suggestion="Diagnose the matching pods; the service has no healthy backends",
            details=details,
        )
    return CheckResult(
        name="Service Selector",
        status=PASSED,
        message=f"Selector matches {len(pods)} pods ({ready} ready)",
        details=details,
    )


def check_endpoints(info: SubjectInfo, options: CheckOptions) -> CheckResult:
    svc = info.primary
    if _is_external_name(svc):
        return _external_name_skip("Endpoint Health")
    name = info.ref.name
    has_selector = bool(_selector(svc))
    endpoints = info.dependent("Endpoints", name)

    if endpoints is None:
        absence = info.absence("Endpoints", name) or Absence(
            kind="Endpoints", name=name, reason="error", detail="not gathered"
        )
        if absence.reason != "not_found":
            return unverified_result("Endpoint Health", absence, "Endpoints could not be read")
        return CheckResult(
            name="Endpoint Health",
            status=FAILED if has_selector else WARNING,
            message="Service has no Endpoints object",
            suggestion=(
                "Check that the endpoints controller is running and pods match the selector"
                if has_selector
                else "Service has no selector; create an Endpoints object or add a selector"
            ),
            details={"hasEndpoints": "false", "readyEndpoints": "0", "notReadyEndpoints": "0"},
        )

    ready = 0
    not_ready = 0
    for subset in endpoints.get("subsets") or []:
        ready += len(subset.get("addresses") or [])
        not_ready += len(subset.get("notReadyAddresses") or [])

    details = {
        "hasEndpoints": str(ready + not_ready > 0).lower(),
        "readyEndpoints": str(ready),
        "notReadyEndpoints": str(not_ready),
    }
    if ready == 0:
        return CheckResult(
            name="Endpoint Health",
            status=FAILED,
            message="Service has no ready endpoints",
            suggestion="Check that backend pods are running and passing readiness checks",
            details=details,
        )
    if not_ready:
        return CheckResult(
            name="Endpoint Health",
            status=WARNING,
            message=f"{not_ready} endpoints are not ready",
            suggestion="Check readiness checks of the backend pods",
            details=details,
        )
    return CheckResult(name="Endpoint Health", status=PASSED, message=f"{ready} ready endpoints", details=details)


def check_ports(info: SubjectInfo, options: CheckOptions) -> CheckResult:
    svc = info.primary
    ports = _ports(svc)
    if not ports:
        return CheckResult(
            name="Port Configuration",
            status=WARNING,
            message="Service defines no ports",
            suggestion="Add at least one port to the service",
            details={"portCount": "0"},
        )

    issues: List[str] = []
    named = 0
    for p in ports:
        label = p.get("name") or str(p.get("port"))
        port = p.get("port")
        if not isinstance(port, int) or not 1 <= port <= 65535:
            issues.append(f"port {label}: invalid port {port}")
        target = p.get("targetPort")
        # String targetPort is a named container port.
        if isinstance(target, int) and not 1 <= target <= 65535:
            issues.append(f"port {label}: invalid targetPort {target}")
        protocol = p.get("protocol") or "TCP"
        if protocol not in _PROTOCOLS:
            issues.append(f"port {label}: unsupported protocol {protocol}")
        if p.get("name"):
            named += 1
    if len(ports) > 1 and named < len(ports):
        issues.append("multi-port services must name every port")

    details = {"portCount": str(len(ports))}
    if issues:
        return CheckResult(
            name="Port Configuration",
            status=FAILED,
            message=f"Port configuration issues: {'; '.join(issues)}",
            suggestion="Fix port numbers, names and protocols in the service spec",
            details={**details, "issues": "; ".join(issues)},
        )
    return CheckResult(name="Port Configuration", status=PASSED, message="Port configuration is valid", details=details)


def build_service_registry() -> CheckRegistry:
    return CheckRegistry(
        {
            "existence": check_existence,
            "config": check_configuration,
            "selector": check_selector,
            "endpoints": check_endpoints,
            "ports": check_ports,
        }
    )


def default_service_selection(info: SubjectInfo) -> List[str]:
    return ["existence", "config", "selector", "endpoints", "ports"]
