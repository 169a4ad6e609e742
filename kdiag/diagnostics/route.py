"""Route (Ingress) check catalog."""

from __future__ import annotations

from typing import Any, Dict, Iterator, List, Optional, Tuple

from kdiag.core.models import Absence, CheckResult, CheckStatus, SubjectInfo
from kdiag.core.objects import age_of, dig, ingress_backend_services, ingress_tls_secrets
from kdiag.diagnostics.registry import CheckOptions, CheckRegistry

PASSED = CheckStatus.PASSED
FAILED = CheckStatus.FAILED
WARNING = CheckStatus.WARNING

CURRENT_API_VERSION = "networking.k8s.io/v1"
_CLASS_ANNOTATION = "kubernetes.io/ingress.class"
_TLS_KEYS = ("tls.crt", "tls.key")


def _ingress_class(ingress: Dict[str, Any]) -> str:
    return (
        dig(ingress, "spec", "ingressClassName", default="")
        or dig(ingress, "metadata", "annotations", _CLASS_ANNOTATION, default="")
        or ""
    )


def _backend_refs(ingress: Dict[str, Any]) -> Iterator[Tuple[str, Dict[str, Any]]]:
    """Yield (where, backend) for the default backend and every rule path."""
    default = dig(ingress, "spec", "defaultBackend")
    if default:
        yield "default backend", default
    for rule in dig(ingress, "spec", "rules", default=[]) or []:
        host = rule.get("host") or "*"
        for path in dig(rule, "http", "paths", default=[]) or []:
            yield f"{host}{path.get('path') or '/'}", path.get("backend") or {}


def _absence_for(info: SubjectInfo, kind: str, name: str) -> Absence:
    return info.absence(kind, name) or Absence(kind=kind, name=name, reason="error", detail="not gathered")


def check_existence(info: SubjectInfo, options: CheckOptions) -> CheckResult:
    ingress = info.primary
    return CheckResult(
        name="Ingress Existence",
        status=PASSED,
        message="Ingress exists",
        details={
            "name": info.ref.name,
            "namespace": info.ref.namespace,
            "class": _ingress_class(ingress) or "<none>",
            "created": dig(ingress, "metadata", "creationTimestamp", default="") or "",
            "age": age_of(ingress, info.gathered_at),
        },
    )


def check_configuration(info: SubjectInfo, options: CheckOptions) -> CheckResult:
    ingress = info.primary
    rules = dig(ingress, "spec", "rules", default=[]) or []
    api_version = ingress.get("apiVersion") or CURRENT_API_VERSION
    issues: List[str] = []
    warnings: List[str] = []

    if not rules and not dig(ingress, "spec", "defaultBackend"):
        issues.append("Ingress has no rules and no default backend")
    for rule in rules:
        if not rule.get("host") and not dig(ingress, "spec", "defaultBackend"):
            warnings.append("Catch-all rule (no host) and no default backend")
        if not dig(rule, "http", "paths"):
            issues.append(f"Rule for host {rule.get('host') or '*'} has no HTTP paths")
            continue
        for path in rule["http"]["paths"]:
            if not path.get("pathType"):
                warnings.append(f"Path {path.get('path') or '/'} has no pathType")

    if not _ingress_class(ingress):
        warnings.append("No ingress class specified; the cluster default controller must pick it up")
    if api_version != CURRENT_API_VERSION:
        warnings.append(f"Deprecated API version {api_version}")

    details = {
        "class": _ingress_class(ingress) or "<none>",
        "rulesCount": str(len(rules)),
        "apiVersion": api_version,
    }
    if warnings:
        details["warnings"] = "; ".join(warnings)

    if issues:
        return CheckResult(
            name="Ingress Configuration",
            status=FAILED,
            message=f"Ingress configuration issues: {'; '.join(issues)}",
            suggestion="Add at least one rule with HTTP paths or a default backend",
            details={**details, "issues": "; ".join(issues)},
        )
    if warnings:
        return CheckResult(
            name="Ingress Configuration",
            status=WARNING,
            message=f"Ingress configuration warnings: {len(warnings)}",
            suggestion="Set spec.ingressClassName and pathType on every path",
            details=details,
        )
    return CheckResult(name="Ingress Configuration", status=PASSED, message="Ingress configuration is valid", details=details)


def _port_problem(svc: Dict[str, Any], port: Dict[str, Any]) -> Optional[str]:
    svc_ports = dig(svc, "spec", "ports", default=[]) or []
    number = port.get("number")
    pname = port.get("name")
    if number is not None and not any(p.get("port") == number for p in svc_ports):
        return f"port {number} not exposed"
    if pname and not any(p.get("name") == pname for p in svc_ports):
        return f"port name {pname} not exposed"
    return None


def check_backends(info: SubjectInfo, options: CheckOptions) -> CheckResult:
    ingress = info.primary
    problems: List[str] = []
    unverified: List[str] = []
    missing: List[str] = []
    service_count = 0

    for where, backend in _backend_refs(ingress):
        svc_ref = backend.get("service")
        if not svc_ref:
            if not backend.get("resource"):
                problems.append(f"{where}: backend has no service")
            continue
        service_count += 1
        svc_name = svc_ref.get("name") or ""
        svc = info.dependent("Service", svc_name)
        if svc is None:
            absence = _absence_for(info, "Service", svc_name)
            if absence.reason == "not_found":
                problems.append(f"{where}: service {svc_name} not found")
                if svc_name not in missing:
                    missing.append(svc_name)
            else:
                unverified.append(f"{svc_name} ({absence.reason})")
            continue
        port_problem = _port_problem(svc, svc_ref.get("port") or {})
        if port_problem:
            problems.append(f"{where}: service {svc_name} {port_problem}")

    details = {"serviceCount": str(service_count)}
    if problems:
        details["problems"] = "; ".join(problems)
        message = f"Backend service issues found: {len(problems)} problems"
        if missing:
            details["missing"] = ", ".join(missing)
            message += f" (missing: {', '.join(missing)})"
        return CheckResult(
            name="Backend Services",
            status=FAILED,
            message=message,
            suggestion="Create the missing services or fix backend service names and ports",
            details=details,
        )
    if unverified:
        details["unverified"] = ", ".join(unverified)
        return CheckResult(
            name="Backend Services",
            status=WARNING,
            message=f"Could not verify {len(unverified)} backend services",
            suggestion="Grant get on services in this namespace or rerun with a longer --timeout",
            details=details,
        )
    return CheckResult(
        name="Backend Services",
        status=PASSED,
        message=f"All {service_count} backend services exist",
        details={**details, "status": "ok"},
    )


def check_backend_endpoints(info: SubjectInfo, options: CheckOptions) -> CheckResult:
    issues: List[str] = []
    unverified: List[str] = []
    ready = 0
    total = 0

    for svc_name in ingress_backend_services(info.primary):
        endpoints = info.dependent("Endpoints", svc_name)
        if endpoints is None:
            absence = _absence_for(info, "Endpoints", svc_name)
            if absence.reason == "not_found":
                issues.append(f"Endpoints for service {svc_name} not found")
            else:
                unverified.append(f"{svc_name} ({absence.reason})")
            continue
        subsets = endpoints.get("subsets") or []
        if not subsets:
            issues.append(f"Service {svc_name} has no endpoints")
            continue
        svc_ready = sum(len(s.get("addresses") or []) for s in subsets)
        svc_total = svc_ready + sum(len(s.get("notReadyAddresses") or []) for s in subsets)
        if svc_ready == 0:
            issues.append(f"Service {svc_name} has no ready endpoints")
        ready += svc_ready
        total += svc_total

    details = {
        "readyEndpoints": str(ready),
        "totalEndpoints": str(total),
        "readyRatio": f"{ready}/{total}",
    }
    if unverified:
        details["unverified"] = ", ".join(unverified)

    if issues:
        return CheckResult(
            name="Backend Endpoints",
            status=FAILED,
            message=f"Backend endpoint issues: {'; '.join(issues)}",
            suggestion="Check that backend pods are running and match the service selectors",
            details={**details, "issues": "; ".join(issues)},
        )
    if unverified and ready == 0:
        return CheckResult(
            name="Backend Endpoints",
            status=WARNING,
            message="Backend endpoints could not be verified",
            suggestion="Grant get on endpoints in this namespace or rerun with a longer --timeout",
            details=details,
        )
    if ready == 0:
        return CheckResult(
            name="Backend Endpoints",
            status=FAILED,
            message="No ready endpoints found for any backend services",
            suggestion="Check that backend pods are running and ready",
            details=details,
        )
    if ready < total or unverified:
        return CheckResult(
            name="Backend Endpoints",
            status=WARNING,
            message=f"Only {ready} of {total} backend endpoints are ready",
            suggestion="Check readiness checks of the backend pods",
            details=details,
        )
    return CheckResult(
        name="Backend Endpoints", status=PASSED, message=f"All {total} backend endpoints are ready", details=details
    )


def check_ssl(info: SubjectInfo, options: CheckOptions) -> CheckResult:
    ingress = info.primary
    tls_blocks = dig(ingress, "spec", "tls", default=[]) or []
    details = {"tlsCount": str(len(tls_blocks))}
    if not tls_blocks:
        return CheckResult(
            name="SSL Configuration",
            status=CheckStatus.SKIPPED,
            message="Ingress has no TLS configuration",
            details=details,
        )

    issues: List[str] = []
    warnings: List[str] = []
    unverified: List[str] = []
    for tls in tls_blocks:
        if not tls.get("secretName"):
            issues.append(f"TLS block for hosts {', '.join(tls.get('hosts') or []) or '*'} has no secretName")
        if not tls.get("hosts"):
            warnings.append("TLS block has no hosts")

    for secret_name in ingress_tls_secrets(ingress):
        secret = info.dependent("Secret", secret_name)
        if secret is None:
            absence = _absence_for(info, "Secret", secret_name)
            if absence.reason == "not_found":
                issues.append(f"TLS secret {secret_name} not found")
            else:
                unverified.append(f"{secret_name} ({absence.reason})")
            continue
        if secret.get("type") not in (None, "kubernetes.io/tls"):
            warnings.append(f"Secret {secret_name} has type {secret.get('type')}, expected kubernetes.io/tls")
        keys = (secret.get("data") or {}).keys()
        absent_keys = [k for k in _TLS_KEYS if k not in keys]
        if absent_keys:
            issues.append(f"Secret {secret_name} is missing {', '.join(absent_keys)}")

    if issues:
        return CheckResult(
            name="SSL Configuration",
            status=FAILED,
            message=f"TLS configuration issues: {'; '.join(issues)}",
            suggestion="Create the TLS secret with tls.crt and tls.key, or fix the secretName",
            details={**details, "issues": "; ".join(issues)},
        )
    if warnings or unverified:
        if warnings:
            details["warnings"] = "; ".join(warnings)
        return CheckResult(
            name="SSL Configuration",
            status=WARNING,
            message="; ".join(warnings + [f"Could not verify TLS secret {u}" for u in unverified]),
            suggestion=(
                "Grant get on secrets in this namespace to verify certificates"
                if unverified
                else "Use kubernetes.io/tls secrets and list the served hosts in each tls block"
            ),
            details=details,
        )
    return CheckResult(name="SSL Configuration", status=PASSED, message="TLS configuration is valid", details=details)


def build_route_registry() -> CheckRegistry:
    return CheckRegistry(
        {
            "existence": check_existence,
            "config": check_configuration,
            "backends": check_backends,
            "endpoints": check_backend_endpoints,
            "ssl": check_ssl,
        }
    )


def default_route_selection(info: SubjectInfo) -> List[str]:
    """SSL is only checked by default when the ingress declares TLS."""
    names = ["existence", "config", "backends", "endpoints"]
    if dig(info.primary, "spec", "tls"):
        names.append("ssl")
    return names
