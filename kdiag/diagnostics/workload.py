"""
Workload (Pod) check catalog.

Every check reads only the SubjectInfo snapshot. "Now" is `info.gathered_at`, so re-running a
check on the same snapshot yields the same results.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Dict, List

from kubernetes.utils import parse_quantity

from kdiag.core.models import Absence, CheckResult, CheckStatus, SubjectInfo
from kdiag.core.objects import (
    age_of,
    container_statuses,
    dig,
    init_container_statuses,
    pod_condition,
    waiting_state,
)
from kdiag.diagnostics.log_pattern_matcher import analyze_crash_loop
from kdiag.diagnostics.registry import CheckOptions, CheckRegistry
from kdiag.diagnostics.suggestions import (
    absence_suggestion,
    events_unavailable,
    image_pull_suggestion,
    is_pod_failing,
    scheduling_suggestion,
    unverified_result,
)

PASSED = CheckStatus.PASSED
FAILED = CheckStatus.FAILED
WARNING = CheckStatus.WARNING
SKIPPED = CheckStatus.SKIPPED

_PULL_FAILURE_REASONS = ("ImagePullBackOff", "ErrImagePull")
_FAILING_INIT_REASONS = ("CrashLoopBackOff", "ImagePullBackOff", "ErrImagePull", "CreateContainerConfigError")


def _pod_name(info: SubjectInfo) -> str:
    return info.ref.name


def _ns(info: SubjectInfo) -> str:
    return info.ref.namespace


# --- basic ---


def check_pod_status(info: SubjectInfo, options: CheckOptions) -> CheckResult:
    pod = info.primary
    phase = dig(pod, "status", "phase", default="") or ""
    name = "Pod Status"

    if phase == "Running":
        statuses = container_statuses(pod)
        ready = sum(1 for cs in statuses if cs.get("ready"))
        total = len(statuses)
        cond = pod_condition(pod, "Ready")
        details = {"phase": phase, "ready": (cond or {}).get("status") or "Unknown"}
        if ready == total:
            return CheckResult(name=name, status=PASSED, message="Pod is running and ready", details=details)
        return CheckResult(
            name=name,
            status=WARNING,
            message=f"Pod is running but not all containers are ready ({ready}/{total})",
            suggestion="Check container readiness checks and container logs",
            details=details,
        )

    if phase == "Pending":
        return CheckResult(
            name=name,
            status=FAILED,
            message="Pod is stuck in Pending state",
            suggestion="Check scheduling constraints, resource availability, and node conditions",
            details={"phase": phase, "age": age_of(pod, info.gathered_at)},
        )

    if phase == "Failed":
        reason = dig(pod, "status", "reason", default="") or ""
        return CheckResult(
            name=name,
            status=FAILED,
            message=f"Pod has failed: {dig(pod, 'status', 'message', default='') or reason or 'unknown reason'}",
            suggestion="Check pod events and container logs for the failure cause",
            details={"phase": phase, "reason": reason},
        )

    if phase == "Succeeded":
        return CheckResult(name=name, status=PASSED, message="Pod completed successfully", details={"phase": phase})

    return CheckResult(
        name=name,
        status=WARNING,
        message=f"Pod is in unknown phase: {phase or 'Unknown'}",
        suggestion="Check node connectivity; the kubelet may not be reporting pod status",
        details={"phase": phase or "Unknown"},
    )


# --- scheduling ---


def _quantity(value: Any) -> Decimal:
    if value in (None, ""):
        return Decimal(0)
    try:
        return parse_quantity(value)
    except ValueError:
        return Decimal(0)


def _fmt_cpu(q: Decimal) -> str:
    if q == q.to_integral_value():
        return str(int(q))
    return f"{int(q * 1000)}m"


def _fmt_memory(q: Decimal) -> str:
    b = int(q)
    for unit, size in (("Gi", 1024**3), ("Mi", 1024**2), ("Ki", 1024)):
        if b >= size and b % size == 0:
            return f"{b // size}{unit}"
    return str(b)


def _node_conditions(node_name: str, node: Dict[str, Any]) -> CheckResult:
    name = f"Node {node_name} - Conditions"
    issues: List[str] = []
    for cond in dig(node, "status", "conditions", default=[]) or []:
        ctype, status = cond.get("type"), cond.get("status")
        if ctype == "Ready" and status != "True":
            issues.append(f"Node not ready: {cond.get('message') or cond.get('reason') or status}")
        elif ctype in ("MemoryPressure", "DiskPressure", "PIDPressure", "NetworkUnavailable") and status == "True":
            issues.append(f"Node has {ctype}")

    if issues:
        return CheckResult(
            name=name,
            status=FAILED,
            message=f"Node has issues: {'; '.join(issues)}",
            suggestion="Check node health and consider cordoning and draining the node",
            details={"node": node_name, "issues": "; ".join(issues)},
        )
    return CheckResult(name=name, status=PASSED, message="Node is healthy", details={"node": node_name})


def _resource_fit(pod: Dict[str, Any], node: Dict[str, Any]) -> CheckResult:
    name = "Resource Fit"
    req_cpu = Decimal(0)
    req_mem = Decimal(0)
    for c in dig(pod, "spec", "containers", default=[]) or []:
        req_cpu += _quantity(dig(c, "resources", "requests", "cpu"))
        req_mem += _quantity(dig(c, "resources", "requests", "memory"))

    alloc = dig(node, "status", "allocatable", default={}) or {}
    alloc_cpu = _quantity(alloc.get("cpu"))
    alloc_mem = _quantity(alloc.get("memory"))

    details = {
        "cpu": f"{_fmt_cpu(req_cpu)}/{_fmt_cpu(alloc_cpu)}",
        "memory": f"{_fmt_memory(req_mem)}/{_fmt_memory(alloc_mem)}",
    }
    issues: List[str] = []
    # Missing allocatable means the node has not reported capacity yet; nothing to compare.
    if alloc.get("cpu") and req_cpu > alloc_cpu:
        issues.append(f"CPU request ({_fmt_cpu(req_cpu)}) exceeds node allocatable ({_fmt_cpu(alloc_cpu)})")
    if alloc.get("memory") and req_mem > alloc_mem:
        issues.append(f"Memory request ({_fmt_memory(req_mem)}) exceeds node allocatable ({_fmt_memory(alloc_mem)})")

    if issues:
        return CheckResult(
            name=name,
            status=FAILED,
            message="; ".join(issues),
            suggestion="Reduce resource requests or schedule onto a larger node",
            details=details,
        )
    return CheckResult(name=name, status=PASSED, message="Pod resource requests fit on node", details=details)


def check_scheduling(info: SubjectInfo, options: CheckOptions) -> List[CheckResult]:
    pod = info.primary
    node_name = dig(pod, "spec", "nodeName", default="") or ""

    if not node_name:
        cond = pod_condition(pod, "PodScheduled") or {}
        details = {"scheduled": "false", "message": cond.get("message") or ""}
        for ev in info.events:
            if ev.get("reason") == "FailedScheduling":
                details["event"] = ev.get("message") or ""
                break
        return [
            CheckResult(
                name="Pod Scheduling",
                status=FAILED,
                message="Pod is not scheduled to any node",
                suggestion=scheduling_suggestion(info.events),
                details=details,
            )
        ]

    results = [
        CheckResult(
            name="Pod Scheduling",
            status=PASSED,
            message=f"Pod is scheduled to node {node_name}",
            details={"scheduled": "true", "node": node_name},
        )
    ]

    node = info.dependent("Node", node_name)
    if node is None:
        absence = info.absence("Node", node_name) or Absence(kind="Node", name=node_name, reason="error", detail="not gathered")
        results.append(
            unverified_result(f"Node {node_name} - Conditions", absence, "Node could not be read; conditions unknown")
        )
        return results

    results.append(_node_conditions(node_name, node))
    results.append(_resource_fit(pod, node))
    return results


# --- images ---


def _image_results(prefix: str, spec_images: Dict[str, str], statuses: List[Dict[str, Any]]) -> List[CheckResult]:
    out: List[CheckResult] = []
    for cs in statuses:
        cname = cs.get("name") or ""
        image = cs.get("image") or spec_images.get(cname, "")
        waiting = waiting_state(cs)
        if not waiting:
            continue
        reason = waiting.get("reason") or ""
        message = waiting.get("message") or ""
        if reason in _PULL_FAILURE_REASONS:
            out.append(
                CheckResult(
                    name=f"{prefix} {cname} - Image Pull",
                    status=FAILED,
                    message=f"Failed to pull image: {message or reason}",
                    suggestion=image_pull_suggestion(image, message),
                    details={"image": image, "reason": reason},
                )
            )
        elif reason == "InvalidImageName":
            out.append(
                CheckResult(
                    name=f"{prefix} {cname} - Image Name",
                    status=FAILED,
                    message=f"Invalid image name: {image}",
                    suggestion="Check image name format and registry URL",
                    details={"image": image},
                )
            )
        elif "image" in reason.lower():
            out.append(
                CheckResult(
                    name=f"{prefix} {cname} - Image Issue",
                    status=WARNING,
                    message=f"Image issue: {reason}",
                    suggestion=image_pull_suggestion(image, message),
                    details={"image": image, "reason": reason},
                )
            )
    return out


def check_images(info: SubjectInfo, options: CheckOptions) -> List[CheckResult]:
    pod = info.primary
    spec_images = {
        c.get("name"): c.get("image") or ""
        for c in (dig(pod, "spec", "containers", default=[]) or []) + (dig(pod, "spec", "initContainers", default=[]) or [])
    }
    statuses = container_statuses(pod)
    init_statuses = init_container_statuses(pod)

    results = _image_results("Container", spec_images, statuses)
    results += _image_results("Init Container", spec_images, init_statuses)
    if results:
        return results

    if not statuses and not init_statuses:
        return [
            CheckResult(
                name="Container Images",
                status=SKIPPED,
                message="No container statuses reported yet",
            )
        ]
    return [CheckResult(name="Container Images", status=PASSED, message="All container images pulled successfully")]


# --- rbac ---


def check_rbac(info: SubjectInfo, options: CheckOptions) -> List[CheckResult]:
    pod = info.primary
    sa_name = dig(pod, "spec", "serviceAccountName", default="") or ""
    results: List[CheckResult] = []

    if not sa_name:
        results.append(
            CheckResult(
                name="RBAC - Service Account",
                status=PASSED,
                message="Using default service account",
                details={"serviceAccount": "default"},
            )
        )
    elif info.dependent("ServiceAccount", sa_name) is not None:
        results.append(
            CheckResult(
                name="RBAC - Service Account",
                status=PASSED,
                message=f"Service account '{sa_name}' exists",
                details={"serviceAccount": sa_name},
            )
        )
    else:
        absence = info.absence("ServiceAccount", sa_name) or Absence(
            kind="ServiceAccount", name=sa_name, reason="error", detail="not gathered"
        )
        if absence.reason == "not_found":
            results.append(
                CheckResult(
                    name="RBAC - Service Account",
                    status=FAILED,
                    message=f"Service account '{sa_name}' not found",
                    suggestion=f"Create service account: kubectl create serviceaccount {sa_name} -n {_ns(info)}",
                    details={"serviceAccount": sa_name},
                )
            )
        else:
            results.append(
                unverified_result(
                    "RBAC - Service Account", absence, f"Service account '{sa_name}' could not be verified"
                )
            )

    unavailable = events_unavailable(info, "RBAC - Permission Check")
    if unavailable is not None:
        results.append(unavailable)
        return results

    for ev in info.events:
        msg = ev.get("message") or ""
        lower = msg.lower()
        if "forbidden" in lower or "unauthorized" in lower or ("FailedMount" in (ev.get("reason") or "") and "secret" in lower):
            results.append(
                CheckResult(
                    name="RBAC - Permission Check",
                    status=FAILED,
                    message="RBAC permission issues detected in events",
                    suggestion="Check Role/ClusterRole bindings for the service account and secret access",
                    details={"event": msg},
                )
            )
            return results

    results.append(
        CheckResult(name="RBAC - Permission Check", status=PASSED, message="No RBAC permission issues detected in events")
    )
    return results


# --- logs ---


def check_logs(info: SubjectInfo, options: CheckOptions) -> List[CheckResult]:
    pod = info.primary
    if not info.log_capture_requested:
        return [
            CheckResult(
                name="Container Logs",
                status=SKIPPED,
                message="Log capture not requested",
                suggestion="Rerun with --include-logs to analyze container logs",
            )
        ]

    log_absences = [a for a in info.absences if a.kind == "Log"]
    if not info.logs and not log_absences:
        message = "No container logs available"
        if not is_pod_failing(pod):
            message = "Pod is not failing; logs were not captured"
        return [CheckResult(name="Container Logs", status=SKIPPED, message=message)]

    statuses = {cs.get("name"): cs for cs in container_statuses(pod) + init_container_statuses(pod)}
    results: List[CheckResult] = []

    for cname, text in info.logs.items():
        if not text.strip():
            results.append(
                CheckResult(
                    name=f"Container {cname} - Logs",
                    status=WARNING,
                    message="No log output available",
                    suggestion="Container may be failing before writing logs - check command, args and entrypoint",
                )
            )
        else:
            results.append(options.log_matcher.classify(f"Container {cname} - Log Analysis", text))

        cs = statuses.get(cname) or {}
        waiting = waiting_state(cs) or {}
        restarts = int(cs.get("restartCount") or 0)
        if waiting.get("reason") == "CrashLoopBackOff" and restarts > 0:
            exit_code = dig(cs, "lastState", "terminated", "exitCode")
            results.append(
                analyze_crash_loop(
                    f"Container {cname} - CrashLoopBackOff",
                    text,
                    restarts,
                    last_exit_code=int(exit_code) if exit_code is not None else None,
                )
            )

    for absence in log_absences:
        results.append(
            CheckResult(
                name=f"Container {absence.name} - Logs",
                status=WARNING,
                message="Could not retrieve container logs",
                suggestion=absence_suggestion(absence),
                details={"reason": absence.reason},
            )
        )
    return results


# --- init containers ---


def check_init_containers(info: SubjectInfo, options: CheckOptions) -> List[CheckResult]:
    pod = info.primary
    init_specs = dig(pod, "spec", "initContainers", default=[]) or []
    if not init_specs:
        return [CheckResult(name="Init Containers", status=SKIPPED, message="Pod has no init containers")]

    statuses = {cs.get("name"): cs for cs in init_container_statuses(pod)}
    results: List[CheckResult] = []
    for spec in init_specs:
        cname = spec.get("name") or ""
        name = f"Init Container {cname}"
        cs = statuses.get(cname)
        if cs is None:
            results.append(
                CheckResult(name=name, status=WARNING, message="Init container status not yet reported")
            )
            continue

        terminated = dig(cs, "state", "terminated")
        running = dig(cs, "state", "running")
        waiting = waiting_state(cs)

        if terminated:
            code = int(terminated.get("exitCode") or 0)
            if code == 0:
                results.append(
                    CheckResult(name=name, status=PASSED, message="Init container completed successfully")
                )
            else:
                results.append(
                    CheckResult(
                        name=name,
                        status=FAILED,
                        message=f"Init container failed with exit code {code}",
                        suggestion=f"Check init container logs: kubectl logs {_pod_name(info)} -c {cname} -n {_ns(info)}",
                        details={"exitCode": str(code), "reason": terminated.get("reason") or ""},
                    )
                )
        elif running:
            results.append(
                CheckResult(
                    name=name,
                    status=WARNING,
                    message="Init container is still running",
                    suggestion="Wait for completion or check init container logs if it hangs",
                    details={"started": running.get("startedAt") or ""},
                )
            )
        elif waiting:
            reason = waiting.get("reason") or ""
            results.append(
                CheckResult(
                    name=name,
                    status=FAILED if reason in _FAILING_INIT_REASONS else WARNING,
                    message=f"Init container is waiting: {reason}",
                    suggestion="Check init container image and dependencies",
                    details={"reason": reason, "message": waiting.get("message") or ""},
                )
            )
        else:
            results.append(
                CheckResult(
                    name=name,
                    status=WARNING,
                    message="Init container state is unknown",
                    suggestion="Check pod events for init container progress",
                )
            )
    return results


# --- resources ---


def check_resources(info: SubjectInfo, options: CheckOptions) -> List[CheckResult]:
    pod = info.primary
    results: List[CheckResult] = []

    qos = dig(pod, "status", "qosClass", default="") or ""
    if qos == "Guaranteed":
        results.append(
            CheckResult(name="Resource QoS", status=PASSED, message="Pod has Guaranteed QoS class", details={"qosClass": qos})
        )
    elif qos == "Burstable":
        results.append(
            CheckResult(name="Resource QoS", status=PASSED, message="Pod has Burstable QoS class", details={"qosClass": qos})
        )
    elif qos == "BestEffort":
        results.append(
            CheckResult(
                name="Resource QoS",
                status=WARNING,
                message="Pod has BestEffort QoS class and will be evicted first under pressure",
                suggestion="Set resource requests and limits for all containers",
                details={"qosClass": qos},
            )
        )
    else:
        results.append(
            CheckResult(
                name="Resource QoS",
                status=WARNING,
                message="QoS class not yet assigned",
                suggestion="Check pod status; QoS is assigned on admission",
                details={"qosClass": qos or "Unknown"},
            )
        )

    unbounded = [
        c.get("name") or ""
        for c in dig(pod, "spec", "containers", default=[]) or []
        if not dig(c, "resources", "limits") or not dig(c, "resources", "requests")
    ]
    if unbounded:
        results.append(
            CheckResult(
                name="Resource Configuration",
                status=WARNING,
                message="Some containers have no resource requests or limits",
                suggestion="Define CPU and memory requests and limits for predictable scheduling",
                details={"containers": ", ".join(unbounded)},
            )
        )
    else:
        results.append(
            CheckResult(name="Resource Configuration", status=PASSED, message="All containers define requests and limits")
        )

    unavailable = events_unavailable(info, "Resource Events")
    if unavailable is not None:
        results.append(unavailable)
        return results

    for ev in info.events:
        reason = ev.get("reason") or ""
        msg = ev.get("message") or ""
        if reason in ("OOMKilling", "Evicted") or "OOMKilled" in msg or "Insufficient" in msg:
            results.append(
                CheckResult(
                    name="Resource Events",
                    status=FAILED,
                    message=f"Resource pressure detected: {reason}",
                    suggestion=(
                        "Insufficient resources - scale cluster or reduce resource requests"
                        if "Insufficient" in msg
                        else "Increase memory limits or reduce application memory usage"
                    ),
                    details={"event": msg, "reason": reason},
                )
            )
            return results

    results.append(
        CheckResult(name="Resource Events", status=PASSED, message="No resource-related issues found in events")
    )
    return results


# --- network ---


def check_network(info: SubjectInfo, options: CheckOptions) -> List[CheckResult]:
    pod = info.primary
    results: List[CheckResult] = []

    pod_ip = dig(pod, "status", "podIP", default="") or ""
    if pod_ip:
        results.append(
            CheckResult(name="Network - Pod IP", status=PASSED, message=f"Pod has IP {pod_ip}", details={"podIP": pod_ip})
        )
    elif not dig(pod, "spec", "nodeName"):
        results.append(
            CheckResult(
                name="Network - Pod IP",
                status=WARNING,
                message="Pod has no IP address yet (not scheduled)",
                suggestion="Resolve scheduling first; the IP is assigned once the pod lands on a node",
            )
        )
    else:
        results.append(
            CheckResult(
                name="Network - Pod IP",
                status=FAILED,
                message="Pod has no IP address assigned",
                suggestion="Check the CNI plugin on the node and pod sandbox events",
            )
        )

    policy = dig(pod, "spec", "dnsPolicy", default="") or "ClusterFirst"
    nameservers = dig(pod, "spec", "dnsConfig", "nameservers", default=[]) or []
    if policy == "None" and not nameservers:
        results.append(
            CheckResult(
                name="DNS Configuration",
                status=FAILED,
                message="dnsPolicy is None but no dnsConfig nameservers are set",
                suggestion="Add spec.dnsConfig.nameservers or use dnsPolicy ClusterFirst",
                details={"dnsPolicy": policy},
            )
        )
    elif policy == "Default":
        results.append(
            CheckResult(
                name="DNS Configuration",
                status=WARNING,
                message="Pod uses node DNS; cluster service names will not resolve",
                suggestion="Use dnsPolicy ClusterFirst unless node resolution is intended",
                details={"dnsPolicy": policy},
            )
        )
    else:
        results.append(
            CheckResult(
                name="DNS Configuration", status=PASSED, message="DNS policy is valid", details={"dnsPolicy": policy}
            )
        )

    unavailable = events_unavailable(info, "Network Events")
    if unavailable is not None:
        results.append(unavailable)
        return results

    for ev in info.events:
        reason = ev.get("reason") or ""
        msg = ev.get("message") or ""
        lower = msg.lower()
        if reason in ("FailedCreatePodSandBox", "NetworkNotReady") or "network" in lower or "cni" in lower:
            results.append(
                CheckResult(
                    name="Network Events",
                    status=FAILED,
                    message="Network issues detected in events",
                    suggestion="Check CNI plugin health and network policies",
                    details={"event": msg, "reason": reason},
                )
            )
            return results

    results.append(CheckResult(name="Network Events", status=PASSED, message="No network issues found in events"))
    return results


def build_workload_registry() -> CheckRegistry:
    return CheckRegistry(
        {
            "basic": check_pod_status,
            "scheduling": check_scheduling,
            "images": check_images,
            "rbac": check_rbac,
            "logs": check_logs,
            "init-containers": check_init_containers,
            "resources": check_resources,
            "network": check_network,
        }
    )


def default_workload_selection(info: SubjectInfo) -> List[str]:
    """Everything except logs; logs only when capture was requested and the pod is failing."""
    names = ["basic", "scheduling", "images", "rbac"]
    if info.log_capture_requested and is_pod_failing(info.primary):
        names.append("logs")
    names += ["init-containers", "resources", "network"]
    return names