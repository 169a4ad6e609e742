"""Small read helpers over Kubernetes objects in API JSON (dict) shape."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from dateutil import parser as date_parser


def dig(obj: Any, *path: str, default: Any = None) -> Any:
    """Walk nested dict keys, returning `default` on any missing hop."""
    cur = obj
    for key in path:
        if not isinstance(cur, dict):
            return default
        cur = cur.get(key)
        if cur is None:
            return default
    return cur


def name_of(obj: Dict[str, Any]) -> str:
    return dig(obj, "metadata", "name", default="") or ""


def namespace_of(obj: Dict[str, Any]) -> str:
    return dig(obj, "metadata", "namespace", default="") or ""


def parse_time(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if not value:
        return None
    try:
        dt = date_parser.isoparse(str(value))
    except (ValueError, TypeError, OverflowError):
        return None
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


def format_duration(seconds: float) -> str:
    """Compact duration like `1h2m3s` (whole seconds)."""
    total = max(0, int(seconds))
    hours, rem = divmod(total, 3600)
    minutes, secs = divmod(rem, 60)
    if hours:
        return f"{hours}h{minutes}m{secs}s"
    if minutes:
        return f"{minutes}m{secs}s"
    return f"{secs}s"


def age_of(obj: Dict[str, Any], now: datetime) -> str:
    created = parse_time(dig(obj, "metadata", "creationTimestamp"))
    if created is None:
        return "unknown"
    return format_duration((now - created).total_seconds())


def container_statuses(pod: Dict[str, Any]) -> List[Dict[str, Any]]:
    return list(dig(pod, "status", "containerStatuses", default=[]) or [])


def init_container_statuses(pod: Dict[str, Any]) -> List[Dict[str, Any]]:
    return list(dig(pod, "status", "initContainerStatuses", default=[]) or [])


def waiting_state(status: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    return dig(status, "state", "waiting")


def pod_condition(pod: Dict[str, Any], cond_type: str) -> Optional[Dict[str, Any]]:
    for c in dig(pod, "status", "conditions", default=[]) or []:
        if c.get("type") == cond_type:
            return c
    return None


def is_pod_ready(pod: Dict[str, Any]) -> bool:
    cond = pod_condition(pod, "Ready")
    return bool(cond) and cond.get("status") == "True"


def selector_string(selector: Dict[str, str]) -> str:
    """Render a matchLabels dict as a label selector (`a=b,c=d`, keys sorted)."""
    return ",".join(f"{k}={v}" for k, v in sorted((selector or {}).items()))


def ingress_backend_services(ingress: Dict[str, Any]) -> List[str]:
    """Service names referenced by the default backend and rules, deduplicated in order."""
    names: List[str] = []
    default_svc = dig(ingress, "spec", "defaultBackend", "service", "name")
    if default_svc:
        names.append(default_svc)
    for rule in dig(ingress, "spec", "rules", default=[]) or []:
        for path in dig(rule, "http", "paths", default=[]) or []:
            svc = dig(path, "backend", "service", "name")
            if svc and svc not in names:
                names.append(svc)
    return names


def ingress_tls_secrets(ingress: Dict[str, Any]) -> List[str]:
    names: List[str] = []
    for tls in dig(ingress, "spec", "tls", default=[]) or []:
        secret = tls.get("secretName")
        if secret and secret not in names:
            names.append(secret)
    return names


# Cluster-level components live in kube-system and are found by label.
SYSTEM_NAMESPACE = "kube-system"
CONTROL_PLANE_COMPONENTS = ("etcd", "kube-apiserver", "kube-controller-manager", "kube-scheduler")
CONTROL_PLANE_SELECTOR = f"component in ({','.join(CONTROL_PLANE_COMPONENTS)})"
DNS_SELECTOR = "k8s-app in (kube-dns,coredns)"


def labels_of(obj: Dict[str, Any]) -> Dict[str, str]:
    return dict(dig(obj, "metadata", "labels", default={}) or {})


def node_condition_issues(node: Dict[str, Any]) -> List[str]:
    """Condition types that make a node unhealthy; `NotReady` also covers a missing Ready condition."""
    issues: List[str] = []
    ready = False
    for cond in dig(node, "status", "conditions", default=[]) or []:
        ctype, status = cond.get("type"), cond.get("status")
        if ctype == "Ready":
            ready = status == "True"
        elif ctype in ("MemoryPressure", "DiskPressure", "PIDPressure", "NetworkUnavailable") and status == "True":
            issues.append(ctype)
    if not ready:
        issues.insert(0, "NotReady")
    return issues
