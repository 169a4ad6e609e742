"""Kubernetes API client for fetching resources, logs and change events (read-only)."""

from __future__ import annotations

import logging
import threading
from typing import Any, Dict, Iterator, List, Optional, Protocol, runtime_checkable

from kdiag.core.errors import AccessDeniedError, ProviderError, ResourceNotFoundError

logger = logging.getLogger(__name__)

# Kinds without a namespace in their API path.
CLUSTER_SCOPED_KINDS = frozenset({"Node"})


@runtime_checkable
class WatchSubscription(Protocol):
    def __iter__(self) -> Iterator[Dict[str, Any]]: ...

    def stop(self) -> None: ...


@runtime_checkable
class K8sProvider(Protocol):
    def get_resource(
        self, kind: str, namespace: str, name: str, timeout: Optional[float] = None
    ) -> Dict[str, Any]: ...

    def list_resources(
        self,
        kind: str,
        namespace: Optional[str],
        label_selector: Optional[str] = None,
        field_selector: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> List[Dict[str, Any]]: ...

    def read_log(
        self,
        pod_name: str,
        namespace: str,
        container: Optional[str] = None,
        tail_lines: int = 20,
        previous: bool = False,
        timeout: Optional[float] = None,
    ) -> str: ...

    def watch(self, kind: str, namespace: str, name: str) -> WatchSubscription: ...

    def server_version(self, timeout: Optional[float] = None) -> Dict[str, Any]: ...


def translate_api_error(e: Exception, what: str) -> ProviderError:
    """Map a kubernetes-client exception onto the kdiag error taxonomy."""
    status = getattr(e, "status", None)
    reason = getattr(e, "reason", None) or str(e)
    if status == 404:
        return ResourceNotFoundError(f"{what} not found", status=404)
    if status in (401, 403):
        return AccessDeniedError(f"access denied reading {what}: {reason}", status=status)
    if status:
        return ProviderError(f"Kubernetes API error reading {what}: {status} {reason}", status=status)
    return ProviderError(f"failed to read {what}: {e}")


def _redact_secret(obj: Dict[str, Any]) -> Dict[str, Any]:
    # Key names only; values never leave the provider.
    out = dict(obj)
    out["data"] = {k: "" for k in (obj.get("data") or {})}
    out.pop("stringData", None)
    return out


class _KubernetesWatch:
    """Adapts `kubernetes.watch.Watch` to the WatchSubscription contract."""

    def __init__(self, watcher: Any, stream: Iterator[Dict[str, Any]]):
        self._watcher = watcher
        self._stream = stream

    def __iter__(self) -> Iterator[Dict[str, Any]]:
        for ev in self._stream:
            obj = ev.get("raw_object")
            if obj is None:
                obj = ev.get("object")
            yield {"type": ev.get("type"), "object": obj}

    def stop(self) -> None:
        self._watcher.stop()


class DefaultK8sProvider:
    """Provider backed by the official kubernetes client."""

    def __init__(self, kubeconfig: Optional[str] = None, context: Optional[str] = None):
        self._kubeconfig = kubeconfig
        self._context = context
        self._api_client = None
        self._core_v1 = None
        self._networking_v1 = None
        self._init_lock = threading.Lock()

    def _load(self) -> None:
        """
        Load cluster credentials and build API clients once.

        In-cluster config is tried first unless an explicit kubeconfig was given.
        """
        if self._api_client is not None:
            return

        with self._init_lock:
            if self._api_client is not None:
                return

            from kubernetes import client, config

            try:
                if self._kubeconfig:
                    config.load_kube_config(config_file=self._kubeconfig, context=self._context)
                else:
                    try:
                        config.load_incluster_config()
                    except config.ConfigException:
                        config.load_kube_config(context=self._context)
            except Exception as e:
                raise ProviderError(f"failed to load Kubernetes configuration: {e}") from e

            api_client = client.ApiClient()
            self._core_v1 = client.CoreV1Api(api_client)
            self._networking_v1 = client.NetworkingV1Api(api_client)
            self._api_client = api_client

    def _to_dict(self, obj: Any) -> Dict[str, Any]:
        return self._api_client.sanitize_for_serialization(obj)

    @staticmethod
    def _kwargs(timeout: Optional[float]) -> Dict[str, Any]:
        return {"_request_timeout": timeout} if timeout is not None else {}

    def _reader(self, kind: str):
        core, net = self._core_v1, self._networking_v1
        readers = {
            "Pod": core.read_namespaced_pod,
            "Service": core.read_namespaced_service,
            "Endpoints": core.read_namespaced_endpoints,
            "ServiceAccount": core.read_namespaced_service_account,
            "Secret": core.read_namespaced_secret,
            "Ingress": net.read_namespaced_ingress,
            "Node": core.read_node,
        }
        if kind not in readers:
            raise ProviderError(f"unsupported kind: {kind}")
        return readers[kind]

    def _lister(self, kind: str, all_namespaces: bool):
        core, net = self._core_v1, self._networking_v1
        if all_namespaces:
            listers = {
                "Pod": core.list_pod_for_all_namespaces,
                "Service": core.list_service_for_all_namespaces,
                "Ingress": net.list_ingress_for_all_namespaces,
                "Event": core.list_event_for_all_namespaces,
                "Node": core.list_node,
            }
        else:
            listers = {
                "Pod": core.list_namespaced_pod,
                "Service": core.list_namespaced_service,
                "Ingress": net.list_namespaced_ingress,
                "Event": core.list_namespaced_event,
                "Endpoints": core.list_namespaced_endpoints,
            }
        if kind not in listers:
            raise ProviderError(f"unsupported kind for list: {kind}")
        return listers[kind]

    def get_resource(
        self, kind: str, namespace: str, name: str, timeout: Optional[float] = None
    ) -> Dict[str, Any]:
        self._load()
        read = self._reader(kind)
        try:
            if kind in CLUSTER_SCOPED_KINDS:
                obj = read(name=name, **self._kwargs(timeout))
            else:
                obj = read(name=name, namespace=namespace, **self._kwargs(timeout))
        except Exception as e:
            raise translate_api_error(e, f"{kind} {namespace}/{name}") from e

        out = self._to_dict(obj)
        if kind == "Secret":
            out = _redact_secret(out)
        return out

    def list_resources(
        self,
        kind: str,
        namespace: Optional[str],
        label_selector: Optional[str] = None,
        field_selector: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> List[Dict[str, Any]]:
        self._load()
        all_namespaces = not namespace
        lister = self._lister(kind, all_namespaces)
        kwargs: Dict[str, Any] = self._kwargs(timeout)
        if label_selector:
            kwargs["label_selector"] = label_selector
        if field_selector:
            kwargs["field_selector"] = field_selector
        if not all_namespaces:
            kwargs["namespace"] = namespace
        try:
            result = lister(**kwargs)
        except Exception as e:
            raise translate_api_error(e, f"{kind} list in {namespace or '<all namespaces>'}") from e

        items = []
        for item in result.items or []:
            d = self._to_dict(item)
            # List responses omit per-item kind/apiVersion; restore kind for consumers.
            d.setdefault("kind", kind)
            items.append(d)
        return items

    def read_log(
        self,
        pod_name: str,
        namespace: str,
        container: Optional[str] = None,
        tail_lines: int = 20,
        previous: bool = False,
        timeout: Optional[float] = None,
    ) -> str:
        self._load()
        kwargs: Dict[str, Any] = {
            "name": pod_name,
            "namespace": namespace,
            "previous": previous,
            "tail_lines": tail_lines,
            **self._kwargs(timeout),
        }
        if container:
            kwargs["container"] = container
        try:
            return self._core_v1.read_namespaced_pod_log(**kwargs) or ""
        except Exception as e:
            which = "previous" if previous else "current"
            raise translate_api_error(e, f"{which} logs of {namespace}/{pod_name}[{container}]") from e

    def server_version(self, timeout: Optional[float] = None) -> Dict[str, Any]:
        self._load()
        from kubernetes import client

        try:
            info = client.VersionApi(self._api_client).get_code(**self._kwargs(timeout))
        except Exception as e:
            raise translate_api_error(e, "API server version") from e
        return self._to_dict(info)

    def watch(self, kind: str, namespace: str, name: str) -> WatchSubscription:
        self._load()
        from kubernetes import watch as k8s_watch

        lister = self._lister(kind, all_namespaces=False)
        watcher = k8s_watch.Watch()
        stream = watcher.stream(lister, namespace=namespace, field_selector=f"metadata.name={name}")
        logger.debug("watch opened for %s %s/%s", kind, namespace, name)
        return _KubernetesWatch(watcher, stream)


def get_k8s_provider(kubeconfig: Optional[str] = None, context: Optional[str] = None) -> K8sProvider:
    """Seam for swapping provider implementations (tests inject fakes)."""
    return DefaultK8sProvider(kubeconfig=kubeconfig, context=context)
