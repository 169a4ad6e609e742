"""
Live watch: re-diagnose one resource every time it changes.

The watch is pull-based. Iterating a `LiveWatch` opens the change stream and yields one
`DiagnosticReport` per evaluated change, so the consumer's pace bounds the work: while a report
is being rendered no new evaluation starts, and changes that the last evaluation already saw
are skipped by resourceVersion.

State machine:
    IDLE -> WATCHING -> (EVALUATING -> WATCHING)* -> TERMINATED

Termination:
- the resource is deleted (clean end)
- the server closes the stream (clean end)
- `cancel()` from any thread (clean end after the in-flight evaluation)
- a stream ERROR event or transport failure (raises WatchStreamError)
"""

from __future__ import annotations

import logging
import threading
from enum import Enum
from typing import Any, Dict, Iterator, Optional, Sequence

from kdiag.collectors.gather import GatherOptions
from kdiag.core.errors import TargetUnreachableError, WatchStreamError
from kdiag.core.models import DiagnosticReport, ResourceRef
from kdiag.core.objects import dig
from kdiag.diagnostics.engine import DiagnosticEngine
from kdiag.providers.k8s_provider import WatchSubscription

logger = logging.getLogger(__name__)


class WatchState(str, Enum):
    IDLE = "idle"
    WATCHING = "watching"
    EVALUATING = "evaluating"
    TERMINATED = "terminated"


def _already_seen(rv: Optional[str], last: Optional[str]) -> bool:
    """True when `rv` is not newer than the state the last evaluation reported."""
    if not rv or not last:
        return False
    try:
        return int(rv) <= int(last)
    except ValueError:
        # resourceVersion is opaque in general; only equality is meaningful then.
        return rv == last


def _status_message(obj: Any) -> str:
    # ERROR events carry a v1.Status as the object.
    if isinstance(obj, dict):
        return obj.get("message") or obj.get("reason") or "watch stream error"
    return str(obj or "watch stream error")


class LiveWatch:
    def __init__(
        self,
        engine: DiagnosticEngine,
        ref: ResourceRef,
        *,
        selection: Sequence[str] = (),
        options: Optional[GatherOptions] = None,
    ):
        self.engine = engine
        self.ref = ref
        self.selection = tuple(selection)
        self.options = options
        self.state = WatchState.IDLE
        self.last_resource_version: Optional[str] = None
        self.reports_emitted = 0
        self._cancelled = threading.Event()
        self._lock = threading.Lock()
        self._subscription: Optional[WatchSubscription] = None

    def _transition(self, state: WatchState) -> None:
        logger.debug("watch %s: %s -> %s", self.ref, self.state.value, state.value)
        self.state = state

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def cancel(self) -> None:
        """Stop watching. Safe from any thread (signal handlers included)."""
        self._cancelled.set()
        with self._lock:
            sub = self._subscription
        if sub is not None:
            sub.stop()

    def _evaluate(self) -> Optional[DiagnosticReport]:
        try:
            report = self.engine.diagnose_ref(self.ref, selection=self.selection, options=self.options)
        except TargetUnreachableError as e:
            # Transient read failure between events; keep watching.
            logger.warning("watch %s: evaluation skipped: %s", self.ref, e)
            return None
        rv = report.metadata.get("resourceVersion")
        if rv:
            self.last_resource_version = rv
        return report

    def _next_event(self, events: Iterator[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
        try:
            return next(events)
        except StopIteration:
            return None
        except Exception as e:
            if self.cancelled:
                # Stopping the subscription may surface as a transport error.
                return None
            raise WatchStreamError(f"watch on {self.ref} failed: {e}") from e

    def __iter__(self) -> Iterator[DiagnosticReport]:
        if self.state is not WatchState.IDLE:
            raise RuntimeError("a LiveWatch can only be iterated once")
        if self.cancelled:
            self._transition(WatchState.TERMINATED)
            return

        try:
            sub = self.engine.provider.watch(self.ref.kind, self.ref.namespace, self.ref.name)
        except Exception as e:
            self._transition(WatchState.TERMINATED)
            raise WatchStreamError(f"could not open watch on {self.ref}: {e}") from e

        with self._lock:
            self._subscription = sub
        self._transition(WatchState.WATCHING)
        logger.info("watching %s in %s", self.ref, self.ref.namespace)

        try:
            events = iter(sub)
            while not self.cancelled:
                event = self._next_event(events)
                if event is None:
                    break

                etype = event.get("type")
                obj = event.get("object")
                if etype == "DELETED":
                    logger.info("%s was deleted; watch finished", self.ref)
                    break
                if etype == "ERROR":
                    raise WatchStreamError(f"watch on {self.ref} failed: {_status_message(obj)}")
                if etype not in ("ADDED", "MODIFIED"):
                    continue

                rv = dig(obj, "metadata", "resourceVersion")
                if _already_seen(rv, self.last_resource_version):
                    logger.debug("watch %s: resourceVersion %s already reflected", self.ref, rv)
                    continue

                self._transition(WatchState.EVALUATING)
                report = self._evaluate()
                self._transition(WatchState.WATCHING)
                if report is not None:
                    self.reports_emitted += 1
                    yield report
        finally:
            sub.stop()
            with self._lock:
                self._subscription = None
            self._transition(WatchState.TERMINATED)
