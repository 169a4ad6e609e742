"""Canonical domain models (single source of truth).

This file is the one place where we define models used across:
- gathering (SubjectInfo snapshot + recorded absences)
- checks (CheckResult)
- aggregation and rendering (Summary, DiagnosticReport)

Design note:
- Kubernetes objects are carried as plain dicts in API JSON shape (camelCase keys, RFC 3339
  timestamps). Checks read them with `kdiag.core.objects.dig` and never mutate them.
- `CheckResult.details` keys are a contract with renderers and JSON consumers. Bump
  DETAILS_SCHEMA_VERSION when renaming or removing a key.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

DETAILS_SCHEMA_VERSION = "1"


class BaseModelStrict(BaseModel):
    model_config = ConfigDict(extra="forbid")


class BaseModelFrozen(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)


class CheckStatus(str, Enum):
    PASSED = "PASSED"
    FAILED = "FAILED"
    WARNING = "WARNING"
    SKIPPED = "SKIPPED"


class ResourceRef(BaseModelFrozen):
    kind: str
    namespace: str
    name: str

    def __str__(self) -> str:
        # A ref without a name addresses the kind as a whole (the cluster target).
        if not self.name:
            return self.kind.lower()
        return f"{self.kind.lower()}/{self.name}"


AbsenceReason = Literal["not_found", "forbidden", "deadline", "error"]


class Absence(BaseModelFrozen):
    """A dependent the gatherer tried to fetch but could not. Never implies healthy."""

    kind: str
    name: str
    reason: AbsenceReason
    detail: str = ""


class SubjectInfo(BaseModelStrict):
    """One evaluation cycle's snapshot: the primary plus whatever dependents could be read."""

    ref: ResourceRef
    primary: Dict[str, Any]
    # {kind: {name: object}}
    dependents: Dict[str, Dict[str, Dict[str, Any]]] = Field(default_factory=dict)
    absences: List[Absence] = Field(default_factory=list)
    # Most recent first, bounded by GatherOptions.events_limit
    events: List[Dict[str, Any]] = Field(default_factory=list)
    # {container: captured text}
    logs: Dict[str, str] = Field(default_factory=dict)
    log_capture_requested: bool = False
    gathered_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @field_validator("gathered_at")
    @classmethod
    def _ensure_timezone_aware(cls, v: datetime) -> datetime:
        # Prevent naive/aware mixing bugs in age computations.
        if isinstance(v, datetime) and v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v

    def add_dependent(self, kind: str, obj: Dict[str, Any]) -> None:
        name = ((obj or {}).get("metadata") or {}).get("name") or ""
        self.dependents.setdefault(kind, {})[name] = obj

    def dependent(self, kind: str, name: str) -> Optional[Dict[str, Any]]:
        return (self.dependents.get(kind) or {}).get(name)

    def dependents_of(self, kind: str) -> List[Dict[str, Any]]:
        return list((self.dependents.get(kind) or {}).values())

    def absence(self, kind: str, name: Optional[str] = None) -> Optional[Absence]:
        for a in self.absences:
            if a.kind == kind and (name is None or a.name == name):
                return a
        return None


class CheckResult(BaseModelFrozen):
    name: str
    status: CheckStatus
    message: str
    suggestion: Optional[str] = None
    details: Dict[str, str] = Field(default_factory=dict)
    error: Optional[str] = None

    def renamed(self, name: str) -> "CheckResult":
        return self.model_copy(update={"name": name})


class Summary(BaseModelFrozen):
    total: int = 0
    passed: int = 0
    failed: int = 0
    warnings: int = 0
    skipped: int = 0

    @model_validator(mode="after")
    def _counts_add_up(self) -> "Summary":
        parts = self.passed + self.failed + self.warnings + self.skipped
        if self.total != parts:
            raise ValueError(f"summary total {self.total} does not equal the sum of its counts ({parts})")
        return self


class DiagnosticReport(BaseModelFrozen):
    target: str
    timestamp: str
    checks: List[CheckResult] = Field(default_factory=list)
    summary: Summary = Field(default_factory=Summary)
    metadata: Dict[str, Any] = Field(default_factory=dict)
