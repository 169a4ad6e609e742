"""JSON/YAML dump helpers (CLI-friendly, testable).

We keep CLI printing logic out of core modules; this returns plain dicts and strings.
"""

from __future__ import annotations

import json
from typing import Any, Dict

import yaml

from kdiag.core.models import DiagnosticReport


def _clean(d: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in d.items() if v not in (None, "", [], {})}


def report_to_json_dict(report: DiagnosticReport) -> Dict[str, Any]:
    """
    Stable wire shape for a report.

    Per-check `suggestion`, `details` and `error` are dropped when empty; the top-level keys and
    the summary counts are always present.
    """
    # Pydantic v2: mode="json" produces JSON-serializable types.
    raw = report.model_dump(mode="json")
    return {
        "target": raw["target"],
        "timestamp": raw["timestamp"],
        "checks": [_clean(c) for c in raw["checks"]],
        "summary": raw["summary"],
        "metadata": raw["metadata"],
    }


def render_json(report: DiagnosticReport) -> str:
    return json.dumps(report_to_json_dict(report), indent=2)


def render_yaml(report: DiagnosticReport) -> str:
    return yaml.safe_dump(report_to_json_dict(report), sort_keys=False, default_flow_style=False)
