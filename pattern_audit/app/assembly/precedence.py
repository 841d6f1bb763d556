"""
Declarative field-merge precedence.

The report payload can carry the same section in several places
depending on which backend path produced it. Each ``FieldRule`` names a
section and the ordered source paths to try; ``resolve_field`` returns
the first non-empty value. ``None``, ``{}``, ``[]`` and ``""`` all count
as absent.
"""

from __future__ import annotations

import copy
from typing import Any, Dict, Mapping, Optional, Tuple

from pydantic import BaseModel, ConfigDict

SourcePath = Tuple[str, ...]


def is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, (dict, list, tuple, str)) and len(value) == 0:
        return True
    return False


def lookup(document: Mapping[str, Any], path: SourcePath) -> Any:
    node: Any = document
    for key in path:
        if not isinstance(node, Mapping):
            return None
        node = node.get(key)
    return node


class FieldRule(BaseModel):
    model_config = ConfigDict(frozen=True)

    field: str
    sources: Tuple[SourcePath, ...]

    # A candidate only counts as complete when it carries this key.
    required_key: Optional[str] = None


def _standard(field: str, *, required_key: Optional[str] = None) -> FieldRule:
    return FieldRule(
        field=field,
        sources=(
            ("preview_data", field),
            ("memo_data", field),
            ("full_artifact", field),
            (field,),
        ),
        required_key=required_key,
    )


MERGE_RULES: Tuple[FieldRule, ...] = (
    _standard("transparency_regime_impact"),
    _standard("transparency_data"),
    _standard("crisis_resilience_stress_test"),
    _standard("crisis_data"),
    _standard("peer_intelligence_analysis"),
    _standard("peer_intelligence_data"),
    _standard("market_dynamics_analysis"),
    _standard("market_dynamics_data"),
    _standard("implementation_roadmap_data"),
    _standard("due_diligence_data"),
    _standard("hnwi_trends_analysis"),
    _standard("heir_management_data"),
    _standard("heir_management_analysis"),
    _standard("wealth_projection_data"),
    _standard("wealth_projection_analysis"),
    _standard("scenario_tree_data"),
    _standard("scenario_tree_analysis"),
    _standard("destination_drivers", required_key="visa_programs"),
    _standard("risk_assessment"),
    _standard("all_mistakes"),
)


def resolve_field(document: Mapping[str, Any], rule: FieldRule) -> Any:
    """
    First non-empty candidate for ``rule``.

    With ``required_key`` set, a complete candidate is preferred; if none
    is complete the first non-empty one is used.
    """
    fallback: Any = None
    for path in rule.sources:
        candidate = lookup(document, path)
        if is_empty(candidate):
            continue
        if rule.required_key is None:
            return candidate
        if isinstance(candidate, Mapping) and not is_empty(candidate.get(rule.required_key)):
            return candidate
        if fallback is None:
            fallback = candidate
    return fallback


def merge_preview_fields(
    document: Mapping[str, Any],
    rules: Tuple[FieldRule, ...] = MERGE_RULES,
) -> Dict[str, Any]:
    """
    Deep copy of ``document["preview_data"]`` with every rule applied.

    The input document is never modified.
    """
    base = document.get("preview_data")
    merged: Dict[str, Any] = copy.deepcopy(dict(base)) if isinstance(base, Mapping) else {}
    for rule in rules:
        value = resolve_field(document, rule)
        if not is_empty(value):
            merged[rule.field] = copy.deepcopy(value)
    return merged
