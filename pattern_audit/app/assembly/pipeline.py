"""
Content assembly pipeline.

Turns the raw report payload and the full artifact into the single
``AssembledMemoData`` handed to presentation:

1. field merge through the precedence table
2. cross-border summary synthesis when the backend omitted it
3. tax-savings visibility gate
4. via negativa overlay for rejected structures
5. memo_data pass-through or synthesis

Inputs are deep-copied and never modified. Missing or malformed optional
sections degrade to absent output; the pipeline does not raise on them.
"""

from __future__ import annotations

import copy
import logging
from typing import Any, Dict, Mapping, Optional

from pattern_audit.app.assembly.cross_border import assemble_cross_border_audit
from pattern_audit.app.assembly.precedence import is_empty, merge_preview_fields
from pattern_audit.app.assembly.via_negativa import derive_via_negativa
from pattern_audit.app.schemas.memo import AssembledMemoData
from pattern_audit.app.schemas.session import FullArtifact, IntelligenceSources

logger = logging.getLogger("pattern_audit.assembly")

US_WORLDWIDE_TAXATION = "US_WORLDWIDE_TAXATION"


def _mapping(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _document(
    report: Optional[Mapping[str, Any]], full_artifact: Optional[FullArtifact]
) -> Dict[str, Any]:
    document = copy.deepcopy(dict(report or {}))
    if full_artifact is not None and is_empty(document.get("full_artifact")):
        document["full_artifact"] = copy.deepcopy(full_artifact.payload)
    return document


def synthesize_memo_data(sources: IntelligenceSources) -> Dict[str, Any]:
    return {
        "kgv3_intelligence_used": {
            "precedents": sources.developments_matched,
            "failure_modes": sources.failure_patterns_matched,
            "sequencing_rules": sources.sequencing_rules_applied,
            "jurisdictions": 2,
        }
    }


def attach_cross_border_summary(preview_data: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """
    Ensure ``wealth_projection_data.starting_position`` carries a summary.

    Returns the summary now present (supplied or synthesized), or None.
    """
    wealth = _mapping(preview_data.get("wealth_projection_data"))
    starting_position = _mapping(wealth.get("starting_position"))
    if not starting_position:
        return None

    existing = starting_position.get("cross_border_audit_summary")
    if isinstance(existing, dict) and existing:
        return existing

    assembled = assemble_cross_border_audit(
        preview_data,
        starting_position,
        _mapping(preview_data.get("real_asset_audit")) or None,
    )
    if assembled is None:
        return None

    summary = assembled.model_dump()
    starting_position["cross_border_audit_summary"] = summary
    logger.debug("cross-border summary synthesized")
    return summary


def tax_savings_visible(
    preview_data: Mapping[str, Any], summary: Optional[Mapping[str, Any]]
) -> bool:
    flags = (summary or {}).get("compliance_flags")
    worldwide = isinstance(flags, list) and US_WORLDWIDE_TAXATION in flags
    return preview_data.get("show_tax_savings") is not False and not worldwide


def _mitigation_timeline(report: Mapping[str, Any], preview_data: Mapping[str, Any]) -> Any:
    for key in ("mitigationTimeline", "mitigation_timeline"):
        if not is_empty(report.get(key)):
            return report[key]
    timeline = _mapping(preview_data.get("risk_assessment")).get("mitigation_timeline")
    return None if is_empty(timeline) else timeline


def assemble_memo_data(
    report: Optional[Mapping[str, Any]],
    full_artifact: Optional[FullArtifact],
    intake_id: str,
) -> AssembledMemoData:
    document = _document(report, full_artifact)
    preview_data = merge_preview_fields(document)
    sources = full_artifact.intelligence_sources if full_artifact else IntelligenceSources()

    memo_data = _mapping(document.get("memo_data")) or synthesize_memo_data(sources)

    summary = attach_cross_border_summary(preview_data)
    if summary is None:
        supplied = document.get("cross_border_audit_summary")
        summary = supplied if isinstance(supplied, dict) and supplied else None

    show_tax_savings = tax_savings_visible(preview_data, summary)

    via_negativa = derive_via_negativa(
        preview_data,
        memo_data,
        summary,
        show_tax_savings=show_tax_savings,
        report_via_negativa=document.get("via_negativa"),
    )

    generated_at = document.get("generated_at") or (
        full_artifact.generated_at if full_artifact else None
    )

    return AssembledMemoData(
        success=True,
        intake_id=intake_id,
        generated_at=str(generated_at) if generated_at else None,
        preview_data=preview_data,
        memo_data=memo_data,
        full_memo_url=str(document.get("full_memo_url") or ""),
        cross_border_audit_summary=summary,
        show_tax_savings=show_tax_savings,
        via_negativa=via_negativa,
        mitigation_timeline=_mitigation_timeline(document, preview_data),
        intelligence_sources=sources,
    )
