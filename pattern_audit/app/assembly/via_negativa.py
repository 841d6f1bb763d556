"""
Via negativa overlay for deals the structure engine rejects.

Backend-computed values win; a backend zero falls through to the local
computation. Every label falls back to a fixed default, and the
``{dayOneLoss}`` / ``{precedentCount}`` placeholders are substituted once.
"""

from __future__ import annotations

import re
from typing import Any, Mapping, Optional, Sequence

from pattern_audit.app.schemas.memo import MetricLabels, ViaNegativaContext

DO_NOT_PROCEED = "DO_NOT_PROCEED"

_DOLLAR_AMOUNT = re.compile(r"\$[\d,]+(?:\.\d+)?")

DEFAULT_NOTICE_BODY = (
    "Analysis of {precedentCount}+ precedents identified {dayOneLoss}% Day-One "
    "capital exposure in this corridor. The destination market may carry "
    "long-term merit, but the current ownership structure imposes acquisition "
    "costs that require careful evaluation before deployment."
)
DEFAULT_CTA_BODY = (
    "This Pattern Audit identified {dayOneLoss}% Day-One capital exposure. The "
    "same engine analyzes any cross-border acquisition across 50+ jurisdictions."
)
DEFAULT_COMMENTARY = (
    "Your projected returns deviate from verified market data in key areas. "
    "Where fundamentals support the thesis, they are noted above. Where "
    "projections exceed market benchmarks, the gap is flagged as a risk factor."
)
DEFAULT_CONTEXT_NOTE = (
    "For Indian Family Offices: This sample analyzes a US → Singapore corridor. "
    "The same Pattern Recognition Engine applies to India → Dubai, India → "
    "Singapore, India → Portugal, and 50+ other corridors."
)


def _section(source: Mapping[str, Any], key: str) -> Mapping[str, Any]:
    value = source.get(key)
    return value if isinstance(value, Mapping) else {}


def _text(section: Mapping[str, Any], key: str, default: str) -> str:
    value = section.get(key)
    return value if isinstance(value, str) and value else default


def _number(value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0.0
    return float(value)


def _flag(value: Any, default: bool) -> bool:
    return bool(value) if value is not None else default


def _grouped(value: Any) -> str:
    number = _number(value)
    if number.is_integer():
        return f"{int(number):,}"
    return f"{number:,.3f}".rstrip("0")


def is_via_negativa(preview_data: Mapping[str, Any]) -> bool:
    return _section(preview_data, "structure_optimization").get("verdict") == DO_NOT_PROCEED


def largest_dollar_amount(warnings: Sequence[Any]) -> float:
    largest = 0.0
    for warning in warnings:
        if not isinstance(warning, str):
            continue
        for match in _DOLLAR_AMOUNT.findall(warning):
            try:
                value = float(match.replace("$", "").replace(",", ""))
            except ValueError:
                continue
            if value > largest:
                largest = value
    return largest


def derive_via_negativa(
    preview_data: Mapping[str, Any],
    memo_data: Mapping[str, Any],
    cross_border: Optional[Mapping[str, Any]],
    *,
    show_tax_savings: bool,
    report_via_negativa: Any = None,
) -> Optional[ViaNegativaContext]:
    if not is_via_negativa(preview_data):
        return None

    vn = _section(preview_data, "via_negativa") or (
        report_via_negativa if isinstance(report_via_negativa, Mapping) else {}
    )
    summary = cross_border or {}
    acquisition = _section(summary, "acquisition_audit")

    property_value = _number(acquisition.get("property_value"))
    total_cost = _number(acquisition.get("total_acquisition_cost"))

    day_one_loss = (
        _number(vn.get("day_one_loss_pct"))
        or _number(acquisition.get("day_one_loss_pct"))
        or 0.0
    )
    day_one_amount = _number(vn.get("day_one_loss_amount")) or (total_cost - property_value)

    exposure = _number(vn.get("total_regulatory_exposure"))
    if not exposure:
        warnings = summary.get("warnings")
        exposure = largest_dollar_amount(warnings if isinstance(warnings, list) else [])

    tax_efficiency_passed = _flag(
        vn.get("tax_efficiency_passed"),
        show_tax_savings and _number(summary.get("total_tax_savings_pct")) > 0,
    )
    liquidity_passed = _flag(vn.get("liquidity_passed"), day_one_loss < 10)
    structure_passed = _flag(vn.get("structure_passed"), False)

    precedent_count = vn.get("precedent_count")
    if precedent_count is None:
        precedent_count = _section(memo_data, "kgv3_intelligence_used").get("precedents")

    loss_text = f"{day_one_loss:.1f}"
    header = _section(vn, "header")
    scenario = _section(vn, "scenario_section")
    tax = _section(vn, "tax_section")
    verdict = _section(vn, "verdict_section")
    cta = _section(vn, "cta")

    raw_metrics = vn.get("metrics")
    metrics = [m if isinstance(m, Mapping) else {} for m in raw_metrics] if isinstance(raw_metrics, list) else []
    metrics += [{}] * (3 - len(metrics))

    notice_body = (
        _text(header, "notice_body", DEFAULT_NOTICE_BODY)
        .replace("{dayOneLoss}", loss_text, 1)
        .replace("{precedentCount}", _grouped(precedent_count), 1)
    )

    compliance_prefix = tax.get("compliance_prefix")

    return ViaNegativaContext(
        day_one_loss=day_one_loss,
        day_one_loss_amount=day_one_amount,
        total_confiscation_exposure=exposure,
        tax_efficiency_passed=tax_efficiency_passed,
        liquidity_passed=liquidity_passed,
        structure_passed=structure_passed,
        analysis_posture=_text(
            vn,
            "analysis_posture",
            "Via Negativa: Strengths acknowledged. Weaknesses stated without qualification.",
        ),
        badge_label=_text(header, "badge_label", "ELEVATED RISK"),
        title_prefix=_text(header, "title_prefix", "Capital At"),
        title_highlight=_text(header, "title_highlight", "Risk"),
        notice_title=_text(header, "notice_title", "Elevated Risk Advisory"),
        notice_body=notice_body,
        metric_labels=MetricLabels(
            capital_exposure=_text(metrics[0], "label", "Day-One Capital Exposure"),
            structure_verdict=_text(metrics[1], "label", "Structure Verdict"),
            structure_verdict_value=_text(metrics[1], "value", "Not Recommended"),
            structure_verdict_desc=_text(
                metrics[1], "description", "Negative NPV across analyzed structures"
            ),
            regulatory_exposure=_text(metrics[2], "label", "Regulatory Exposure"),
            regulatory_exposure_desc=_text(
                metrics[2], "description", "FBAR + compliance penalties"
            ),
        ),
        scenario_header=_text(scenario, "header", "Projection Audit"),
        expectation_label=_text(scenario, "expectation_label", "Your Projection"),
        actual_label=_text(scenario, "actual_label", "Market Data"),
        commentary_title=_text(scenario, "commentary_title", "Reality Gap Analysis"),
        commentary_body=_text(scenario, "commentary_body", DEFAULT_COMMENTARY),
        tax_badge_label=_text(tax, "badge_label", "Regulatory Exposure Analysis"),
        tax_title_line1=_text(tax, "title_line1", "Regulatory"),
        tax_title_line2=_text(tax, "title_line2", "Exposure"),
        # An explicit empty prefix from the backend is kept.
        compliance_prefix=compliance_prefix if isinstance(compliance_prefix, str) else "",
        warning_prefix=_text(tax, "warning_prefix", "Regulatory Flag"),
        verdict_header=_text(verdict, "header", "Structural Review"),
        verdict_badge_label=_text(verdict, "badge_label", "Capital Allocation Review"),
        stamp_text=_text(verdict, "stamp_text", "Allocation Not Recommended"),
        stamp_subtext=_text(
            verdict,
            "stamp_subtext",
            "Key viability thresholds not met in this structure — review "
            "alternative corridors and strategies below",
        ),
        cta_headline=_text(cta, "headline", "DOES YOUR CURRENT DEAL SURVIVE THIS FILTER?"),
        cta_body=_text(cta, "body_template", DEFAULT_CTA_BODY).replace(
            "{dayOneLoss}", loss_text, 1
        ),
        cta_scarcity=_text(cta, "scarcity_text", "5 Slots Remaining — February Cycle"),
        cta_button_text=_text(cta, "button_text", "INITIATE RED TEAM AUDIT ($5,000)"),
        cta_button_url=_text(
            cta, "button_url", "https://app.hnwichronicles.com/decision-memo"
        ),
        cta_context_note=_text(cta, "context_note", DEFAULT_CONTEXT_NOTE),
    )
