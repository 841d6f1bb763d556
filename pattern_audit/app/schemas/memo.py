"""
Assembled memo payload handed to presentation once the report is paid.

``ViaNegativaContext`` is serialized with camelCase aliases because the
rendering layer consumes it under those names; it is populated by
snake_case field name inside this package.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from pattern_audit.app.schemas.session import IntelligenceSources


_CAMEL = ConfigDict(
    frozen=True,
    alias_generator=to_camel,
    populate_by_name=True,
)


class MetricLabels(BaseModel):
    model_config = _CAMEL

    capital_exposure: str
    structure_verdict: str
    structure_verdict_value: str
    structure_verdict_desc: str
    regulatory_exposure: str
    regulatory_exposure_desc: str


class ViaNegativaContext(BaseModel):
    """
    Presentation overlay for deals whose structure verdict is
    ``DO_NOT_PROCEED``: computed exposure figures plus the tone-shifted
    copy, every label either supplied by the backend or defaulted.
    """

    model_config = _CAMEL

    is_active: bool = True

    # Computed values
    day_one_loss: float
    day_one_loss_amount: float
    total_confiscation_exposure: float
    tax_efficiency_passed: bool
    liquidity_passed: bool
    structure_passed: bool

    # Header
    analysis_posture: str
    badge_label: str
    title_prefix: str
    title_highlight: str
    notice_title: str
    notice_body: str

    metric_labels: MetricLabels

    # Scenario section
    scenario_header: str
    expectation_label: str
    actual_label: str
    commentary_title: str
    commentary_body: str

    # Tax section
    tax_badge_label: str
    tax_title_line1: str
    tax_title_line2: str
    compliance_prefix: str
    warning_prefix: str

    # Verdict section
    verdict_header: str
    verdict_badge_label: str
    stamp_text: str
    stamp_subtext: str

    # Call to action
    cta_headline: str
    cta_body: str
    cta_scarcity: str
    cta_button_text: str
    cta_button_url: str
    cta_context_note: str


class AssembledMemoData(BaseModel):
    model_config = ConfigDict(frozen=True)

    success: bool = True
    intake_id: str
    generated_at: Optional[str] = None
    preview_data: Dict[str, Any] = Field(default_factory=dict)
    memo_data: Dict[str, Any] = Field(default_factory=dict)
    full_memo_url: str = ""

    cross_border_audit_summary: Optional[Dict[str, Any]] = None
    show_tax_savings: bool = True
    via_negativa: Optional[ViaNegativaContext] = None

    mitigation_timeline: Optional[Any] = None
    intelligence_sources: IntelligenceSources = Field(
        default_factory=IntelligenceSources
    )
