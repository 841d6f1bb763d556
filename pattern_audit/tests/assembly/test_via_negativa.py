from pattern_audit.app.assembly.via_negativa import (
    derive_via_negativa,
    largest_dollar_amount,
)

REJECTED = {"structure_optimization": {"verdict": "DO_NOT_PROCEED"}}
MEMO_DATA = {"kgv3_intelligence_used": {"precedents": 1562}}

SUMMARY = {
    "acquisition_audit": {
        "property_value": 2_000_000,
        "total_acquisition_cost": 3_320_000,
        "day_one_loss_pct": 66,
    },
    "total_tax_savings_pct": 0,
    "warnings": [
        "FBAR: Foreign bank accounts > $10,000 must be reported",
        "RBI LRS: $250,000/person/year outward remittance cap",
        "not a string",
    ],
}


def _derive(preview_data, summary=SUMMARY, **kwargs):
    kwargs.setdefault("show_tax_savings", True)
    return derive_via_negativa(preview_data, MEMO_DATA, summary, **kwargs)


def test_inactive_without_do_not_proceed_verdict():
    assert _derive({"structure_optimization": {"verdict": "PROCEED"}}) is None
    assert _derive({}) is None


def test_backend_values_win_and_labels_default():
    preview = dict(REJECTED, via_negativa={"day_one_loss_pct": 12.3, "precedent_count": 2000})

    context = _derive(preview)

    assert context.day_one_loss == 12.3
    assert context.liquidity_passed is False
    assert context.badge_label == "ELEVATED RISK"
    assert "12.3%" in context.notice_body
    assert "2,000+ precedents" in context.notice_body
    assert "12.3%" in context.cta_body


def test_backend_zero_falls_through_to_computed_values():
    preview = dict(REJECTED, via_negativa={"day_one_loss_pct": 0, "total_regulatory_exposure": 0})

    context = _derive(preview)

    assert context.day_one_loss == 66
    assert context.day_one_loss_amount == 1_320_000
    assert context.total_confiscation_exposure == 250_000
    assert "1,562+ precedents" in context.notice_body


def test_locally_computed_loss_keeps_its_value_and_default_badge():
    summary = {
        "acquisition_audit": {
            "property_value": 1_000_000,
            "total_acquisition_cost": 1_123_000,
            "day_one_loss_pct": 12.3,
        },
    }

    context = _derive(REJECTED, summary=summary)

    assert context.day_one_loss == 12.3
    assert context.day_one_loss_amount == 123_000
    assert context.badge_label == "ELEVATED RISK"
    assert "12.3%" in context.notice_body

    serialized = context.model_dump(by_alias=True)
    assert serialized["dayOneLoss"] == 12.3
    assert serialized["badgeLabel"] == "ELEVATED RISK"


def test_report_level_overlay_used_when_preview_has_none():
    context = _derive(
        REJECTED,
        report_via_negativa={"header": {"badge_label": "CAPITAL AT RISK"}},
    )

    assert context.badge_label == "CAPITAL AT RISK"


def test_placeholders_substituted_once():
    preview = dict(
        REJECTED,
        via_negativa={
            "day_one_loss_pct": 5,
            "header": {"notice_body": "{dayOneLoss}% then {dayOneLoss}%"},
        },
    )

    context = _derive(preview)

    assert context.notice_body == "5.0% then {dayOneLoss}%"
    assert context.liquidity_passed is True


def test_serializes_with_camel_case_names():
    dumped = _derive(REJECTED).model_dump(by_alias=True)

    assert dumped["isActive"] is True
    assert "dayOneLoss" in dumped
    assert "ctaButtonUrl" in dumped
    assert dumped["metricLabels"]["capitalExposure"] == "Day-One Capital Exposure"


def test_largest_dollar_amount():
    assert largest_dollar_amount(SUMMARY["warnings"]) == 250_000
    assert largest_dollar_amount(["no amounts here"]) == 0
