"""
Cross-border summary synthesis.

Invariants under test:
- no tax data or no positive transaction value means no summary
- corridor detection attaches compliance flags and warnings
- stamp duty comes from the real asset audit when present
- identical inputs give identical summaries
"""

import pytest

from pattern_audit.app.assembly.cross_border import (
    assemble_cross_border_audit,
    corridor_key,
    fmt_grouped,
)


def _preview(**overrides):
    preview = {
        "source_jurisdiction": "United States",
        "destination_jurisdiction": "Singapore",
        "source_tax_rates": {"income_tax": 37, "cgt": 20, "estate_tax": 40},
        "destination_tax_rates": {"income_tax": 0, "cgt": 0, "estate_tax": 0},
        "real_asset_audit": {
            "_kg_stats": {"stamp_duty": {"total_effective_rate_pct": 99}},
            "singapore": {
                "stamp_duty": {
                    "residential_rates": [{"rate_pct": 6}],
                    "foreign_buyer_surcharge": {"rate_pct": 60},
                }
            },
        },
    }
    preview.update(overrides)
    return preview


STARTING_POSITION = {"transaction_value": 2_000_000, "rental_yield_pct": 3.0}


# ----------------------------------------------------------------------
# Gating
# ----------------------------------------------------------------------

def test_missing_tax_data_yields_nothing():
    preview = _preview()
    del preview["source_tax_rates"]
    del preview["destination_tax_rates"]

    assert assemble_cross_border_audit(preview, STARTING_POSITION) is None


@pytest.mark.parametrize("value", [0, -5, None, "2000000"])
def test_non_positive_transaction_value_yields_nothing(value):
    assert assemble_cross_border_audit(_preview(), {"transaction_value": value}) is None


# ----------------------------------------------------------------------
# Computation
# ----------------------------------------------------------------------

def test_us_to_singapore_summary():
    summary = assemble_cross_border_audit(_preview(), STARTING_POSITION)

    acquisition = summary.acquisition_audit
    assert acquisition.day_one_loss_pct == pytest.approx(66)
    assert acquisition.bsd_stamp_duty == pytest.approx(120_000)
    assert acquisition.absd_additional_stamp_duty == pytest.approx(1_200_000)
    assert acquisition.total_acquisition_cost == pytest.approx(3_320_000)

    rental = summary.rental_income_audit
    assert rental.ftc_available is False
    assert rental.net_tax_rate_pct == pytest.approx(37)
    assert rental.explanation.startswith("Destination charges 0% income tax.")

    assert summary.net_yield_audit.net_yield_pct == pytest.approx(1.89)
    assert summary.net_yield_audit.annual_net_income == pytest.approx(37_800)
    assert summary.estate_tax_audit.worldwide_applies is True

    assert "US_WORLDWIDE_TAXATION" in summary.compliance_flags
    assert len(summary.compliance_flags) == 5
    assert "Day-one stamp duty cost: 66.0% ($1,320,000)" in summary.executive_summary
    assert "Corridor: US→Singapore" in summary.executive_summary


def test_selected_structure_rates_override_computed_ones():
    position = dict(
        STARTING_POSITION,
        selected_structure={"structure_name": "Trust", "net_rental_rate_pct": 15},
    )

    summary = assemble_cross_border_audit(_preview(real_asset_audit=None), position)

    assert summary.rental_income_audit.net_tax_rate_pct == 15
    assert summary.acquisition_audit.day_one_loss_pct == 0
    assert "Structure: Trust." in summary.executive_summary


def test_tax_differential_used_when_direct_rates_are_all_zero():
    preview = _preview(
        source_tax_rates={"income_tax": 0},
        tax_differential={"source": {"income_tax": 30}, "destination": {"income_tax": 10}},
    )

    rental = assemble_cross_border_audit(preview, STARTING_POSITION).rental_income_audit

    assert rental.source_tax_rate_pct == 30
    assert rental.destination_tax_rate_pct == 10
    assert rental.ftc_available is True


def test_summary_is_deterministic():
    first = assemble_cross_border_audit(_preview(), STARTING_POSITION)
    second = assemble_cross_border_audit(_preview(), STARTING_POSITION)

    assert first.model_dump_json() == second.model_dump_json()


# ----------------------------------------------------------------------
# Helpers
# ----------------------------------------------------------------------

@pytest.mark.parametrize(
    "source, destination, expected",
    [
        ("Mumbai", "Dubai", "India→UAE"),
        ("India", "Singapore", "India→Singapore"),
        ("New York", "Abu Dhabi", "US→UAE"),
        ("Portugal", "Singapore", None),
        ("", "Singapore", None),
    ],
)
def test_corridor_key(source, destination, expected):
    assert corridor_key(source, destination) == expected


def test_fmt_grouped_rounds_half_up():
    assert fmt_grouped(1319999.5) == "1,320,000"
    assert fmt_grouped(37800.00000001) == "37,800"
