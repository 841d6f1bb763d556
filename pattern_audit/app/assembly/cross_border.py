"""
Cross-border tax audit synthesis.

Builds a ``CrossBorderAuditSummary`` from the rates scattered across the
preview payload when the backend did not supply one. The function is
deterministic: identical inputs always produce an identical summary, so
re-running it on an already-assembled payload is harmless.
"""

from __future__ import annotations

import math
from typing import Any, Dict, List, Mapping, Optional, Tuple

from pattern_audit.app.schemas.cross_border import (
    AcquisitionAudit,
    CapitalGainsAudit,
    CrossBorderAuditSummary,
    EstateTaxAudit,
    NetYieldAudit,
    RentalIncomeAudit,
)

_RATE_KEYS = ("income_tax", "cgt", "wealth_tax", "estate_tax")
_METADATA_KEYS = ("_kg_stats", "metadata")

_INDIA = ("india", "hyderabad", "mumbai", "delhi", "bangalore", "chennai")
_INDIA_SHORT = ("india", "hyderabad", "mumbai", "delhi")
_US = ("us", "united states", "nyc", "new york", "america")
_UAE = ("uae", "dubai", "abu dhabi")


# ---------------------------------------------------------------------------
# Corridor compliance knowledge
# ---------------------------------------------------------------------------

CORRIDOR_COMPLIANCE: Dict[str, Tuple[Tuple[str, ...], Tuple[str, ...]]] = {
    "India→UAE": (
        (
            "RBI_LRS_COMPLIANCE",
            "FEMA_REPORTING",
            "INDIA_WORLDWIDE_TAXATION",
            "INDIA_UAE_DTAA",
        ),
        (
            "India taxes worldwide income — rental income from Dubai is taxable in India at slab rates",
            "RBI Liberalised Remittance Scheme: $250,000/person/year limit applies to outward remittance",
            "FEMA compliance: All foreign property acquisitions must be reported to RBI",
            "India-UAE DTAA: Foreign Tax Credit available for taxes paid in UAE (currently 0%)",
        ),
    ),
    "India→Singapore": (
        (
            "RBI_LRS_COMPLIANCE",
            "FEMA_REPORTING",
            "INDIA_WORLDWIDE_TAXATION",
            "INDIA_SINGAPORE_DTAA",
            "SINGAPORE_ABSD_FOREIGN_BUYER",
        ),
        (
            "India taxes worldwide income — rental and capital gains from Singapore taxable in India",
            "Singapore ABSD: 60% Additional Buyer's Stamp Duty for foreign buyers",
            "RBI LRS: $250,000/person/year outward remittance cap",
        ),
    ),
    "US→Singapore": (
        (
            "US_WORLDWIDE_TAXATION",
            "FBAR_REPORTING",
            "FATCA_COMPLIANCE",
            "US_SINGAPORE_FTA",
            "PFIC_RISK",
        ),
        (
            "US worldwide taxation: All foreign rental income and capital gains reported on Schedule E/D",
            "FBAR: Foreign bank accounts > $10,000 must be reported (FinCEN 114)",
            "FATCA: Form 8938 required for specified foreign financial assets",
            "PFIC risk: Investing through foreign REITs triggers punitive PFIC taxation",
        ),
    ),
    "US→UAE": (
        (
            "US_WORLDWIDE_TAXATION",
            "FBAR_REPORTING",
            "FATCA_COMPLIANCE",
        ),
        (
            "US worldwide taxation: All foreign rental income taxable at ordinary rates",
            "No US-UAE income tax treaty — FTC limited to taxes actually paid in UAE (typically 0%)",
            "FBAR: Foreign bank accounts > $10,000 must be reported",
        ),
    ),
}


def corridor_key(source: str, destination: str) -> Optional[str]:
    if not source or not destination:
        return None
    s = source.lower()
    d = destination.lower()

    def _any(haystack: str, needles: Tuple[str, ...]) -> bool:
        return any(n in haystack for n in needles)

    if _any(s, _INDIA) and _any(d, _UAE):
        return "India→UAE"
    if _any(s, _INDIA_SHORT) and "singapore" in d:
        return "India→Singapore"
    if _any(s, _US) and "singapore" in d:
        return "US→Singapore"
    if _any(s, _US) and _any(d, _UAE):
        return "US→UAE"
    return None


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _mapping(value: Any) -> Optional[Mapping[str, Any]]:
    return value if isinstance(value, Mapping) else None


def _num(value: Any) -> Optional[float]:
    """Numeric value or None. Booleans and strings are not numbers here."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if math.isnan(value):
        return None
    return float(value)


def _num_or(value: Any, default: float) -> float:
    number = _num(value)
    return default if number is None else number


def _rate(rates: Mapping[str, Any], key: str) -> float:
    return _num_or(rates.get(key), 0.0)


def _has_meaningful_rates(rates: Optional[Mapping[str, Any]]) -> bool:
    if not rates:
        return False
    return any(_rate(rates, key) > 0 for key in _RATE_KEYS)


def _pick_rates(
    direct: Optional[Mapping[str, Any]], fallback: Optional[Mapping[str, Any]]
) -> Mapping[str, Any]:
    if _has_meaningful_rates(direct):
        return direct  # type: ignore[return-value]
    if _has_meaningful_rates(fallback):
        return fallback  # type: ignore[return-value]
    if direct is not None:
        return direct
    return fallback or {}


def fmt_number(value: float) -> str:
    """Plain number formatting: integral values render without a fraction."""
    if float(value).is_integer():
        return str(int(value))
    return repr(float(value))


def fmt_grouped(value: float) -> str:
    """Round half-up to an integer and group thousands."""
    return f"{int(math.floor(value + 0.5)):,}"


def _millions(value: float) -> str:
    return f"${value / 1e6:.1f}M"


# ---------------------------------------------------------------------------
# Stamp duty
# ---------------------------------------------------------------------------

def _find_stamp_duty_entry(
    real_asset_audit: Mapping[str, Any], destination: str, source: str
) -> Optional[Mapping[str, Any]]:
    dest_lower = destination.lower()
    source_lower = source.lower()

    def _has_stamp_duty(key: str) -> bool:
        entry = _mapping(real_asset_audit.get(key))
        return bool(entry and entry.get("stamp_duty"))

    keys = list(real_asset_audit.keys())

    for key in keys:
        k = str(key).lower()
        if k in _METADATA_KEYS or not dest_lower:
            continue
        if dest_lower in k and _has_stamp_duty(key):
            return _mapping(real_asset_audit[key]["stamp_duty"])

    for key in keys:
        k = str(key).lower()
        if k in _METADATA_KEYS or k.startswith("_"):
            continue
        is_source = bool(source_lower) and (source_lower in k or k in source_lower)
        if not is_source and _has_stamp_duty(key):
            return _mapping(real_asset_audit[key]["stamp_duty"])

    return None


def _stamp_duty_rates(
    base_pct: float,
    real_asset_audit: Optional[Mapping[str, Any]],
    destination: str,
    source: str,
) -> Tuple[float, float]:
    stamp_duty_pct = base_pct
    surcharge_pct = 0.0
    if not real_asset_audit:
        return stamp_duty_pct, surcharge_pct

    stamp_duty = _find_stamp_duty_entry(real_asset_audit, destination, source)
    if stamp_duty is None:
        return stamp_duty_pct, surcharge_pct

    residential = stamp_duty.get("residential_rates")
    if isinstance(residential, list) and residential and _mapping(residential[0]):
        stamp_duty_pct = _num_or(residential[0].get("rate_pct"), stamp_duty_pct)

    surcharge = _mapping(stamp_duty.get("foreign_buyer_surcharge"))
    if surcharge:
        surcharge_pct = _num_or(surcharge.get("rate_pct"), 0.0)

    total_effective = _num(stamp_duty.get("total_effective_rate_pct"))
    if total_effective is not None:
        stamp_duty_pct = total_effective

    return stamp_duty_pct, surcharge_pct


# ---------------------------------------------------------------------------
# Assembly
# ---------------------------------------------------------------------------

def assemble_cross_border_audit(
    preview_data: Mapping[str, Any],
    starting_position: Mapping[str, Any],
    real_asset_audit: Optional[Mapping[str, Any]] = None,
) -> Optional[CrossBorderAuditSummary]:
    """
    Summary for one cross-border acquisition, or None when the payload
    lacks every tax-rate object or a positive transaction value.
    """
    raw_source = _mapping(preview_data.get("source_tax_rates"))
    raw_dest = _mapping(preview_data.get("destination_tax_rates"))
    differential = _mapping(preview_data.get("tax_differential")) or {}
    td_source = _mapping(differential.get("source"))
    td_dest = _mapping(differential.get("destination"))

    source_tax = _pick_rates(raw_source, td_source)
    dest_tax = _pick_rates(raw_dest, td_dest)

    transaction_value = (
        _num(starting_position.get("transaction_value"))
        or _num(starting_position.get("transaction_amount"))
        or 0.0
    )

    no_tax_data = all(r is None for r in (raw_source, td_source, raw_dest, td_dest))
    if no_tax_data or transaction_value <= 0:
        return None

    targets = preview_data.get("target_locations")
    first_target = targets[0] if isinstance(targets, list) and targets else None
    destination = str(preview_data.get("destination_jurisdiction") or first_target or "")
    source = str(preview_data.get("source_jurisdiction") or "")

    structure = _mapping(starting_position.get("selected_structure")) or {}
    net_estate_rate = _num_or(structure.get("net_estate_rate_pct"), 0.0)

    stamp_duty_pct, surcharge_pct = _stamp_duty_rates(
        _num_or(structure.get("stamp_duty_rate_pct"), 0.0),
        _mapping(preview_data.get("real_asset_audit")) if real_asset_audit is None else real_asset_audit,
        destination,
        source,
    )
    day_one_loss_pct = stamp_duty_pct + surcharge_pct

    # -- acquisition ---------------------------------------------------------
    bsd_amount = transaction_value * (stamp_duty_pct / 100)
    absd_amount = transaction_value * (surcharge_pct / 100)
    total_stamp_duties = bsd_amount + absd_amount

    acquisition = AcquisitionAudit(
        property_value=transaction_value,
        bsd_stamp_duty=bsd_amount,
        absd_additional_stamp_duty=absd_amount,
        total_stamp_duties=total_stamp_duties,
        total_acquisition_cost=transaction_value + total_stamp_duties,
        day_one_loss_pct=day_one_loss_pct,
    )

    # -- rental income -------------------------------------------------------
    gross_yield_pct = _num_or(starting_position.get("rental_yield_pct"), 0.0)
    source_income = _rate(source_tax, "income_tax")
    dest_income = _rate(dest_tax, "income_tax")
    rental_ftc = source_income > 0 and dest_income > 0
    rental_net_rate = _num_or(
        structure.get("net_rental_rate_pct"), max(source_income, dest_income)
    )

    if dest_income == 0 and source_income > 0:
        rental_explanation = (
            f"Destination charges 0% income tax. Source jurisdiction taxes worldwide "
            f"income at {fmt_number(source_income)}%. Net effective rate after "
            f"structure: {fmt_number(rental_net_rate)}%."
        )
    else:
        rental_explanation = (
            f"Destination: {fmt_number(dest_income)}%. Source: {fmt_number(source_income)}%. "
            f"FTC {'available' if rental_ftc else 'not available'}. "
            f"Net: {fmt_number(rental_net_rate)}%."
        )

    rental = RentalIncomeAudit(
        gross_yield_pct=gross_yield_pct,
        destination_tax_rate_pct=dest_income,
        source_tax_rate_pct=source_income,
        ftc_available=rental_ftc,
        net_tax_rate_pct=rental_net_rate,
        tax_savings_pct=0,
        explanation=rental_explanation,
    )

    # -- capital gains -------------------------------------------------------
    source_cgt = _rate(source_tax, "cgt")
    dest_cgt = _rate(dest_tax, "cgt")
    cgt_net_rate = _num_or(structure.get("net_cgt_rate_pct"), max(source_cgt, dest_cgt))

    if dest_cgt == 0 and source_cgt > 0:
        cgt_explanation = (
            f"Destination: 0% CGT. Source: {fmt_number(source_cgt)}% on worldwide gains. "
            f"Net effective rate: {fmt_number(cgt_net_rate)}%."
        )
    else:
        cgt_explanation = (
            f"Destination: {fmt_number(dest_cgt)}%. Source: {fmt_number(source_cgt)}%. "
            f"Net: {fmt_number(cgt_net_rate)}%."
        )

    capital_gains = CapitalGainsAudit(
        destination_cgt_pct=dest_cgt,
        source_cgt_pct=source_cgt,
        ftc_available=source_cgt > 0 and dest_cgt > 0,
        net_cgt_rate_pct=cgt_net_rate,
        tax_savings_pct=0,
        explanation=cgt_explanation,
    )

    # -- estate --------------------------------------------------------------
    source_estate = _rate(source_tax, "estate_tax")
    dest_estate = _rate(dest_tax, "estate_tax")
    worldwide_applies = source_estate > 0 or source_income > 0

    if source_estate == 0 and dest_estate == 0:
        estate_explanation = (
            "Neither jurisdiction imposes estate/inheritance tax on this asset class."
        )
    else:
        estate_explanation = (
            f"Source: {fmt_number(source_estate)}%. Destination: {fmt_number(dest_estate)}%. "
            f"Worldwide taxation {'applies' if worldwide_applies else 'does not apply'}."
        )

    estate = EstateTaxAudit(
        destination_estate_pct=dest_estate,
        source_estate_pct=source_estate,
        worldwide_applies=worldwide_applies,
        net_estate_rate_pct=net_estate_rate or max(source_estate, dest_estate),
        tax_savings_pct=0,
        explanation=estate_explanation,
    )

    # -- net yield -----------------------------------------------------------
    net_yield_pct = _num_or(
        starting_position.get("net_rental_yield_pct"),
        gross_yield_pct * (1 - rental_net_rate / 100),
    )
    annual_gross = _num_or(
        starting_position.get("annual_rental"),
        transaction_value * gross_yield_pct / 100,
    )
    annual_tax = annual_gross * (rental_net_rate / 100)
    annual_net = annual_gross - annual_tax

    net_yield = NetYieldAudit(
        gross_yield_pct=gross_yield_pct,
        tax_rate_applied_pct=rental_net_rate,
        net_yield_pct=net_yield_pct,
        annual_gross_income=annual_gross,
        annual_tax_paid=annual_tax,
        annual_net_income=annual_net,
        explanation=(
            f"Gross yield {fmt_number(gross_yield_pct)}% on {_millions(transaction_value)} → "
            f"{fmt_number(rental_net_rate)}% effective tax → {net_yield_pct:.2f}% net yield "
            f"(${fmt_grouped(annual_net)}/yr)."
        ),
    )

    # -- corridor & summary --------------------------------------------------
    key = corridor_key(source, destination)
    flags: List[str] = []
    warnings: List[str] = []
    if key is not None:
        corridor_flags, corridor_warnings = CORRIDOR_COMPLIANCE[key]
        flags = list(corridor_flags)
        warnings = list(corridor_warnings)

    structure_name = structure.get("structure_name") or "Direct Purchase"
    summary = (
        f"Cross-border acquisition: {_millions(transaction_value)} "
        f"{destination or 'destination'} property from {source or 'source'} jurisdiction. "
        f"Structure: {structure_name}. "
        f"Day-one stamp duty cost: {day_one_loss_pct:.1f}% (${fmt_grouped(total_stamp_duties)}). "
        f"Net rental yield: {net_yield_pct:.2f}% after {fmt_number(rental_net_rate)}% effective tax rate. "
    )
    if key is not None:
        summary += f"Corridor: {key} — {len(flags)} compliance requirements identified."

    return CrossBorderAuditSummary(
        executive_summary=summary,
        acquisition_audit=acquisition,
        rental_income_audit=rental,
        capital_gains_audit=capital_gains,
        estate_tax_audit=estate,
        net_yield_audit=net_yield,
        total_tax_savings_pct=0,
        compliance_flags=flags,
        warnings=warnings,
    )
