"""
Cross-border tax audit summary.

The backend sometimes returns ``cross_border_audit_summary: null`` while
the raw rates sit scattered across the preview payload. These models are
the normalized shape the assembly pipeline produces in that case; they are
serialized back into plain dicts before being attached to the report.
"""

from __future__ import annotations

from typing import List

from pydantic import BaseModel, ConfigDict


class AcquisitionAudit(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    property_value: float
    bsd_stamp_duty: float
    absd_additional_stamp_duty: float
    total_stamp_duties: float
    total_acquisition_cost: float
    day_one_loss_pct: float


class RentalIncomeAudit(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    gross_yield_pct: float
    destination_tax_rate_pct: float
    source_tax_rate_pct: float
    ftc_available: bool
    net_tax_rate_pct: float
    tax_savings_pct: float
    explanation: str


class CapitalGainsAudit(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    destination_cgt_pct: float
    source_cgt_pct: float
    ftc_available: bool
    net_cgt_rate_pct: float
    tax_savings_pct: float
    explanation: str


class EstateTaxAudit(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    destination_estate_pct: float
    source_estate_pct: float
    worldwide_applies: bool
    net_estate_rate_pct: float
    tax_savings_pct: float
    explanation: str


class NetYieldAudit(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    gross_yield_pct: float
    tax_rate_applied_pct: float
    net_yield_pct: float
    annual_gross_income: float
    annual_tax_paid: float
    annual_net_income: float
    explanation: str


class CrossBorderAuditSummary(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    executive_summary: str
    acquisition_audit: AcquisitionAudit
    rental_income_audit: RentalIncomeAudit
    capital_gains_audit: CapitalGainsAudit
    estate_tax_audit: EstateTaxAudit
    net_yield_audit: NetYieldAudit

    # Non-relocation corridors carry no theoretical savings.
    total_tax_savings_pct: float = 0

    compliance_flags: List[str]
    warnings: List[str]
