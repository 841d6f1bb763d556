"""
Backend payload -> model transforms.

The backend has shipped several response shapes over time (wrapped in
``session`` / ``preview`` / ``artifact`` keys or not, old and new
intelligence-count layouts). These functions accept all of them and
reject anything that cannot be interpreted without guessing. In
particular a session without a recognizable status is an error: the
client never derives a status from payment flags.
"""

from __future__ import annotations

from typing import Any, Dict, Mapping, Optional

from pydantic import ValidationError

from pattern_audit.app.errors import FetchFailure, PaymentInitiationFailure
from pattern_audit.app.schemas.payment import OrderResult, PaymentOrder, PaymentTier
from pattern_audit.app.schemas.session import (
    AuditSession,
    AuditStatus,
    FullArtifact,
    IntelligenceSources,
    PreviewArtifact,
    SessionSnapshot,
)


def _mapping(value: Any) -> Dict[str, Any]:
    return dict(value) if isinstance(value, Mapping) else {}


def _int(value: Any) -> int:
    if isinstance(value, bool):
        return 0
    if isinstance(value, (int, float)):
        return int(value)
    return 0


# ---------------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------------

def parse_status(raw: Any) -> AuditStatus:
    try:
        return AuditStatus(raw)
    except ValueError:
        raise FetchFailure(f"Unrecognized audit status: {raw!r}") from None


def session_snapshot_from_api(data: Mapping[str, Any], intake_id: str) -> SessionSnapshot:
    body = _mapping(data.get("session")) or _mapping(data)

    raw_status = body.get("status") or body.get("payment_status")
    if raw_status is None:
        raise FetchFailure("Session response did not include a status")
    status = parse_status(raw_status)

    price = body.get("price")
    try:
        session = AuditSession(
            id=body.get("intake_id") or intake_id,
            status=status,
            submitted_at=body.get("submitted_at") or None,
            price=price if isinstance(price, int) and not isinstance(price, bool) else None,
            unlock_at=body.get("unlock_at") or None,
            is_unlocked=bool(body.get("is_unlocked", False)),
        )
    except ValidationError as exc:
        raise FetchFailure(f"Invalid session data received: {exc}") from exc

    raw_full = body.get("full_artifact")
    if not isinstance(raw_full, Mapping):
        return SessionSnapshot(session=session)

    full = full_artifact_from_api(raw_full, session.id)
    preview_data = _mapping(body.get("preview_data"))
    embedded: Dict[str, Any] = {}
    if preview_data:
        risk = _mapping(preview_data.get("risk_assessment"))
        embedded = {
            "preview_data": preview_data,
            "memo_data": body.get("memo_data"),
            "mitigationTimeline": body.get("mitigationTimeline")
            or risk.get("mitigation_timeline"),
            "risk_assessment": body.get("risk_assessment"),
            "all_mistakes": body.get("all_mistakes"),
        }
    return SessionSnapshot(session=session, full_artifact=full, embedded_report=embedded)


# ---------------------------------------------------------------------------
# Artifacts
# ---------------------------------------------------------------------------

def preview_from_api(data: Mapping[str, Any], intake_id: str) -> PreviewArtifact:
    body = _mapping(data.get("preview")) or _mapping(data)
    resolved_id = body.get("intake_id") or data.get("intake_id")
    if not resolved_id:
        raise FetchFailure("Invalid preview data received")
    if resolved_id != intake_id:
        raise FetchFailure(
            f"Preview belongs to a different intake: {resolved_id!r}"
        )
    return PreviewArtifact(
        intake_id=resolved_id,
        generated_at=body.get("generated_at") or data.get("generated_at"),
        payload=body,
    )


def intelligence_sources_from_api(data: Mapping[str, Any]) -> IntelligenceSources:
    """
    Counts from either the current ``memo_data.kgv3_intelligence_used``
    layout or the older ``intelligence_sources`` one.
    """
    kgv3 = _mapping(_mapping(data.get("memo_data")).get("kgv3_intelligence_used"))
    legacy = _mapping(data.get("intelligence_sources"))
    return IntelligenceSources(
        developments_matched=_int(
            kgv3.get("precedents")
            or legacy.get("developments_matched")
            or legacy.get("precedents_reviewed")
        ),
        failure_patterns_matched=_int(
            kgv3.get("failure_modes")
            or legacy.get("failure_patterns_matched")
            or legacy.get("failure_modes")
        ),
        sequencing_rules_applied=_int(
            kgv3.get("sequencing_rules")
            or legacy.get("sequencing_rules_applied")
            or legacy.get("sequence_corrections")
        ),
    )


def full_artifact_from_api(data: Mapping[str, Any], intake_id: str) -> FullArtifact:
    body = _mapping(data.get("artifact")) or _mapping(data)
    if not body:
        raise FetchFailure("Invalid artifact data received")
    return FullArtifact(
        intake_id=body.get("intake_id") or intake_id,
        generated_at=body.get("generated_at"),
        intelligence_sources=intelligence_sources_from_api(body),
        payload=body,
    )


# ---------------------------------------------------------------------------
# Payment
# ---------------------------------------------------------------------------

def order_from_api(
    data: Mapping[str, Any],
    *,
    tier: PaymentTier,
    description: str,
    fallback_amount: int,
    fallback_currency: str,
) -> OrderResult:
    if data.get("success") is False:
        if data.get("error") == "already_paid":
            return OrderResult(already_paid=True)
        raise PaymentInitiationFailure(
            str(data.get("error") or data.get("message") or "Backend rejected payment order")
        )

    order_id: Optional[str] = data.get("order_id") or data.get("orderId")
    vendor_key: Optional[str] = (
        data.get("key_id") or data.get("key") or data.get("razorpay_key")
    )
    if not order_id or not vendor_key:
        raise PaymentInitiationFailure("Invalid order response: missing order id or key")

    return OrderResult(
        order=PaymentOrder(
            tier=tier,
            amount=_int(data.get("amount")) or fallback_amount,
            currency=str(data.get("currency") or fallback_currency),
            order_id=order_id,
            vendor_key=vendor_key,
            description=description,
        )
    )
