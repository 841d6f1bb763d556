"""
HTTP client for the decision memo API.

Wraps a shared ``httpx.AsyncClient`` so connection pooling is preserved
across calls. Every method translates transport and status failures into
the package error taxonomy:

- 401                      -> AuthRequiredError
- timeout / abort          -> TransientAbort
- any other non-2xx        -> FetchFailure (status code attached)
- connection error         -> FetchFailure
- undecodable / wrong body -> FetchFailure

Cancellation (``asyncio.CancelledError``) is never translated.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx

from pattern_audit.app.client import transforms
from pattern_audit.app.config import Settings
from pattern_audit.app.errors import (
    AuthRequiredError,
    FetchFailure,
    PaymentInitiationFailure,
    TransientAbort,
)
from pattern_audit.app.schemas.payment import OrderResult, PaymentOrder, PaymentTier
from pattern_audit.app.schemas.session import FullArtifact, PreviewArtifact, SessionSnapshot

logger = logging.getLogger("pattern_audit.client")


def bearer_headers(token: Optional[str]) -> Dict[str, str]:
    if not token:
        return {}
    return {"Authorization": f"Bearer {token}"}


class AuditApiClient:
    SESSION_PATH = "/session/{intake_id}"
    # Preview, full artifact and normalized report share one unified endpoint.
    REPORT_PATH = "/{intake_id}"
    CREATE_ORDER_PATH = "/sfo-audit/{intake_id}/create-order"
    VERIFY_PAYMENT_PATH = "/payment/verify"

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        *,
        base_url: str,
        timeout: float = 30.0,
    ) -> None:
        self._client = http_client
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout

    @classmethod
    def from_settings(
        cls, settings: Settings, http_client: httpx.AsyncClient
    ) -> "AuditApiClient":
        return cls(
            http_client,
            base_url=settings.api_base_url,
            timeout=settings.request_timeout_seconds,
        )

    def _url(self, path: str, **params: str) -> str:
        return self._base_url + path.format(**params)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_session(self, intake_id: str, token: Optional[str] = None) -> SessionSnapshot:
        data = await self._get_json(
            self._url(self.SESSION_PATH, intake_id=intake_id), token, label="session"
        )
        return transforms.session_snapshot_from_api(data, intake_id)

    async def get_preview_artifact(
        self, intake_id: str, token: Optional[str] = None
    ) -> PreviewArtifact:
        data = await self._get_json(
            self._url(self.REPORT_PATH, intake_id=intake_id), token, label="preview"
        )
        return transforms.preview_from_api(data, intake_id)

    async def get_full_artifact(
        self, intake_id: str, token: Optional[str] = None
    ) -> FullArtifact:
        data = await self._get_json(
            self._url(self.REPORT_PATH, intake_id=intake_id), token, label="artifact"
        )
        return transforms.full_artifact_from_api(data, intake_id)

    async def get_report(self, intake_id: str, token: Optional[str] = None) -> Dict[str, Any]:
        """Normalized report payload: preview data plus top-level derived fields."""
        return await self._get_json(
            self._url(self.REPORT_PATH, intake_id=intake_id), token, label="report"
        )

    # ------------------------------------------------------------------
    # Payment
    # ------------------------------------------------------------------

    async def initiate_payment(
        self,
        intake_id: str,
        *,
        tier: PaymentTier,
        amount: int,
        currency: str,
        description: str = "",
    ) -> OrderResult:
        url = self._url(self.CREATE_ORDER_PATH, intake_id=intake_id)
        try:
            response = await self._client.post(
                url,
                json={"currency": currency, "tier": tier.value, "amount": amount},
                timeout=self._timeout,
            )
        except httpx.RequestError as exc:
            logger.error("create-order transport failure: intake_id=%s error=%s", intake_id, exc)
            raise PaymentInitiationFailure("Failed to create payment order") from exc

        data = self._decode(response, label="create-order", allow_error_body=True)
        if response.is_error and data.get("success") is not False:
            raise PaymentInitiationFailure(
                f"Failed to create payment order (HTTP {response.status_code})"
            )

        result = transforms.order_from_api(
            data,
            tier=tier,
            description=description,
            fallback_amount=amount,
            fallback_currency=currency,
        )
        logger.info(
            "create-order: intake_id=%s tier=%s already_paid=%s",
            intake_id,
            tier.value,
            result.already_paid,
        )
        return result

    async def verify_payment(
        self, intake_id: str, *, product: str, order: PaymentOrder
    ) -> bool:
        """
        Post the checkout receipt for server-side signature verification.

        Returns the backend's success flag. Transport failures count as an
        unverified payment rather than raising, so the caller surfaces one
        uniform verification error.
        """
        try:
            response = await self._client.post(
                self._url(self.VERIFY_PAYMENT_PATH),
                json={
                    "intake_id": intake_id,
                    "product": product,
                    "payment_id": order.payment_id,
                    "order_id": order.order_id,
                    "signature": order.signature,
                },
                timeout=self._timeout,
            )
        except httpx.RequestError as exc:
            logger.error("verify-payment transport failure: intake_id=%s error=%s", intake_id, exc)
            return False

        if response.is_error:
            logger.warning(
                "verify-payment rejected: intake_id=%s status=%s",
                intake_id,
                response.status_code,
            )
            return False
        try:
            data = response.json()
        except ValueError:
            return False
        return isinstance(data, dict) and data.get("success") is True

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _get_json(self, url: str, token: Optional[str], *, label: str) -> Dict[str, Any]:
        try:
            response = await self._client.get(
                url, headers=bearer_headers(token), timeout=self._timeout
            )
        except httpx.TimeoutException as exc:
            logger.info("%s request aborted: %s", label, exc)
            raise TransientAbort(f"{label} request timed out") from exc
        except httpx.RequestError as exc:
            logger.error("%s request failed: %s", label, exc)
            raise FetchFailure(f"Failed to fetch {label}") from exc

        if response.status_code == 401:
            raise AuthRequiredError(f"Authentication required for {label}")

        return self._decode(response, label=label)

    @staticmethod
    def _decode(
        response: httpx.Response, *, label: str, allow_error_body: bool = False
    ) -> Dict[str, Any]:
        if response.is_error and not allow_error_body:
            logger.error("%s request returned HTTP %s", label, response.status_code)
            raise FetchFailure(
                f"Failed to fetch {label}: HTTP {response.status_code}",
                status_code=response.status_code,
            )
        try:
            data = response.json()
        except ValueError as exc:
            if allow_error_body:
                return {}
            raise FetchFailure(f"Invalid {label} response body") from exc
        if not isinstance(data, dict):
            if allow_error_body:
                return {}
            raise FetchFailure(f"Unexpected {label} response shape")
        return data
