"""
Report challenge client.

Login with email and password, optionally followed by an emailed
six-digit MFA code. The resulting token is handed to
``ReportAccessGate.complete_challenge`` by the caller.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx
from pydantic import BaseModel, ConfigDict

from pattern_audit.app.errors import ChallengeFailure

logger = logging.getLogger("pattern_audit.client.report_auth")

RATE_LIMIT_COOLDOWN_SECONDS = 60


class LoginStep(BaseModel):
    """Either a direct token or an MFA token for the second step."""

    model_config = ConfigDict(frozen=True)

    token: Optional[str] = None
    requires_mfa: bool = False
    mfa_token: Optional[str] = None
    message: Optional[str] = None


class ReportAuthClient:
    AUTH_PATH = "/auth"

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        *,
        base_url: str,
        timeout: float = 30.0,
    ) -> None:
        self._client = http_client
        self._base = base_url.rstrip("/") + self.AUTH_PATH
        self._timeout = timeout

    async def login(self, intake_id: str, email: str, password: str) -> LoginStep:
        data = await self._post(
            "/login",
            {"slug": intake_id, "email": email, "password": password},
            default_error="Invalid credentials",
        )
        if data.get("requires_mfa"):
            return LoginStep(
                requires_mfa=True,
                mfa_token=data.get("mfa_token"),
                message=data.get("message") or "Check your email for the 6-digit code.",
            )
        if data.get("token"):
            return LoginStep(token=data["token"])
        raise ChallengeFailure("Login response contained neither a token nor an MFA step")

    async def verify_mfa(
        self,
        intake_id: str,
        email: str,
        *,
        code: str,
        mfa_token: str,
        remember_device: bool = True,
    ) -> str:
        data = await self._post(
            "/report-mfa/verify",
            {
                "slug": intake_id,
                "email": email,
                "mfa_code": code,
                "mfa_token": mfa_token,
                "remember_device": remember_device,
            },
            default_error="Invalid verification code",
        )
        if data.get("success") and data.get("token"):
            return data["token"]
        raise ChallengeFailure(data.get("detail") or "Invalid verification code")

    async def resend_mfa(self, intake_id: str, email: str, *, mfa_token: str) -> str:
        data = await self._post(
            "/report-mfa/resend",
            {"slug": intake_id, "email": email, "mfa_token": mfa_token},
            default_error="Failed to resend code",
        )
        if not data.get("success"):
            raise ChallengeFailure(data.get("detail") or "Failed to resend code")
        return data.get("message") or "A new verification code has been sent."

    async def _post(
        self, path: str, payload: Dict[str, Any], *, default_error: str
    ) -> Dict[str, Any]:
        try:
            response = await self._client.post(
                self._base + path, json=payload, timeout=self._timeout
            )
        except httpx.RequestError as exc:
            logger.error("report auth request failed: path=%s error=%s", path, exc)
            raise ChallengeFailure("Connection error. Please try again.") from exc

        if response.status_code == 429:
            raise ChallengeFailure(
                "Too many attempts. Please wait before trying again.",
                rate_limited=True,
                retry_after_seconds=RATE_LIMIT_COOLDOWN_SECONDS,
            )

        try:
            data = response.json()
        except ValueError:
            data = {}
        if not isinstance(data, dict):
            data = {}

        if response.is_error:
            raise ChallengeFailure(str(data.get("detail") or default_error))
        return data
