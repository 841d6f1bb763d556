"""
Report Access Gate.

Decides which token, if any, accompanies a privileged fetch, and owns
the transition back to "authorized" once the report challenge succeeds.

Demonstration intake ids listed in configuration bypass the challenge
entirely: they resolve to a fixed sentinel token, never touch storage,
and never surface ``AuthRequiredError``.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Iterable, Optional

from pattern_audit.app.credentials.store import CredentialStore
from pattern_audit.app.errors import AuthRequiredError, FetchFailure
from pattern_audit.app.schemas.session import ReportAccessToken

logger = logging.getLogger("pattern_audit.gate")


class ReportAccessGate:
    def __init__(
        self,
        store: CredentialStore,
        *,
        bypass_intake_ids: Iterable[str] = (),
        bypass_token: str = "mfa_bypass_token",
    ) -> None:
        self._store = store
        self._bypass_ids = frozenset(bypass_intake_ids)
        self._bypass_token = bypass_token

    def is_bypassed(self, intake_id: str) -> bool:
        return intake_id in self._bypass_ids

    def resolve(self, intake_id: str, supplied: Optional[str] = None) -> Optional[str]:
        """
        Effective token for ``intake_id``.

        Priority: bypass sentinel, caller-supplied token, durable token,
        ephemeral token. ``None`` when nothing is available; the fetch then
        goes out unauthenticated and the backend decides.
        """
        if self.is_bypassed(intake_id):
            return self._bypass_token
        if supplied:
            return supplied
        stored = self._store.read(intake_id)
        return stored.value if stored is not None else None

    @asynccontextmanager
    async def privileged(self, intake_id: str) -> AsyncIterator[None]:
        """
        Wrap a privileged fetch.

        A 401 for a bypassed intake is a backend fault, not a prompt for
        credentials, so it is reported as a plain fetch failure.
        """
        try:
            yield
        except AuthRequiredError as exc:
            if self.is_bypassed(intake_id):
                logger.error(
                    "auth rejected for bypassed intake: intake_id=%s", intake_id
                )
                raise FetchFailure(
                    "Unable to load this report. Please try again later."
                ) from exc
            raise

    def complete_challenge(
        self, intake_id: str, token: str, *, remember_device: bool
    ) -> ReportAccessToken:
        stored = self._store.write(intake_id, token, remember_device=remember_device)
        if remember_device:
            self._store.mark_skip_splash()
        logger.info(
            "report challenge completed: intake_id=%s remembered=%s",
            intake_id,
            remember_device,
        )
        return stored

    def logout(self, intake_id: str) -> None:
        self._store.clear(intake_id)
        self._store.clear_skip_splash()

    def should_skip_splash(self) -> bool:
        return self._store.should_skip_splash()
