"""
Composition root.

Wires settings, storage, HTTP clients, push channel and checkout into an
``AuditSessionController``. The caller owns the ``httpx.AsyncClient`` and
closes it; every component shares it so connection pooling is preserved.
"""

from __future__ import annotations

from datetime import timedelta
from typing import Optional

import httpx

from pattern_audit.app.access.gate import ReportAccessGate
from pattern_audit.app.client.api import AuditApiClient
from pattern_audit.app.client.report_auth import ReportAuthClient
from pattern_audit.app.config import Settings, get_settings
from pattern_audit.app.credentials.store import (
    CredentialStore,
    JsonFileKeyValueStore,
    KeyValueStore,
    MemoryKeyValueStore,
)
from pattern_audit.app.events.channel import PushUpdateChannel
from pattern_audit.app.events.sse_channel import SSEPushChannel
from pattern_audit.app.lifecycle.controller import AuditSessionController
from pattern_audit.app.payments.checkout import CheckoutWidget


def build_gate(
    settings: Settings,
    *,
    durable: Optional[KeyValueStore] = None,
    ephemeral: Optional[KeyValueStore] = None,
) -> ReportAccessGate:
    store = CredentialStore(
        durable if durable is not None else JsonFileKeyValueStore(settings.durable_store_path),
        ephemeral if ephemeral is not None else MemoryKeyValueStore(),
        remembered_ttl=timedelta(days=settings.remembered_token_ttl_days),
    )
    return ReportAccessGate(
        store,
        bypass_intake_ids=settings.mfa_bypass_intake_ids,
        bypass_token=settings.bypass_token,
    )


def build_controller(
    intake_id: str,
    *,
    http_client: httpx.AsyncClient,
    checkout: CheckoutWidget,
    settings: Optional[Settings] = None,
    gate: Optional[ReportAccessGate] = None,
    channel: Optional[PushUpdateChannel] = None,
) -> AuditSessionController:
    settings = settings or get_settings()
    gate = gate or build_gate(settings)
    api = AuditApiClient.from_settings(settings, http_client)
    if channel is None:
        channel = SSEPushChannel.from_settings(
            settings, http_client, token_provider=gate.resolve
        )
    return AuditSessionController(
        intake_id,
        api=api,
        gate=gate,
        channel=channel,
        checkout=checkout,
        settings=settings,
    )


def build_report_auth_client(
    http_client: httpx.AsyncClient, settings: Optional[Settings] = None
) -> ReportAuthClient:
    settings = settings or get_settings()
    return ReportAuthClient(
        http_client,
        base_url=settings.api_base_url,
        timeout=settings.request_timeout_seconds,
    )
