"""
Two-tier persisted credential store.

Layout (per intake id):
- durable:   ``report_token_{id}`` and ``report_token_exp_{id}`` (epoch ms)
- ephemeral: ``report_token_{id}``

Invariants:
- at most one token per intake per tier
- writing one tier removes the token from the other
- an expired durable token is purged on read and reported as absent
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Dict, Optional, Protocol

from pattern_audit.app.schemas.session import ReportAccessToken

logger = logging.getLogger("pattern_audit.credentials")

Clock = Callable[[], datetime]

SKIP_SPLASH_KEY = "skipSplash"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Key/value backends
# ---------------------------------------------------------------------------

class KeyValueStore(Protocol):
    def get(self, key: str) -> Optional[str]:
        ...

    def set(self, key: str, value: str) -> None:
        ...

    def delete(self, key: str) -> None:
        ...

    def clear(self) -> None:
        ...


class MemoryKeyValueStore:
    """Process-lifetime store. Used as the ephemeral tier."""

    def __init__(self) -> None:
        self._data: Dict[str, str] = {}

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def clear(self) -> None:
        self._data.clear()


class JsonFileKeyValueStore:
    """
    Durable store backed by a single JSON file.

    Every write replaces the file atomically so a crash never leaves a
    half-written credential file behind.
    """

    def __init__(self, path: Path) -> None:
        self._path = Path(path)
        self._data: Dict[str, str] = self._load()

    def _load(self) -> Dict[str, str]:
        if not self._path.exists():
            return {}
        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            logger.warning(
                "credential store unreadable, starting empty: path=%s error=%s",
                self._path,
                exc,
            )
            return {}
        if not isinstance(raw, dict):
            return {}
        return {str(k): str(v) for k, v in raw.items()}

    def _flush(self) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(
            dir=str(self._path.parent), prefix=".credentials-", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(self._data, fh, sort_keys=True)
            os.replace(tmp_path, self._path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value
        self._flush()

    def delete(self, key: str) -> None:
        if key in self._data:
            del self._data[key]
            self._flush()

    def clear(self) -> None:
        self._data.clear()
        self._flush()


# ---------------------------------------------------------------------------
# Credential store
# ---------------------------------------------------------------------------

def _token_key(intake_id: str) -> str:
    return f"report_token_{intake_id}"


def _expiry_key(intake_id: str) -> str:
    return f"report_token_exp_{intake_id}"


class CredentialStore:
    def __init__(
        self,
        durable: KeyValueStore,
        ephemeral: KeyValueStore,
        *,
        remembered_ttl: timedelta = timedelta(days=7),
        clock: Clock = utc_now,
    ) -> None:
        self._durable = durable
        self._ephemeral = ephemeral
        self._ttl = remembered_ttl
        self._clock = clock

    def read(self, intake_id: str) -> Optional[ReportAccessToken]:
        """Durable token if present and unexpired, else the ephemeral one."""
        remembered = self._durable.get(_token_key(intake_id))
        if remembered:
            expires_at = self._read_expiry(intake_id)
            if expires_at is not None and self._clock() > expires_at:
                logger.info("remembered report token expired: intake_id=%s", intake_id)
                self._purge_durable(intake_id)
            else:
                return ReportAccessToken(
                    value=remembered,
                    expires_at=expires_at,
                    device_trusted=True,
                )

        session_token = self._ephemeral.get(_token_key(intake_id))
        if session_token:
            return ReportAccessToken(value=session_token)
        return None

    def write(
        self, intake_id: str, value: str, *, remember_device: bool
    ) -> ReportAccessToken:
        if remember_device:
            expires_at = self._clock() + self._ttl
            self._durable.set(_token_key(intake_id), value)
            self._durable.set(
                _expiry_key(intake_id), str(int(expires_at.timestamp() * 1000))
            )
            self._ephemeral.delete(_token_key(intake_id))
            return ReportAccessToken(
                value=value, expires_at=expires_at, device_trusted=True
            )

        self._ephemeral.set(_token_key(intake_id), value)
        self._purge_durable(intake_id)
        return ReportAccessToken(value=value)

    def clear(self, intake_id: str) -> None:
        self._purge_durable(intake_id)
        self._ephemeral.delete(_token_key(intake_id))

    # -- returning-user flag -------------------------------------------------

    def mark_skip_splash(self) -> None:
        self._durable.set(SKIP_SPLASH_KEY, "true")

    def should_skip_splash(self) -> bool:
        return self._durable.get(SKIP_SPLASH_KEY) == "true"

    def clear_skip_splash(self) -> None:
        self._durable.delete(SKIP_SPLASH_KEY)

    # -- internals -----------------------------------------------------------

    def _read_expiry(self, intake_id: str) -> Optional[datetime]:
        raw = self._durable.get(_expiry_key(intake_id))
        if not raw:
            return None
        try:
            millis = int(raw)
        except ValueError:
            # Unparseable expiry is treated as already expired.
            return datetime.fromtimestamp(0, tz=timezone.utc)
        return datetime.fromtimestamp(millis / 1000, tz=timezone.utc)

    def _purge_durable(self, intake_id: str) -> None:
        self._durable.delete(_token_key(intake_id))
        self._durable.delete(_expiry_key(intake_id))
