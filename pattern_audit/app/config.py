"""
Centralized configuration for the Pattern Audit session client.

Pydantic v2 settings management: values are read from the environment
(prefix ``PATTERN_AUDIT_``) or a local ``.env`` file, validated once,
and frozen for the lifetime of the process.
"""

from functools import lru_cache
from pathlib import Path
from typing import Annotated, List

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


# -------------------------------------------------------------------------
# Reusable Type Aliases
# -------------------------------------------------------------------------

PositiveSeconds = Annotated[
    float,
    Field(gt=0, description="Duration in seconds"),
]

MinorAmount = Annotated[
    int,
    Field(gt=0, description="Tier price in whole currency units"),
]


# -------------------------------------------------------------------------
# Settings Model
# -------------------------------------------------------------------------

class Settings(BaseSettings):
    """
    Client settings parsed from the environment.

    Every field has a working default so the client can be constructed
    in tests and local development without any environment at all.
    """

    # ---------------------------------------------------------------------
    # Backend
    # ---------------------------------------------------------------------

    api_base_url: Annotated[
        str,
        Field(
            default="http://localhost:3000/api/decision-memo",
            description="Base URL of the decision memo API",
        ),
    ]

    request_timeout_seconds: PositiveSeconds = 30.0

    stream_read_timeout_seconds: Annotated[
        PositiveSeconds,
        Field(description="Read timeout for the push channel between events"),
    ] = 300.0

    stream_max_attempts: Annotated[
        int,
        Field(ge=1, description="Connection attempts before the push channel gives up"),
    ] = 5

    stream_reconnect_delay_seconds: PositiveSeconds = 1.0

    # ---------------------------------------------------------------------
    # Report Access
    # ---------------------------------------------------------------------

    mfa_bypass_intake_ids: List[str] = Field(
        default_factory=lambda: ["fo_audit_AijuqwJovDu_"],
        description="Demonstration intake ids exempt from the report challenge",
    )

    bypass_token: str = "mfa_bypass_token"

    remembered_token_ttl_days: Annotated[int, Field(ge=1)] = 7

    durable_store_path: Path = Path("~/.pattern_audit/credentials.json")

    # ---------------------------------------------------------------------
    # Lifecycle
    # ---------------------------------------------------------------------

    countdown_interval_seconds: PositiveSeconds = 1.0

    # ---------------------------------------------------------------------
    # Payment
    # ---------------------------------------------------------------------

    payment_product: str = "sfo_pattern_audit"
    payment_currency: str = "USD"
    single_tier_price: MinorAmount = 5000
    annual_tier_price: MinorAmount = 25000

    model_config = SettingsConfigDict(
        env_prefix="PATTERN_AUDIT_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        frozen=True,
    )

    @field_validator("api_base_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    @field_validator("durable_store_path")
    @classmethod
    def _expand_user(cls, value: Path) -> Path:
        return value.expanduser()


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Cached settings accessor.

    Parsed once per process; call ``get_settings.cache_clear()`` in tests
    that need to re-read the environment.
    """
    return Settings()
