"""Pydantic based configuration for the passkey server."""

from __future__ import annotations

from pathlib import Path
from typing import List, Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DATA_DIR = Path(__file__).resolve().parent / "data"
DATA_DIR.mkdir(parents=True, exist_ok=True)
DEFAULT_DB_PATH = DATA_DIR / "passkeys.db"

COSE_ES256 = -7
COSE_RS256 = -257


class RPSettings(BaseSettings):
    """Relying party settings, read from ``WEBAUTHN_*`` environment variables."""

    model_config = SettingsConfigDict(env_prefix="WEBAUTHN_")

    environment: Literal["development", "production"] = Field(
        default="development",
        description="Production refuses to fall back to localhost RP values",
    )
    database_url: str = Field(
        default=f"sqlite:///{DEFAULT_DB_PATH}",
        description="SQLAlchemy connection string for challenges, credentials and sessions",
    )
    rp_id: str = Field(default="localhost", description="Relying Party identifier")
    rp_name: str = Field(default="GambleGuard", description="Human readable RP name")
    origin: str = Field(
        default="http://localhost:3000",
        description="Primary origin expected in clientDataJSON",
    )
    extra_origins: List[str] = Field(
        default_factory=list,
        description="Additional origins accepted during verification",
    )
    supported_algorithms: List[int] = Field(
        default_factory=lambda: [COSE_ES256, COSE_RS256],
        description="COSE algorithm identifiers the RP will accept",
    )
    timeout_ms: int = Field(default=60_000, description="Ceremony timeout hint sent to clients")
    challenge_ttl_seconds: int = Field(default=5 * 60)
    pending_session_ttl_seconds: int = Field(default=5 * 60)
    session_ttl_seconds: int = Field(default=30 * 24 * 60 * 60)
    cookie_secure: bool = Field(default=False, description="Mark auth cookies Secure")

    @model_validator(mode="after")
    def require_explicit_rp_in_production(self) -> "RPSettings":
        if self.environment == "production":
            missing = {"rp_id", "origin"} - self.model_fields_set
            if missing:
                raise ValueError(
                    f"{', '.join(sorted(missing))} must be configured explicitly in production"
                )
        return self

    @property
    def expected_origins(self) -> List[str]:
        origins = [self.origin]
        origins.extend(o for o in self.extra_origins if o not in origins)
        return origins
