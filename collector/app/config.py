"""Deployment settings for the ingestion service."""
from __future__ import annotations

import os
from dataclasses import dataclass
from enum import Enum
from typing import Mapping, Optional

from .errors import ConfigurationError

DEFAULT_DATABASE_URL = "sqlite:///./ingestion.db"


class ResolutionPolicy(str, Enum):
    AUTO_REGISTER = "auto_register"
    STRICT = "strict"


class ProcessingMode(str, Enum):
    BATCH = "batch"
    PER_EVENT = "per_event"


def _parse_enum(enum_cls, name: str, raw: Optional[str], default):
    if not raw:
        return default
    normalized = raw.strip().lower().replace("-", "_")
    try:
        return enum_cls(normalized)
    except ValueError as exc:
        allowed = ", ".join(member.value for member in enum_cls)
        raise ConfigurationError(f"{name} must be one of: {allowed}") from exc


def _parse_bool(raw: Optional[str], default: bool) -> bool:
    if raw is None or raw == "":
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Settings:
    secret_key: Optional[str]
    owner_user_id: Optional[str]
    database_url: str = DEFAULT_DATABASE_URL
    resolution_policy: ResolutionPolicy = ResolutionPolicy.AUTO_REGISTER
    processing_mode: ProcessingMode = ProcessingMode.BATCH
    diagnostics_enabled: bool = True

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        env = os.environ if environ is None else environ
        return cls(
            secret_key=env.get("INGEST_SECRET_KEY") or None,
            owner_user_id=env.get("OWNER_USER_ID") or None,
            database_url=env.get("INGEST_DATABASE_URL") or DEFAULT_DATABASE_URL,
            resolution_policy=_parse_enum(
                ResolutionPolicy,
                "INGEST_SITE_RESOLUTION",
                env.get("INGEST_SITE_RESOLUTION"),
                ResolutionPolicy.AUTO_REGISTER,
            ),
            processing_mode=_parse_enum(
                ProcessingMode,
                "INGEST_PROCESSING_MODE",
                env.get("INGEST_PROCESSING_MODE"),
                ProcessingMode.BATCH,
            ),
            diagnostics_enabled=_parse_bool(env.get("INGEST_DIAGNOSTICS_ENABLED"), True),
        )

    def require_ingestion(self) -> None:
        """Fail closed when the secret or the owner identity is not configured."""

        missing = [
            name
            for name, value in (
                ("INGEST_SECRET_KEY", self.secret_key),
                ("OWNER_USER_ID", self.owner_user_id),
            )
            if not value
        ]
        if missing:
            raise ConfigurationError(f"Config Error: missing {', '.join(missing)}")

    def presence_report(self) -> dict:
        return {
            "INGEST_SECRET_KEY": "OK" if self.secret_key else "MISSING",
            "OWNER_USER_ID": "OK" if self.owner_user_id else "MISSING",
            "INGEST_DATABASE_URL": "OK" if self.database_url else "MISSING",
        }
