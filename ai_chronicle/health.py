"""Availability probe: are the gateway credentials present and well-formed?

Only the shape of each key is checked (non-empty, expected prefix); no
network call is made. The live check lives in `main.py check`.

    anthropic missing or malformed  → error    (play is blocked)
    openai malformed                → error
    openai missing                  → warning  (illustrations disabled)
    otherwise                       → ok
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Literal

from pydantic import BaseModel, Field

from ai_chronicle import __version__
from ai_chronicle.config import Settings
from ai_chronicle.errors import ConfigurationError

Status = Literal["ok", "warning", "error"]
KeyFormat = Literal["valid", "invalid", "missing"]

ANTHROPIC_PREFIX = "sk-ant-"
OPENAI_PREFIX = "sk-"


class KeyCheck(BaseModel):
    configured: bool
    format: KeyFormat
    length: int


class Checks(BaseModel):
    anthropicKey: KeyCheck
    openaiKey: KeyCheck


class HealthReport(BaseModel):
    status: Status
    timestamp: str
    environment: str
    version: str
    checks: Checks
    message: str | None = None

    @property
    def illustrations_enabled(self) -> bool:
        return self.status == "ok"


def check_key(value: str, prefix: str) -> KeyCheck:
    if not value:
        return KeyCheck(configured=False, format="missing", length=0)
    return KeyCheck(
        configured=True,
        format="valid" if value.startswith(prefix) else "invalid",
        length=len(value),
    )


def check_availability(settings: Settings) -> HealthReport:
    anthropic = check_key(settings.anthropic_api_key, ANTHROPIC_PREFIX)
    openai = check_key(settings.openai_api_key, OPENAI_PREFIX)

    status: Status = "ok"
    message = None
    if not anthropic.configured:
        status = "error"
        message = "ANTHROPIC_API_KEY is not configured."
    elif anthropic.format != "valid":
        status = "error"
        message = f'ANTHROPIC_API_KEY format is invalid. It should start with "{ANTHROPIC_PREFIX}".'
    elif openai.format == "invalid":
        status = "error"
        message = f'OPENAI_API_KEY format is invalid. It should start with "{OPENAI_PREFIX}".'
    elif not openai.configured:
        status = "warning"
        message = "OPENAI_API_KEY is not configured. Illustrations are disabled."

    return HealthReport(
        status=status,
        timestamp=datetime.now(timezone.utc).isoformat(),
        environment=settings.environment,
        version=__version__,
        checks=Checks(anthropicKey=anthropic, openaiKey=openai),
        message=message,
    )


def require_available(settings: Settings) -> HealthReport:
    """Run the probe; raise ConfigurationError when play must not start."""
    report = check_availability(settings)
    if report.status == "error":
        raise ConfigurationError(report.message or "Configuration error")
    return report
