"""Error taxonomy shared by the engine, the gateways, and the HTTP layer.

Every error carries a `category` (the `error` field of the JSON envelope),
the HTTP status the API answers with, and an optional remediation `hint`.

    ChronicleError
      ConfigurationError        missing/malformed credentials, fatal at start
      UpstreamError             gateway call failed
        UpstreamAuthError       credentials rejected at call time
        UpstreamRateLimited     vendor asked us to slow down
        UpstreamServerError     vendor unreachable, timed out, or 5xx
      MalformedModelOutput      recovered by the parsing fallback
      IllustrationFailure       recovered by omitting the image
      InvalidRequest            rejected before any gateway call
        InvalidTurn             intent not allowed in the current phase
          StaleTurn             continuation no longer matches the state
"""

from __future__ import annotations

from typing import Any


class ChronicleError(Exception):
    category = "internal_error"
    status = 500
    default_hint: str | None = None

    def __init__(self, message: str, *, hint: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.hint = hint if hint is not None else self.default_hint

    def envelope(self) -> dict[str, Any]:
        body: dict[str, Any] = {"error": self.category, "message": self.message}
        if self.hint:
            body["hint"] = self.hint
        return body


class ConfigurationError(ChronicleError):
    category = "configuration_error"
    status = 500
    default_hint = "Set ANTHROPIC_API_KEY (and optionally OPENAI_API_KEY) in the environment or .env file."


class UpstreamError(ChronicleError):
    category = "upstream_error"
    status = 502


class UpstreamAuthError(UpstreamError):
    category = "upstream_auth_error"
    default_hint = "The API key was rejected. Check that it is current and belongs to the right account."


class UpstreamRateLimited(UpstreamError):
    category = "upstream_rate_limited"
    status = 503
    default_hint = "The storyteller is busy. Wait a moment and try again."


class UpstreamServerError(UpstreamError):
    category = "upstream_server_error"
    default_hint = "The model service is unavailable right now. Try again shortly."


class MalformedModelOutput(ChronicleError):
    category = "malformed_model_output"


class IllustrationFailure(ChronicleError):
    category = "illustration_failure"


class InvalidRequest(ChronicleError):
    category = "invalid_request"
    status = 400


class InvalidTurn(InvalidRequest):
    category = "invalid_turn"
    status = 409


class StaleTurn(InvalidTurn):
    category = "stale_turn"
    default_hint = "This turn was already applied. Reload the latest state before retrying."
