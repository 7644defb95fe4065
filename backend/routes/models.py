"""Request parsing for the turn endpoint.

The body is read as a plain dict so that a missing or unknown action gets
the envelope error rather than a schema validation dump.
"""

from typing import Any

from pydantic import BaseModel, ValidationError

from ai_chronicle.dice import clamp_probability
from ai_chronicle.errors import InvalidRequest
from ai_chronicle.models import (
    Continue,
    DiceResult,
    NarrativeState,
    PlayerChoice,
    Start,
    TurnIntent,
)

ACTIONS = ("start", "choice", "dice_result", "continue")


class ChoiceBody(BaseModel):
    text: str
    id: str


def parse_state(raw: Any) -> NarrativeState:
    if raw is None:
        raise InvalidRequest("Missing state parameter")
    try:
        return NarrativeState.model_validate(raw)
    except ValidationError as e:
        raise InvalidRequest(f"Invalid state: {e.error_count()} problem(s)") from e


def require_action(body: Any) -> str:
    action = body.get("action") if isinstance(body, dict) else None
    if not action:
        raise InvalidRequest("Missing action parameter")
    if action not in ACTIONS:
        raise InvalidRequest(f"Invalid action {action!r}")
    return action


def parse_intent(body: dict[str, Any], state: NarrativeState) -> TurnIntent:
    action = require_action(body)

    if action == "start":
        return Start()
    if action == "continue":
        return Continue()

    if action == "choice":
        try:
            choice = ChoiceBody.model_validate(body.get("choice"))
        except ValidationError as e:
            raise InvalidRequest("choice must be an object with text and id") from e
        return PlayerChoice(choice_text=choice.text, choice_id=choice.id)

    success = body.get("success")
    if not isinstance(success, bool):
        raise InvalidRequest("dice_result requires a boolean success parameter")
    previous = body.get("previousData")
    if isinstance(previous, dict):
        reason = previous.get("rollReason")
        probability = previous.get("probability")
    elif state.pending_roll is not None:
        reason = state.pending_roll.roll_reason
        probability = state.pending_roll.probability
    else:
        reason, probability = None, None
    return DiceResult(
        succeeded=success,
        roll_reason=reason if isinstance(reason, str) else None,
        roll_probability=clamp_probability(probability),
    )
