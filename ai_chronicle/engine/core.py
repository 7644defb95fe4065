"""advance/merge: the two halves of one narrative turn.

Both functions are synchronous and side-effect free. The caller sits between
them and performs the model call.
"""

from __future__ import annotations

import logging
import math
from typing import Any, Literal

from ai_chronicle.dice import clamp_probability
from ai_chronicle.errors import ConfigurationError, InvalidTurn, StaleTurn
from ai_chronicle.models import (
    AutoContinue,
    AwaitDiceRoll,
    ContinuationToken,
    Continue,
    DiceResult,
    IllustrationRequest,
    ModelRequest,
    NarrativeState,
    PlayerChoice,
    PresentChoices,
    ShowDeath,
    Start,
    TurnIntent,
    TurnResult,
)
from ai_chronicle.prompts import DEFAULT_PROMPTS, PromptError, render_prompt

from .parsing import parse_turn_response

logger = logging.getLogger(__name__)

RECAP_SIZE = 2
CHAPTER_WORDS = 600
CONTINUE_DELAY = 2.0

Phase = Literal["not_started", "active", "awaiting_dice_roll", "awaiting_choice", "terminal"]


def phase(state: NarrativeState) -> Phase:
    """Where the session stands in its lifecycle."""
    if not state.is_alive:
        return "terminal"
    if state.pending_roll is not None:
        return "awaiting_dice_roll"
    if state.pending_choices:
        return "awaiting_choice"
    if state.turn == 0 and not state.story_history:
        return "not_started"
    return "active"


def check_intent(state: NarrativeState, intent: TurnIntent) -> None:
    """Raise InvalidTurn unless `intent` may be played against `state`."""
    if isinstance(intent, Start):
        return

    current = phase(state)
    if current == "terminal":
        raise InvalidTurn("The chronicle has ended; only a new story can begin")
    if current == "not_started":
        raise InvalidTurn("No story is in progress; start a new chronicle first")

    if isinstance(intent, DiceResult):
        pending = state.pending_roll
        if pending is None:
            raise InvalidTurn("No dice roll is pending")
        same_reason = (pending.roll_reason or None) == (intent.roll_reason or None)
        same_odds = math.isclose(
            clamp_probability(pending.probability),
            clamp_probability(intent.roll_probability),
            abs_tol=1e-6,
        )
        if not (same_reason and same_odds):
            raise InvalidTurn("Dice result does not match the pending roll")
        return

    if current == "awaiting_dice_roll":
        raise InvalidTurn("A dice roll is pending; roll before continuing")

    if current == "awaiting_choice":
        if isinstance(intent, Continue):
            raise InvalidTurn("Choose one of the offered paths before continuing")
        offered = {choice.id for choice in state.pending_choices}
        if intent.choice_id not in offered:
            raise InvalidTurn(f"Unknown choice {intent.choice_id!r}")


def prompt_context(state: NarrativeState, recap_size: int = RECAP_SIZE) -> dict[str, Any]:
    """Template variables describing where the story stands."""
    recap = state.story_history[-recap_size:] if recap_size > 0 else []
    return {
        "protagonist": state.protagonist.model_dump(),
        "companions": list(state.companions),
        "companions_text": ", ".join(state.companions),
        "context": state.current_context,
        "recap": list(recap),
        "chapter": state.chapter_number,
    }


def _intent_context(intent: TurnIntent) -> dict[str, Any]:
    if isinstance(intent, PlayerChoice):
        return {"choice": {"text": intent.choice_text, "id": intent.choice_id}}
    if isinstance(intent, DiceResult):
        outcome = "SUCCESS" if intent.succeeded else "FAILURE"
        return {
            "outcome": outcome,
            "outcome_lower": outcome.lower(),
            "roll_reason": intent.roll_reason or "unknown action",
            "probability_percent": round(clamp_probability(intent.roll_probability) * 100),
        }
    return {}


def advance(
    state: NarrativeState,
    intent: TurnIntent,
    prompts: dict[str, str] | None = None,
    recap_size: int = RECAP_SIZE,
) -> tuple[ModelRequest, ContinuationToken]:
    """Build the model request for `intent` without touching `state`."""
    check_intent(state, intent)
    prompts = prompts or DEFAULT_PROMPTS

    fresh = isinstance(intent, Start)
    source = NarrativeState() if fresh else state
    ctx = prompt_context(source, recap_size)
    ctx.update(_intent_context(intent))

    template = prompts.get(intent.kind) or DEFAULT_PROMPTS[intent.kind]
    try:
        prompt = render_prompt(template, ctx)
    except PromptError as e:
        raise ConfigurationError(f"Prompt template {intent.kind!r} is broken: {e}") from e

    request = ModelRequest(
        system=prompts.get("system") or DEFAULT_PROMPTS["system"],
        prompt=prompt,
        intent=intent.kind,
        turn=state.turn,
    )
    token = ContinuationToken(kind=intent.kind, base_turn=state.turn, fresh=fresh)
    logger.debug("advance intent=%s turn=%d prompt_len=%d", intent.kind, state.turn, len(prompt))
    return request, token


def _count_words(state: NarrativeState, text: str, chapter_words: int) -> None:
    state.chapter_words += len(text.split())
    if chapter_words > 0 and state.chapter_words >= chapter_words:
        state.chapter_number += 1
        state.chapter_words = 0


def merge(
    state: NarrativeState,
    continuation: ContinuationToken,
    raw_model_output: str,
    chapter_words: int = CHAPTER_WORDS,
    continue_delay: float = CONTINUE_DELAY,
) -> TurnResult:
    """Fold raw model output into a new state and decide what happens next.

    Malformed output never raises: it is shown as plain text. A continuation
    whose base turn no longer matches `state` raises StaleTurn so that a
    retried round-trip cannot append the same beat twice.
    """
    if continuation.base_turn != state.turn:
        raise StaleTurn(
            f"Turn {continuation.base_turn} was already applied (state is at turn {state.turn})"
        )
    if not continuation.fresh and not state.is_alive:
        raise InvalidTurn("The chronicle has ended; only a new story can begin")

    if continuation.fresh:
        prior = NarrativeState(illustrations_enabled=state.illustrations_enabled)
    else:
        prior = state
    response = parse_turn_response(raw_model_output, prior)

    new = prior.model_copy(deep=True)
    new.pending_roll = None
    new.pending_choices = []
    if response.protagonist is not None:
        new.protagonist = response.protagonist.model_copy()
    if response.companions is not None:
        new.companions = list(response.companions)
    if response.context is not None:
        new.current_context = response.context
    if response.text:
        new.story_history.append(response.text)
        _count_words(new, response.text, chapter_words)
    new.turn = prior.turn + 1

    if response.is_dead:
        new.is_alive = False
        action = ShowDeath(death_message=response.death_message)
    elif response.requires_dice_roll:
        new.pending_roll = response.model_copy(deep=True)
        action = AwaitDiceRoll(
            probability=clamp_probability(response.probability),
            roll_reason=response.roll_reason,
        )
    elif response.choices:
        new.pending_choices = [choice.model_copy() for choice in response.choices]
        action = PresentChoices(choices=list(response.choices))
    else:
        action = AutoContinue(delay_seconds=continue_delay)

    illustration = None
    if response.image_prompt:
        illustration = IllustrationRequest(image_prompt=response.image_prompt)

    logger.debug("merge turn=%d action=%s history=%d", new.turn, action.kind, len(new.story_history))
    return TurnResult(state=new, action=action, response=response, illustration=illustration)
