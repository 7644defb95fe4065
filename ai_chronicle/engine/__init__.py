"""Narrative turn engine.

One turn is two calls with the model request in between:

  1. advance(state, intent) - validate the intent against the lifecycle,
     render the intent's prompt from a short recap of the state, and return
     (ModelRequest, ContinuationToken). Pure: the state is not modified.
  2. merge(state, token, raw_output) - strip code fences, parse the output
     field by field (falling back to plain text when it is not a JSON
     object), apply it to a copy of the state, and decide the next action:

        isDead            → ShowDeath          (state becomes terminal)
        requiresDiceRoll  → AwaitDiceRoll      (response kept as pendingRoll)
        choices           → PresentChoices     (kept as pendingChoices)
        otherwise         → AutoContinue       (the host owns the timer)

     An imagePrompt adds an IllustrationRequest alongside the action.

Lifecycle: not_started → active ⇄ awaiting_choice / awaiting_dice_roll →
terminal. Start is accepted from every phase and wipes the story.
"""

from .core import (  # noqa: F401
    CHAPTER_WORDS,
    RECAP_SIZE,
    advance,
    check_intent,
    merge,
    phase,
    prompt_context,
)
from .parsing import (  # noqa: F401
    coerce_response,
    decode_json_object,
    fallback_response,
    parse_turn_response,
    strip_code_fences,
)
