"""Dice resolution: one Bernoulli trial per roll.

The roll is made by whoever hosts the session, never by the model. The
outcome travels back to the engine as a DiceResult intent together with the
reason and probability of the roll that was asked for.
"""

from __future__ import annotations

import math
import random
from typing import Any

from ai_chronicle.errors import InvalidTurn
from ai_chronicle.models import DiceResult, NarrativeState

DEFAULT_PROBABILITY = 0.5


def clamp_probability(value: Any, default: float = DEFAULT_PROBABILITY) -> float:
    """Coerce `value` to a probability in [0, 1].

    Absent, non-numeric and NaN values yield `default`. Booleans are not
    probabilities.
    """
    if value is None or isinstance(value, bool):
        return default
    if isinstance(value, str):
        try:
            value = float(value)
        except ValueError:
            return default
    if not isinstance(value, (int, float)):
        return default
    try:
        value = float(value)
    except OverflowError:
        # integers beyond float range are still out of [0, 1]
        return 1.0 if value > 0 else 0.0
    if math.isnan(value):
        return default
    return min(1.0, max(0.0, value))


def roll(probability: Any, rng: random.Random | None = None) -> bool:
    """Draw r uniformly from [0, 1); success iff r < p."""
    p = clamp_probability(probability)
    r = (rng or random).random()
    return r < p


def resolve_pending(state: NarrativeState, rng: random.Random | None = None) -> DiceResult:
    """Roll for the state's pending roll and return the intent to send back."""
    pending = state.pending_roll
    if pending is None:
        raise InvalidTurn("No dice roll is pending")
    p = clamp_probability(pending.probability)
    return DiceResult(
        succeeded=roll(p, rng),
        roll_reason=pending.roll_reason,
        roll_probability=p,
    )
