"""Lenient parsing of model output into a NarrativeTurnResponse.

The model is asked for a bare JSON object but is not trusted to deliver one.
Every field is validated on its own with an explicit default; a field of the
wrong shape is dropped rather than failing the turn. Output that is not a JSON
object at all becomes a plain-text beat.
"""

import json
import logging
import re
from typing import Any

from ai_chronicle.dice import clamp_probability
from ai_chronicle.errors import MalformedModelOutput
from ai_chronicle.models import (
    Choice,
    NarrativeState,
    NarrativeTurnResponse,
    Protagonist,
    normalize_companions,
)

logger = logging.getLogger(__name__)

_OPENING_FENCE = re.compile(r"\A\s*```(?:json)?[ \t]*\r?\n?", re.IGNORECASE)
_CLOSING_FENCE = re.compile(r"\r?\n?[ \t]*```\s*\Z")


def strip_code_fences(text: str) -> str:
    """Remove a leading ```json / ``` fence and a trailing ``` fence, then trim.

    Backticks inside the payload are left alone.
    """
    return _CLOSING_FENCE.sub("", _OPENING_FENCE.sub("", text, count=1), count=1).strip()


def decode_json_object(raw: str) -> dict[str, Any]:
    """Parse `raw` as a JSON object, tolerating Markdown fences.

    Raises MalformedModelOutput for anything that is not a JSON object.
    """
    cleaned = strip_code_fences(raw)
    try:
        data = json.loads(cleaned)
    except (ValueError, RecursionError) as e:
        raise MalformedModelOutput(f"not valid JSON: {e}") from e
    if not isinstance(data, dict):
        raise MalformedModelOutput(f"expected a JSON object, got {type(data).__name__}")
    return data


def fallback_response(raw: str, prior: NarrativeState) -> NarrativeTurnResponse:
    """Wrap unparseable output as a narrative beat that changes nothing else."""
    return NarrativeTurnResponse(
        text=raw,
        protagonist=prior.protagonist.model_copy(),
        companions=list(prior.companions),
        is_dead=False,
        requires_dice_roll=False,
        choices=[],
    )


def parse_turn_response(raw: str, prior: NarrativeState) -> NarrativeTurnResponse:
    """Turn raw model output into a response. Never raises."""
    if not isinstance(raw, str):
        raw = "" if raw is None else str(raw)
    try:
        data = decode_json_object(raw)
    except MalformedModelOutput as e:
        logger.warning("Model output is %s; showing it as plain text", e.message)
        return fallback_response(raw, prior)
    return coerce_response(data)


# ---------------------------------------------------------------------------
# Field-by-field coercion
# ---------------------------------------------------------------------------

def _text(value: Any) -> str | None:
    return value if isinstance(value, str) else None


def _flag(value: Any) -> bool:
    """true, 1 and "true" raise a flag; anything else leaves it down."""
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return value == 1
    if isinstance(value, str):
        return value.strip().lower() == "true"
    return False


def _protagonist(value: Any) -> Protagonist | None:
    if isinstance(value, str) and value.strip():
        return Protagonist(name=value.strip())
    if not isinstance(value, dict):
        return None
    return Protagonist(
        name=_text(value.get("name")) or "",
        description=_text(value.get("description")) or "",
    )


def _choice(entry: Any, position: int) -> Choice | None:
    fallback_id = f"choice_{position}"
    if isinstance(entry, str):
        return Choice(text=entry, id=fallback_id) if entry.strip() else None
    if not isinstance(entry, dict):
        return None
    text = _text(entry.get("text"))
    if not text or not text.strip():
        return None
    raw_id = entry.get("id")
    if isinstance(raw_id, (str, int)) and not isinstance(raw_id, bool) and str(raw_id).strip():
        choice_id = str(raw_id).strip()
    else:
        choice_id = fallback_id
    probability = entry.get("probability")
    return Choice(
        text=text,
        id=choice_id,
        probability=None if probability is None else clamp_probability(probability),
    )


def _choices(value: Any) -> list[Choice]:
    if not isinstance(value, list):
        return []
    choices = []
    for position, entry in enumerate(value, start=1):
        choice = _choice(entry, position)
        if choice is None:
            logger.debug("Dropping malformed choice %r", entry)
            continue
        choices.append(choice)
    return choices


def coerce_response(data: dict[str, Any]) -> NarrativeTurnResponse:
    """Build a response from a decoded JSON object, defaulting every field."""
    image_prompt = _text(data.get("imagePrompt"))
    probability = data.get("probability")
    companions = data.get("companions")
    return NarrativeTurnResponse(
        text=_text(data.get("text")) or "",
        protagonist=_protagonist(data.get("protagonist")),
        companions=normalize_companions(companions) if isinstance(companions, list) else None,
        context=_text(data.get("context")),
        is_dead=_flag(data.get("isDead")),
        death_message=_text(data.get("deathMessage")),
        requires_dice_roll=_flag(data.get("requiresDiceRoll")),
        probability=None if probability is None else clamp_probability(probability),
        roll_reason=_text(data.get("rollReason")),
        image_prompt=image_prompt.strip() if image_prompt and image_prompt.strip() else None,
        choices=_choices(data.get("choices")),
    )
