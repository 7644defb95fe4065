"""Core domain models.

The engine, the gateways, and the HTTP layer all operate on these types.
Pydantic is used for validation and serialisation at every data boundary.
Attributes are snake_case in Python and camelCase on the wire; both spellings
are accepted when validating.
"""

from __future__ import annotations

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict[str, Any]:
        """JSON-ready dict with camelCase keys."""
        return self.model_dump(by_alias=True, mode="json")


def normalize_companions(value: Any) -> list[str]:
    """Reduce a companions payload to a list of names.

    Accepts plain strings and records carrying a "name"; anything else is
    dropped. Non-list payloads yield an empty list.
    """
    if not isinstance(value, list):
        return []
    names: list[str] = []
    for entry in value:
        if isinstance(entry, dict):
            entry = entry.get("name")
        if isinstance(entry, str) and entry.strip():
            names.append(entry.strip())
    return names


# ---------------------------------------------------------------------------
# Model output
# ---------------------------------------------------------------------------

class Protagonist(WireModel):
    name: str = ""
    description: str = ""


class Choice(WireModel):
    text: str
    id: str
    probability: float | None = None


class NarrativeTurnResponse(WireModel):
    """One narrative beat as produced by the model (after lenient parsing)."""

    text: str = ""
    protagonist: Protagonist | None = None
    companions: list[str] | None = None
    context: str | None = None
    is_dead: bool = False
    death_message: str | None = None
    requires_dice_roll: bool = False
    probability: float | None = None
    roll_reason: str | None = None
    image_prompt: str | None = None
    choices: list[Choice] = Field(default_factory=list)
    image_url: str | None = None  # attached by the caller after illustration


# ---------------------------------------------------------------------------
# Narrative state - the only persisted entity
# ---------------------------------------------------------------------------

class NarrativeState(WireModel):
    protagonist: Protagonist = Field(default_factory=Protagonist)
    companions: list[str] = Field(default_factory=list)
    story_history: list[str] = Field(default_factory=list)
    current_context: str = ""
    is_alive: bool = True
    chapter_number: int = 1
    chapter_words: int = 0
    turn: int = 0
    pending_roll: NarrativeTurnResponse | None = None
    pending_choices: list[Choice] = Field(default_factory=list)
    illustrations_enabled: bool = True

    @field_validator("protagonist", mode="before")
    @classmethod
    def _protagonist_or_blank(cls, value: Any) -> Any:
        return value if isinstance(value, (dict, Protagonist)) else Protagonist()

    @field_validator("companions", mode="before")
    @classmethod
    def _normalize_companions(cls, value: Any) -> list[str]:
        return normalize_companions(value)


# ---------------------------------------------------------------------------
# Turn intents (ephemeral)
# ---------------------------------------------------------------------------

class Start(WireModel):
    kind: Literal["start"] = "start"


class PlayerChoice(WireModel):
    kind: Literal["choice"] = "choice"
    choice_text: str
    choice_id: str


class DiceResult(WireModel):
    kind: Literal["dice_result"] = "dice_result"
    succeeded: bool
    roll_reason: str | None = None
    roll_probability: float = 0.5


class Continue(WireModel):
    kind: Literal["continue"] = "continue"


TurnIntent = Annotated[
    Union[Start, PlayerChoice, DiceResult, Continue],
    Field(discriminator="kind"),
]

IntentKind = Literal["start", "choice", "dice_result", "continue"]


# ---------------------------------------------------------------------------
# Engine hand-offs
# ---------------------------------------------------------------------------

class ModelRequest(WireModel):
    """What the Model Gateway is asked to complete."""

    system: str
    prompt: str
    intent: IntentKind
    turn: int


class ContinuationToken(WireModel):
    """Ties a model response back to the state it was requested from."""

    kind: IntentKind
    base_turn: int
    fresh: bool = False


class ShowDeath(WireModel):
    kind: Literal["show_death"] = "show_death"
    death_message: str | None = None


class AwaitDiceRoll(WireModel):
    kind: Literal["await_dice_roll"] = "await_dice_roll"
    probability: float
    roll_reason: str | None = None


class PresentChoices(WireModel):
    kind: Literal["present_choices"] = "present_choices"
    choices: list[Choice]


class AutoContinue(WireModel):
    kind: Literal["auto_continue"] = "auto_continue"
    delay_seconds: float = 2.0


NextAction = Annotated[
    Union[ShowDeath, AwaitDiceRoll, PresentChoices, AutoContinue],
    Field(discriminator="kind"),
]


class IllustrationRequest(WireModel):
    image_prompt: str


class TurnResult(WireModel):
    state: NarrativeState
    action: NextAction
    response: NarrativeTurnResponse
    illustration: IllustrationRequest | None = None
