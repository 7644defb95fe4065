"""Session host. Drives one player's chronicle end to end.

A ChronicleSession owns a NarrativeState and the gateways that advance it.
Hosts (the terminal player in main.py, tests, an HTTP shell) construct one
per player; there is no module-level game object.

Turn flow (_dispatch):
  1. engine.advance(state, intent)   → request + continuation token
  2. await llm(request)              → raw model text
  3. engine.merge(state, token, raw) → new state + next action
  4. illustrate(imagePrompt)         → image URL or None (never fails)
  5. state replaced, result returned

Only one intent may be in flight at a time. The auto-continue delay is a
hint in the returned action; the host decides when to call continue_story().
"""

from __future__ import annotations

import logging
import random

from ai_chronicle import dice, engine
from ai_chronicle.config import Settings
from ai_chronicle.engine.core import Phase
from ai_chronicle.errors import InvalidRequest, InvalidTurn
from ai_chronicle.health import HealthReport, require_available
from ai_chronicle.illustrations import Illustrator, illustrate
from ai_chronicle.llm import LLM
from ai_chronicle.models import (
    AwaitDiceRoll,
    Continue,
    NarrativeState,
    NarrativeTurnResponse,
    PlayerChoice,
    PresentChoices,
    ShowDeath,
    Start,
    TurnIntent,
    TurnResult,
)
from ai_chronicle.prompts import DEFAULT_PROMPTS
from ai_chronicle.storage import SaveStore

logger = logging.getLogger(__name__)


class ChronicleSession:
    def __init__(
        self,
        llm: LLM,
        illustrator: Illustrator | None = None,
        settings: Settings | None = None,
        prompts: dict[str, str] | None = None,
        store: SaveStore | None = None,
        rng: random.Random | None = None,
        check_credentials: bool = True,
    ) -> None:
        self.llm = llm
        self.illustrator = illustrator
        self.settings = settings or Settings()
        self.prompts = prompts or dict(DEFAULT_PROMPTS)
        self.store = store
        self.rng = rng or random.Random()
        self.check_credentials = check_credentials
        self.state = NarrativeState()
        self.health: HealthReport | None = None
        self.last_result: TurnResult | None = None
        self._busy = False

    @property
    def phase(self) -> Phase:
        return engine.phase(self.state)

    # ------------------------------------------------------------------
    # Player intents
    # ------------------------------------------------------------------

    async def start(self) -> TurnResult:
        """Begin a new chronicle, wiping the current one.

        The availability probe runs here, once per session start. An error
        status raises ConfigurationError; a warning disables illustrations.
        """
        if self._busy:
            raise InvalidTurn("A turn is already in progress")
        illustrations = self.illustrator is not None
        if self.check_credentials:
            self.health = require_available(self.settings)
            illustrations = illustrations and self.health.illustrations_enabled
            if self.health.status == "warning":
                logger.warning("Starting with warnings: %s", self.health.message)
        # The current chronicle survives until the opening beat has merged.
        base = self.state.model_copy(update={"illustrations_enabled": illustrations})
        return await self._dispatch(Start(), base)

    async def choose(self, choice_id: str) -> TurnResult:
        for choice in self.state.pending_choices:
            if choice.id == choice_id:
                return await self._dispatch(PlayerChoice(choice_text=choice.text, choice_id=choice.id))
        raise InvalidTurn(f"Unknown choice {choice_id!r}")

    async def roll_dice(self) -> tuple[bool, TurnResult]:
        """Roll for the pending roll and narrate the outcome."""
        intent = dice.resolve_pending(self.state, self.rng)
        logger.info(
            "dice roll reason=%r p=%.2f success=%s",
            intent.roll_reason, intent.roll_probability, intent.succeeded,
        )
        return intent.succeeded, await self._dispatch(intent)

    async def continue_story(self) -> TurnResult:
        return await self._dispatch(Continue())

    # ------------------------------------------------------------------
    # Save / load
    # ------------------------------------------------------------------

    def save(self) -> None:
        if self.store is None:
            raise InvalidRequest("This session has no save store")
        self.store.save(self.state)

    def load(self) -> bool:
        """Replace the current state with the saved one. False if none."""
        if self.store is None:
            raise InvalidRequest("This session has no save store")
        if self._busy:
            raise InvalidTurn("A turn is already in progress")
        saved = self.store.load()
        if saved is None:
            return False
        self.state = saved
        self.last_result = None
        return True

    async def resume(self) -> TurnResult:
        """Pick a loaded chronicle back up.

        A chronicle waiting on a roll or a choice re-presents the last beat
        with its pending action; otherwise the story continues.
        """
        state = self.state
        if engine.phase(state) == "active":
            return await self.continue_story()
        last_text = state.story_history[-1] if state.story_history else ""
        if not state.is_alive:
            action = ShowDeath()
        elif state.pending_roll is not None:
            action = AwaitDiceRoll(
                probability=dice.clamp_probability(state.pending_roll.probability),
                roll_reason=state.pending_roll.roll_reason,
            )
        elif state.pending_choices:
            action = PresentChoices(choices=list(state.pending_choices))
        else:
            raise InvalidTurn("No story is in progress; start a new chronicle first")
        result = TurnResult(
            state=state, action=action, response=NarrativeTurnResponse(text=last_text),
        )
        self.last_result = result
        return result

    # ------------------------------------------------------------------
    # Turn dispatch
    # ------------------------------------------------------------------

    async def _dispatch(self, intent: TurnIntent, base: NarrativeState | None = None) -> TurnResult:
        if self._busy:
            raise InvalidTurn("A turn is already in progress")
        state = self.state if base is None else base
        self._busy = True
        try:
            request, token = engine.advance(
                state, intent, prompts=self.prompts, recap_size=self.settings.recap_size,
            )
            raw = await self.llm(request)
            result = engine.merge(
                state, token, raw,
                chapter_words=self.settings.chapter_words,
                continue_delay=self.settings.continue_delay,
            )
            if result.illustration and result.state.illustrations_enabled:
                result.response.image_url = await illustrate(
                    self.illustrator, result.illustration, self.prompts.get("image_style", ""),
                )
            self.state = result.state
            self.last_result = result
            return result
        finally:
            self._busy = False
