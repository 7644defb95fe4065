"""Tests for the turn engine: advance, merge, and the lifecycle rules."""

import json
import random
import string

import pytest

from ai_chronicle.engine import advance, check_intent, merge, phase, prompt_context
from ai_chronicle.errors import ConfigurationError, InvalidTurn, StaleTurn
from ai_chronicle.models import (
    AutoContinue,
    AwaitDiceRoll,
    Choice,
    ContinuationToken,
    Continue,
    DiceResult,
    NarrativeState,
    NarrativeTurnResponse,
    PlayerChoice,
    PresentChoices,
    Protagonist,
    ShowDeath,
    Start,
)
from ai_chronicle.prompts import DEFAULT_PROMPTS

OPENING = {
    "text": "Stockholm, December 1963. Snow muffles the city.",
    "context": "Arrival at Arlanda",
    "choices": [
        {"text": "A journalist", "id": "journalist"},
        {"text": "A diplomat's aide", "id": "aide"},
        {"text": "An interpreter", "id": "interpreter"},
        {"text": "Let fate decide", "id": "fate"},
    ],
}


def _play(state, intent, reply):
    """One full round-trip with a scripted reply."""
    _, token = advance(state, intent)
    raw = reply if isinstance(reply, str) else json.dumps(reply)
    return merge(state, token, raw)


def _active(**fields) -> NarrativeState:
    base = dict(
        protagonist=Protagonist(name="Kurt", description="Journalist"),
        companions=["Emily"],
        story_history=["First.", "Second.", "Third."],
        current_context="Grand Hotel bar",
        turn=3,
    )
    base.update(fields)
    return NarrativeState(**base)


# ── phase / check_intent ───────────────────────────────────


def test_phases():
    assert phase(NarrativeState()) == "not_started"
    assert phase(_active()) == "active"
    assert phase(_active(pending_choices=[Choice(text="Go", id="go")])) == "awaiting_choice"
    assert phase(_active(pending_roll=NarrativeTurnResponse(requires_dice_roll=True))) == "awaiting_dice_roll"
    assert phase(_active(is_alive=False)) == "terminal"


def test_legacy_save_without_turn_is_active():
    assert phase(NarrativeState(story_history=["Loaded."])) == "active"


def test_only_start_before_story_begins():
    state = NarrativeState()
    check_intent(state, Start())
    with pytest.raises(InvalidTurn):
        check_intent(state, Continue())
    with pytest.raises(InvalidTurn):
        check_intent(state, PlayerChoice(choice_text="x", choice_id="x"))


@pytest.mark.parametrize("intent", [
    Continue(),
    PlayerChoice(choice_text="Run", choice_id="run"),
    DiceResult(succeeded=True, roll_reason="dodge", roll_probability=0.3),
])
def test_terminal_rejects_everything_but_start(intent):
    dead = _active(is_alive=False)
    with pytest.raises(InvalidTurn):
        advance(dead, intent)
    request, token = advance(dead, Start())
    assert token.fresh is True


def test_pending_roll_blocks_other_intents():
    state = _active(pending_roll=NarrativeTurnResponse(
        text="A shot rings out.", requires_dice_roll=True, probability=0.3, roll_reason="dodge",
    ))
    with pytest.raises(InvalidTurn):
        advance(state, Continue())
    with pytest.raises(InvalidTurn):
        advance(state, PlayerChoice(choice_text="Run", choice_id="run"))


def test_dice_result_must_match_pending_roll():
    state = _active(pending_roll=NarrativeTurnResponse(
        requires_dice_roll=True, probability=0.3, roll_reason="dodge",
    ))
    with pytest.raises(InvalidTurn):
        advance(state, DiceResult(succeeded=True, roll_reason="bribe", roll_probability=0.3))
    with pytest.raises(InvalidTurn):
        advance(state, DiceResult(succeeded=True, roll_reason="dodge", roll_probability=0.9))
    advance(state, DiceResult(succeeded=True, roll_reason="dodge", roll_probability=0.3))


def test_dice_result_without_pending_roll_rejected():
    with pytest.raises(InvalidTurn, match="No dice roll"):
        advance(_active(), DiceResult(succeeded=True, roll_reason="dodge", roll_probability=0.3))


def test_pending_roll_without_probability_defaults_to_half():
    state = _active(pending_roll=NarrativeTurnResponse(requires_dice_roll=True, roll_reason="leap"))
    advance(state, DiceResult(succeeded=False, roll_reason="leap", roll_probability=0.5))


def test_awaiting_choice_rules():
    state = _active(pending_choices=[Choice(text="Go", id="go"), Choice(text="Stay", id="stay")])
    with pytest.raises(InvalidTurn):
        advance(state, Continue())
    with pytest.raises(InvalidTurn, match="Unknown choice"):
        advance(state, PlayerChoice(choice_text="Fly", choice_id="fly"))
    advance(state, PlayerChoice(choice_text="Stay", choice_id="stay"))


# ── advance ────────────────────────────────────────────────


def test_advance_does_not_touch_state():
    state = _active()
    before = state.model_copy(deep=True)
    advance(state, Continue())
    assert state == before


def test_start_has_no_recap():
    state = _active()
    request, token = advance(state, Start())
    assert request.intent == "start"
    for entry in state.story_history:
        assert entry not in request.prompt
    assert "Grand Hotel bar" not in request.prompt
    assert token == ContinuationToken(kind="start", base_turn=3, fresh=True)


def test_recap_is_bounded():
    request, _ = advance(_active(), Continue())
    assert "Third." in request.prompt
    assert "Second." in request.prompt
    assert "First." not in request.prompt
    assert "Grand Hotel bar" in request.prompt
    assert "Kurt" in request.prompt
    assert "Emily" in request.prompt


def test_recap_size_is_configurable():
    request, _ = advance(_active(), Continue(), recap_size=3)
    assert "First." in request.prompt


def test_continue_prompt_without_companions():
    request, _ = advance(_active(companions=[]), Continue())
    assert "Companions: none" in request.prompt


def test_choice_prompt_names_the_choice():
    request, token = advance(_active(), PlayerChoice(choice_text="Follow the diplomat", choice_id="follow"))
    assert 'The player chose: "Follow the diplomat" (ID: follow)' in request.prompt
    assert token.kind == "choice"
    assert token.fresh is False


def test_dice_prompt_reports_outcome():
    state = _active(pending_roll=NarrativeTurnResponse(
        requires_dice_roll=True, probability=0.3, roll_reason="dodge",
    ))
    request, _ = advance(state, DiceResult(succeeded=False, roll_reason="dodge", roll_probability=0.3))
    assert "Dice roll result: FAILURE" in request.prompt
    assert "Roll was for: dodge" in request.prompt
    assert "Probability was: 30%" in request.prompt


def test_system_prompt_comes_from_prompts():
    prompts = dict(DEFAULT_PROMPTS, system="You narrate noir.")
    request, _ = advance(_active(), Continue(), prompts=prompts)
    assert request.system == "You narrate noir."


def test_custom_template():
    prompts = dict(DEFAULT_PROMPTS, **{"continue": "Go on, {{{protagonist.name}}}. Chapter {{chapter}}."})
    request, _ = advance(_active(chapter_number=4), Continue(), prompts=prompts)
    assert request.prompt == "Go on, Kurt. Chapter 4."


def test_broken_template_is_configuration_error():
    prompts = dict(DEFAULT_PROMPTS, **{"continue": "{{#each recap}}never closed"})
    with pytest.raises(ConfigurationError):
        advance(_active(), Continue(), prompts=prompts)


def test_prompt_context_keys():
    ctx = prompt_context(_active(), recap_size=1)
    assert ctx["recap"] == ["Third."]
    assert ctx["companions_text"] == "Emily"
    assert ctx["protagonist"]["name"] == "Kurt"


# ── merge ──────────────────────────────────────────────────


def test_merge_applies_fields_to_a_copy():
    state = _active()
    result = _play(state, Continue(), {
        "text": "Fourth.",
        "protagonist": {"name": "Kurt Bauer", "description": "Disgraced journalist"},
        "companions": ["Emily", "Hans"],
        "context": "Concert Hall",
    })
    new = result.state
    assert new.story_history == ["First.", "Second.", "Third.", "Fourth."]
    assert new.protagonist.name == "Kurt Bauer"
    assert new.companions == ["Emily", "Hans"]
    assert new.current_context == "Concert Hall"
    assert new.turn == 4
    assert state.story_history == ["First.", "Second.", "Third."]
    assert state.turn == 3


def test_absent_fields_leave_state_alone():
    result = _play(_active(), Continue(), {"text": "Quiet."})
    assert result.state.protagonist.name == "Kurt"
    assert result.state.companions == ["Emily"]
    assert result.state.current_context == "Grand Hotel bar"


def test_empty_companions_replaces():
    result = _play(_active(), Continue(), {"text": "Alone now.", "companions": []})
    assert result.state.companions == []


def test_companion_records_normalised():
    result = _play(_active(), Continue(), {"text": "x", "companions": [{"name": "Hans"}, "Emily"]})
    assert result.state.companions == ["Hans", "Emily"]


def test_empty_text_not_appended():
    result = _play(_active(), Continue(), {"text": "", "context": "Later"})
    assert len(result.state.story_history) == 3
    assert result.state.turn == 4


def test_priority_death_first():
    result = _play(_active(), Continue(), {
        "text": "The ice gives way.", "isDead": True, "deathMessage": "Lost beneath the Strömmen.",
        "requiresDiceRoll": True, "choices": [{"text": "Swim", "id": "swim"}],
    })
    assert result.action == ShowDeath(death_message="Lost beneath the Strömmen.")
    assert result.state.is_alive is False
    assert result.state.pending_roll is None
    assert result.state.pending_choices == []


def test_priority_dice_before_choices():
    result = _play(_active(), Continue(), {
        "text": "Footsteps.", "requiresDiceRoll": True, "probability": 0.6, "rollReason": "hide",
        "choices": [{"text": "Run", "id": "run"}],
    })
    assert result.action == AwaitDiceRoll(probability=0.6, roll_reason="hide")
    assert result.state.pending_choices == []


def test_dice_probability_defaults_and_clamps():
    result = _play(_active(), Continue(), {"text": "x", "requiresDiceRoll": True})
    assert result.action.probability == 0.5
    result = _play(_active(), Continue(), {"text": "x", "requiresDiceRoll": True, "probability": 3})
    assert result.action.probability == 1.0


def test_no_choices_auto_continues():
    result = _play(_active(), Continue(), {"text": "Time passes."})
    assert isinstance(result.action, AutoContinue)
    assert result.action.delay_seconds == 2.0


def test_continue_delay_passed_through():
    state = _active()
    _, token = advance(state, Continue())
    result = merge(state, token, '{"text": "x"}', continue_delay=5)
    assert result.action.delay_seconds == 5


def test_illustration_side_channel():
    result = _play(_active(), Continue(), {"text": "The Blue Hall.", "imagePrompt": "Blue Hall banquet"})
    assert result.illustration is not None
    assert result.illustration.image_prompt == "Blue Hall banquet"
    assert isinstance(result.action, AutoContinue)


def test_no_image_prompt_no_illustration():
    assert _play(_active(), Continue(), {"text": "x"}).illustration is None


def test_dice_result_clears_pending_roll():
    state = _active(pending_roll=NarrativeTurnResponse(
        requires_dice_roll=True, probability=0.3, roll_reason="dodge",
    ))
    result = _play(state, DiceResult(succeeded=True, roll_reason="dodge", roll_probability=0.3), {"text": "You duck."})
    assert result.state.pending_roll is None
    assert phase(result.state) == "active"


def test_choice_clears_pending_choices():
    state = _active(pending_choices=[Choice(text="Go", id="go")])
    result = _play(state, PlayerChoice(choice_text="Go", choice_id="go"), {"text": "You go."})
    assert result.state.pending_choices == []


def test_start_wipes_history():
    state = _active(is_alive=False, chapter_number=5)
    result = _play(state, Start(), OPENING)
    assert result.state.story_history == [OPENING["text"]]
    assert result.state.is_alive is True
    assert result.state.protagonist == Protagonist()
    assert result.state.companions == []
    assert result.state.turn == 1
    assert result.state.chapter_number == 1


def test_start_keeps_illustration_decision():
    state = NarrativeState(illustrations_enabled=False)
    result = _play(state, Start(), OPENING)
    assert result.state.illustrations_enabled is False


def test_chapter_advances_with_word_count():
    state = _active()
    _, token = advance(state, Continue())
    result = merge(state, token, json.dumps({"text": "word " * 10}), chapter_words=10)
    assert result.state.chapter_number == 2
    assert result.state.chapter_words == 0

    _, token = advance(result.state, Continue())
    again = merge(result.state, token, json.dumps({"text": "word " * 4}), chapter_words=10)
    assert again.state.chapter_number == 2
    assert again.state.chapter_words == 4


def test_stale_continuation_rejected():
    state = _active()
    _, token = advance(state, Continue())
    first = merge(state, token, '{"text": "Once."}')
    with pytest.raises(StaleTurn):
        merge(first.state, token, '{"text": "Once."}')
    assert first.state.story_history.count("Once.") == 1


def test_merge_refuses_dead_state_for_non_start():
    state = _active(is_alive=False)
    with pytest.raises(InvalidTurn):
        merge(state, ContinuationToken(kind="continue", base_turn=3), '{"text": "x"}')


def test_fallback_merge_keeps_people():
    result = _play(_active(), Continue(), "The model rambles without JSON.")
    assert result.state.story_history[-1] == "The model rambles without JSON."
    assert result.state.protagonist.name == "Kurt"
    assert result.state.companions == ["Emily"]
    assert result.state.current_context == "Grand Hotel bar"
    assert isinstance(result.action, AutoContinue)


def test_merge_survives_huge_probability():
    state = _active()
    _, token = advance(state, Continue())
    raw = '{"text":"Beat.","requiresDiceRoll":true,"probability":1' + "0" * 400 + "}"
    result = merge(state, token, raw)
    assert result.action == AwaitDiceRoll(probability=1.0, roll_reason=None)

    raw = '{"text":"Beat.","choices":[{"text":"Run","id":"run","probability":-1' + "0" * 400 + "}]}"
    result = merge(state, token, raw)
    assert result.action.choices[0].probability == 0.0


# ── properties ─────────────────────────────────────────────


def _random_output(rng: random.Random) -> str:
    fragments = [
        '{"text": "ok"}', "```json", "```", "{", "}", "[", "]", '"isDead": true', '"choices": [',
        '"probability": "x"', "null", ",", ":", '"text"', '"companions": [{"name": null}]',
        "".join(rng.choice(string.printable) for _ in range(rng.randint(0, 20))),
    ]
    return "".join(rng.choice(fragments) for _ in range(rng.randint(0, 12)))


def test_merge_never_raises_for_any_output():
    rng = random.Random(1963)
    state = _active()
    _, token = advance(state, Continue())
    for _ in range(500):
        result = merge(state, token, _random_output(rng))
        assert result.state.turn == 4


def _random_partial_response(rng: random.Random) -> dict:
    pool = {
        "text": [None, 1, "", "Beat.", ["x"]],
        "protagonist": [None, "Kurt", {"name": 3}, {"name": "Kurt"}, []],
        "companions": [None, "x", [], ["a", {"name": "b"}, 5]],
        "context": [None, 2, "Somewhere"],
        "isDead": [None, "yes", 0, 2, False],
        "requiresDiceRoll": [None, "false", False],
        "probability": [None, -1, 0.4, "0.9", {}, 7, 10 ** 400, -(10 ** 400)],
        "rollReason": [None, 1, "why"],
        "imagePrompt": [None, "", 4, "scene"],
        "choices": [None, {}, [], ["a"], [{"text": "b"}, 1, {"text": 2}]],
    }
    return {key: rng.choice(values) for key, values in pool.items() if rng.random() < 0.7}


def test_partial_json_fuzz():
    rng = random.Random(7)
    state = _active()
    _, token = advance(state, Continue())
    for _ in range(300):
        result = merge(state, token, json.dumps(_random_partial_response(rng)))
        assert result.state.is_alive is True
        assert len(result.state.story_history) in (3, 4)


def test_history_grows_once_per_turn():
    state = _play(NarrativeState(), Start(), {"text": "Opening."}).state
    for n in range(1, 11):
        state = _play(state, Continue(), {"text": f"Beat {n}."}).state
    assert len(state.story_history) == 11
    assert state.turn == 11


# ── scenarios ──────────────────────────────────────────────


def test_scenario_opening_presents_four_choices():
    request, token = advance(NarrativeState(), Start())
    assert "Story so far" not in request.prompt
    result = merge(NarrativeState(), token, json.dumps(OPENING))
    assert isinstance(result.action, PresentChoices)
    assert [c.id for c in result.action.choices] == ["journalist", "aide", "interpreter", "fate"]
    assert phase(result.state) == "awaiting_choice"


def test_scenario_shot_rings_out():
    state = _play(NarrativeState(), Start(), OPENING).state
    state = _play(state, PlayerChoice(choice_text="A journalist", choice_id="journalist"), {"text": "Press pass in hand."}).state
    result = _play(state, Continue(), '{"text":"A shot rings out.","requiresDiceRoll":true,"probability":0.3,"rollReason":"dodge"}')
    assert result.action == AwaitDiceRoll(probability=0.3, roll_reason="dodge")
    assert result.state.pending_roll.text == "A shot rings out."

    request, _ = advance(
        result.state, DiceResult(succeeded=False, roll_reason="dodge", roll_probability=0.3),
    )
    assert "dodge" in request.prompt
    assert "FAILURE" in request.prompt


def test_scenario_not_json_at_all():
    state = _active()
    _, token = advance(state, Continue())
    result = merge(state, token, "Not JSON at all")
    assert result.response.text == "Not JSON at all"
    assert len(result.response.choices) == 0


def test_scenario_death_then_only_start():
    state = _play(_active(), Continue(), {"text": "Poison.", "isDead": True}).state
    with pytest.raises(InvalidTurn):
        advance(state, Continue())
    result = _play(state, Start(), OPENING)
    assert result.state.is_alive is True
