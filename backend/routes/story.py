"""Turn endpoint: one player intent in, one narrative beat out."""

from typing import Any

from fastapi import APIRouter, Body, Request

from ai_chronicle import engine
from ai_chronicle.health import require_available
from ai_chronicle.illustrations import illustrate
from ai_chronicle.models import NarrativeState

from .models import parse_intent, parse_state, require_action

router = APIRouter()


@router.post("/story")
async def story(request: Request, body: Any = Body(default=None)):
    """Advance the client's chronicle by one turn.

    Body: {action, state, choice?, success?, previousData?}. The reply is the
    parsed narrative beat (camelCase, with imageUrl) plus the merged `state`
    and the `nextAction` the client should take.
    """
    action = require_action(body)
    app_state = request.app.state
    settings = app_state.settings

    if action == "start":
        # Availability is decided once, when the chronicle begins.
        report = require_available(settings)
        enabled = app_state.illustrator is not None and report.illustrations_enabled
        state = NarrativeState(illustrations_enabled=enabled)
    else:
        state = parse_state(body.get("state"))

    intent = parse_intent(body, state)
    model_request, token = engine.advance(
        state, intent, prompts=app_state.prompts, recap_size=settings.recap_size,
    )
    raw = await app_state.llm(model_request)
    result = engine.merge(
        state, token, raw,
        chapter_words=settings.chapter_words,
        continue_delay=settings.continue_delay,
    )

    if result.illustration and result.state.illustrations_enabled:
        result.response.image_url = await illustrate(
            app_state.illustrator, result.illustration, app_state.prompts.get("image_style", ""),
        )

    payload = result.response.to_wire()
    payload["state"] = result.state.to_wire()
    payload["nextAction"] = result.action.to_wire()
    return payload
