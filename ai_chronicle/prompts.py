"""Handlebars prompt templates for the storyteller.

Prompts are configuration: the defaults below can be overridden key by key
from a JSON file (see load_prompts). Templates are rendered with pybars and
use triple-stash so that prose passes through unescaped.

Context available to every intent template:
    protagonist.name / protagonist.description
    companions         list of names; companions_text joins them
    context            current situation summary
    recap              last few storyHistory entries
    chapter            chapter number
plus per-intent keys: choice.text / choice.id, outcome / outcome_lower /
roll_reason / probability_percent.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pybars

logger = logging.getLogger(__name__)

_compiler = pybars.Compiler()
_cache: dict[str, Callable] = {}


class PromptError(Exception):
    """Raised when a Handlebars template fails to compile or render."""


DEFAULT_SYSTEM_PROMPT = """\
You are a master storyteller running an interactive literary thriller set in \
Stockholm during Nobel Prize week, December 1963: snow, early darkness, \
candlelit banquets, laureates, journalists, diplomats and Cold War secrets \
beneath formal ceremony.

Write sophisticated, period-authentic prose in short paragraphs of two to \
four sentences. Offer meaningful choices at dramatic moments, not every \
turn. Ask for a dice roll for risky actions such as confrontations, \
investigations and gambles. Consequences matter: scandal can end a career \
and physical danger can be fatal. Suggest an image prompt when a new scene \
begins, a significant character appears, or a revelation lands.

Respond with a single JSON object and nothing else:
{
    "text": "the narrative to display",
    "protagonist": {"name": "...", "description": "..."},
    "companions": ["name", "name"],
    "context": "brief summary of the current situation",
    "isDead": false,
    "deathMessage": null,
    "requiresDiceRoll": false,
    "probability": 0.5,
    "rollReason": "why a roll is needed",
    "imagePrompt": "image description, or null",
    "choices": [{"text": "choice text", "id": "choice_id", "probability": 0.7}]
}
Do not wrap the JSON in Markdown code fences.\
"""

DEFAULT_START_PROMPT = """\
Begin a new story set in Stockholm, December 1963, during Nobel Prize week.

First let the player choose who they are. Offer these as choices:
1. A journalist covering the Nobel ceremonies
2. A diplomat's aide attending the events
3. A Swedish interpreter guiding the laureates
4. Let fate decide

Set the opening atmosphere in a few sentences and suggest an image prompt \
for the arrival in Stockholm.\
"""

DEFAULT_CHOICE_PROMPT = """\
The player chose: "{{{choice.text}}}" (ID: {{{choice.id}}})

Current context: {{{context}}}
Story so far:
{{#each recap}}
{{{this}}}

{{/each}}
Continue the story from this choice. Show its consequences and move the \
narrative forward.\
"""

DEFAULT_DICE_PROMPT = """\
Dice roll result: {{outcome}}

Roll was for: {{{roll_reason}}}
Probability was: {{probability_percent}}%

Current context: {{{context}}}
Story so far:
{{#each recap}}
{{{this}}}

{{/each}}
Continue the story from this {{outcome_lower}}. Show the consequences. If \
this was a failure in a dangerous situation, the protagonist may die.\
"""

DEFAULT_CONTINUE_PROMPT = """\
Continue the story naturally.

Current context: {{{context}}}
Protagonist: {{#if protagonist.name}}{{{protagonist.name}}}{{else}}unnamed{{/if}}
Companions: {{#if companions_text}}{{{companions_text}}}{{else}}none{{/if}}
Recent story:
{{#each recap}}
{{{this}}}

{{/each}}
You may introduce new situations, characters or developments. Present \
choices when the moment calls for them.\
"""

DEFAULT_IMAGE_STYLE = (
    "Sepia-toned vintage photograph, 1960s Stockholm, film noir aesthetic, "
    "grainy texture, dramatic lighting"
)

DEFAULT_PROMPTS: dict[str, str] = {
    "system": DEFAULT_SYSTEM_PROMPT,
    "start": DEFAULT_START_PROMPT,
    "choice": DEFAULT_CHOICE_PROMPT,
    "dice_result": DEFAULT_DICE_PROMPT,
    "continue": DEFAULT_CONTINUE_PROMPT,
    "image_style": DEFAULT_IMAGE_STYLE,
}


def render_prompt(template_str: str, context: dict[str, Any]) -> str:
    """Compile and render a Handlebars template with the given context.

    Templates are cached by source string to avoid recompilation.
    """
    try:
        compiled = _cache.get(template_str)
        if compiled is None:
            compiled = _compiler.compile(template_str)
            _cache[template_str] = compiled
        return str(compiled(context))
    except Exception as e:
        raise PromptError(f"Template error: {e}") from e


def load_prompts(path: Path | None) -> dict[str, str]:
    """Return the default prompts merged with overrides stored at `path`.

    Unknown keys and non-string values in the file are ignored.
    """
    prompts = dict(DEFAULT_PROMPTS)
    if path is None or not path.is_file():
        return prompts
    stored = json.loads(path.read_text())
    if not isinstance(stored, dict):
        raise PromptError(f"Prompt file {path} must contain a JSON object")
    for key, value in stored.items():
        if key in prompts and isinstance(value, str):
            prompts[key] = value
        else:
            logger.warning("Ignoring prompt override %r from %s", key, path)
    return prompts
