"""Save/load of the narrative state blob.

The state is an opaque JSON document owned by the player. A host keeps at
most one save under a well-known key:

    {base}/
      aiChronicle_save.json   ← serialized NarrativeState

A missing save loads as None. A corrupt one is logged and also loads as None;
it is left on disk until the next save overwrites it.
"""

from __future__ import annotations

import logging
from pathlib import Path

from pydantic import ValidationError

from ai_chronicle.errors import InvalidRequest
from ai_chronicle.models import NarrativeState

logger = logging.getLogger(__name__)

SAVE_KEY = "aiChronicle_save"


def serialize_state(state: NarrativeState) -> str:
    return state.model_dump_json(by_alias=True)


def deserialize_state(blob: str | bytes) -> NarrativeState:
    """Rebuild a state from its serialized form.

    Raises InvalidRequest when the blob is not a valid state document.
    """
    try:
        return NarrativeState.model_validate_json(blob)
    except ValidationError as e:
        raise InvalidRequest(f"Saved chronicle is corrupt: {e.error_count()} problem(s)") from e


class SaveStore:
    def __init__(self, base_path: Path, key: str = SAVE_KEY) -> None:
        self._base = base_path
        self._base.mkdir(parents=True, exist_ok=True)
        self._path = base_path / f"{key}.json"

    @property
    def path(self) -> Path:
        return self._path

    def save(self, state: NarrativeState) -> None:
        self._path.write_text(serialize_state(state))

    def load(self) -> NarrativeState | None:
        if not self._path.is_file():
            return None
        try:
            return deserialize_state(self._path.read_text())
        except (InvalidRequest, UnicodeDecodeError) as e:
            logger.warning("Ignoring unreadable save at %s: %s", self._path, e)
            return None

    def clear(self) -> None:
        self._path.unlink(missing_ok=True)
