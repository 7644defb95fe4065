import json
from collections.abc import Iterable

import pytest

from ai_chronicle.config import Settings
from ai_chronicle.models import ModelRequest

KEY_VARS = ("ANTHROPIC_API_KEY", "OPENAI_API_KEY", "PROMPTS_FILE", "DATA_DIR")


class StubLLM:
    """Scripted model gateway: returns queued replies in order and records requests.

    Replies that are dicts are sent as JSON text; strings are sent verbatim.
    """

    def __init__(self, replies: Iterable[str | dict] = ()) -> None:
        self.replies = list(replies)
        self.requests: list[ModelRequest] = []

    def queue(self, *replies: str | dict) -> None:
        self.replies.extend(replies)

    async def __call__(self, request: ModelRequest) -> str:
        self.requests.append(request)
        if not self.replies:
            raise AssertionError(f"StubLLM got an unscripted {request.intent} request")
        reply = self.replies.pop(0)
        return json.dumps(reply) if isinstance(reply, dict) else reply


class StubIllustrator:
    def __init__(self, url: str | None = "https://img.example/scene.png", error: Exception | None = None) -> None:
        self.url = url
        self.error = error
        self.prompts: list[str] = []

    async def __call__(self, prompt: str) -> str | None:
        self.prompts.append(prompt)
        if self.error is not None:
            raise self.error
        return self.url


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep real credentials and overrides out of every test."""
    for var in KEY_VARS:
        monkeypatch.delenv(var, raising=False)


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        anthropic_api_key="sk-ant-test-key",
        openai_api_key="sk-test-key",
        data_dir=tmp_path,
    )


@pytest.fixture
def stub_llm() -> StubLLM:
    return StubLLM()


@pytest.fixture
def stub_illustrator() -> StubIllustrator:
    return StubIllustrator()
