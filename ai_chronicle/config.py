"""Runtime settings, read from the environment (and .env via python-dotenv).

    ANTHROPIC_API_KEY      narrative model credential (required to play)
    OPENAI_API_KEY         illustration credential (optional)
    CHRONICLE_MODEL        Anthropic model id
    CHRONICLE_MAX_TOKENS   completion budget per turn
    CHRONICLE_TEMPERATURE  sampling temperature
    ANTHROPIC_BASE_URL     override for proxies / tests
    OPENAI_BASE_URL        override for proxies / tests
    IMAGE_MODEL            OpenAI image model id
    IMAGE_SIZE             e.g. "1024x1024"
    LLM_TIMEOUT            HTTP timeout in seconds for both gateways
    RECAP_SIZE             history entries replayed into each prompt
    CONTINUE_DELAY         seconds the host waits before auto-continuing
    CHAPTER_WORDS          narrated words per chapter
    DATA_DIR               where the terminal host keeps its save
    PROMPTS_FILE           JSON file overriding prompt templates
    APP_ENV                reported by the health endpoint
"""

from __future__ import annotations

import os
from pathlib import Path

from pydantic import BaseModel

DEFAULT_MODEL = "claude-3-5-sonnet-20241022"
DEFAULT_DATA_DIR = Path(__file__).parent.parent / "data"


class Settings(BaseModel):
    anthropic_api_key: str = ""
    openai_api_key: str = ""
    model: str = DEFAULT_MODEL
    max_tokens: int = 2000
    temperature: float = 0.9
    anthropic_base_url: str = "https://api.anthropic.com"
    openai_base_url: str = "https://api.openai.com"
    image_model: str = "dall-e-3"
    image_size: str = "1024x1024"
    timeout: float = 120.0
    recap_size: int = 2
    continue_delay: float = 2.0
    chapter_words: int = 600
    data_dir: Path = DEFAULT_DATA_DIR
    prompts_file: Path | None = None
    environment: str = "production"


def load_settings() -> Settings:
    """Build Settings from the current environment, falling back to defaults."""
    env = os.environ
    defaults = Settings()
    prompts_file = env.get("PROMPTS_FILE", "")
    return Settings(
        anthropic_api_key=env.get("ANTHROPIC_API_KEY", "").strip(),
        openai_api_key=env.get("OPENAI_API_KEY", "").strip(),
        model=env.get("CHRONICLE_MODEL", defaults.model),
        max_tokens=env.get("CHRONICLE_MAX_TOKENS", defaults.max_tokens),
        temperature=env.get("CHRONICLE_TEMPERATURE", defaults.temperature),
        anthropic_base_url=env.get("ANTHROPIC_BASE_URL", defaults.anthropic_base_url),
        openai_base_url=env.get("OPENAI_BASE_URL", defaults.openai_base_url),
        image_model=env.get("IMAGE_MODEL", defaults.image_model),
        image_size=env.get("IMAGE_SIZE", defaults.image_size),
        timeout=env.get("LLM_TIMEOUT", defaults.timeout),
        recap_size=env.get("RECAP_SIZE", defaults.recap_size),
        continue_delay=env.get("CONTINUE_DELAY", defaults.continue_delay),
        chapter_words=env.get("CHAPTER_WORDS", defaults.chapter_words),
        data_dir=Path(env.get("DATA_DIR", str(defaults.data_dir))),
        prompts_file=Path(prompts_file) if prompts_file else None,
        environment=env.get("APP_ENV", defaults.environment),
    )
