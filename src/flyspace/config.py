# config.py
# Process configuration, read once from the environment (and .env).
#
# The model decides which provider key is required:
#   OpenAI models    → OPENAI_API_KEY
#   Anthropic models → ANTHROPIC_API_KEY
# A missing key is a configuration error; the process does not start.

import os
from pathlib import Path
from typing import Literal, get_args

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, model_validator

from flyspace import display

OpenAIModel = Literal["gpt-4o", "gpt-4o-2024-08-06", "o1-mini", "o1-preview", "gpt-4o-mini"]
AnthropicModel = Literal["claude-3-5-sonnet-latest", "claude-3-5-sonnet-20240620", "claude-3-5-sonnet-20241022"]

OPENAI_MODELS: tuple[str, ...] = get_args(OpenAIModel)
ANTHROPIC_MODELS: tuple[str, ...] = get_args(AnthropicModel)

# Accepted, but with a warning and these suggestions instead.
DISCOURAGED_MODELS: dict[str, list[str]] = {"gpt-4o-mini": ["gpt-4o", "o1-mini"]}


def model_key_variable(model_name: str) -> str:
    """Environment variable holding the API key for `model_name`'s provider."""
    return "OPENAI_API_KEY" if model_name in OPENAI_MODELS else "ANTHROPIC_API_KEY"


def _env_flag(raw: str | None, default: bool) -> bool:
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


class Settings(BaseModel):
    model_config = ConfigDict(protected_namespaces=())

    host: str = "127.0.0.1"
    port: int = Field(default=1919, ge=0, le=65535)
    scripts_dir: str = Field(default_factory=lambda: str(Path.cwd()))
    screencast_format: str = Field(default="jpeg", pattern="^(jpeg|png)$")
    screencast_quality: int = Field(default=100, ge=0, le=100)
    headless: bool = True
    env: str = Field(default="LOCAL", description="LOCAL or BROWSERBASE.")
    model_name: OpenAIModel | AnthropicModel = "gpt-4o"
    model_api_key: str | None = Field(default=None, description="Key for the model's provider.")
    dom_settle_timeout_ms: int = 30_000
    browserbase_api_key: str | None = None
    browserbase_project_id: str | None = None

    @model_validator(mode="after")
    def _require_model_key(self) -> "Settings":
        if not self.model_api_key:
            family = "OpenAI" if self.model_name in OPENAI_MODELS else "Anthropic"
            raise ValueError(
                f"{model_key_variable(self.model_name)} environment variable is required "
                f"when using {family} models"
            )
        return self

    @classmethod
    def from_env(cls, scripts_dir: str | None = None) -> "Settings":
        load_dotenv()
        folder = scripts_dir or os.environ.get("FLYSPACE_SCRIPTS_DIR") or str(Path.cwd())
        model_name = os.environ.get("FLYSPACE_MODEL", "gpt-4o")
        settings = cls(
            host=os.environ.get("FLYSPACE_HOST", "127.0.0.1"),
            port=int(os.environ.get("FLYSPACE_PORT", "1919")),
            scripts_dir=str(Path(folder).expanduser().resolve()),
            screencast_format=os.environ.get("FLYSPACE_SCREENCAST_FORMAT", "jpeg"),
            screencast_quality=int(os.environ.get("FLYSPACE_SCREENCAST_QUALITY", "100")),
            headless=_env_flag(os.environ.get("FLYSPACE_HEADLESS"), True),
            env=os.environ.get("FLYSPACE_ENV", "LOCAL").upper(),
            model_name=model_name,
            model_api_key=os.environ.get(model_key_variable(model_name)),
            dom_settle_timeout_ms=int(os.environ.get("FLYSPACE_DOM_SETTLE_TIMEOUT_MS", "30000")),
            browserbase_api_key=os.environ.get("BROWSERBASE_API_KEY"),
            browserbase_project_id=os.environ.get("BROWSERBASE_PROJECT_ID"),
        )

        if settings.model_name in DISCOURAGED_MODELS:
            display.model_not_recommended(settings.model_name, DISCOURAGED_MODELS[settings.model_name])
        return settings
