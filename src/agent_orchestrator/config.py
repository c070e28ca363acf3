"""Application settings: pydantic models read from YAML with ${ENV} expansion."""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Literal, Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError, field_validator

from agent_orchestrator.core.errors import ConfigError

DEFAULT_CLAUDE_MODEL = "claude-sonnet-4-20250514"
DEFAULT_OPENAI_MODEL = "gpt-4-turbo"

DEFAULT_FLAGS: dict[str, bool] = {
    "LLM_CLAUDE_ENABLED": True,
    "LLM_STREAMING_ENABLED": True,
    "PHONE_AGENT_ENABLED": False,
    "BOOKING_ENABLED": True,
    "DISPATCH_ENABLED": True,
    "SMS_ENABLED": True,
    "EMAIL_ENABLED": True,
    "AGENT_DISPATCH_CONCIERGE_ENABLED": True,
    "AGENT_JOB_STATUS_ENABLED": True,
    "AGENT_QUOTE_ASSISTANT_ENABLED": True,
    "AGENT_HOMEOWNER_CONCIERGE_ENABLED": True,
}

ANONYMOUS_PERMISSIONS = ["booking:read", "calendar:read"]
AUTHENTICATED_PERMISSIONS = [
    "booking:read",
    "booking:create",
    "dispatch:read",
    "dispatch:create",
    "calendar:read",
    "sms:send",
    "email:send",
    "call:initiate",
]

_ENV_VAR_PATTERN = re.compile(r"\$\{(\w+)(?::-([^}]*))?\}")


def _env(name: str, default: str | None = None) -> str | None:
    return os.environ.get(name) or default


class ProviderConfig(BaseModel):
    api_key: Optional[str] = None
    model: str
    base_url: Optional[str] = None
    max_tokens: int = 4096
    temperature: float = 0.7
    max_retries: int = 3
    timeout: int = 60

    @field_validator("api_key")
    @classmethod
    def _drop_unresolved(cls, value: Optional[str]) -> Optional[str]:
        # "${ANTHROPIC_API_KEY}" left behind by interpolation means the var is unset
        if not value or _ENV_VAR_PATTERN.fullmatch(value):
            return None
        return value


def _anthropic_defaults() -> ProviderConfig:
    return ProviderConfig(
        api_key=_env("ANTHROPIC_API_KEY"),
        model=_env("CLAUDE_MODEL_ID", DEFAULT_CLAUDE_MODEL),
        max_tokens=int(_env("LLM_MAX_TOKENS", "4096")),
        temperature=float(_env("LLM_TEMPERATURE", "0.7")),
    )


def _openai_defaults() -> ProviderConfig:
    return ProviderConfig(
        api_key=_env("OPENAI_API_KEY"),
        model=_env("OPENAI_MODEL_ID", DEFAULT_OPENAI_MODEL),
        max_tokens=int(_env("LLM_MAX_TOKENS", "4096")),
        temperature=float(_env("LLM_TEMPERATURE", "0.7")),
    )


class LLMConfig(BaseModel):
    anthropic: ProviderConfig = Field(default_factory=_anthropic_defaults)
    openai: ProviderConfig = Field(default_factory=_openai_defaults)
    fallback_enabled: bool = Field(
        default_factory=lambda: _env("LLM_FALLBACK_ENABLED", "false") == "true"
    )
    streaming_enabled: bool = Field(
        default_factory=lambda: _env("LLM_STREAMING_ENABLED", "true") != "false"
    )
    timeout_seconds: float = 60.0


class MemoryConfig(BaseModel):
    max_turns: int = 50
    max_context_tokens: int = 100_000
    enable_summarization: bool = True
    summarization_threshold: int = 30
    cache_ttl_seconds: int = 3600


class OrchestratorConfig(BaseModel):
    cache_ttl_seconds: int = 3600
    max_tool_rounds: int = 10
    # "suggest": keyword hits only add a suggested action
    # "takeover": keyword hits also hand the session to a human
    keyword_escalation: Literal["suggest", "takeover"] = "suggest"


class StorageConfig(BaseModel):
    db_path: str = "./data/agent_orchestrator.db"


class ExpiryConfig(BaseModel):
    enabled: bool = True
    idle_seconds: int = 3600
    interval_seconds: int = 300
    timezone: str = "UTC"


class FlagsConfig(BaseModel):
    defaults: dict[str, bool] = Field(default_factory=lambda: dict(DEFAULT_FLAGS))
    orgs: dict[str, dict[str, bool]] = Field(default_factory=dict)


class PoliciesConfig(BaseModel):
    defaults: dict[str, str] = Field(default_factory=lambda: {"PHONE_AGENT_MODE": "ASSIST"})
    orgs: dict[str, dict[str, str]] = Field(default_factory=dict)


class PermissionsConfig(BaseModel):
    anonymous: list[str] = Field(default_factory=lambda: list(ANONYMOUS_PERMISSIONS))
    authenticated: list[str] = Field(default_factory=lambda: list(AUTHENTICATED_PERMISSIONS))
    users: dict[str, list[str]] = Field(default_factory=dict)


class ConsentConfig(BaseModel):
    default_granted: bool = False


class AppConfig(BaseModel):
    log_level: str = "INFO"
    log_json: bool = False
    data_dir: str = "./data"
    llm: LLMConfig = Field(default_factory=LLMConfig)
    memory: MemoryConfig = Field(default_factory=MemoryConfig)
    orchestrator: OrchestratorConfig = Field(default_factory=OrchestratorConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    expiry: ExpiryConfig = Field(default_factory=ExpiryConfig)
    flags: FlagsConfig = Field(default_factory=FlagsConfig)
    policies: PoliciesConfig = Field(default_factory=PoliciesConfig)
    permissions: PermissionsConfig = Field(default_factory=PermissionsConfig)
    consent: ConsentConfig = Field(default_factory=ConsentConfig)


def _interpolate(text: str, extra: dict[str, str] | None = None) -> str:
    """Expand ``${NAME}`` and ``${NAME:-default}`` from ``extra`` then the environment.

    Unset names without a default are left as written.
    """

    def _expand(match: re.Match) -> str:
        name, default = match.group(1), match.group(2)
        if extra and name in extra:
            return extra[name]
        value = os.environ.get(name)
        if value is None or (value == "" and default is not None):
            return default if default is not None else match.group(0)
        return value

    return _ENV_VAR_PATTERN.sub(_expand, text)


def load_config(config_path: str | Path = "config.yaml", env_path: str | Path = ".env") -> AppConfig:
    """Read ``config_path`` into an ``AppConfig``.

    ``env_path`` is loaded first when it exists, so ``.env`` values feed the
    interpolation. ``${data_dir}`` refers to the file's own ``data_dir``.

    Raises:
        FileNotFoundError: ``config_path`` does not exist.
        ConfigError: the YAML does not parse or a value fails validation.
    """
    env_file = Path(env_path)
    if env_file.exists():
        load_dotenv(env_file)

    config_file = Path(config_path)
    if not config_file.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_file}")
    text = config_file.read_text(encoding="utf-8")

    try:
        first_pass = yaml.safe_load(text) or {}
        data_dir = _interpolate(str(first_pass.get("data_dir", "./data")))
        data = yaml.safe_load(_interpolate(text, extra={"data_dir": data_dir})) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {config_file}: {e}") from e

    try:
        return AppConfig(**data)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration in {config_file}: {e}") from e
