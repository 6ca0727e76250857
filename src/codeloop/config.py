"""Configuration loader with YAML parsing, env-var interpolation, and Pydantic validation."""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator

from codeloop.core.types import ApprovalPolicy, SandboxPolicy

MAX_APPROVAL_TIMEOUT = 60


class LLMConfig(BaseModel):
    api_key: str
    base_url: Optional[str] = None
    model: str = "claude-sonnet-4-20250514"
    max_tokens: int = 8192
    temperature: float = Field(default=0.7, ge=0, le=2)
    max_retries: int = 3
    timeout: int = 120


class ToolPolicyConfig(BaseModel):
    allow: list[str] = Field(default_factory=list)
    deny: list[str] = Field(default_factory=list)


class AgentConfig(BaseModel):
    workspace: str = "./workspace"
    sandbox_policy: SandboxPolicy = SandboxPolicy.WORKSPACE_WRITE
    approval_policy: ApprovalPolicy = ApprovalPolicy.ON_REQUEST
    max_history_messages: int = Field(default=50, ge=2)
    max_iterations: int = Field(default=15, ge=1)
    max_consecutive_errors: int = Field(default=3, ge=1)
    approval_timeout: float = Field(default=MAX_APPROVAL_TIMEOUT, gt=0)
    max_file_size_kb: int = Field(default=500, gt=0)
    http_allowlist: list[str] = Field(default_factory=list)
    tools: ToolPolicyConfig = Field(default_factory=ToolPolicyConfig)

    @field_validator("approval_timeout")
    @classmethod
    def _cap_approval_timeout(cls, value: float) -> float:
        return min(value, MAX_APPROVAL_TIMEOUT)

    @field_validator("http_allowlist", mode="before")
    @classmethod
    def _split_allowlist(cls, value: object) -> object:
        # Accept the comma-separated form used in env files.
        if isinstance(value, str):
            return [d.strip() for d in value.split(",") if d.strip()]
        return value


class BotConfig(BaseModel):
    id: str
    platform: str = "telegram"
    token: str
    admin_user_ids: list[str] = Field(default_factory=list)


class StorageConfig(BaseModel):
    db_path: str = "./data/codeloop.db"


class AppConfig(BaseModel):
    log_level: str = "INFO"
    data_dir: str = "./data"
    llm: LLMConfig
    agent: AgentConfig = Field(default_factory=AgentConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    bots: list[BotConfig] = Field(default_factory=list)


_ENV_VAR_PATTERN = re.compile(r"\$\{(\w+)\}")


def _interpolate_env_vars(text: str, extra: dict[str, str] | None = None) -> str:
    """Replace ${VAR_NAME} patterns with environment variable values."""

    def _replace(match: re.Match) -> str:
        var_name = match.group(1)
        if extra and var_name in extra:
            return extra[var_name]
        value = os.environ.get(var_name)
        if value is None:
            return match.group(0)
        return value

    return _ENV_VAR_PATTERN.sub(_replace, text)


def load_config(config_path: str | Path = "config.yaml", env_path: str | Path = ".env") -> AppConfig:
    """Load and validate configuration from YAML file with env-var interpolation."""
    env_file = Path(env_path)
    if env_file.exists():
        load_dotenv(env_file)

    config_file = Path(config_path)
    if not config_file.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_file}")

    raw_text = config_file.read_text(encoding="utf-8")

    # First pass: extract data_dir for self-referencing
    raw_data = yaml.safe_load(raw_text) or {}
    data_dir = _interpolate_env_vars(str(raw_data.get("data_dir", "./data")))

    interpolated = _interpolate_env_vars(raw_text, extra={"data_dir": data_dir})
    data = yaml.safe_load(interpolated) or {}

    return AppConfig(**data)
