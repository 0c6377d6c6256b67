"""Configuration models for Moodlog."""

from pydantic import BaseModel, Field, HttpUrl, field_validator
from pathlib import Path
from typing import Optional
import yaml
import os
import stat


class LLMConfig(BaseModel):
    """Configuration for the upstream LLM API connection."""

    endpoint: HttpUrl = Field(
        ...,
        description="OpenAI-compatible API base URL (e.g. https://api.deepseek.com/v1)"
    )

    api_key: str = Field(
        ...,
        description="API key for bearer authentication"
    )

    model: str = Field(
        ...,
        description="Model identifier used for analysis scenarios"
    )

    reasoning_model: Optional[str] = Field(
        default=None,
        description="Model used for scenarios that benefit from a reasoning phase (advice)"
    )

    max_tokens: int = Field(default=4000, ge=1)
    temperature: float = Field(default=0.75, ge=0.0, le=2.0)
    top_p: float = Field(default=0.9, ge=0.0, le=1.0)
    frequency_penalty: float = Field(default=0.35, ge=-2.0, le=2.0)
    presence_penalty: float = Field(default=0.65, ge=-2.0, le=2.0)

    request_timeout: float = Field(
        default=180.0,
        gt=0,
        description="Hard timeout in seconds for the whole upstream stream"
    )

    model_config = {"frozen": True}

    @property
    def completions_url(self) -> str:
        """Full chat-completions URL derived from the endpoint."""
        base = str(self.endpoint).rstrip("/")
        if base.endswith("/chat/completions"):
            return base
        return f"{base}/chat/completions"


class PipelineConfig(BaseModel):
    """Configuration for the post-stream extraction and commit phase."""

    commit_timeout: float = Field(
        default=120.0,
        gt=0,
        description="Watchdog timeout in seconds for extraction + commit"
    )

    model_config = {"frozen": True}


class StorageConfig(BaseModel):
    """Configuration for the journal record store."""

    data_dir: str = Field(
        default="~/.local/share/moodlog",
        description="Directory holding one JSON file per stored record"
    )

    @field_validator('data_dir')
    @classmethod
    def expand_data_dir(cls, v: str) -> str:
        """Expand ~ and reject paths that exist but are not directories."""
        path = Path(v).expanduser()
        if path.exists() and not path.is_dir():
            raise ValueError(
                f"Data path is not a directory: {path}\n"
                f"Please provide a valid directory path"
            )
        return str(path)

    model_config = {"frozen": True}


class ServerConfig(BaseModel):
    """Configuration for the HTTP server."""

    host: str = Field(default="127.0.0.1")
    port: int = Field(default=8000, ge=1, le=65535)

    model_config = {"frozen": True}


CONFIG_TEMPLATE = """\
llm:
  endpoint: https://api.deepseek.com/v1
  api_key: YOUR_API_KEY_HERE
  model: deepseek-chat
  reasoning_model: deepseek-reasoner

pipeline:
  commit_timeout: 120

storage:
  data_dir: ~/.local/share/moodlog
"""


def _require_private(path: Path) -> None:
    mode = os.stat(path).st_mode
    if mode & (stat.S_IRWXG | stat.S_IRWXO):
        raise PermissionError(
            f"Config file has overly permissive permissions: {oct(mode)}\n"
            f"The file holds the API key; run: chmod 600 {path}"
        )


class Config(BaseModel):
    """Root configuration for the Moodlog service."""

    llm: LLMConfig = Field(..., description="Upstream model provider")
    pipeline: PipelineConfig = Field(default_factory=PipelineConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)

    @classmethod
    def load(cls, path: Path) -> "Config":
        """
        Parse and validate ``config.yaml``.

        Raises:
            FileNotFoundError: Missing file (message includes a template)
            PermissionError: File is not mode 600
            ValueError: Empty file, bad YAML, or invalid fields
        """
        if not path.is_file():
            raise FileNotFoundError(
                f"Configuration file not found at {path}\n\n"
                f"Create it (mode 600) with content like:\n\n{CONFIG_TEMPLATE}"
            )

        _require_private(path)

        data = yaml.safe_load(path.read_text(encoding="utf-8"))
        if not isinstance(data, dict):
            raise ValueError(f"Configuration file is empty or not a mapping: {path}")

        return cls(**data)

    model_config = {"frozen": True}
