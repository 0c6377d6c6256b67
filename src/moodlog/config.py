"""Loading the service configuration and handing out its sections."""

import os
from functools import cached_property
from pathlib import Path
from typing import Mapping, Optional

from moodlog.models.config import (
    Config,
    LLMConfig,
    PipelineConfig,
    ServerConfig,
    StorageConfig,
)
from moodlog.utils.logging import get_logger


logger = get_logger(__name__)

DEFAULT_CONFIG_PATH = Path.home() / ".config" / "moodlog" / "config.yaml"
CONFIG_PATH_ENV = "MOODLOG_CONFIG"
API_KEY_ENV = "MOODLOG_API_KEY"


def resolve_config_path(environ: Optional[Mapping[str, str]] = None) -> Path:
    """``$MOODLOG_CONFIG`` if set, else ``~/.config/moodlog/config.yaml``."""
    environ = os.environ if environ is None else environ
    override = environ.get(CONFIG_PATH_ENV)
    return Path(override).expanduser() if override else DEFAULT_CONFIG_PATH


class ConfigManager:
    """
    Typed access to one loaded Config.

    Sections are resolved once, on first use. ``MOODLOG_API_KEY`` in the
    environment replaces ``llm.api_key`` so deployments can keep the key out
    of the file.

    Example:
        >>> config = ConfigManager.load_default()
        >>> config.llm.completions_url
        'https://api.deepseek.com/v1/chat/completions'
    """

    def __init__(self, config: Config, environ: Optional[Mapping[str, str]] = None):
        self._config = config
        self._environ = os.environ if environ is None else environ

    @classmethod
    def load_default(cls) -> "ConfigManager":
        return cls.load_from_path(resolve_config_path())

    @classmethod
    def load_from_path(cls, path: Path) -> "ConfigManager":
        """
        Read and validate a config file.

        Raises:
            FileNotFoundError: No file at ``path``
            PermissionError: File readable by group or others
            ValueError: YAML or field validation failed
        """
        try:
            config = Config.load(path)
        except (FileNotFoundError, PermissionError) as e:
            logger.error("config_unavailable", path=str(path), error_type=type(e).__name__)
            raise
        except Exception as e:
            logger.error("config_invalid", path=str(path), error=str(e))
            raise ValueError(f"Configuration validation failed: {e}") from e

        logger.info("config_loaded", path=str(path), model=config.llm.model)
        return cls(config)

    @cached_property
    def llm(self) -> LLMConfig:
        api_key = self._environ.get(API_KEY_ENV)
        if api_key:
            logger.debug("config_api_key_from_environment")
            return self._config.llm.model_copy(update={"api_key": api_key})
        return self._config.llm

    @cached_property
    def pipeline(self) -> PipelineConfig:
        return self._config.pipeline

    @cached_property
    def storage(self) -> StorageConfig:
        return self._config.storage

    @cached_property
    def server(self) -> ServerConfig:
        return self._config.server
