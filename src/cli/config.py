"""YAML configuration loader with env var resolution and Pydantic validation.

Loads config from (priority order):
1. --config <path> CLI flag
2. ./voiceops.yaml (working directory)
3. <user config dir>/voiceops/config.yaml

Environment variables override YAML: VOICEOPS_<SECTION>_<KEY>.
${VAR} references in YAML values resolve from environment at load time.
When no file is found, defaults plus env overrides are used.
"""

import logging
import os
import re
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, model_validator

from src.utils.paths import get_config_dir

logger = logging.getLogger(__name__)

_ENV_VAR_PATTERN = re.compile(r"\$\{([^}]+)\}")
_ENV_PREFIX = "VOICEOPS_"


def resolve_env_vars(value: str) -> str:
    """Resolve ${VAR} references from the environment. Missing vars become ''."""
    def _replace(match: re.Match) -> str:
        return os.environ.get(match.group(1), "")

    return _ENV_VAR_PATTERN.sub(_replace, value)


def _resolve_env_vars_recursive(data: Any) -> Any:
    if isinstance(data, str):
        return resolve_env_vars(data)
    elif isinstance(data, dict):
        return {k: _resolve_env_vars_recursive(v) for k, v in data.items()}
    elif isinstance(data, list):
        return [_resolve_env_vars_recursive(item) for item in data]
    return data


class ServerConfig(BaseModel):
    """HTTP API server settings."""

    host: str = "127.0.0.1"
    port: int = 8000
    log_level: str = "info"


class ProviderConfig(BaseModel):
    """Provider endpoint settings."""

    name: str = "elevenlabs"
    base_url: str | None = None
    timeout_seconds: float = Field(default=30.0, gt=0)
    page_size: int = Field(default=100, ge=1, le=100)


class SyncConfig(BaseModel):
    """Sync engine tuning."""

    window: int = Field(default=5, ge=1)
    batch_delay_ms: int = Field(default=100, ge=0)
    dedup_concurrency: int = Field(default=10, ge=1)
    max_retries: int = Field(default=3, ge=1)
    base_delay_seconds: float = Field(default=1.0, ge=0)
    require_known_agent: bool = True


class DatabaseConfig(BaseModel):
    """State database location. Falls back to DATABASE_URL / platform default."""

    url: str | None = None


class VoiceOpsConfig(BaseModel):
    """Top-level configuration for VoiceOps Sync."""

    server: ServerConfig = ServerConfig()
    provider: ProviderConfig = ProviderConfig()
    sync: SyncConfig = SyncConfig()
    database: DatabaseConfig = DatabaseConfig()

    @model_validator(mode="after")
    def known_provider(self) -> "VoiceOpsConfig":
        """Reject provider names with no adapter."""
        from src.services.provider_types import PROVIDERS

        if self.provider.name not in PROVIDERS:
            raise ValueError(
                f"Unknown provider '{self.provider.name}'. Expected one of: {', '.join(sorted(PROVIDERS))}"
            )
        return self


def _find_config_file() -> Path | None:
    candidates = [
        Path.cwd() / "voiceops.yaml",
        Path.cwd() / "voiceops.yml",
        get_config_dir() / "config.yaml",
        get_config_dir() / "config.yml",
    ]
    for candidate in candidates:
        if candidate.exists():
            return candidate
    return None


def _coerce(value: str) -> Any:
    try:
        return int(value)
    except ValueError:
        if value.lower() in ("true", "false"):
            return value.lower() == "true"
        return value


def _apply_env_overrides(data: dict[str, Any]) -> dict[str, Any]:
    """Apply VOICEOPS_<SECTION>_<KEY> env var overrides to config data.

    For example, ``VOICEOPS_SYNC_WINDOW=3`` sets ``sync.window``. Variables
    that do not name a known section (such as VOICEOPS_CREDENTIAL_KEY) are
    ignored.
    """
    known_sections = sorted(VoiceOpsConfig.model_fields.keys(), key=len, reverse=True)
    for key, value in os.environ.items():
        if not key.startswith(_ENV_PREFIX):
            continue
        suffix = key[len(_ENV_PREFIX):].lower()
        for section in known_sections:
            section_prefix = section + "_"
            if suffix.startswith(section_prefix) and len(suffix) > len(section_prefix):
                field_name = suffix[len(section_prefix):]
                section_data = data.setdefault(section, {})
                if isinstance(section_data, dict):
                    section_data[field_name] = _coerce(value)
                break
    return data


def load_config(config_path: str | None = None) -> VoiceOpsConfig:
    """Load configuration from YAML with env var resolution and overrides.

    Args:
        config_path: Explicit path to config file. If None, searches
            standard locations.

    Raises:
        FileNotFoundError: An explicit config path does not exist.
        pydantic.ValidationError: The merged config is invalid.
    """
    raw_data: dict[str, Any] = {}
    if config_path:
        path: Path | None = Path(config_path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")
    else:
        path = _find_config_file()

    if path is not None:
        logger.info("Loading config from %s", path)
        with open(path) as f:
            raw_data = yaml.safe_load(f) or {}

    data = _resolve_env_vars_recursive(raw_data)
    data = _apply_env_overrides(data)
    return VoiceOpsConfig(**data)
