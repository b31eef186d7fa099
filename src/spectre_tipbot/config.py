"""Configuration system for the Spectre tip bot core.

Loads settings from `.spectre-tipbot/config.yaml`, supports environment
variable expansion, and resolves the locations of the metadata stores.
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field, field_validator


# ---------------------------------------------------------------------------
# Environment-variable expansion helper
# ---------------------------------------------------------------------------

_ENV_VAR_RE = re.compile(r"\$\{([^}]+)\}")


def _expand_env_vars(value: str) -> str:
    """Replace ``${VAR_NAME}`` placeholders with their environment values.

    If the variable is not set the placeholder is left as-is so that
    validation can catch it later.
    """

    def _replace(match: re.Match) -> str:
        var_name = match.group(1)
        return os.environ.get(var_name, match.group(0))

    return _ENV_VAR_RE.sub(_replace, value)


def _expand_env_recursive(obj: object) -> object:
    """Walk an arbitrary nested structure and expand env vars in strings."""
    if isinstance(obj, str):
        return _expand_env_vars(obj)
    if isinstance(obj, dict):
        return {k: _expand_env_recursive(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_expand_env_recursive(item) for item in obj]
    return obj


# ---------------------------------------------------------------------------
# Pydantic v2 models
# ---------------------------------------------------------------------------


class NodeConfig(BaseModel):
    """Spectre node connection settings."""

    url: Optional[str] = None          # ${FORCE_SPECTRE_NODE_ADDRESS}, None = resolver
    connect_timeout_seconds: float = 5.0
    require_synced: bool = True
    require_utxo_index: bool = True


class EngineConfig(BaseModel):
    """Dotted import paths of the wallet engine and node client implementations."""

    wallet_factory: str = ""
    node_factory: str = ""


class SecurityConfig(BaseModel):
    """Constraints on user supplied secrets."""

    min_secret_length: int = 10


class ClaimConfig(BaseModel):
    """Limits for escrow consolidation fan-out."""

    max_concurrency: int = 8
    timeout_seconds: float = 120.0  # 0 = wait forever

    @field_validator("max_concurrency")
    @classmethod
    def _positive(cls, value: int) -> int:
        if value < 1:
            raise ValueError("max_concurrency must be at least 1")
        return value


class TipBotConfig(BaseModel):
    """Root configuration object."""

    network: str = "mainnet"
    wallet_data_path: Path = Field(default_factory=lambda: get_root_dir() / "wallets")
    log_level: str = "INFO"
    node: NodeConfig = Field(default_factory=NodeConfig)
    engine: EngineConfig = Field(default_factory=EngineConfig)
    security: SecurityConfig = Field(default_factory=SecurityConfig)
    claim: ClaimConfig = Field(default_factory=ClaimConfig)


# ---------------------------------------------------------------------------
# Public helpers
# ---------------------------------------------------------------------------

OWNED_STORE_FILENAME = "owned.json"
TRANSITION_STORE_FILENAME = "transitions.json"


def get_root_dir(base: Path | None = None) -> Path:
    """Return the ``.spectre-tipbot/`` root directory (no auto-create).

    Parameters
    ----------
    base:
        Parent directory that contains (or will contain) the root folder.
        Defaults to the current working directory.
    """
    if base is None:
        base = Path.cwd()
    return base / ".spectre-tipbot"


def default_config_path(base: Path | None = None) -> Path:
    return get_root_dir(base) / "config.yaml"


def owned_store_path(config: TipBotConfig) -> Path:
    return Path(config.wallet_data_path) / OWNED_STORE_FILENAME


def transition_store_path(config: TipBotConfig) -> Path:
    return Path(config.wallet_data_path) / TRANSITION_STORE_FILENAME


def load_config(path: Path) -> TipBotConfig:
    """Load and validate the configuration from a YAML file.

    Environment variable placeholders (``${VAR}``) are expanded before
    validation.
    """
    raw_text = path.read_text(encoding="utf-8")
    raw_data = yaml.safe_load(raw_text) or {}
    expanded = _expand_env_recursive(raw_data)
    return TipBotConfig.model_validate(expanded)


def save_config(config: TipBotConfig, path: Path) -> None:
    """Serialize a :class:`TipBotConfig` to a YAML file."""
    path.parent.mkdir(parents=True, exist_ok=True)
    data = config.model_dump(mode="json", exclude_none=True)
    with open(path, "w", encoding="utf-8") as fh:
        yaml.dump(data, fh, default_flow_style=False, sort_keys=False)
