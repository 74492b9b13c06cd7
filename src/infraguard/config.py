import logging
import os
from typing import Any, Dict, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .errors import ConfigError
from .models import ValidationMode
from .rules.policy import DEFAULT_POLICY_PATH

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILENAME = ".infraguard.yml"

# Paths in a config file are relative to the file's directory.
_PATH_KEYS = ("working_dir", "policy_path")


class ValidatorConfig(BaseModel):
    """Everything one validation run needs. Built once, never mutated."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    mode: ValidationMode = ValidationMode.VALIDATE_EXISTING
    working_dir: str = "."
    policy_path: str = DEFAULT_POLICY_PATH
    provider: Optional[str] = None  # None means auto-detect from the plan
    no_destroy: bool = False
    verbose: bool = False
    # subscription_id, tenant_id, client_id, client_secret, mock_data_file, ...
    provider_settings: Dict[str, str] = Field(default_factory=dict)
    terraform_bin: Optional[str] = None

    @field_validator("provider", mode="before")
    def normalise_provider(cls, v):
        if isinstance(v, str):
            v = v.strip().lower()
            return v or None
        return v

    @field_validator("provider_settings", mode="before")
    def stringify_settings(cls, v):
        if v is None:
            return {}
        if isinstance(v, dict):
            return {str(k): "" if val is None else str(val) for k, val in v.items()}
        return v


def find_config_file(start_dir: Optional[str] = None) -> Optional[str]:
    """Looks for .infraguard.yml in ``start_dir`` (default: cwd) and its parents."""
    current_dir = os.path.abspath(start_dir or os.getcwd())
    while True:
        candidate = os.path.join(current_dir, DEFAULT_CONFIG_FILENAME)
        if os.path.isfile(candidate):
            return candidate
        parent_dir = os.path.dirname(current_dir)
        if parent_dir == current_dir:  # Reached root directory
            return None
        current_dir = parent_dir


def load_config_file(config_path: Optional[str] = None) -> Dict[str, Any]:
    """
    Reads the raw settings mapping from a config file.

    If ``config_path`` is None the file is searched for from the current
    directory upwards; no file means no settings. An explicit path that does
    not exist is an error.
    """
    if config_path:
        if not os.path.isfile(config_path):
            raise ConfigError(f"Configuration file not found: {config_path}")
    else:
        config_path = find_config_file()
        if config_path is None:
            logger.debug("No %s found; using defaults", DEFAULT_CONFIG_FILENAME)
            return {}

    logger.info("Loading configuration from: %s", config_path)
    try:
        with open(config_path, "r") as f:
            config_data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Error parsing YAML configuration file {config_path}: {e}")
    except OSError as e:
        raise ConfigError(f"Cannot read configuration file {config_path}: {e}")

    if config_data is None:  # Empty YAML file
        logger.warning("Configuration file %s is empty; using defaults", config_path)
        return {}
    if not isinstance(config_data, dict):
        raise ConfigError(f"Configuration file {config_path} must contain a mapping")

    base_dir = os.path.dirname(os.path.abspath(config_path))
    for key in _PATH_KEYS:
        value = config_data.get(key)
        if isinstance(value, str) and value and not os.path.isabs(value):
            config_data[key] = os.path.normpath(os.path.join(base_dir, value))
    return config_data


def load_validator_config(
    config_path: Optional[str] = None,
    overrides: Optional[Dict[str, Any]] = None,
) -> ValidatorConfig:
    """
    Builds the run configuration: defaults, then the config file, then
    ``overrides`` (typically CLI arguments). None-valued overrides are ignored;
    ``provider_settings`` are merged key by key.

    Raises:
        ConfigError: if the file cannot be loaded or the result is invalid.
    """
    data = load_config_file(config_path)
    for key, value in (overrides or {}).items():
        if value is None:
            continue
        if key == "provider_settings":
            merged = dict(data.get("provider_settings") or {})
            merged.update(value)
            data["provider_settings"] = merged
        else:
            data[key] = value

    try:
        return ValidatorConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"Configuration validation error:\n{e}")
