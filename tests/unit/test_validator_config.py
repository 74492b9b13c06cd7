import os

import pytest

from infraguard.config import (
    DEFAULT_CONFIG_FILENAME,
    ValidatorConfig,
    find_config_file,
    load_config_file,
    load_validator_config,
)
from infraguard.errors import ConfigError
from infraguard.models import ValidationMode
from infraguard.rules.policy import DEFAULT_POLICY_PATH


@pytest.fixture(autouse=True)
def isolated_cwd(tmp_path, monkeypatch):
    # Keep the upward config search away from the developer's own files
    workdir = tmp_path / "cwd"
    workdir.mkdir()
    monkeypatch.chdir(workdir)
    return workdir


def test_defaults():
    config = ValidatorConfig()
    assert config.mode is ValidationMode.VALIDATE_EXISTING
    assert config.working_dir == "."
    assert config.policy_path == DEFAULT_POLICY_PATH
    assert config.provider is None
    assert config.no_destroy is False
    assert config.provider_settings == {}


def test_provider_is_normalised():
    assert ValidatorConfig(provider=" Azure ").provider == "azure"
    assert ValidatorConfig(provider="").provider is None


def test_settings_are_stringified():
    config = ValidatorConfig(provider_settings={"port": 443, "empty": None})
    assert config.provider_settings == {"port": "443", "empty": ""}


def test_config_is_frozen():
    config = ValidatorConfig()
    with pytest.raises(Exception):
        config.mode = ValidationMode.EPHEMERAL_SANDBOX


def test_find_config_file_searches_parents(tmp_path):
    (tmp_path / DEFAULT_CONFIG_FILENAME).write_text("provider: mock\n")
    nested = tmp_path / "a" / "b"
    nested.mkdir(parents=True)
    assert find_config_file(str(nested)) == str(tmp_path / DEFAULT_CONFIG_FILENAME)


def test_no_config_file_means_defaults():
    assert load_config_file() == {}
    assert load_validator_config() == ValidatorConfig()


def test_explicit_missing_config_file(tmp_path):
    with pytest.raises(ConfigError, match="not found"):
        load_config_file(str(tmp_path / "nope.yml"))


def test_paths_are_relative_to_config_file(tmp_path):
    config_file = tmp_path / "project" / DEFAULT_CONFIG_FILENAME
    config_file.parent.mkdir()
    config_file.write_text("working_dir: infra\npolicy_path: policies/strict.yml\nprovider: mock\n")

    config = load_validator_config(str(config_file))

    assert config.working_dir == os.path.join(str(tmp_path), "project", "infra")
    assert config.policy_path == os.path.join(str(tmp_path), "project", "policies", "strict.yml")
    assert config.provider == "mock"


def test_overrides_win_and_none_is_ignored(tmp_path):
    config_file = tmp_path / DEFAULT_CONFIG_FILENAME
    config_file.write_text(
        "mode: ephemeral-sandbox\nprovider: azure\n"
        "provider_settings:\n  subscription_id: sub-1\n  tenant_id: t-1\n"
    )

    config = load_validator_config(str(config_file), {
        "provider": None,
        "no_destroy": True,
        "provider_settings": {"tenant_id": "t-2"},
    })

    assert config.mode is ValidationMode.EPHEMERAL_SANDBOX
    assert config.provider == "azure"
    assert config.no_destroy is True
    assert config.provider_settings == {"subscription_id": "sub-1", "tenant_id": "t-2"}


def test_empty_config_file(tmp_path):
    config_file = tmp_path / DEFAULT_CONFIG_FILENAME
    config_file.write_text("")
    assert load_config_file(str(config_file)) == {}


@pytest.mark.parametrize("content, message", [
    ("mode: [unclosed", "Error parsing YAML"),
    ("- just\n- a list\n", "must contain a mapping"),
    ("mode: sideways\n", "validation error"),
    ("unknown_key: 1\n", "validation error"),
])
def test_invalid_config_files(tmp_path, content, message):
    config_file = tmp_path / DEFAULT_CONFIG_FILENAME
    config_file.write_text(content)
    with pytest.raises(ConfigError, match=message):
        load_validator_config(str(config_file))
