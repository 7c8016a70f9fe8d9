"""Tests for Config, UpdateSettings and duration parsing"""

import os

import pytest
import yaml

from winupdate.core.config import (
    Config,
    UpdateSettings,
    parse_duration,
    DEFAULT_UPDATE_RETRY_ATTEMPTS,
)
from winupdate.core.errors import ConfigurationError

CATEGORY_ID = "0fa1201d-4330-4fa8-8ae9-b877473b6441"


def write_config(temp_dir, data, name="config.yaml"):
    config_file = os.path.join(temp_dir, name)
    with open(config_file, "w") as f:
        yaml.dump(data, f)
    return config_file


class TestParseDuration:
    """Test duration strings"""

    @pytest.mark.parametrize("value,expected", [
        ("30s", 30.0),
        ("5m", 300.0),
        ("4h", 14400.0),
        ("1h30m", 5400.0),
        ("200ms", 0.2),
        ("1.5s", 1.5),
        ("90", 90.0),
        (45, 45.0),
        (0.5, 0.5),
    ])
    def test_valid(self, value, expected):
        assert parse_duration(value) == pytest.approx(expected)

    @pytest.mark.parametrize("value", ["", "abc", "5x", "m5", "5m junk", True, None, [1]])
    def test_invalid(self, value):
        with pytest.raises(ConfigurationError):
            parse_duration(value)


class TestUpdateSettings:
    """Test defaults and validation of the update section"""

    def test_defaults(self):
        settings = UpdateSettings.from_dict(None)

        assert settings.upload_retry_attempts == 5
        assert settings.upload_retry_delay == 30
        assert settings.upload_timeout == 300
        assert settings.update_retry_attempts == DEFAULT_UPDATE_RETRY_ATTEMPTS == 3
        assert settings.update_timeout == 4 * 3600
        assert settings.restart_timeout == 3600
        assert settings.disable_restart is False
        assert settings.cleanup_script is True

    def test_non_positive_values_take_defaults(self):
        settings = UpdateSettings.from_dict({
            "upload_retry_attempts": 0,
            "update_retry_attempts": -2,
            "update_timeout": "0s",
        })
        assert settings.upload_retry_attempts == 5
        assert settings.update_retry_attempts == 3
        assert settings.update_timeout == 4 * 3600

    def test_durations_parsed(self):
        settings = UpdateSettings.from_dict({"upload_retry_delay": "10s", "update_timeout": "2h"})
        assert settings.upload_retry_delay == 10
        assert settings.update_timeout == 7200

    def test_install_all_when_nothing_selected(self):
        assert UpdateSettings.from_dict({}).install_all is True

    def test_install_all_not_forced_with_selection(self):
        settings = UpdateSettings.from_dict({"install_important": True})
        assert settings.install_all is False
        assert settings.install_important is True

    def test_category_ids_must_be_uuids(self):
        with pytest.raises(ConfigurationError) as exc_info:
            UpdateSettings.from_dict({"category_ids": [CATEGORY_ID, "not-a-uuid"]})
        assert "not-a-uuid" in str(exc_info.value)

    def test_errors_accumulated(self):
        """Test that every invalid value is reported at once"""
        with pytest.raises(ConfigurationError) as exc_info:
            UpdateSettings.from_dict({
                "category_ids": ["bad"],
                "upload_timeout": "soon",
                "disable_restart": "yes",
            })
        message = str(exc_info.value)
        assert "bad" in message
        assert "upload_timeout" in message
        assert "disable_restart" in message

    def test_empty_cab_file_rejected(self):
        with pytest.raises(ConfigurationError):
            UpdateSettings.from_dict({"cab_files": ["  "]})

    def test_script_args(self):
        settings = UpdateSettings.from_dict({
            "category_ids": [CATEGORY_ID],
            "cab_files": ["C:/updates/kb1.cab"],
            "include_hidden": True,
        })
        assert settings.script_args() == [
            f"-CategoryIDs '{CATEGORY_ID}'",
            "-CabFiles 'C:/updates/kb1.cab'",
            "-IncludeHidden",
        ]

    def test_policies_are_separate(self):
        settings = UpdateSettings.from_dict({"upload_retry_attempts": 7, "update_retry_attempts": 2})
        upload = settings.upload_policy()
        update = settings.update_policy()

        assert upload.max_attempts == 7
        assert upload.overall_timeout == 300
        assert upload.delay_for(1) == 30
        assert update.max_attempts == 2
        assert update.overall_timeout == 4 * 3600
        assert update.delay_for(1) == 10

    def test_restart_policy_covers_timeout(self):
        policy = UpdateSettings.from_dict({"restart_timeout": "60s"}).restart_policy(check_delay=10)
        assert policy.overall_timeout == 60
        assert policy.max_attempts == 7

    def test_settings_are_immutable(self):
        settings = UpdateSettings.from_dict({})
        with pytest.raises(AttributeError):
            settings.update_retry_attempts = 10


class TestConfigFile:
    """Test loading the YAML configuration file"""

    def test_targets_merge_global_options(self, temp_dir):
        config_file = write_config(temp_dir, {
            "transport": {"type": "ssh", "options": {"user": "admin", "password": "global"}},
            "targets": [
                {"host": "win-01"},
                {"host": "win-02", "user": "ops", "port": 2222, "ssh_options": {"password": "local"}},
                "win-03",
            ],
        })

        targets = Config(config_file).targets

        assert [t.host for t in targets] == ["win-01", "win-02", "win-03"]
        assert targets[0].user == "admin"
        assert targets[0].ssh_options["password"] == "global"
        assert targets[1].user == "ops"
        assert targets[1].port == 2222
        assert targets[1].ssh_options["password"] == "local"

    def test_target_without_host_skipped(self, temp_dir):
        config_file = write_config(temp_dir, {"targets": [{"user": "x"}, {"host": "win-01"}]})
        assert [t.host for t in Config(config_file).targets] == ["win-01"]

    def test_update_section(self, temp_dir):
        config_file = write_config(temp_dir, {
            "targets": ["win-01"],
            "update": {"update_retry_attempts": 5, "update_timeout": "1h"},
        })

        settings = Config(config_file).update_settings
        assert settings.update_retry_attempts == 5
        assert settings.update_timeout == 3600

    def test_environment_expansion(self, temp_dir, monkeypatch):
        monkeypatch.setenv("WIN_HOST", "win-42")
        config_file = write_config(temp_dir, {
            "env": {"TIMEOUT": "2h"},
            "targets": [{"host": "$WIN_HOST"}],
            "update": {"update_timeout": "${TIMEOUT}", "upload_timeout": "${UPLOAD:-10m}"},
        })

        config = Config(config_file)
        assert config.targets[0].host == "win-42"
        assert config.update_settings.update_timeout == 7200
        assert config.update_settings.upload_timeout == 600

    def test_env_files(self, temp_dir):
        env_file = os.path.join(temp_dir, ".env")
        with open(env_file, "w") as f:
            f.write("# comment\nexport WIN_PASSWORD='s3cret'\nBROKEN LINE\n")
        config_file = write_config(temp_dir, {
            "transport": {"options": {"password": "$WIN_PASSWORD"}},
            "targets": ["win-01"],
        })

        config = Config(config_file, env_files=[env_file])
        assert config.targets[0].ssh_options["password"] == "s3cret"

    def test_required_variable_missing(self, temp_dir, monkeypatch):
        monkeypatch.delenv("MISSING_VAR", raising=False)
        config_file = write_config(temp_dir, {"targets": [{"host": "${MISSING_VAR:?host required}"}]})

        with pytest.raises(ConfigurationError):
            Config(config_file)

    def test_validate(self, temp_dir):
        assert Config(write_config(temp_dir, {"targets": ["win-01"]})).validate() is True

    def test_validate_requires_targets_for_ssh(self, temp_dir):
        assert Config(write_config(temp_dir, {"transport": {"type": "ssh"}})).validate() is False

    def test_validate_local_needs_no_targets(self, temp_dir):
        assert Config(write_config(temp_dir, {"transport": {"type": "local"}})).validate() is True

    def test_validate_unknown_transport(self, temp_dir):
        config_file = write_config(temp_dir, {"transport": {"type": "winrm"}, "targets": ["win-01"]})
        assert Config(config_file).validate() is False

    def test_validate_bad_update_section(self, temp_dir):
        config_file = write_config(temp_dir, {"targets": ["win-01"], "update": {"category_ids": ["x"]}})
        assert Config(config_file).validate() is False

    def test_validate_missing_script(self, temp_dir):
        config_file = write_config(temp_dir, {
            "targets": ["win-01"],
            "update": {"script": os.path.join(temp_dir, "missing.ps1")},
        })
        assert Config(config_file).validate() is False
