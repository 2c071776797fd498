import json
import plistlib

import pytest

from deferagent.config import AgentSettings, ConfigManager
from deferagent.config.config_manager import (
    DEFAULT_MESSAGING_LOGO,
    DIAGNOSTIC_LOG_PATH,
    diagnostic_log_path,
    workday_window_error,
)
from deferagent.errors import ConfigurationError


def _config(tmp_path, values, suffix=".json") -> ConfigManager:
    path = tmp_path / f"prefs{suffix}"
    if suffix == ".json":
        path.write_text(json.dumps(values), encoding="utf-8")
    else:
        path.write_bytes(plistlib.dumps(values))
    return ConfigManager(str(path))


def _settings(tmp_path, values, arch="x86_64", **kwargs) -> AgentSettings:
    return AgentSettings.from_config(_config(tmp_path, values), platform_arch=arch, **kwargs)


def test_missing_file_uses_defaults(tmp_path):
    config = ConfigManager(str(tmp_path / "absent.plist"))
    settings = AgentSettings.from_config(config, platform_arch="x86_64")

    assert config.all_config == {}
    assert settings.install_button_label == "Install"
    assert settings.defer_button_label == "Defer"
    assert settings.max_deferral_time == 259200
    assert settings.deferral_period == 14400
    assert settings.prompt_timeout == 3600
    assert settings.update_delay == 600
    assert settings.hard_restart_delay == 300
    assert settings.support_contact == "IT"
    assert settings.messaging_logo == DEFAULT_MESSAGING_LOGO
    assert not settings.manual_updates
    assert not settings.has_workday


def test_plist_values_are_applied(tmp_path):
    config = _config(tmp_path, {
        "InstallButtonLabel": "Update now",
        "DeferButtonLabel": "Later",
        "MaxDeferralTime": 86400,
        "DeferralPeriod": 7200,
        "PromptTimeout": 1800,
        "UpdateDelay": 120,
        "HardRestartDelay": 60,
        "SupportContact": "the help desk",
        "DisablePostInstallAlert": True,
    }, suffix=".plist")
    settings = AgentSettings.from_config(config, platform_arch="x86_64")

    assert settings.install_button_label == "Update now"
    assert settings.defer_button_label == "Later"
    assert settings.max_deferral_time == 86400
    assert settings.deferral_period == 7200
    assert settings.prompt_timeout == 1800
    assert settings.update_delay == 120
    assert settings.hard_restart_delay == 60
    assert settings.support_contact == "the help desk"
    assert settings.disable_post_install_alert


def test_unparseable_file_raises(tmp_path):
    path = tmp_path / "prefs.json"
    path.write_text("{not json", encoding="utf-8")

    with pytest.raises(ConfigurationError):
        ConfigManager(str(path))


def test_non_dictionary_file_raises(tmp_path):
    path = tmp_path / "prefs.json"
    path.write_text("[1, 2]", encoding="utf-8")

    with pytest.raises(ConfigurationError):
        ConfigManager(str(path))


def test_skip_deferral_zeroes_max_deferral(tmp_path):
    settings = _settings(tmp_path, {"SkipDeferral": True, "MaxDeferralTime": 86400})
    assert settings.skip_deferral
    assert settings.max_deferral_time == 0


def test_deferral_period_must_fit_inside_max_deferral(tmp_path):
    settings = _settings(tmp_path, {"MaxDeferralTime": 3600, "DeferralPeriod": 7200})
    assert settings.deferral_period == 14400


def test_prompt_timeout_must_be_shorter_than_deferral_period(tmp_path):
    settings = _settings(tmp_path, {"DeferralPeriod": 1800, "PromptTimeout": 1800})
    assert settings.prompt_timeout == 3600


@pytest.mark.parametrize("key", ["MaxDeferralTime", "UpdateDelay", "HardRestartDelay"])
@pytest.mark.parametrize("value", [0, -10, "soon"])
def test_invalid_durations_fall_back_to_defaults(tmp_path, key, value):
    defaults = AgentSettings()
    settings = _settings(tmp_path, {key: value})
    assert settings.max_deferral_time == defaults.max_deferral_time
    assert settings.update_delay == defaults.update_delay
    assert settings.hard_restart_delay == defaults.hard_restart_delay


def test_blank_labels_use_defaults(tmp_path):
    settings = _settings(tmp_path, {"InstallButtonLabel": "  ", "DeferButtonLabel": ""})
    assert settings.install_button_label == "Install"
    assert settings.defer_button_label == "Defer"


def test_apple_silicon_forces_manual_updates(tmp_path):
    assert _settings(tmp_path, {"ManualUpdates": False}, arch="arm64").manual_updates
    assert not _settings(tmp_path, {}, arch="x86_64").manual_updates
    assert _settings(tmp_path, {"ManualUpdates": "true"}, arch="x86_64").manual_updates


def test_missing_logo_falls_back_to_default(tmp_path):
    logo = "/Library/Branding/logo.png"
    assert _settings(tmp_path, {"MessagingLogo": logo},
                     file_exists=lambda path: False).messaging_logo == DEFAULT_MESSAGING_LOGO
    assert _settings(tmp_path, {"MessagingLogo": logo},
                     file_exists=lambda path: True).messaging_logo == logo


def test_workday_window(tmp_path):
    settings = _settings(tmp_path, {"WorkdayStartHour": 8, "WorkdayEndHour": 17})
    assert settings.has_workday
    assert (settings.workday_start_hour, settings.workday_end_hour) == (8, 17)


def test_half_configured_workday_is_ignored(tmp_path):
    settings = _settings(tmp_path, {"WorkdayStartHour": 8})
    assert not settings.has_workday
    assert settings.workday_end_hour is None


@pytest.mark.parametrize("start, end", [(17, 8), (8, 8), (-1, 17), (8, 24)])
def test_inconsistent_workday_is_rejected(tmp_path, start, end):
    config = _config(tmp_path, {"WorkdayStartHour": start, "WorkdayEndHour": end})

    assert workday_window_error(config) is not None
    with pytest.raises(ConfigurationError):
        AgentSettings.from_config(config, platform_arch="x86_64")


def test_diagnostic_log_path(tmp_path):
    assert diagnostic_log_path(_config(tmp_path, {"DiagnosticLog": True})) == DIAGNOSTIC_LOG_PATH
    assert diagnostic_log_path(_config(tmp_path, {})) is None
