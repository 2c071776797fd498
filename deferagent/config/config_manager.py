"""
Configuration Manager module for the deferral agent.

Administrators deliver settings through a managed preferences file (a
configuration profile payload). Every key is optional. The file is read fresh
on each invocation and turned into an immutable AgentSettings value.
"""
import os
import json
import plistlib
import platform
from dataclasses import dataclass
from typing import Any, Dict, Optional, Callable

from ..errors import ConfigurationError
from ..utils import get_logger
from ..utils.time_utils import convert_seconds

logger = get_logger(__name__)

BUNDLE_ID = "io.deferagent.install-or-defer"
DEFAULT_CONFIG_PATH = f"/Library/Managed Preferences/{BUNDLE_ID}.plist"
DEFAULT_STATE_DIR = "/Library/Application Support/deferagent"
DIAGNOSTIC_LOG_PATH = "/var/log/install-or-defer.log"
DEFAULT_MESSAGING_LOGO = "/System/Library/PreferencePanes/SoftwareUpdate.prefPane/Contents/Resources/SoftwareUpdate.icns"

DEFAULT_INSTALL_BUTTON = "Install"
DEFAULT_DEFER_BUTTON = "Defer"
DEFAULT_SUPPORT_CONTACT = "IT"
DEFAULT_DEFERRAL_PERIOD = 60 * 60 * 4
DEFAULT_HARD_RESTART_DELAY = 60 * 5
DEFAULT_MAX_DEFERRAL_TIME = 60 * 60 * 24 * 3
DEFAULT_PROMPT_TIMEOUT = 60 * 60
DEFAULT_UPDATE_DELAY = 60 * 10

# Hardware that cannot run softwareupdate unattended.
MANUAL_ONLY_ARCHITECTURES = ('arm64',)


class ConfigManager:
    """
    Loads the managed preferences file and gives key access to its raw values.
    """

    def __init__(self, config_path: Optional[str]):
        """
        Initializes the ConfigManager by loading the configuration file.

        A missing file is not an error: all settings have defaults.

        :param config_path: The path to the managed preferences file (.plist or .json)
        :type config_path: Optional[str]
        :raises ConfigurationError: if the file exists but cannot be parsed
        """
        self._config_path = config_path
        self._config_data: Dict[str, Any] = {}

        if self._config_path is None:
            logger.debug("ConfigManager initialized without a config path. Using defaults.")
        elif not os.path.exists(self._config_path):
            logger.info(f"No managed configuration found at {self._config_path}. Using defaults.")
        else:
            self._load_config()
            logger.info(f"Configuration loaded from: {self._config_path}")

    def _load_config(self):
        """
        Loads the configuration data from a property list or JSON file.

        :raises ConfigurationError: if the file cannot be read or is not a dictionary
        """
        try:
            if self._config_path.endswith('.json'):
                with open(self._config_path, 'r', encoding='utf-8') as f:
                    data = json.load(f)
            else:
                with open(self._config_path, 'rb') as f:
                    data = plistlib.load(f)
        except (json.JSONDecodeError, plistlib.InvalidFileException, ValueError) as e:
            logger.critical(f"Error parsing config file {self._config_path}: {e}")
            raise ConfigurationError(f"Invalid configuration file {self._config_path}: {e}") from e
        except (IOError, OSError) as e:
            logger.critical(f"Error reading config file {self._config_path}: {e}")
            raise ConfigurationError(f"Could not read configuration file: {e}") from e

        if not isinstance(data, dict):
            raise ConfigurationError("Configuration file content is not a dictionary.")
        self._config_data = data

    def get(self, key: str, default: Any = None) -> Any:
        """
        Retrieves a raw configuration value.

        :param key: The preference key, e.g. ``DeferralPeriod``
        :type key: str
        :param default: The value to return if the key is not set
        :type default: Any
        :return: The configuration value or the default value
        :rtype: Any
        """
        value = self._config_data.get(key, default)
        if value is default:
            logger.debug(f"Configuration key not set: '{key}'.")
        return value

    @property
    def all_config(self) -> Dict[str, Any]:
        """
        Returns a copy of the entire loaded configuration dictionary.

        :return: Copy of configuration dictionary
        :rtype: Dict[str, Any]
        """
        return dict(self._config_data)


def _as_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        logger.warning(f"Ignoring non-integer configuration value: {value!r}")
        return None


def _as_bool(value: Any) -> Optional[bool]:
    """Parses profile booleans, which may arrive as bool, 0/1 or text."""
    if value is None:
        return None
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in ('1', 'true', 'yes'):
        return True
    if text in ('0', 'false', 'no'):
        return False
    logger.warning(f"Ignoring non-boolean configuration value: {value!r}")
    return None


def _as_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def diagnostic_log_path(config: ConfigManager) -> Optional[str]:
    """Path of the diagnostic log when DiagnosticLog is enabled, else None (system log)."""
    return DIAGNOSTIC_LOG_PATH if _as_bool(config.get('DiagnosticLog')) else None


def workday_window_error(config: ConfigManager) -> Optional[str]:
    """
    Checks the workday window keys.

    :param config: Loaded configuration
    :type config: ConfigManager
    :return: A description of the problem, or None when the window is valid or unset
    :rtype: Optional[str]
    """
    start_hour = _as_int(config.get('WorkdayStartHour'))
    end_hour = _as_int(config.get('WorkdayEndHour'))
    if start_hour is None or end_hour is None:
        return None
    if 0 <= start_hour < end_hour < 24:
        return None
    return (
        f"There is a logical disconnect between the workday start hour ({start_hour}) "
        f"and end hour ({end_hour}). Values must satisfy start hour >= 0, "
        f"start hour < end hour, end hour < 24."
    )


@dataclass(frozen=True)
class AgentSettings:
    """
    Validated settings for one invocation.

    All durations are in seconds. ``workday_start_hour`` and
    ``workday_end_hour`` are either both set or both None.
    """
    install_button_label: str = DEFAULT_INSTALL_BUTTON
    defer_button_label: str = DEFAULT_DEFER_BUTTON
    disable_post_install_alert: bool = False
    messaging_logo: str = DEFAULT_MESSAGING_LOGO
    support_contact: str = DEFAULT_SUPPORT_CONTACT
    deferral_period: int = DEFAULT_DEFERRAL_PERIOD
    hard_restart_delay: int = DEFAULT_HARD_RESTART_DELAY
    max_deferral_time: int = DEFAULT_MAX_DEFERRAL_TIME
    prompt_timeout: int = DEFAULT_PROMPT_TIMEOUT
    skip_deferral: bool = False
    update_delay: int = DEFAULT_UPDATE_DELAY
    workday_start_hour: Optional[int] = None
    workday_end_hour: Optional[int] = None
    diagnostic_log: bool = False
    manual_updates: bool = False

    @property
    def has_workday(self) -> bool:
        return self.workday_start_hour is not None and self.workday_end_hour is not None

    @property
    def diagnostic_log_path(self) -> Optional[str]:
        return DIAGNOSTIC_LOG_PATH if self.diagnostic_log else None

    @classmethod
    def from_config(cls, config: ConfigManager, platform_arch: Optional[str] = None,
                    file_exists: Callable[[str], bool] = os.path.isfile) -> 'AgentSettings':
        """
        Applies defaults and validation rules to the raw managed preferences.

        :param config: Loaded configuration
        :type config: ConfigManager
        :param platform_arch: Machine architecture; defaults to ``platform.machine()``
        :type platform_arch: Optional[str]
        :param file_exists: Predicate used to validate the messaging logo path
        :type file_exists: Callable[[str], bool]
        :return: Immutable settings
        :rtype: AgentSettings
        :raises ConfigurationError: if the workday window is inconsistent
        """
        if platform_arch is None:
            platform_arch = platform.machine()

        install_label = _as_text(config.get('InstallButtonLabel'))
        if install_label is None:
            logger.info("Install button label undefined by administrator. Using default value.")
            install_label = DEFAULT_INSTALL_BUTTON
        defer_label = _as_text(config.get('DeferButtonLabel'))
        if defer_label is None:
            logger.info("Defer button label undefined by administrator. Using default value.")
            defer_label = DEFAULT_DEFER_BUTTON

        skip_deferral = bool(_as_bool(config.get('SkipDeferral')))
        if skip_deferral:
            max_deferral = 0
        else:
            custom = _as_int(config.get('MaxDeferralTime'))
            max_deferral = custom if custom is not None and custom > 0 else DEFAULT_MAX_DEFERRAL_TIME

        custom = _as_int(config.get('DeferralPeriod'))
        if custom is not None and 0 < custom < max_deferral:
            deferral_period = custom
        else:
            deferral_period = DEFAULT_DEFERRAL_PERIOD

        custom = _as_int(config.get('PromptTimeout'))
        if custom is not None and 0 < custom < deferral_period:
            prompt_timeout = custom
        else:
            prompt_timeout = DEFAULT_PROMPT_TIMEOUT

        custom = _as_int(config.get('UpdateDelay'))
        update_delay = custom if custom is not None and custom > 0 else DEFAULT_UPDATE_DELAY

        custom = _as_int(config.get('HardRestartDelay'))
        hard_restart_delay = custom if custom is not None and custom > 0 else DEFAULT_HARD_RESTART_DELAY

        workday_error = workday_window_error(config)
        if workday_error:
            raise ConfigurationError(workday_error)
        start_hour = _as_int(config.get('WorkdayStartHour'))
        end_hour = _as_int(config.get('WorkdayEndHour'))
        if start_hour is None or end_hour is None:
            start_hour = end_hour = None

        if platform_arch in MANUAL_ONLY_ARCHITECTURES:
            manual_updates = True
        else:
            manual_updates = bool(_as_bool(config.get('ManualUpdates')))

        logo = _as_text(config.get('MessagingLogo'))
        if logo is None or not file_exists(logo):
            logger.info("Messaging logo undefined by administrator, or not found at specified path. Using default value.")
            logo = DEFAULT_MESSAGING_LOGO

        support_contact = _as_text(config.get('SupportContact')) or DEFAULT_SUPPORT_CONTACT

        settings = cls(
            install_button_label=install_label,
            defer_button_label=defer_label,
            disable_post_install_alert=bool(_as_bool(config.get('DisablePostInstallAlert'))),
            messaging_logo=logo,
            support_contact=support_contact,
            deferral_period=deferral_period,
            hard_restart_delay=hard_restart_delay,
            max_deferral_time=max_deferral,
            prompt_timeout=prompt_timeout,
            skip_deferral=skip_deferral,
            update_delay=update_delay,
            workday_start_hour=start_hour,
            workday_end_hour=end_hour,
            diagnostic_log=bool(_as_bool(config.get('DiagnosticLog'))),
            manual_updates=manual_updates,
        )
        settings.log_summary()
        return settings

    def log_summary(self):
        logger.info(f"Maximum deferral time: {convert_seconds(self.max_deferral_time)}")
        logger.info(f"Deferral period: {convert_seconds(self.deferral_period)}")
        logger.info(f"Prompt timeout: {convert_seconds(self.prompt_timeout)}")
        logger.info(f"Update delay: {convert_seconds(self.update_delay)}")
        logger.info(f"Hard restart delay: {convert_seconds(self.hard_restart_delay)}")
        if self.has_workday:
            logger.info(f"Workday: {self.workday_start_hour}:00-{self.workday_end_hour}:00")
        logger.info(f"Manual updates: {self.manual_updates}")
        logger.info(f"Messaging logo: {self.messaging_logo}")
        logger.info(f"Support contact: {self.support_contact}")
