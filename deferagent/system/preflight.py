"""
Environment checks performed before the agent touches any state.
"""
import os
import platform
import plistlib
from typing import Callable, List, Optional, Tuple

import requests

from ..config.config_manager import ConfigManager, workday_window_error
from ..errors import PreflightError
from ..utils import get_logger, run_command, CommandResult
from ..utils.time_utils import convert_seconds
from .software_update import current_os_version

logger = get_logger(__name__)

JAMF_HELPER_PATH = "/Library/Application Support/JAMF/bin/jamfHelper.app/Contents/MacOS/jamfHelper"
JAMF_BINARY_PATH = "/usr/local/bin/jamf"
APPLE_CATALOG_URL = "https://swscan.apple.com"
MANAGED_SOFTWAREUPDATE_PREFS = "/Library/Managed Preferences/com.apple.SoftwareUpdate.plist"
FDESETUP_BINARY = "/usr/bin/fdesetup"
MINIMUM_OS_VERSION = (10, 14)
REQUEST_TIMEOUT_SEC = 10


class PreflightChecker:
    """
    Runs every environment check and reports all failures at once.
    """

    def __init__(self, config: ConfigManager,
                 runner: Callable[..., CommandResult] = run_command,
                 http_head: Callable[..., requests.Response] = requests.head,
                 os_version: Optional[Tuple[int, int]] = None,
                 jamf_helper_path: str = JAMF_HELPER_PATH,
                 jamf_binary_path: str = JAMF_BINARY_PATH,
                 managed_prefs_path: str = MANAGED_SOFTWAREUPDATE_PREFS,
                 start_interval_reader: Optional[Callable[[], Optional[int]]] = None):
        """
        Initialize the checker.

        :param config: Loaded managed configuration
        :type config: ConfigManager
        :param runner: Function used to run external commands
        :param http_head: Function used for HTTP reachability checks
        :param os_version: (major, minor) OS version; looked up when None
        :type os_version: Optional[Tuple[int, int]]
        :param jamf_helper_path: Path to the prompt helper binary
        :type jamf_helper_path: str
        :param jamf_binary_path: Path to the management agent binary
        :type jamf_binary_path: str
        :param managed_prefs_path: Managed software update preferences file
        :type managed_prefs_path: str
        :param start_interval_reader: Returns the scheduler interval for the retry message
        """
        self.config = config
        self._runner = runner
        self._http_head = http_head
        self._os_version = os_version
        self.jamf_helper_path = jamf_helper_path
        self.jamf_binary_path = jamf_binary_path
        self.managed_prefs_path = managed_prefs_path
        self._start_interval_reader = start_interval_reader

    @property
    def os_version(self) -> Tuple[int, int]:
        if self._os_version is None:
            self._os_version = current_os_version(self._runner)
        return self._os_version

    def check_jamf_helper(self) -> Optional[str]:
        if not os.access(self.jamf_helper_path, os.X_OK):
            return "The jamfHelper binary must be present in order to run this agent."
        return None

    def check_jamf_binary(self) -> Optional[str]:
        if not os.path.exists(self.jamf_binary_path):
            return "The jamf binary could not be found."
        return None

    def check_os_version(self) -> Optional[str]:
        major, minor = self.os_version
        if (major, minor) < MINIMUM_OS_VERSION:
            return (f"This agent supports macOS {MINIMUM_OS_VERSION[0]}.{MINIMUM_OS_VERSION[1]} and later, "
                    f"but this Mac is running macOS {major}.{minor}, unable to proceed.")
        return None

    def _read_managed_catalog_url(self) -> Optional[str]:
        try:
            with open(self.managed_prefs_path, 'rb') as f:
                prefs = plistlib.load(f)
        except FileNotFoundError:
            return None
        except (OSError, ValueError, plistlib.InvalidFileException) as e:
            logger.warning(f"Could not read {self.managed_prefs_path}: {e}")
            return None
        url = prefs.get("CatalogURL") if isinstance(prefs, dict) else None
        return url or None

    def check_network(self) -> Optional[str]:
        """
        Checks that Apple's update catalog is reachable, and on releases before
        macOS 11 that a managed custom catalog answers with 200 OK.

        :return: A failure description, or None when the checks pass
        :rtype: Optional[str]
        """
        try:
            self._http_head(APPLE_CATALOG_URL, timeout=REQUEST_TIMEOUT_SEC)
        except requests.exceptions.RequestException as e:
            logger.debug(f"Reachability check for {APPLE_CATALOG_URL} failed: {e}")
            return "No connection to the Internet."

        if self.os_version[0] >= 11:
            return None
        catalog_url = self._read_managed_catalog_url()
        if not catalog_url:
            return None
        headers = {'User-Agent': f"Darwin/{platform.release()}"}
        try:
            response = self._http_head(catalog_url, headers=headers, timeout=REQUEST_TIMEOUT_SEC,
                                       allow_redirects=True)
        except requests.exceptions.RequestException as e:
            logger.debug(f"Reachability check for {catalog_url} failed: {e}")
            return "Software update catalog can not be reached."
        if response.status_code != 200:
            return f"Software update catalog can not be reached (status {response.status_code})."
        return None

    def check_filevault(self) -> Optional[str]:
        result = self._runner([FDESETUP_BINARY, "status"])
        if "in progress" in result.output:
            return "FileVault encryption or decryption is in progress."
        return None

    def check_workday(self) -> Optional[str]:
        return workday_window_error(self.config)

    def run(self):
        """
        Runs every check.

        :raises PreflightError: listing every failed check
        """
        logger.info("Performing validation and error checking...")
        checks = (
            self.check_jamf_helper,
            self.check_jamf_binary,
            self.check_os_version,
            self.check_network,
            self.check_filevault,
            self.check_workday,
        )
        failures: List[str] = []
        for check in checks:
            failure = check()
            if failure:
                logger.error(f"ERROR: {failure}")
                failures.append(failure)

        if failures:
            retry_interval = self._start_interval_reader() if self._start_interval_reader else None
            if retry_interval:
                logger.error(f"Stopping due to errors, but will try again in {convert_seconds(retry_interval)}.")
            else:
                logger.error("Stopping due to errors.")
            raise PreflightError(failures, retry_interval)

        logger.info("Validation and error checking passed. Starting main process...")
