"""
Wrapper around the platform ``softwareupdate`` tool.

Checks for pending mandatory updates, installs them, and resets the update
daemon so that repeated checks return fresh results.
"""
import os
import re
import time
import plistlib
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Tuple

from ..utils import get_logger, run_command, CommandResult

logger = get_logger(__name__)

SOFTWAREUPDATE_BINARY = "/usr/sbin/softwareupdate"
SW_VERS_BINARY = "/usr/bin/sw_vers"
SOFTWAREUPDATE_PREFS = "/Library/Preferences/com.apple.SoftwareUpdate.plist"
SOFTWAREUPDATED_SERVICE = "system/com.apple.softwareupdated"
DAEMON_RESET_WAIT_SEC = 30

RESTART_PATTERN = re.compile(r"Action: restart|\[restart\]")
RECOMMENDED_PATTERN = re.compile(r"Recommended: YES|\[recommended\]")

SCOPE_ALL = "all"
SCOPE_RECOMMENDED = "recommended"


@dataclass(frozen=True)
class UpdateInventory:
    """
    Result of one check for pending updates.

    :ivar pending: True if any recommended or restart-requiring update is pending
    :ivar restart_required: True if at least one pending update needs a restart
    :ivar titles: Display names of the pending updates
    :ivar raw_output: Unparsed output of the check
    """
    pending: bool
    restart_required: bool = False
    titles: Tuple[str, ...] = field(default_factory=tuple)
    raw_output: str = ""

    @property
    def scope(self) -> str:
        """Which updates to install: all of them when a restart is needed, else recommended ones."""
        return SCOPE_ALL if self.restart_required else SCOPE_RECOMMENDED


def parse_update_titles(output: str) -> List[str]:
    """
    Extracts update display names from ``softwareupdate --list`` output.

    Newer releases print ``Title: <name>, Version: <version>, ...`` lines. The
    version is appended unless any title mentions macOS, since macOS titles
    already carry their version. Older releases print
    ``<name> (<version>), <size>K [recommended]`` lines instead.

    :param output: Raw output of the list command
    :type output: str
    :return: Display names in the order listed
    :rtype: List[str]
    """
    title_lines = [line.strip() for line in output.splitlines() if "Title:" in line]
    if title_lines:
        include_version = "macOS" not in output
        titles = []
        for line in title_lines:
            fields = re.split(r"[:,]", line)
            name = fields[1].strip() if len(fields) > 1 else ""
            version = fields[3].strip() if len(fields) > 3 else ""
            if include_version and version:
                titles.append(f"{name} {version}")
            elif name:
                titles.append(name)
        return titles

    titles = []
    for line in output.splitlines():
        if "recommended" not in line:
            continue
        parts = re.split(r"[()]", line)
        name = parts[0].strip()
        version = parts[1].strip() if len(parts) > 1 else ""
        titles.append(f"{name} {version}".strip())
    return titles


def parse_inventory(output: str) -> UpdateInventory:
    """
    Classifies ``softwareupdate --list`` output.

    :param output: Raw output of the list command
    :type output: str
    :return: The parsed inventory
    :rtype: UpdateInventory
    """
    restart_required = bool(RESTART_PATTERN.search(output))
    recommended = bool(RECOMMENDED_PATTERN.search(output))
    if not (restart_required or recommended):
        return UpdateInventory(pending=False, raw_output=output)
    return UpdateInventory(
        pending=True,
        restart_required=restart_required,
        titles=tuple(parse_update_titles(output)),
        raw_output=output
    )


def parse_os_version(text: str) -> Tuple[int, int]:
    """Parses ``13.4.1`` into ``(13, 4)``; missing parts count as zero."""
    numbers = [int(part) for part in re.findall(r"\d+", text or "")[:2]]
    while len(numbers) < 2:
        numbers.append(0)
    return numbers[0], numbers[1]


def current_os_version(runner: Callable[..., CommandResult] = run_command) -> Tuple[int, int]:
    result = runner([SW_VERS_BINARY, "-productVersion"])
    if not result.success:
        logger.warning(f"Could not determine the OS version: {result.output}")
        return 0, 0
    return parse_os_version(result.stdout)


class SoftwareUpdateProbe:
    """
    Checks for and applies updates through ``softwareupdate``.
    """

    def __init__(self, runner: Callable[..., CommandResult] = run_command,
                 sleep: Callable[[float], None] = time.sleep,
                 os_version: Optional[Tuple[int, int]] = None,
                 prefs_path: str = SOFTWAREUPDATE_PREFS):
        """
        Initialize the probe.

        :param runner: Function used to run external commands
        :param sleep: Function used to wait for the update daemon to restart
        :param os_version: (major, minor) OS version; looked up when None
        :type os_version: Optional[Tuple[int, int]]
        :param prefs_path: Path to the update daemon's preferences file
        :type prefs_path: str
        """
        self._runner = runner
        self._sleep = sleep
        self._os_version = os_version
        self.prefs_path = prefs_path

    @property
    def os_version(self) -> Tuple[int, int]:
        if self._os_version is None:
            self._os_version = current_os_version(self._runner)
        return self._os_version

    def read_catalog_url(self) -> Optional[str]:
        """Reads a custom (beta) catalog URL from the update preferences, if one is set."""
        try:
            with open(self.prefs_path, 'rb') as f:
                prefs = plistlib.load(f)
        except FileNotFoundError:
            return None
        except (OSError, ValueError, plistlib.InvalidFileException) as e:
            logger.warning(f"Could not read {self.prefs_path}: {e}")
            return None
        catalog_url = prefs.get("CatalogURL") if isinstance(prefs, dict) else None
        return catalog_url or None

    def reset_daemon(self, wait: float = DAEMON_RESET_WAIT_SEC) -> bool:
        """
        Clears cached update check data and restarts ``softwareupdated``.

        Only needed on macOS 11 and later, where repeated checks otherwise return
        stale results. A custom catalog URL survives the reset.

        :param wait: Seconds to wait after the restart
        :type wait: float
        :return: True if a reset was performed
        :rtype: bool
        """
        if self.os_version[0] < 11:
            logger.debug("Update daemon reset not needed on this OS version.")
            return False

        catalog_url = self.read_catalog_url()
        logger.info("Deleting cached update check data...")
        try:
            os.remove(self.prefs_path)
        except FileNotFoundError:
            logger.debug(f"{self.prefs_path} already absent.")
        except OSError as e:
            logger.warning(f"Could not delete {self.prefs_path}: {e}")

        if catalog_url:
            result = self._runner(["/usr/bin/defaults", "write", self.prefs_path,
                                   "CatalogURL", "-string", catalog_url])
            if result.success:
                logger.info("Restored macOS beta channel catalog URL.")
            else:
                logger.warning(f"Failed to restore catalog URL: {result.output}")

        logger.info("Restarting com.apple.softwareupdated system service...")
        result = self._runner(["/bin/launchctl", "kickstart", "-k", SOFTWAREUPDATED_SERVICE])
        if not result.success:
            logger.warning(f"Failed to restart softwareupdated: {result.output}")
        self._sleep(wait)
        return True

    def list_pending(self, refresh: bool = False) -> UpdateInventory:
        """
        Checks for pending recommended updates.

        :param refresh: Reset the update daemon before checking
        :type refresh: bool
        :return: The pending updates
        :rtype: UpdateInventory
        """
        if refresh:
            self.reset_daemon()
        logger.info("Checking for pending system updates...")
        result = self._runner([SOFTWAREUPDATE_BINARY, "--list"])
        if not result.success:
            logger.warning(f"softwareupdate --list exited with code {result.returncode}")
        inventory = parse_inventory(result.output)
        if inventory.pending:
            logger.info(f"Pending updates ({inventory.scope}): {', '.join(inventory.titles) or 'unnamed'}")
        else:
            logger.info("No recommended updates available.")
        return inventory

    def install(self, scope: str, restart: bool) -> CommandResult:
        """
        Installs pending updates. Blocks until ``softwareupdate`` finishes.

        :param scope: ``all`` or ``recommended``
        :type scope: str
        :param restart: Whether softwareupdate may restart the machine itself
        :type restart: bool
        :return: The result of the install command
        :rtype: CommandResult
        """
        args = [SOFTWAREUPDATE_BINARY, "--install", f"--{scope}"]
        if restart:
            args.append("--restart")
        args.append("--no-scan")
        logger.info(f"Installing {scope} Apple system updates...")
        result = self._runner(args, timeout=None)
        if result.success:
            logger.info("Finished installing Apple updates.")
        else:
            logger.warning(f"softwareupdate --install exited with code {result.returncode}: {result.output}")
        return result
