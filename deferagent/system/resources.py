"""
Files and launchd jobs installed alongside the agent, and their removal.

Every operation here is idempotent: a file or job that is already gone is
treated as removed.
"""
import os
import plistlib
from typing import Callable, List, Optional

from ..config.config_manager import BUNDLE_ID
from ..utils import get_logger, run_command, move_if_present, CommandResult

logger = get_logger(__name__)

LAUNCH_DAEMONS_DIR = "/Library/LaunchDaemons"
CLEANUP_DIR = "/private/tmp/install-or-defer"
JAMF_BINARY = "/usr/local/bin/jamf"
DEFAULT_SCRIPT_PATH = "/Library/Scripts/install-or-defer"
LAUNCHCTL = "/bin/launchctl"


class AgentResources:
    """
    Manages the agent's LaunchDaemon, its helper job and installed files.
    """

    def __init__(self, bundle_id: str = BUNDLE_ID,
                 script_path: str = DEFAULT_SCRIPT_PATH,
                 launch_daemons_dir: str = LAUNCH_DAEMONS_DIR,
                 cleanup_dir: str = CLEANUP_DIR,
                 jamf_binary: str = JAMF_BINARY,
                 runner: Callable[..., CommandResult] = run_command):
        """
        Initialize the resource manager.

        :param bundle_id: Label of the agent's launchd job
        :type bundle_id: str
        :param script_path: Installed entry point that launchd runs
        :type script_path: str
        :param launch_daemons_dir: Directory holding the job definitions
        :type launch_daemons_dir: str
        :param cleanup_dir: Directory that receives removed files
        :type cleanup_dir: str
        :param jamf_binary: Management agent binary used for inventory refresh
        :type jamf_binary: str
        :param runner: Function used to run external commands
        """
        self.bundle_id = bundle_id
        self.helper_id = f"{bundle_id}_helper"
        self.script_path = script_path
        self.launch_daemon_path = os.path.join(launch_daemons_dir, f"{bundle_id}.plist")
        self.helper_launch_daemon_path = os.path.join(launch_daemons_dir, f"{self.helper_id}.plist")
        self.helper_script_path = f"{script_path}_helper.sh"
        self.cleanup_dir = cleanup_dir
        self.jamf_binary = jamf_binary
        self._runner = runner

    @property
    def installed_files(self) -> List[str]:
        return [
            self.launch_daemon_path,
            self.helper_launch_daemon_path,
            self.helper_script_path,
            self.script_path,
        ]

    def refresh_inventory(self) -> bool:
        """Asks the management agent to submit an inventory update."""
        logger.info("Updating Jamf Pro inventory...")
        result = self._runner([self.jamf_binary, "recon"])
        if not result.success:
            logger.warning(f"Inventory update failed (code {result.returncode}): {result.output}")
        return result.success

    def remove_files(self) -> int:
        """
        Moves installed files into the cleanup directory.

        :return: Number of files moved
        :rtype: int
        """
        logger.info("Cleaning up script resources...")
        return sum(1 for path in self.installed_files if move_if_present(path, self.cleanup_dir))

    def _is_job_loaded(self, label: str) -> bool:
        result = self._runner([LAUNCHCTL, "list"])
        if not result.success:
            return False
        return any(line.split("\t")[-1].strip() == label for line in result.stdout.splitlines())

    def _remove_job(self, label: str) -> bool:
        if not self._is_job_loaded(label):
            logger.debug(f"{label} is not loaded.")
            return False
        logger.info(f"Unloading {label} LaunchDaemon...")
        result = self._runner([LAUNCHCTL, "remove", label])
        if not result.success:
            logger.warning(f"Failed to unload {label} (code {result.returncode}): {result.output}")
        return result.success

    def unload_helper_job(self) -> bool:
        return self._remove_job(self.helper_id)

    def unload_main_job(self) -> bool:
        """Removes the agent's own job. launchd may terminate this process as a result."""
        return self._remove_job(self.bundle_id)

    def read_start_interval(self) -> Optional[int]:
        """
        Reads how often launchd runs the agent.

        :return: StartInterval in seconds, or None if unavailable
        :rtype: Optional[int]
        """
        try:
            with open(self.launch_daemon_path, 'rb') as f:
                job = plistlib.load(f)
        except FileNotFoundError:
            return None
        except (OSError, ValueError, plistlib.InvalidFileException) as e:
            logger.debug(f"Could not read {self.launch_daemon_path}: {e}")
            return None
        interval = job.get("StartInterval") if isinstance(job, dict) else None
        if isinstance(interval, int) and not isinstance(interval, bool) and interval > 0:
            return interval
        return None
