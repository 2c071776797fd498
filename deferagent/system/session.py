"""
Actions performed in the context of the logged-in console user.
"""
import os
import pwd
from dataclasses import dataclass
from typing import Callable, Optional

import psutil

from ..utils import get_logger, run_command, CommandResult

logger = get_logger(__name__)

CONSOLE_DEVICE = "/dev/console"
SOFTWARE_UPDATE_PANE = "/System/Library/PreferencePanes/SoftwareUpdate.prefPane"
PROTECTED_PROCESS_NAME = "loginwindow"

ACTION_RESTART = "restart"
ACTION_SHUT_DOWN = "shut down"

SHUTDOWN_BINARY = "/sbin/shutdown"
SHUTDOWN_FLAGS = {ACTION_RESTART: "-r", ACTION_SHUT_DOWN: "-h"}


@dataclass(frozen=True)
class ConsoleUser:
    name: str
    uid: int


def get_console_user(device: str = CONSOLE_DEVICE) -> Optional[ConsoleUser]:
    """
    Identifies the user owning the console.

    :param device: Console device whose owner is the logged-in user
    :type device: str
    :return: The console user, or None if it cannot be determined
    :rtype: Optional[ConsoleUser]
    """
    try:
        uid = os.stat(device).st_uid
    except OSError as e:
        logger.warning(f"Cannot determine the console user from {device}: {e}")
        return None
    try:
        name = pwd.getpwuid(uid).pw_name
    except KeyError:
        name = str(uid)
    return ConsoleUser(name=name, uid=uid)


class UserSession:
    """
    Restart requests, forced quits and UI launches for the console user.
    """

    def __init__(self, runner: Callable[..., CommandResult] = run_command,
                 user_lookup: Callable[[], Optional[ConsoleUser]] = get_console_user):
        self._runner = runner
        self._user_lookup = user_lookup

    def _current_user(self) -> Optional[ConsoleUser]:
        user = self._user_lookup()
        if user is None:
            logger.warning("No console user found.")
        return user

    def _run_as_user(self, user: ConsoleUser, args) -> CommandResult:
        return self._runner(["/bin/launchctl", "asuser", str(user.uid)] + list(args))

    def _system_power_action(self, action: str) -> bool:
        """Restarts or halts the machine directly; used when no user session can be asked."""
        logger.warning(f"No user is logged in to handle the {action} request. Forcing {action} with shutdown.")
        result = self._runner([SHUTDOWN_BINARY, SHUTDOWN_FLAGS.get(action, "-r"), "now"])
        if not result.success:
            logger.error(f"Could not force {action} (code {result.returncode}): {result.output}")
        return result.success

    def request_power_action(self, action: str = ACTION_RESTART) -> bool:
        """
        Asks the user's session to restart or shut down, as the Apple menu would.
        With nobody logged in, or only root at the console, the machine is
        restarted or halted with ``shutdown`` instead.

        :param action: ``restart`` or ``shut down``
        :type action: str
        :return: True if the request was delivered
        :rtype: bool
        """
        user = self._current_user()
        if user is None or user.uid == 0:
            return self._system_power_action(action)
        logger.info(f"Requesting {action} through the session of {user.name}...")
        result = self._run_as_user(
            user, ["/usr/bin/osascript", "-e", f'tell application "System Events" to {action}']
        )
        if not result.success:
            logger.warning(f"{action.capitalize()} request failed (code {result.returncode}): {result.output}")
        return result.success

    def force_quit_user_processes(self) -> int:
        """
        Kills every process of the console user except the login window.

        This clears applications that would otherwise hold up a restart. It is
        never done for root, which owns the console when nobody is logged in.

        :return: Number of processes signalled
        :rtype: int
        """
        user = self._current_user()
        if user is None:
            return 0
        if user.uid == 0:
            logger.warning("Console is owned by root. Skipping forced quit of user processes.")
            return 0

        killed = 0
        for proc in psutil.process_iter(['pid', 'name', 'uids']):
            try:
                info = proc.info
                uids = info.get('uids')
                if uids is None or uids.real != user.uid:
                    continue
                if info.get('name') == PROTECTED_PROCESS_NAME or info['pid'] == os.getpid():
                    continue
                proc.kill()
                killed += 1
            except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
                pass
        logger.info(f"Force quit {killed} processes owned by {user.name}.")
        return killed

    def open_software_update(self) -> bool:
        """Opens the Software Update preference pane in the user's session."""
        user = self._current_user()
        if user is None:
            return False
        logger.info("Opening System Preferences -> Software Update...")
        result = self._run_as_user(user, ["/usr/bin/open", SOFTWARE_UPDATE_PANE])
        if not result.success:
            logger.warning(f"Could not open Software Update (code {result.returncode}): {result.output}")
        return result.success
