"""
Utility functions for the deferral agent.
"""
import os
import json
import shutil
import subprocess
from dataclasses import dataclass
from typing import Any, Dict, Optional, Sequence

from .logger import get_logger

logger = get_logger(__name__)

DEFAULT_COMMAND_TIMEOUT_SEC = 300


@dataclass(frozen=True)
class CommandResult:
    """Outcome of an external command run through :func:`run_command`."""
    args: Sequence[str]
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def success(self) -> bool:
        return self.returncode == 0

    @property
    def output(self) -> str:
        """stdout and stderr joined, matching what ``2>&1`` would capture."""
        return "\n".join(part for part in (self.stdout, self.stderr) if part)


def run_command(args: Sequence[str], timeout: Optional[float] = DEFAULT_COMMAND_TIMEOUT_SEC,
                env: Optional[Dict[str, str]] = None) -> CommandResult:
    """
    Run an external command without a shell and capture its output.

    Failures to start the command are reported through the exit code the
    shell would have used (127 not found, 126 permission denied, 124 timeout)
    instead of raising.

    :param args: Command and arguments
    :type args: Sequence[str]
    :param timeout: Seconds before the command is abandoned, or None to wait forever
    :type timeout: Optional[float]
    :param env: Optional environment for the child process
    :type env: Optional[Dict[str, str]]
    :return: The captured result
    :rtype: CommandResult
    """
    args = list(args)
    try:
        process = subprocess.run(
            args,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            errors='replace',
            timeout=timeout,
            check=False,
            env=env
        )
    except subprocess.TimeoutExpired:
        logger.error(f"Command timed out after {timeout} seconds: {args[0]}")
        return CommandResult(args, 124, "", f"Command timed out after {timeout} seconds.")
    except FileNotFoundError:
        logger.error(f"Command not found: '{args[0]}'")
        return CommandResult(args, 127, "", f"Command not found: '{args[0]}'")
    except PermissionError as e:
        logger.error(f"Permission denied executing '{args[0]}': {e}")
        return CommandResult(args, 126, "", f"Permission denied: {e}")
    except OSError as e:
        logger.error(f"OS error executing '{args[0]}': {e}", exc_info=True)
        return CommandResult(args, e.errno or 1, "", str(e))

    result = CommandResult(
        args,
        process.returncode,
        process.stdout.strip() if process.stdout else "",
        process.stderr.strip() if process.stderr else ""
    )
    logger.debug(f"Command '{args[0]}' exited with code {result.returncode}")
    return result


def save_json(data: Any, file_path: str) -> bool:
    """
    Save data to a JSON file atomically.

    The data is written to a temporary sibling file which then replaces the
    target, so a concurrent reader sees either the old or the new content.

    :param data: Data to save
    :type data: Any
    :param file_path: Path to save the JSON file
    :type file_path: str
    :return: True if save succeeded, False otherwise
    :rtype: bool
    """
    if not file_path:
        logger.error("Cannot save JSON: File path is empty")
        return False

    temp_path = f"{file_path}.{os.getpid()}.tmp"
    try:
        directory = os.path.dirname(file_path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        with open(temp_path, 'w', encoding='utf-8') as f:
            json.dump(data, f, indent=2, sort_keys=True)
            f.flush()
            os.fsync(f.fileno())
        os.replace(temp_path, file_path)
        logger.debug(f"Successfully saved JSON data to: {file_path}")
        return True
    except (IOError, OSError, TypeError, ValueError) as e:
        logger.error(f"Failed to write file {file_path}: {e}")
        try:
            if os.path.exists(temp_path):
                os.remove(temp_path)
        except OSError:
            pass
        return False


def load_json(file_path: str) -> Any:
    """
    Load data from a JSON file.

    :param file_path: Path to the JSON file
    :type file_path: str
    :return: Loaded data or empty dict on error
    :rtype: Any
    """
    if not file_path or not os.path.exists(file_path):
        logger.debug(f"JSON file does not exist: {file_path}")
        return {}

    try:
        with open(file_path, 'r', encoding='utf-8') as f:
            data = json.load(f)
        logger.debug(f"Successfully loaded JSON data from: {file_path}")
        return data
    except json.JSONDecodeError as e:
        logger.error(f"Failed to parse JSON from {file_path}: {e}")
        return {}
    except (IOError, OSError) as e:
        logger.error(f"Failed to read file {file_path}: {e}")
        return {}


def move_if_present(src: str, dst_dir: str) -> bool:
    """
    Move a file into a directory, doing nothing if the source is already gone.

    :param src: Path of the file to move
    :type src: str
    :param dst_dir: Directory that receives the file
    :type dst_dir: str
    :return: True if the file was moved, False if it was absent or could not be moved
    :rtype: bool
    """
    if not os.path.lexists(src):
        logger.debug(f"Nothing to move, already absent: {src}")
        return False
    try:
        os.makedirs(dst_dir, exist_ok=True)
        destination = os.path.join(dst_dir, os.path.basename(src))
        if os.path.lexists(destination):
            os.remove(destination)
        shutil.move(src, destination)
        logger.info(f"Moved {src} to {destination}")
        return True
    except FileNotFoundError:
        logger.debug(f"File disappeared before it could be moved: {src}")
        return False
    except OSError as e:
        logger.error(f"Failed to move {src} to {dst_dir}: {e}")
        return False
