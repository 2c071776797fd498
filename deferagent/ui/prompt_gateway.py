"""
Prompt gateway backed by jamfHelper.

jamfHelper draws the windows; this module builds its command lines and turns
its printed return code into a PromptOutcome.
"""
import time
import subprocess
from dataclasses import dataclass
from enum import Enum, auto
from typing import Callable, List, Optional

import psutil

from ..utils import get_logger, run_command, CommandResult
from ..utils.time_utils import convert_seconds

logger = get_logger(__name__)

JAMF_HELPER_PATH = "/Library/Application Support/JAMF/bin/jamfHelper.app/Contents/MacOS/jamfHelper"
JAMF_HELPER_PROCESS_NAME = "jamfHelper"

RC_INSTALL = 0
RC_LAUNCH_FAILED = 1
RC_DEFER = 2
RC_HELPER_EXITED = 239

# Extra seconds allowed past the helper's own timeout before it is abandoned.
PROMPT_TIMEOUT_SLACK_SEC = 300


class PromptOutcome(Enum):
    """
    Enumeration of answers to the install-or-defer prompt.

    States:
        INSTALL_CLICKED: The user chose to install now
        DEFER_CLICKED: The user chose to defer, or the prompt timed out on the default defer button
        TIMED_OUT: The user closed the helper window, which counts as a deferral
        DISMISSED_BY_LOGOUT_OR_ERROR: No answer was captured, or the helper failed to launch
        UNRECOGNIZED: The helper returned a code with no known meaning
    """
    INSTALL_CLICKED = auto()
    DEFER_CLICKED = auto()
    TIMED_OUT = auto()
    DISMISSED_BY_LOGOUT_OR_ERROR = auto()
    UNRECOGNIZED = auto()


@dataclass(frozen=True)
class PromptRequest:
    title: str
    body: str
    install_label: str
    defer_label: str
    icon: str
    timeout: int


@dataclass(frozen=True)
class PromptResponse:
    """
    What the prompt produced.

    :ivar outcome: Classified answer
    :ivar elapsed: Wall-clock seconds the prompt was on screen
    :ivar return_code: Code printed by the helper, if any
    """
    outcome: PromptOutcome
    elapsed: float
    return_code: Optional[int] = None

    @property
    def elapsed_description(self) -> str:
        if self.elapsed < 1:
            return "immediately"
        return f"after {convert_seconds(int(self.elapsed))}"


def classify_return_code(output: str) -> PromptResponse:
    """
    Maps the helper's printed return code to an outcome. Elapsed time is left at zero.

    :param output: What the helper printed to stdout
    :type output: str
    :return: Response carrying the outcome and parsed code
    :rtype: PromptResponse
    """
    text = (output or "").strip()
    if not text:
        return PromptResponse(PromptOutcome.DISMISSED_BY_LOGOUT_OR_ERROR, 0.0)
    try:
        code = int(text.splitlines()[-1].strip())
    except ValueError:
        return PromptResponse(PromptOutcome.UNRECOGNIZED, 0.0)
    outcome = {
        RC_INSTALL: PromptOutcome.INSTALL_CLICKED,
        RC_DEFER: PromptOutcome.DEFER_CLICKED,
        RC_HELPER_EXITED: PromptOutcome.TIMED_OUT,
        RC_LAUNCH_FAILED: PromptOutcome.DISMISSED_BY_LOGOUT_OR_ERROR,
    }.get(code, PromptOutcome.UNRECOGNIZED)
    return PromptResponse(outcome, 0.0, code)


class JamfHelperGateway:
    """
    Shows the agent's windows with jamfHelper.
    """

    def __init__(self, helper_path: str = JAMF_HELPER_PATH,
                 runner: Callable[..., CommandResult] = run_command,
                 popen: Callable[..., subprocess.Popen] = subprocess.Popen,
                 clock: Callable[[], float] = time.monotonic):
        self.helper_path = helper_path
        self._runner = runner
        self._popen = popen
        self._clock = clock

    def show_prompt(self, request: PromptRequest) -> PromptResponse:
        """
        Shows the install-or-defer prompt and waits for an answer.

        Defer is the default button, so a timed out prompt reports a deferral.

        :param request: What to show
        :type request: PromptRequest
        :return: The classified answer and how long it took
        :rtype: PromptResponse
        """
        args = [
            self.helper_path,
            "-windowType", "utility",
            "-windowPosition", "ur",
            "-icon", request.icon,
            "-title", request.title,
            "-description", request.body,
            "-button1", request.install_label,
            "-button2", request.defer_label,
            "-defaultButton", "2",
            "-timeout", str(request.timeout),
            "-startlaunchd",
        ]
        logger.info("Prompting to install updates now or defer...")
        started = self._clock()
        result = self._runner(args, timeout=request.timeout + PROMPT_TIMEOUT_SLACK_SEC)
        elapsed = self._clock() - started
        classified = classify_return_code(result.stdout)
        response = PromptResponse(classified.outcome, elapsed, classified.return_code)
        logger.debug(f"jamfHelper printed {result.stdout!r} and exited with code {result.returncode}.")
        return response

    def show_hud(self, title: str, body: str, icon: str) -> Optional[subprocess.Popen]:
        """
        Shows a locked heads-up window without waiting for it.

        :return: The helper process, or None if it could not be started
        :rtype: Optional[subprocess.Popen]
        """
        args = [
            self.helper_path,
            "-windowType", "hud",
            "-windowPosition", "ur",
            "-icon", icon,
            "-title", title,
            "-description", body,
            "-lockHUD",
        ]
        try:
            return self._popen(args, stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL)
        except OSError as e:
            logger.error(f"Failed to show jamfHelper HUD: {e}")
            return None

    def show_countdown(self, title: str, body: str, icon: str, button_label: str, timeout: int) -> CommandResult:
        """
        Shows a window with a visible countdown and one button. Blocks until the
        button is clicked or the countdown ends.
        """
        args = [
            self.helper_path,
            "-windowType", "utility",
            "-windowPosition", "ur",
            "-title", title,
            "-description", body,
            "-icon", icon,
            "-button1", button_label,
            "-defaultButton", "1",
            "-alignCountdown", "right",
            "-timeout", str(timeout),
            "-countdown",
        ]
        logger.info(f"Displaying \"install updates\" message for {convert_seconds(timeout)} "
                    f"before automatically applying updates...")
        return self._runner(args, timeout=timeout + PROMPT_TIMEOUT_SLACK_SEC)

    def kill_all(self) -> int:
        """
        Kills every jamfHelper window so that messages do not pile up.

        :return: Number of helper processes killed
        :rtype: int
        """
        killed: List[int] = []
        for proc in psutil.process_iter(['pid', 'name']):
            try:
                if proc.info['name'] == JAMF_HELPER_PROCESS_NAME:
                    proc.kill()
                    killed.append(proc.info['pid'])
            except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
                pass
        if killed:
            logger.info(f"Killed active jamfHelper notifications: {killed}")
        else:
            logger.debug("No active jamfHelper notifications.")
        return len(killed)
