"""
Deferral Controller: one pass of the deferral state machine per invocation.

Each invocation rehydrates the persisted record, checks for updates, makes at
most one transition, persists it and returns an exit code. Nothing survives in
memory between invocations.
"""
import time
from typing import Callable, Optional, Tuple

from ..config.config_manager import AgentSettings
from ..config.state_manager import StateManager
from ..errors import PromptGatewayError
from ..system.lock_manager import InvocationLease
from ..system.software_update import SoftwareUpdateProbe, UpdateInventory
from ..ui.prompt_gateway import JamfHelperGateway, PromptOutcome, PromptRequest, PromptResponse
from ..utils import get_logger
from ..utils.time_utils import convert_seconds, format_timestamp, shift_out_of_workday
from .cycle_state import CycleState, derive_cycle_state
from .enforcement import EnforcementExecutor
from .messaging import MessageRenderer, format_update_list

logger = get_logger(__name__)

EXIT_SUCCESS = 0

MINIMUM_PLAUSIBLE_RESPONSE_SEC = 1


class DeferralController:
    """
    Decides, for the current invocation, whether to stay quiet, prompt, enforce
    or clean up.
    """

    def __init__(self, settings: AgentSettings, state_manager: StateManager,
                 probe: SoftwareUpdateProbe, gateway: JamfHelperGateway,
                 executor: EnforcementExecutor, lease: InvocationLease,
                 clock: Callable[[], float] = time.time):
        """
        Initialize the controller.

        :param settings: Validated settings for this invocation
        :type settings: AgentSettings
        :param state_manager: Access to the persisted deferral record
        :type state_manager: StateManager
        :param probe: Pending update check
        :type probe: SoftwareUpdateProbe
        :param gateway: Prompt display
        :type gateway: JamfHelperGateway
        :param executor: Update application and teardown
        :type executor: EnforcementExecutor
        :param lease: Exclusion against overlapping invocations
        :type lease: InvocationLease
        :param clock: Source of the current epoch time
        """
        self.settings = settings
        self.state_manager = state_manager
        self.probe = probe
        self.gateway = gateway
        self.executor = executor
        self.lease = lease
        self._clock = clock

    def _now(self) -> int:
        return int(self._clock())

    def _shift_out_of_workday(self, deadline: int) -> int:
        if not self.settings.has_workday:
            return deadline
        return shift_out_of_workday(deadline, self.settings.workday_start_hour, self.settings.workday_end_hour)

    def _refresh_deadline(self, now: int, inventory: UpdateInventory) -> Tuple[int, Optional[str]]:
        """
        Returns the deadline and update list for this cycle, starting the cycle
        if needed.

        The deadline is set once per cycle and only ever moved earlier, when the
        maximum deferral time has shrunk, or later, out of the workday. The
        update list is captured when the cycle starts and kept until it ends.
        """
        record = self.state_manager.load_record()
        enforce_after = record.enforce_after
        update_list = record.update_list
        latest_allowed = self._shift_out_of_workday(now + self.settings.max_deferral_time)

        if enforce_after is None:
            logger.info("Starting a new enforcement cycle.")
            enforce_after = latest_allowed
            update_list = format_update_list(inventory.titles) or None
            self.state_manager.start_cycle(enforce_after, update_list)
        elif enforce_after > latest_allowed:
            logger.info("Maximum deferral time was reduced. Pulling the deadline in.")
            enforce_after = latest_allowed
            self.state_manager.save_enforce_after(enforce_after)
        else:
            shifted = self._shift_out_of_workday(enforce_after)
            if shifted != enforce_after:
                enforce_after = shifted
                self.state_manager.save_enforce_after(enforce_after)
                logger.info("Shifted deferral deadline forward to occur outside of workday.")

        if update_list is None:
            update_list = format_update_list(inventory.titles) or None
        return enforce_after, update_list

    def run(self) -> int:
        """
        Runs one invocation.

        :return: Process exit code
        :rtype: int
        :raises PromptGatewayError: if the prompt produced no usable answer
        """
        inventory = self.probe.list_pending(refresh=True)
        if not inventory.pending:
            logger.info("No pending updates. Removing the agent.")
            self.executor.teardown()
            return EXIT_SUCCESS

        logger.info(f"Update scope: {inventory.scope} "
                    f"({'restart required' if inventory.restart_required else 'no restart required'}).")

        now = self._now()
        enforce_after, update_list = self._refresh_deadline(now, inventory)
        remaining = enforce_after - now
        logger.info(f"Deferral deadline: {format_timestamp(enforce_after)}")
        logger.info(f"Time remaining: {convert_seconds(remaining)}")

        deferred_until = self.state_manager.load_record().deferred_until
        state = derive_cycle_state(now, enforce_after, deferred_until)
        if state is CycleState.WITHIN_SUPPRESSED_WINDOW:
            logger.info(f"The next prompt is deferred until after {format_timestamp(deferred_until)}.")
            return EXIT_SUCCESS

        if not self.lease.acquire():
            logger.info("Another invocation is already handling this cycle. Exiting.")
            return EXIT_SUCCESS

        try:
            messages = MessageRenderer(update_list, inventory.restart_required, self.settings.support_contact)
            if state is CycleState.AWAITING_DECISION:
                return self._prompt(inventory, messages, enforce_after, remaining)
            self.executor.enforce_deadline(inventory, messages)
            return EXIT_SUCCESS
        finally:
            self.lease.release()

    def _next_prompt_time(self, enforce_after: int) -> int:
        return min(self._now() + self.settings.deferral_period, enforce_after)

    def _record_deferral(self, enforce_after: int):
        next_prompt = self._next_prompt_time(enforce_after)
        self.state_manager.save_deferred_until(next_prompt)
        logger.info(f"Next prompt will appear after {format_timestamp(next_prompt)}.")

    def _fail(self, message: str, response: PromptResponse):
        self.gateway.kill_all()
        logger.error(f"ERROR: {message}")
        raise PromptGatewayError(message, response.return_code)

    def _prompt(self, inventory: UpdateInventory, messages: MessageRenderer,
                enforce_after: int, remaining: int) -> int:
        """
        Shows the install-or-defer prompt and records the answer.

        :return: Process exit code
        :rtype: int
        :raises PromptGatewayError: on an implausibly fast answer or a failed prompt
        """
        message = messages.install_or_defer(remaining, enforce_after, self.settings.deferral_period)
        request = PromptRequest(
            title=message.heading,
            body=message.body,
            install_label=self.settings.install_button_label,
            defer_label=self.settings.defer_button_label,
            icon=self.settings.messaging_logo,
            timeout=self.settings.prompt_timeout
        )
        response = self.gateway.show_prompt(request)
        when = response.elapsed_description
        outcome = response.outcome

        if response.return_code is not None and response.elapsed < MINIMUM_PLAUSIBLE_RESPONSE_SEC:
            self._fail(f"jamfHelper returned code {response.return_code} {when}. "
                       f"It's unlikely that the user responded that quickly.", response)

        if outcome is PromptOutcome.INSTALL_CLICKED:
            logger.info(f"User clicked {self.settings.install_button_label} {when}.")
            self.state_manager.clear_deferred_until()
            if self.settings.manual_updates:
                logger.info("Manual updates are enabled, so the next deferral date is tracked "
                            "in case the update isn't run in a timely manner.")
                self._record_deferral(enforce_after)
            self.executor.apply_updates(inventory, messages, remaining)
            return EXIT_SUCCESS

        if outcome is PromptOutcome.DEFER_CLICKED:
            logger.info(f"User clicked {self.settings.defer_button_label} {when}.")
            self._record_deferral(enforce_after)
            return EXIT_SUCCESS

        if outcome is PromptOutcome.TIMED_OUT:
            logger.info(f"User deferred by exiting jamfHelper {when}.")
            self._record_deferral(enforce_after)
            return EXIT_SUCCESS

        if outcome is PromptOutcome.DISMISSED_BY_LOGOUT_OR_ERROR:
            if response.return_code is None:
                self._fail(f"jamfHelper returned no value {when}. "
                           f"{self.settings.install_button_label}/{self.settings.defer_button_label} "
                           f"response was not captured. This may be because the user logged out "
                           f"without answering.", response)
            self._fail(f"jamfHelper was not able to launch {when}.", response)

        self._fail(f"jamfHelper produced an unexpected value (code {response.return_code}) {when}.", response)
