"""
Enforcement Executor: applies updates once the user agrees or the deadline passes,
and removes the agent when its work is done.

These operations block for minutes. Sleeping is injected so the flow can be
exercised without waiting.
"""
import time
from typing import Callable, Optional

from ..config.config_manager import AgentSettings
from ..config.state_manager import StateManager
from ..system.lock_manager import InvocationLease
from ..system.resources import AgentResources
from ..system.session import UserSession, ACTION_RESTART, ACTION_SHUT_DOWN
from ..system.software_update import SoftwareUpdateProbe, UpdateInventory
from ..ui.prompt_gateway import JamfHelperGateway
from ..utils import get_logger
from ..utils.time_utils import convert_seconds
from .messaging import Message, MessageRenderer

logger = get_logger(__name__)

MANUAL_LOOP_INTERVAL_SEC = 60
SHUT_DOWN_NOTICE = "select Shut Down from the Apple menu"


class EnforcementExecutor:
    """
    Installs updates (or has the user install them) and restarts when required.
    """

    def __init__(self, settings: AgentSettings, state_manager: StateManager,
                 probe: SoftwareUpdateProbe, gateway: JamfHelperGateway,
                 session: UserSession, resources: AgentResources,
                 lease: Optional[InvocationLease] = None,
                 sleep: Callable[[float], None] = time.sleep):
        self.settings = settings
        self.state_manager = state_manager
        self.probe = probe
        self.gateway = gateway
        self.session = session
        self.resources = resources
        self.lease = lease
        self._sleep = sleep

    def _renew_lease(self):
        if self.lease is not None and self.lease.held:
            self.lease.renew()

    def _show_hud(self, message: Message):
        self.gateway.show_hud(message.heading, message.body, self.settings.messaging_logo)

    def teardown(self, refresh_inventory: bool = True, unload_main_job: bool = True):
        """
        Removes every trace of the current cycle and, optionally, the agent itself.

        Each step tolerates its target being gone already, so an interrupted
        teardown is completed by the next invocation.

        :param refresh_inventory: Submit an inventory update first
        :type refresh_inventory: bool
        :param unload_main_job: Remove the agent's own launchd job last
        :type unload_main_job: bool
        """
        if refresh_inventory:
            self.resources.refresh_inventory()
        self.gateway.kill_all()
        logger.info("Cleaning up stored deferral state...")
        self.state_manager.clear()
        self.resources.remove_files()
        self.resources.unload_helper_job()
        if unload_main_job:
            self.resources.unload_main_job()

    def apply_updates(self, inventory: UpdateInventory, messages: MessageRenderer, remaining: int):
        """
        Applies pending updates in the configured mode.

        :param inventory: Updates found by this invocation's check
        :type inventory: UpdateInventory
        :param messages: Renderer for the invocation's messages
        :type messages: MessageRenderer
        :param remaining: Seconds left before the deadline
        :type remaining: int
        """
        if self.settings.manual_updates:
            self.prompt_manual_install(messages, remaining)
        else:
            self.install_scripted(inventory, messages)

    def enforce_deadline(self, inventory: UpdateInventory, messages: MessageRenderer):
        """Shows the final countdown, then installs whatever the user's answer."""
        logger.info("No deferral time remains.")
        self.gateway.kill_all()
        message = messages.install()
        self.gateway.show_countdown(
            message.heading,
            message.body,
            self.settings.messaging_logo,
            self.settings.install_button_label,
            self.settings.update_delay
        )
        self._renew_lease()
        self.apply_updates(inventory, messages, remaining=0)

    def prompt_manual_install(self, messages: MessageRenderer, remaining: int):
        """
        Has the user install updates through Software Update.

        With the persistent alert disabled and time left before the deadline,
        Software Update is opened once. Otherwise a locked alert is shown and
        Software Update reopened every minute until nothing is pending.
        """
        logger.info("Agent has been configured to have user run updates manually.")
        if self.settings.disable_post_install_alert and remaining > 0:
            logger.info("Persistent alerting is disabled with deferral time remaining. "
                        "Opening Software Update a single time...")
            self.session.open_software_update()
            return

        logger.info("Displaying persistent alert until updates are applied...")
        message = messages.install_now()
        while self.probe.list_pending().pending:
            self.gateway.kill_all()
            logger.info("Prompting to install updates now and opening System Preferences -> Software Update...")
            self._show_hud(message)
            self.session.open_software_update()
            self._renew_lease()
            self._sleep(MANUAL_LOOP_INTERVAL_SEC)
        self.gateway.kill_all()
        logger.info("No pending updates remain. Cleanup will run on the next check.")

    def install_scripted(self, inventory: UpdateInventory, messages: MessageRenderer):
        """
        Installs updates with softwareupdate while a progress window is shown.

        Restart-requiring updates end with a restart (or a shut down when the
        installer asks for one). Otherwise the agent removes itself once nothing
        is pending.
        """
        self._show_hud(messages.updating())
        self.probe.reset_daemon()
        restart_required = inventory.restart_required
        if restart_required and self.probe.os_version[0] > 10:
            logger.info("System will restart as soon as the update is finished. "
                        "Cleanup tasks will run on a subsequent update check.")
        result = self.probe.install(inventory.scope, restart=restart_required)
        self._renew_lease()
        still_pending = self.probe.list_pending(refresh=True).pending

        if restart_required:
            action = ACTION_SHUT_DOWN if SHUT_DOWN_NOTICE in result.output else ACTION_RESTART
            if still_pending:
                logger.warning("Updates are still pending after installation. "
                               "Keeping deferral state for the next invocation.")
                self.gateway.kill_all()
            else:
                # Removing the running job could end this process before the restart.
                self.teardown(refresh_inventory=False, unload_main_job=False)
            self.restart_escalation(action)
        elif still_pending:
            logger.warning("Updates are still pending after installation. "
                           "Keeping deferral state for the next invocation.")
            self.gateway.kill_all()
        else:
            self.teardown()

    def restart_escalation(self, action: str = ACTION_RESTART):
        """
        Asks politely to restart, waits, then clears the user's processes and asks again.

        :param action: ``restart`` or ``shut down``
        :type action: str
        """
        logger.info(f"Attempting a \"soft\" {action}...")
        self.session.request_power_action(action)
        logger.info(f"Waiting {convert_seconds(self.settings.hard_restart_delay)} before forcing a \"hard\" {action}...")
        self._sleep(self.settings.hard_restart_delay)
        logger.info(f"{convert_seconds(self.settings.hard_restart_delay)} have elapsed since \"soft\" {action} "
                    f"was attempted. Forcing \"hard\" {action}...")
        self.session.force_quit_user_processes()
        self.session.request_power_action(action)
