"""
Main entry point for the deferral agent.

The scheduler runs ``deferagent run`` periodically; ``status`` and ``reset``
are for administrators.
"""
import argparse
import sys
import time
from typing import List, Optional

from deferagent.config import AgentSettings, ConfigManager, StateManager
from deferagent.config.config_manager import BUNDLE_ID, DEFAULT_CONFIG_PATH, DEFAULT_STATE_DIR, diagnostic_log_path
from deferagent.core import DeferralController, EnforcementExecutor, CycleState, derive_cycle_state
from deferagent.errors import DeferAgentError
from deferagent.system import (
    AgentResources,
    InvocationLease,
    PreflightChecker,
    SoftwareUpdateProbe,
    UserSession,
    lease_ttl
)
from deferagent.ui import JamfHelperGateway
from deferagent.utils import get_logger, setup_logger
from deferagent.utils.time_utils import convert_seconds, format_timestamp
from deferagent.version import __version__

EXIT_SUCCESS = 0
EXIT_FAILURE = 1

logger = get_logger("main")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="deferagent",
        description="Prompt users to install or defer mandatory OS updates, and enforce them after a deadline."
    )
    parser.add_argument('--config', default=DEFAULT_CONFIG_PATH,
                        help='Managed preferences file (.plist or .json).')
    parser.add_argument('--state-dir', default=DEFAULT_STATE_DIR,
                        help='Directory holding the deferral record and invocation lease.')
    parser.add_argument('--log-level', default='INFO',
                        help='Console log level (DEBUG, INFO, WARNING, ERROR).')
    parser.add_argument('--version', action='version', version=f"%(prog)s {__version__}")
    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    run_parser = subparsers.add_parser('run', help='Run one check (default).')
    run_parser.set_defaults(func=_run_agent)

    status_parser = subparsers.add_parser('status', help='Show the stored deferral record.')
    status_parser.set_defaults(func=_run_status_command)

    reset_parser = subparsers.add_parser('reset', help='Clear the stored deferral record.')
    reset_parser.set_defaults(func=_run_reset_command)

    parser.set_defaults(func=_run_agent)
    return parser


def _run_agent(args: argparse.Namespace) -> int:
    """Handles the 'run' command: preflight, then one controller pass."""
    config = ConfigManager(args.config)
    setup_logger(console_level_name=args.log_level,
                 log_file_path=diagnostic_log_path(config),
                 use_syslog=True)
    logger.info(f"Starting deferagent {__version__}. Performing validation and error checking...")

    resources = AgentResources()
    PreflightChecker(config, start_interval_reader=resources.read_start_interval).run()

    settings = AgentSettings.from_config(config)
    state_manager = StateManager(args.state_dir, BUNDLE_ID)
    lease = InvocationLease(
        args.state_dir,
        BUNDLE_ID,
        lease_ttl(settings.prompt_timeout, settings.update_delay, settings.hard_restart_delay)
    )
    probe = SoftwareUpdateProbe()
    gateway = JamfHelperGateway()
    executor = EnforcementExecutor(settings, state_manager, probe, gateway, UserSession(), resources, lease)
    controller = DeferralController(settings, state_manager, probe, gateway, executor, lease)
    return controller.run()


def _run_status_command(args: argparse.Namespace) -> int:
    """Handles the 'status' command."""
    state_manager = StateManager(args.state_dir, BUNDLE_ID)
    record = state_manager.load_record()
    now = int(time.time())

    if not record.cycle_active:
        print("No enforcement cycle is active.")
    else:
        state = derive_cycle_state(now, record.enforce_after, record.deferred_until)
        print(f"Deadline: {format_timestamp(record.enforce_after)}")
        print(f"Time remaining: {convert_seconds(record.enforce_after - now)}")
        print(f"Deferred until: {format_timestamp(record.deferred_until)}")
        print(f"Updates: {record.update_list or 'unknown'}")
        print(f"State: {state.name}")
        if state is CycleState.DEADLINE_REACHED:
            print("Updates will be enforced on the next run.")

    lease = InvocationLease(args.state_dir, BUNDLE_ID, ttl=0)
    holder = lease.current_holder()
    if holder:
        print(f"Invocation in progress: PID {holder['pid']} since {format_timestamp(holder.get('acquired_at'))}")
    else:
        print("No invocation in progress.")
    return EXIT_SUCCESS


def _run_reset_command(args: argparse.Namespace) -> int:
    """Handles the 'reset' command."""
    state_manager = StateManager(args.state_dir, BUNDLE_ID)
    if not state_manager.clear():
        print("ERROR: Could not clear the deferral record.", file=sys.stderr)
        return EXIT_FAILURE
    logger.info("Deferral record cleared by administrator.")
    print("Deferral record cleared.")
    return EXIT_SUCCESS


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main function to parse arguments and dispatch commands.

    :param argv: Command line arguments, defaults to ``sys.argv[1:]``
    :type argv: Optional[List[str]]
    :return: Process exit code
    :rtype: int
    """
    args = _build_parser().parse_args(argv)
    setup_logger(console_level_name=args.log_level)
    try:
        return args.func(args)
    except DeferAgentError as e:
        logger.error(f"Stopping: {e}")
        return EXIT_FAILURE
    except Exception as e:
        logger.critical(f"Unexpected error: {e}", exc_info=True)
        return EXIT_FAILURE


if __name__ == '__main__':
    sys.exit(main())
