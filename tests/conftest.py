import pathlib
import sys
from typing import List, Optional

import pytest

# Ensure repo root is on PYTHONPATH for direct package imports.
_REPO_ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(_REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(_REPO_ROOT))

from deferagent.config import AgentSettings, StateManager
from deferagent.core import DeferralController, EnforcementExecutor
from deferagent.system.software_update import UpdateInventory
from deferagent.ui import PromptOutcome, PromptResponse
from deferagent.utils import CommandResult

NAMESPACE = "io.deferagent.test"
START = 1_750_000_000

RESTART_UPDATES = UpdateInventory(
    pending=True,
    restart_required=True,
    titles=("macOS Ventura 13.4.1", "Safari"),
)
RECOMMENDED_UPDATES = UpdateInventory(
    pending=True,
    restart_required=False,
    titles=("Safari 16.5.1",),
)
NO_UPDATES = UpdateInventory(pending=False)


class FakeClock:
    def __init__(self, now: float = START):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class DummyProbe:
    """Returns queued inventories; the last one repeats."""

    def __init__(self, *inventories: UpdateInventory, install_output: str = ""):
        self.inventories = list(inventories) or [NO_UPDATES]
        self.install_output = install_output
        self.os_version = (13, 4)
        self.list_calls = 0
        self.resets = 0
        self.installs: List[tuple] = []

    def list_pending(self, refresh: bool = False) -> UpdateInventory:
        self.list_calls += 1
        if len(self.inventories) > 1:
            return self.inventories.pop(0)
        return self.inventories[0]

    def reset_daemon(self, wait: float = 30) -> bool:
        self.resets += 1
        return True

    def install(self, scope: str, restart: bool) -> CommandResult:
        self.installs.append((scope, restart))
        return CommandResult(["softwareupdate"], 0, self.install_output)


class DummyGateway:
    def __init__(self, *responses: PromptResponse):
        self.responses = list(responses)
        self.requests = []
        self.huds = []
        self.countdowns = []
        self.kills = 0

    def show_prompt(self, request) -> PromptResponse:
        self.requests.append(request)
        return self.responses.pop(0)

    def show_hud(self, title: str, body: str, icon: str):
        self.huds.append((title, body))

    def show_countdown(self, title, body, icon, button_label, timeout) -> CommandResult:
        self.countdowns.append((title, body, timeout))
        return CommandResult(["jamfHelper"], 0, "0")

    def kill_all(self) -> int:
        self.kills += 1
        return 0


class DummySession:
    def __init__(self, events: List[str]):
        self.events = events

    def request_power_action(self, action: str = "restart") -> bool:
        self.events.append(f"power:{action}")
        return True

    def force_quit_user_processes(self) -> int:
        self.events.append("force_quit")
        return 3

    def open_software_update(self) -> bool:
        self.events.append("open_software_update")
        return True


class DummyResources:
    def __init__(self, events: List[str]):
        self.events = events

    def refresh_inventory(self) -> bool:
        self.events.append("recon")
        return True

    def remove_files(self) -> int:
        self.events.append("remove_files")
        return 4

    def unload_helper_job(self) -> bool:
        self.events.append("unload_helper")
        return True

    def unload_main_job(self) -> bool:
        self.events.append("unload_main")
        return True


class DummyLease:
    def __init__(self, available: bool = True):
        self.available = available
        self.held = False
        self.acquired = 0
        self.renewals = 0
        self.released = 0

    def acquire(self) -> bool:
        self.acquired += 1
        self.held = self.available
        return self.available

    def renew(self) -> bool:
        self.renewals += 1
        return self.held

    def release(self):
        self.released += 1
        self.held = False


def response(outcome: PromptOutcome, code: Optional[int], elapsed: float = 42.0) -> PromptResponse:
    return PromptResponse(outcome, elapsed, code)


class Harness:
    """Wires a controller to dummy collaborators and real file-backed state."""

    def __init__(self, state_dir: str, settings: AgentSettings, probe: DummyProbe,
                 gateway: DummyGateway, lease: DummyLease, clock: FakeClock):
        self.events: List[str] = []
        self.sleeps: List[float] = []
        self.settings = settings
        self.state = StateManager(state_dir, NAMESPACE)
        self.probe = probe
        self.gateway = gateway
        self.lease = lease
        self.clock = clock
        self.session = DummySession(self.events)
        self.resources = DummyResources(self.events)
        self.executor = EnforcementExecutor(
            settings, self.state, probe, gateway, self.session, self.resources, lease,
            sleep=self._sleep
        )
        self.controller = DeferralController(settings, self.state, probe, gateway, self.executor, lease, clock=clock)

    def _sleep(self, seconds: float):
        self.sleeps.append(seconds)
        self.clock.advance(seconds)

    def run(self) -> int:
        return self.controller.run()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def state_manager(tmp_path) -> StateManager:
    return StateManager(str(tmp_path), NAMESPACE)


@pytest.fixture
def make_harness(tmp_path, clock):
    def _make(probe: DummyProbe, *responses: PromptResponse, settings: Optional[AgentSettings] = None,
              lease: Optional[DummyLease] = None) -> Harness:
        return Harness(
            str(tmp_path),
            settings or AgentSettings(),
            probe,
            DummyGateway(*responses),
            lease or DummyLease(),
            clock
        )
    return _make
