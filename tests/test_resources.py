import plistlib

from deferagent.system import AgentResources
from deferagent.utils import CommandResult

LABEL = "io.deferagent.install-or-defer"


class LaunchctlRunner:
    """Answers ``launchctl list`` with the given labels and records every call."""

    def __init__(self, *loaded: str):
        self.loaded = list(loaded)
        self.calls = []

    def __call__(self, args, timeout=300, env=None) -> CommandResult:
        args = list(args)
        self.calls.append(args)
        if args[-1] == "list":
            lines = [f"-\t0\t{label}" for label in self.loaded]
            return CommandResult(args, 0, "\n".join(["PID\tStatus\tLabel"] + lines))
        return CommandResult(args, 0)


def _resources(tmp_path, runner) -> AgentResources:
    return AgentResources(
        script_path=str(tmp_path / "scripts" / "install-or-defer"),
        launch_daemons_dir=str(tmp_path / "LaunchDaemons"),
        cleanup_dir=str(tmp_path / "cleanup"),
        jamf_binary="/usr/local/bin/jamf",
        runner=runner
    )


def test_remove_files_moves_what_exists(tmp_path):
    resources = _resources(tmp_path, LaunchctlRunner())
    (tmp_path / "LaunchDaemons").mkdir()
    (tmp_path / "scripts").mkdir()
    (tmp_path / "LaunchDaemons" / f"{LABEL}.plist").write_text("job")
    (tmp_path / "scripts" / "install-or-defer").write_text("script")

    assert resources.remove_files() == 2
    assert (tmp_path / "cleanup" / f"{LABEL}.plist").read_text() == "job"
    assert (tmp_path / "cleanup" / "install-or-defer").exists()
    assert resources.remove_files() == 0


def test_unload_only_loaded_jobs(tmp_path):
    runner = LaunchctlRunner(f"{LABEL}_helper")
    resources = _resources(tmp_path, runner)

    assert resources.unload_helper_job()
    assert not resources.unload_main_job()
    assert ["/bin/launchctl", "remove", f"{LABEL}_helper"] in runner.calls
    assert ["/bin/launchctl", "remove", LABEL] not in runner.calls


def test_refresh_inventory_runs_recon(tmp_path):
    runner = LaunchctlRunner()
    assert _resources(tmp_path, runner).refresh_inventory()
    assert runner.calls == [["/usr/local/bin/jamf", "recon"]]


def test_read_start_interval(tmp_path):
    resources = _resources(tmp_path, LaunchctlRunner())
    assert resources.read_start_interval() is None

    (tmp_path / "LaunchDaemons").mkdir()
    (tmp_path / "LaunchDaemons" / f"{LABEL}.plist").write_bytes(
        plistlib.dumps({"Label": LABEL, "StartInterval": 1800})
    )
    assert resources.read_start_interval() == 1800
