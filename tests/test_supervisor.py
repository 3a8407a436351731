from __future__ import annotations

import asyncio
import os
from pathlib import Path

import pytest

from hudwatch.config import DAEMON_ENABLED_ENV, HudSettings
from hudwatch.daemon.launchctl import FakeLaunchctlRunner
from hudwatch.daemon.probe import DaemonHealth, ProbeConnectionError
from hudwatch.daemon.registration import (
    APPROVAL_MESSAGE,
    Failed,
    RequiresApproval,
    StaticRegistrar,
    Success,
)
from hudwatch.daemon.supervisor import NOT_INSTALLED_MESSAGE, DaemonSupervisor
from hudwatch.telemetry import RecordingTelemetry

NOT_LOADED = (113, 'Could not find service "dev.hudwatch.test" in domain for user gui: 501')
RUNNING = (0, "gui/501/dev.hudwatch.test = {\n\tstate = running\n\tpid = 812\n}")
LOADED_NOT_RUNNING = (0, "gui/501/dev.hudwatch.test = {\n\tstate = waiting\n}")


class StubProbe:
    def __init__(self, results: list[bool] | None = None, health: DaemonHealth | None = None) -> None:
        self._results = list(results or [])
        self._health = health
        self.calls = 0

    async def check(self) -> bool:
        self.calls += 1
        if self._results:
            return self._results.pop(0)
        return False

    async def fetch_health(self) -> DaemonHealth:
        if self._health is None:
            raise ProbeConnectionError("Cannot connect")
        return self._health


def _supervisor(
    settings: HudSettings,
    binary: Path | None,
    *,
    runner: FakeLaunchctlRunner | None = None,
    registrar: StaticRegistrar | None = None,
    probe: StubProbe | None = None,
    telemetry: RecordingTelemetry | None = None,
    delays: list[float] | None = None,
) -> DaemonSupervisor:
    async def fake_sleep(delay: float) -> None:
        if delays is not None:
            delays.append(delay)

    return DaemonSupervisor(
        settings,
        runner=runner or FakeLaunchctlRunner(),
        registrar=registrar or StaticRegistrar(),
        probe=probe or StubProbe(),
        telemetry=telemetry or RecordingTelemetry(),
        binary_candidates=[binary] if binary is not None else [],
        uid=501,
        sleep=fake_sleep,
    )


def test_missing_binary_reports_and_emits(settings: HudSettings) -> None:
    runner = FakeLaunchctlRunner()
    telemetry = RecordingTelemetry()
    supervisor = _supervisor(settings, None, runner=runner, telemetry=telemetry)

    error = asyncio.run(supervisor.ensure_running())

    assert error == NOT_INSTALLED_MESSAGE
    assert telemetry.names == ["daemon_install_error"]
    assert runner.invocations == []
    assert os.environ[DAEMON_ENABLED_ENV] == "1"


def test_fresh_install_bootstraps_and_kickstarts(settings: HudSettings, agent_binary: Path) -> None:
    runner = FakeLaunchctlRunner({"print": [NOT_LOADED]})
    supervisor = _supervisor(settings, agent_binary, runner=runner)

    error = asyncio.run(supervisor.ensure_running())

    assert error is None
    assert runner.verbs == ["print", "bootstrap", "kickstart"]
    descriptor = settings.launch_agents_dir / "dev.hudwatch.test.plist"
    assert descriptor.exists()
    assert runner.invocations[0] == ("print", "gui/501/dev.hudwatch.test")
    assert runner.invocations[1] == ("bootstrap", "gui/501", str(descriptor))


def test_running_unchanged_job_is_left_alone(settings: HudSettings, agent_binary: Path) -> None:
    runner = FakeLaunchctlRunner({"print": [RUNNING]})
    supervisor = _supervisor(settings, agent_binary, runner=runner)
    supervisor.writer.write(agent_binary)

    error = asyncio.run(supervisor.ensure_running())

    assert error is None
    assert runner.verbs == ["print"]


def test_second_ensure_does_not_touch_job(settings: HudSettings, agent_binary: Path) -> None:
    runner = FakeLaunchctlRunner({"print": [NOT_LOADED, RUNNING]})
    supervisor = _supervisor(settings, agent_binary, runner=runner)

    assert asyncio.run(supervisor.ensure_running()) is None
    assert asyncio.run(supervisor.ensure_running()) is None

    assert runner.verbs == ["print", "bootstrap", "kickstart", "print"]


def test_loaded_unchanged_job_is_kickstarted(settings: HudSettings, agent_binary: Path) -> None:
    runner = FakeLaunchctlRunner({"print": [LOADED_NOT_RUNNING]})
    supervisor = _supervisor(settings, agent_binary, runner=runner)
    supervisor.writer.write(agent_binary)

    assert asyncio.run(supervisor.ensure_running()) is None
    assert runner.verbs == ["print", "kickstart"]


def test_changed_descriptor_reloads_loaded_job(settings: HudSettings, agent_binary: Path) -> None:
    runner = FakeLaunchctlRunner({"print": [RUNNING]})
    supervisor = _supervisor(settings, agent_binary, runner=runner)

    assert asyncio.run(supervisor.ensure_running()) is None
    assert runner.verbs == ["print", "bootout", "bootstrap", "kickstart"]


def test_reload_tolerates_absent_target_on_bootout(settings: HudSettings, agent_binary: Path) -> None:
    runner = FakeLaunchctlRunner({"print": [RUNNING], "bootout": [(3, "Boot-out failed: 3: No such process")]})
    supervisor = _supervisor(settings, agent_binary, runner=runner)

    assert asyncio.run(supervisor.ensure_running()) is None
    assert runner.verbs == ["print", "bootout", "bootstrap", "kickstart"]


def test_bootstrap_failure_is_reported(settings: HudSettings, agent_binary: Path) -> None:
    runner = FakeLaunchctlRunner({"print": [NOT_LOADED], "bootstrap": [(5, "Bootstrap failed: 5: Input/output error\n")]})
    telemetry = RecordingTelemetry()
    supervisor = _supervisor(settings, agent_binary, runner=runner, telemetry=telemetry)

    error = asyncio.run(supervisor.ensure_running())

    assert error == "Failed to load agent job: Bootstrap failed: 5: Input/output error"
    assert "kickstart" not in runner.verbs
    assert telemetry.names == ["daemon_launchctl_error"]


def test_kickstart_failure_retries_with_restart(settings: HudSettings, agent_binary: Path) -> None:
    runner = FakeLaunchctlRunner({"print": [NOT_LOADED], "kickstart": [(1, "busy")]})
    telemetry = RecordingTelemetry()
    supervisor = _supervisor(settings, agent_binary, runner=runner, telemetry=telemetry)

    assert asyncio.run(supervisor.ensure_running()) is None
    assert runner.verbs == ["print", "bootstrap", "kickstart", "kickstart -k"]
    assert telemetry.names == ["daemon_kickstart_error"]


def test_restart_failure_is_reported(settings: HudSettings, agent_binary: Path) -> None:
    runner = FakeLaunchctlRunner(
        {"print": [NOT_LOADED], "kickstart": [(1, "busy")], "kickstart -k": [(1, "still busy\n")]}
    )
    telemetry = RecordingTelemetry()
    supervisor = _supervisor(settings, agent_binary, runner=runner, telemetry=telemetry)

    error = asyncio.run(supervisor.ensure_running())

    assert error == "Failed to start agent: still busy"
    assert telemetry.names == ["daemon_kickstart_error", "daemon_kickstart_error"]


def test_descriptor_write_failure_is_reported(tmp_path: Path, agent_binary: Path) -> None:
    blocker = tmp_path / "agents-file"
    blocker.write_text("", encoding="utf-8")
    settings = HudSettings(state_dir=tmp_path / "state", launch_agents_dir=blocker, service_label="dev.hudwatch.test")
    runner = FakeLaunchctlRunner()
    supervisor = _supervisor(settings, agent_binary, runner=runner)

    error = asyncio.run(supervisor.ensure_running())

    assert error is not None and error.startswith("Failed to write service descriptor")
    assert runner.invocations == []


def test_native_success_waits_for_health(settings: HudSettings, agent_binary: Path) -> None:
    runner = FakeLaunchctlRunner()
    probe = StubProbe([False, False, True])
    delays: list[float] = []
    supervisor = _supervisor(
        settings, agent_binary, runner=runner, registrar=StaticRegistrar(Success()), probe=probe, delays=delays
    )

    assert asyncio.run(supervisor.ensure_running()) is None
    assert probe.calls == 3
    assert delays == [0.2, 0.2]
    assert runner.invocations == []


def test_native_success_removes_legacy_descriptor(settings: HudSettings, agent_binary: Path) -> None:
    runner = FakeLaunchctlRunner()
    supervisor = _supervisor(
        settings, agent_binary, runner=runner, registrar=StaticRegistrar(Success()), probe=StubProbe([True])
    )
    supervisor.writer.write(agent_binary)

    assert asyncio.run(supervisor.ensure_running()) is None
    assert runner.verbs == ["bootout"]
    assert not supervisor.writer.descriptor_path.exists()


def test_unhealthy_native_agent_falls_back(settings: HudSettings, agent_binary: Path) -> None:
    runner = FakeLaunchctlRunner({"print": [NOT_LOADED]})
    probe = StubProbe()
    telemetry = RecordingTelemetry()
    delays: list[float] = []
    supervisor = _supervisor(
        settings,
        agent_binary,
        runner=runner,
        registrar=StaticRegistrar(Success()),
        probe=probe,
        telemetry=telemetry,
        delays=delays,
    )

    assert asyncio.run(supervisor.ensure_running()) is None
    assert probe.calls == 6
    assert len(delays) == 5
    assert telemetry.names == ["daemon_health_error"]
    assert runner.verbs == ["print", "bootstrap", "kickstart"]


def test_approval_required_stops_installation(settings: HudSettings, agent_binary: Path) -> None:
    runner = FakeLaunchctlRunner()
    telemetry = RecordingTelemetry()
    supervisor = _supervisor(
        settings, agent_binary, runner=runner, registrar=StaticRegistrar(RequiresApproval()), telemetry=telemetry
    )

    assert asyncio.run(supervisor.ensure_running()) == APPROVAL_MESSAGE
    assert runner.invocations == []
    assert telemetry.names == ["daemon_registration_error"]


def test_native_failure_falls_back(settings: HudSettings, agent_binary: Path) -> None:
    runner = FakeLaunchctlRunner({"print": [NOT_LOADED]})
    telemetry = RecordingTelemetry()
    supervisor = _supervisor(
        settings, agent_binary, runner=runner, registrar=StaticRegistrar(Failed("denied")), telemetry=telemetry
    )

    assert asyncio.run(supervisor.ensure_running()) is None
    assert telemetry.names == ["daemon_registration_error"]
    assert runner.verbs == ["print", "bootstrap", "kickstart"]


def test_disable_removes_job_and_flag(settings: HudSettings, agent_binary: Path) -> None:
    runner = FakeLaunchctlRunner({"bootout": [(3, "Boot-out failed: 3: No such process")]})
    registrar = StaticRegistrar()
    supervisor = _supervisor(settings, agent_binary, runner=runner, registrar=registrar)
    supervisor.enable_for_current_process()
    supervisor.writer.write(agent_binary)

    assert asyncio.run(supervisor.disable()) is None
    assert registrar.unregister_calls == 1
    assert DAEMON_ENABLED_ENV not in os.environ
    assert not supervisor.writer.descriptor_path.exists()


def test_disable_surfaces_bootout_failure(settings: HudSettings, agent_binary: Path) -> None:
    runner = FakeLaunchctlRunner({"bootout": [(5, "Input/output error")]})
    supervisor = _supervisor(settings, agent_binary, runner=runner)
    supervisor.writer.write(agent_binary)

    assert asyncio.run(supervisor.disable()) == "Failed to unload legacy agent job: Input/output error"
    assert supervisor.writer.descriptor_path.exists()


def test_disable_requires_approval_still_removes_legacy_job(settings: HudSettings, agent_binary: Path) -> None:
    runner = FakeLaunchctlRunner()
    supervisor = _supervisor(
        settings,
        agent_binary,
        runner=runner,
        registrar=StaticRegistrar(unregister_result=RequiresApproval("approve me")),
    )
    supervisor.writer.write(agent_binary)

    assert asyncio.run(supervisor.disable()) == "approve me"
    assert runner.verbs == ["bootout"]
    assert not supervisor.writer.descriptor_path.exists()


def test_disable_prefers_cleanup_error_over_approval(settings: HudSettings, agent_binary: Path) -> None:
    runner = FakeLaunchctlRunner({"bootout": [(5, "Input/output error")]})
    supervisor = _supervisor(
        settings,
        agent_binary,
        runner=runner,
        registrar=StaticRegistrar(unregister_result=RequiresApproval("approve me")),
    )
    supervisor.writer.write(agent_binary)

    assert asyncio.run(supervisor.disable()) == "Failed to unload legacy agent job: Input/output error"


def test_check_status(settings: HudSettings, agent_binary: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    healthy = _supervisor(settings, agent_binary, probe=StubProbe(health=DaemonHealth(status="ok", pid=9)))
    offline = _supervisor(settings, agent_binary, probe=StubProbe())

    assert asyncio.run(healthy.check_status()).message == "Daemon disabled"

    monkeypatch.setenv(DAEMON_ENABLED_ENV, "1")
    status = asyncio.run(healthy.check_status())
    assert status.healthy and status.pid == 9
    assert asyncio.run(offline.check_status()).message == "Daemon unavailable"


def test_check_status_reports_degraded_agent(
    settings: HudSettings, agent_binary: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv(DAEMON_ENABLED_ENV, "1")
    supervisor = _supervisor(settings, agent_binary, probe=StubProbe(health=DaemonHealth(status="degraded")))

    status = asyncio.run(supervisor.check_status())

    assert status.enabled and not status.healthy
    assert status.message == "degraded"


def test_ensure_running_in_background(settings: HudSettings, agent_binary: Path) -> None:
    runner = FakeLaunchctlRunner({"print": [NOT_LOADED]})
    supervisor = _supervisor(settings, agent_binary, runner=runner)

    try:
        future = supervisor.ensure_running_in_background()
        assert future.result(timeout=5) is None
    finally:
        supervisor.shutdown()
    assert runner.verbs == ["print", "bootstrap", "kickstart"]


def test_domain_and_target(settings: HudSettings) -> None:
    supervisor = _supervisor(settings, None)

    assert supervisor.domain == "gui/501"
    assert supervisor.service_target == "gui/501/dev.hudwatch.test"
