from __future__ import annotations

from pathlib import Path

import pytest

from hudwatch.config import DAEMON_ENABLED_ENV, HudSettings


@pytest.fixture(autouse=True)
def _isolated_daemon_flag(monkeypatch: pytest.MonkeyPatch) -> None:
    # setenv first so teardown restores the original value after the code under test mutates it.
    monkeypatch.setenv(DAEMON_ENABLED_ENV, "0")


@pytest.fixture
def settings(tmp_path: Path) -> HudSettings:
    return HudSettings(
        state_dir=tmp_path / "state",
        launch_agents_dir=tmp_path / "LaunchAgents",
        service_label="dev.hudwatch.test",
        health_attempts=6,
        health_retry_delay=0.2,
    )


@pytest.fixture
def agent_binary(tmp_path: Path) -> Path:
    binary = tmp_path / "bin" / "hudwatch-agent"
    binary.parent.mkdir(parents=True)
    binary.write_text("#!/bin/sh\nexit 0\n", encoding="utf-8")
    binary.chmod(0o755)
    return binary
