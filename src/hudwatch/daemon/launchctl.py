"""Async runner for the launchctl service-manager CLI."""

from __future__ import annotations

import asyncio
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Mapping

_SANITIZED_VARS = {
    "PYTHONHOME",
    "PYTHONPATH",
    "VIRTUAL_ENV",
    "PIP_RESPECT_VIRTUALENV",
}

# Phrases launchctl prints when the job or its descriptor is already gone.
_ABSENT_MARKERS = (
    "could not find service",
    "no such process",
    "not find specified service",
    "service is not loaded",
)


def sanitize_environment(additional: Mapping[str, str] | None = None) -> dict[str, str]:
    """Return a sanitized environment suitable for subprocess execution."""

    env = dict(os.environ)
    for key in _SANITIZED_VARS:
        env.pop(key, None)
    if additional:
        env.update(additional)
    return env


@dataclass(slots=True)
class CommandResult:
    """Holds the outcome of a launchctl invocation (stdout and stderr merged)."""

    args: tuple[str, ...]
    returncode: int
    output: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def trimmed_output(self) -> str:
        return self.output.strip()

    @property
    def target_absent(self) -> bool:
        lowered = self.output.lower()
        return any(marker in lowered for marker in _ABSENT_MARKERS)


class LaunchctlRunner:
    """Execute launchctl commands asynchronously."""

    def __init__(self, executable: Path = Path("/bin/launchctl")) -> None:
        self._executable_path = Path(executable)

    @property
    def executable(self) -> Path:
        return self._executable_path

    async def print_job(self, service_target: str) -> CommandResult:
        return await self._invoke("print", service_target)

    async def bootstrap(self, domain: str, descriptor: Path) -> CommandResult:
        return await self._invoke("bootstrap", domain, str(descriptor))

    async def bootout(self, domain: str, descriptor: Path) -> CommandResult:
        return await self._invoke("bootout", domain, str(descriptor))

    async def kickstart(self, service_target: str, *, restart: bool = False) -> CommandResult:
        if restart:
            return await self._invoke("kickstart", "-k", service_target)
        return await self._invoke("kickstart", service_target)

    async def _invoke(self, *args: str) -> CommandResult:
        cmd = [str(self._executable_path), *args]
        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
                env=sanitize_environment(),
            )
        except OSError as exc:
            return CommandResult(args=tuple(cmd), returncode=1, output=str(exc))
        stdout_bytes, _ = await process.communicate()
        output = (stdout_bytes or b"").decode("utf-8", errors="replace")
        return CommandResult(args=tuple(cmd), returncode=process.returncode or 0, output=output)


class FakeLaunchctlRunner(LaunchctlRunner):
    """Test double that answers launchctl commands from a script of responses.

    Responses are keyed by verb (``print``, ``bootstrap``, ``bootout``,
    ``kickstart`` and ``kickstart -k``). Each key holds a queue; once a queue
    is exhausted the verb succeeds with empty output.
    """

    def __init__(self, responses: Mapping[str, Iterable[tuple[int, str]]] | None = None) -> None:  # type: ignore[override]
        self._responses = {verb: list(items) for verb, items in (responses or {}).items()}
        self._invocations: list[tuple[str, ...]] = []
        self._executable_path = Path("/tmp/fake-launchctl")

    async def _invoke(self, *args: str) -> CommandResult:  # type: ignore[override]
        self._invocations.append(tuple(args))
        verb = "kickstart -k" if args[:2] == ("kickstart", "-k") else args[0]
        queue = self._responses.get(verb)
        if queue:
            returncode, output = queue.pop(0)
            return CommandResult(args=tuple(args), returncode=returncode, output=output)
        return CommandResult(args=tuple(args), returncode=0, output="")

    @property
    def invocations(self) -> list[tuple[str, ...]]:
        return self._invocations

    @property
    def verbs(self) -> list[str]:
        return [
            "kickstart -k" if args[:2] == ("kickstart", "-k") else args[0] for args in self._invocations
        ]


__all__ = [
    "CommandResult",
    "FakeLaunchctlRunner",
    "LaunchctlRunner",
    "sanitize_environment",
]
