"""launchd service descriptor (job plist) generation."""

from __future__ import annotations

import logging
import os
import plistlib
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

logger = logging.getLogger(__name__)

BINARY_REVISION_ENV = "HUDWATCH_AGENT_BINARY_REVISION"


class DescriptorWriteError(RuntimeError):
    """Raised when the service descriptor cannot be written to disk."""


def binary_revision_token(binary_path: Path) -> str:
    """Return a token that changes whenever the agent binary is replaced."""

    try:
        stat = Path(binary_path).stat()
    except OSError:
        return "-1-0"
    return f"{stat.st_size}-{int(stat.st_mtime)}"


@dataclass(slots=True)
class ServiceDescriptorWriter:
    """Builds the agent's launchd job file and writes it only when it changes."""

    label: str
    install_dir: Path
    working_dir: Path
    log_dir: Path
    throttle_interval: int = 10
    associated_bundle_ids: tuple[str, ...] = ()
    extra_environment: Mapping[str, str] = field(default_factory=dict)

    @property
    def descriptor_path(self) -> Path:
        return Path(self.install_dir) / f"{self.label}.plist"

    @property
    def stdout_path(self) -> Path:
        return Path(self.log_dir) / "daemon.stdout.log"

    @property
    def stderr_path(self) -> Path:
        return Path(self.log_dir) / "daemon.stderr.log"

    def build(self, binary_path: Path) -> dict[str, Any]:
        """Return the descriptor as a property-list dictionary."""

        environment = {BINARY_REVISION_ENV: binary_revision_token(binary_path)}
        environment.update(self.extra_environment)

        descriptor: dict[str, Any] = {
            "Label": self.label,
            "ProgramArguments": [str(binary_path)],
            "RunAtLoad": True,
            "KeepAlive": True,
            "ThrottleInterval": int(self.throttle_interval),
            "ProcessType": "Background",
            "WorkingDirectory": str(self.working_dir),
            "StandardOutPath": str(self.stdout_path),
            "StandardErrorPath": str(self.stderr_path),
            "EnvironmentVariables": environment,
        }
        if self.associated_bundle_ids:
            descriptor["AssociatedBundleIdentifiers"] = list(self.associated_bundle_ids)
        return descriptor

    def render(self, binary_path: Path) -> bytes:
        return plistlib.dumps(self.build(binary_path), fmt=plistlib.FMT_XML, sort_keys=True)

    def write(self, binary_path: Path) -> tuple[Path, bool]:
        """Write the descriptor if its bytes differ from the file on disk.

        Returns the descriptor path and whether the file changed. The write is
        atomic: a temporary file in the install directory replaces the target.
        """

        target = self.descriptor_path
        try:
            Path(self.install_dir).mkdir(parents=True, exist_ok=True)
            Path(self.log_dir).mkdir(parents=True, exist_ok=True)
            data = self.render(binary_path)
            try:
                existing = target.read_bytes()
            except FileNotFoundError:
                existing = None
            if existing == data:
                return target, False
            _atomic_write(target, data)
        except OSError as exc:
            raise DescriptorWriteError(f"{target}: {exc}") from exc

        logger.info("Wrote service descriptor", extra={"path": str(target), "label": self.label})
        return target, True

    def remove(self) -> bool:
        """Delete the descriptor. Returns False when it was already absent."""

        try:
            self.descriptor_path.unlink()
        except FileNotFoundError:
            return False
        except OSError as exc:
            raise DescriptorWriteError(f"{self.descriptor_path}: {exc}") from exc
        return True


def _atomic_write(target: Path, data: bytes) -> None:
    fd, tmp_name = tempfile.mkstemp(prefix=f".{target.name}.", suffix=".tmp", dir=str(target.parent))
    try:
        with os.fdopen(fd, "wb") as handle:
            handle.write(data)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_name, target)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except FileNotFoundError:
            pass
        raise


__all__ = [
    "BINARY_REVISION_ENV",
    "DescriptorWriteError",
    "ServiceDescriptorWriter",
    "binary_revision_token",
]
