"""Health probe for the agent's Unix domain socket."""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Awaitable, TypeVar

logger = logging.getLogger(__name__)

PROTOCOL_VERSION = 1
MAX_RESPONSE_BYTES = 1_048_576
DEFAULT_TIMEOUT = 0.6
_READ_CHUNK = 4096

T = TypeVar("T")


class ProbeError(RuntimeError):
    """Base class for health probe failures."""


class ProbeConnectionError(ProbeError):
    """Raised when the socket cannot be reached."""


class ProbeTimeoutError(ProbeError):
    """Raised when the agent does not answer in time."""


class ProbeResponseTooLargeError(ProbeError):
    """Raised when the peer sends more than the response ceiling without a newline."""


class ProbeProtocolError(ProbeError):
    """Raised when the response is not a healthy, well-formed reply."""


@dataclass(slots=True)
class DaemonHealth:
    """Payload of a successful ``get_health`` reply."""

    status: str
    pid: int | None = None
    version: str | None = None
    protocol_version: int | None = None

    @property
    def ok(self) -> bool:
        return self.status == "ok"


def build_request(method: str, request_id: str | None = None) -> bytes:
    """Encode a single newline-terminated protocol request."""

    payload = {
        "protocol_version": PROTOCOL_VERSION,
        "method": method,
        "id": request_id or str(uuid.uuid4()),
    }
    return json.dumps(payload, separators=(",", ":")).encode("utf-8") + b"\n"


def parse_health_response(raw: bytes) -> DaemonHealth:
    """Validate a ``get_health`` response line."""

    try:
        root = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise ProbeProtocolError(f"Invalid JSON response: {exc}") from exc

    if not isinstance(root, dict) or root.get("ok") is not True:
        error = root.get("error") if isinstance(root, dict) else None
        message = error.get("message") if isinstance(error, dict) else None
        raise ProbeProtocolError(message or "Agent reported failure")

    data = root.get("data")
    if not isinstance(data, dict):
        raise ProbeProtocolError("Response is missing a data object")

    status = data.get("status")
    if not isinstance(status, str):
        raise ProbeProtocolError("Response is missing data.status")

    pid = data.get("pid")
    version = data.get("version")
    protocol = data.get("protocol_version")
    return DaemonHealth(
        status=status,
        pid=pid if isinstance(pid, int) else None,
        version=version if isinstance(version, str) else None,
        protocol_version=protocol if isinstance(protocol, int) else None,
    )


class HealthProbe:
    """Sends ``get_health`` to the agent socket with bounded time and memory."""

    def __init__(
        self,
        socket_path: Path,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        max_response_bytes: int = MAX_RESPONSE_BYTES,
    ) -> None:
        self._socket_path = Path(socket_path)
        self._timeout = timeout
        self._max_response_bytes = max_response_bytes

    @property
    def socket_path(self) -> Path:
        return self._socket_path

    @property
    def timeout(self) -> float:
        return self._timeout

    async def check(self) -> bool:
        """Return True when the agent answers healthy. Never raises."""

        try:
            health = await self.fetch_health()
        except ProbeError as exc:
            logger.debug("Health probe failed", extra={"socket": str(self._socket_path), "error": str(exc)})
            return False
        return health.ok

    async def fetch_health(self) -> DaemonHealth:
        """Return the parsed health payload.

        Connect, send and every read are each bounded by the probe timeout and
        share one deadline, so the whole exchange never exceeds it either. A
        peer that never answers is abandoned and its socket closed.
        """

        raw = await self._exchange(build_request("get_health"))
        return parse_health_response(raw)

    async def _exchange(self, request: bytes) -> bytes:
        deadline = asyncio.get_running_loop().time() + self._timeout
        try:
            reader, writer = await self._bounded(
                asyncio.open_unix_connection(str(self._socket_path)), deadline, "connect"
            )
        except OSError as exc:
            raise ProbeConnectionError(f"Cannot connect to {self._socket_path}: {exc}") from exc

        try:
            writer.write(request)
            await self._bounded(writer.drain(), deadline, "send")
            return await self._read_line(reader, deadline)
        except (ConnectionError, OSError) as exc:
            raise ProbeConnectionError(f"Socket error on {self._socket_path}: {exc}") from exc
        finally:
            writer.close()
            try:
                await writer.wait_closed()
            except (ConnectionError, OSError):
                pass

    async def _bounded(self, awaitable: Awaitable[T], deadline: float, step: str) -> T:
        remaining = max(0.0, deadline - asyncio.get_running_loop().time())
        try:
            return await asyncio.wait_for(awaitable, remaining)
        except asyncio.TimeoutError as exc:
            # TimeoutError subclasses OSError, so it is converted before callers catch OSError.
            raise ProbeTimeoutError(
                f"{step} on {self._socket_path} did not complete within {self._timeout}s"
            ) from exc

    async def _read_line(self, reader: asyncio.StreamReader, deadline: float) -> bytes:
        buffer = bytearray()
        while True:
            chunk = await self._bounded(reader.read(_READ_CHUNK), deadline, "read")
            if not chunk:
                break
            newline = chunk.find(b"\n")
            if newline >= 0:
                buffer.extend(chunk[:newline])
                break
            buffer.extend(chunk)
            if len(buffer) > self._max_response_bytes:
                raise ProbeResponseTooLargeError(
                    f"Response exceeded {self._max_response_bytes} bytes without a newline"
                )
        if len(buffer) > self._max_response_bytes:
            raise ProbeResponseTooLargeError(f"Response exceeded {self._max_response_bytes} bytes")
        if not buffer:
            raise ProbeProtocolError("Agent closed the connection without a response")
        return bytes(buffer)


__all__ = [
    "DEFAULT_TIMEOUT",
    "MAX_RESPONSE_BYTES",
    "PROTOCOL_VERSION",
    "DaemonHealth",
    "HealthProbe",
    "ProbeConnectionError",
    "ProbeError",
    "ProbeProtocolError",
    "ProbeResponseTooLargeError",
    "ProbeTimeoutError",
    "build_request",
    "parse_health_response",
]
