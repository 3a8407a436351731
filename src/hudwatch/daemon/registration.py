"""Outcomes of registering the agent with the OS-managed service API."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol, Union

APPROVAL_MESSAGE = (
    "The hudwatch agent requires approval in System Settings > General > Login Items & Extensions."
)


@dataclass(frozen=True, slots=True)
class Success:
    pass


@dataclass(frozen=True, slots=True)
class Unavailable:
    pass


@dataclass(frozen=True, slots=True)
class RequiresApproval:
    message: str = APPROVAL_MESSAGE


@dataclass(frozen=True, slots=True)
class Failed:
    message: str


RegistrationResult = Union[Success, Unavailable, RequiresApproval, Failed]


class NativeRegistrar(Protocol):
    """Registers the agent through the OS-native managed-service API."""

    def register(self) -> RegistrationResult:
        ...

    def unregister(self) -> RegistrationResult:
        ...


class UnavailableRegistrar:
    """Registrar used where no native service API is reachable."""

    def register(self) -> RegistrationResult:
        return Unavailable()

    def unregister(self) -> RegistrationResult:
        return Unavailable()


class StaticRegistrar:
    """Registrar returning preconfigured outcomes, used in tests and dry runs."""

    def __init__(
        self,
        register_result: RegistrationResult | None = None,
        unregister_result: RegistrationResult | None = None,
    ) -> None:
        self._register_result = register_result or Unavailable()
        self._unregister_result = unregister_result or Unavailable()
        self.register_calls = 0
        self.unregister_calls = 0

    def register(self) -> RegistrationResult:
        self.register_calls += 1
        return self._register_result

    def unregister(self) -> RegistrationResult:
        self.unregister_calls += 1
        return self._unregister_result


__all__ = [
    "APPROVAL_MESSAGE",
    "Failed",
    "NativeRegistrar",
    "RegistrationResult",
    "RequiresApproval",
    "StaticRegistrar",
    "Success",
    "Unavailable",
    "UnavailableRegistrar",
]
