"""Agent daemon supervision: descriptor, health probe, launchctl and status."""

from .descriptor import DescriptorWriteError, ServiceDescriptorWriter
from .launchctl import CommandResult, FakeLaunchctlRunner, LaunchctlRunner
from .probe import DaemonHealth, HealthProbe, ProbeError
from .registration import (
    Failed,
    NativeRegistrar,
    RegistrationResult,
    RequiresApproval,
    StaticRegistrar,
    Success,
    Unavailable,
    UnavailableRegistrar,
)
from .status import DaemonRecoveryDecider, DaemonStatus, DaemonStatusEvaluator
from .supervisor import AgentNotInstalledError, DaemonSupervisor

__all__ = [
    "AgentNotInstalledError",
    "CommandResult",
    "DaemonHealth",
    "DaemonRecoveryDecider",
    "DaemonStatus",
    "DaemonStatusEvaluator",
    "DaemonSupervisor",
    "DescriptorWriteError",
    "Failed",
    "FakeLaunchctlRunner",
    "HealthProbe",
    "LaunchctlRunner",
    "NativeRegistrar",
    "ProbeError",
    "RegistrationResult",
    "RequiresApproval",
    "ServiceDescriptorWriter",
    "StaticRegistrar",
    "Success",
    "Unavailable",
    "UnavailableRegistrar",
]
