"""
Exceptions raised while swapping the registry and supervising the server.

All of them are terminal for the current invocation. The coordinator catches
them at its boundary and reports a failed result.
"""
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from localreg.local.supervisor.supervisor import TerminationReason


class RegistrySwapError(Exception):
    """Base class for all localreg errors."""


class ConfigReadError(RegistrySwapError):
    """The package manager could not report its registry setting."""


class ConfigWriteError(RegistrySwapError):
    """The package manager rejected a registry set or delete."""


class SpawnError(RegistrySwapError):
    """The registry server could not be launched."""


class AbnormalExit(RegistrySwapError):
    """The registry server ended with anything other than a clean exit."""

    def __init__(self, reason: "TerminationReason") -> None:
        super().__init__(f"Registry server terminated abnormally: {reason}")
        self.reason = reason
