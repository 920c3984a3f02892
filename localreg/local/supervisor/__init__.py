"""
The Supervisor package.
Manages the lifecycle of the registry server subprocess.

This package contains the RegistryServer class, which starts, waits on and
terminates the server, and the TerminationTrigger that turns process exit and
termination signals into a single cleanup call.
"""
from .supervisor import ExitKind, ProcessState, RegistryServer, TerminationReason
from .shutdown import TerminationTrigger

__all__ = ['ExitKind', 'ProcessState', 'RegistryServer', 'TerminationReason', 'TerminationTrigger']
