import enum
import signal
import logging
import subprocess
from typing import TYPE_CHECKING, List, Mapping, NamedTuple, Optional

from localreg.local.config import effective_settings as config
from localreg.local.errors import AbnormalExit, SpawnError
from localreg.local.supervisor import process_utils, shutdown

if TYPE_CHECKING:
    from localreg.local.options import StartupOptions

log = logging.getLogger(__name__)


class ProcessState(enum.Enum):
    NOT_STARTED = "not started"
    STARTING = "starting"
    RUNNING = "running"
    EXITED = "exited"
    KILLED = "killed"
    SPAWN_FAILED = "spawn failed"


class ExitKind(enum.Enum):
    NORMAL_EXIT = "normal exit"
    ABNORMAL_EXIT = "abnormal exit"
    SIGNAL = "signal"
    SPAWN_ERROR = "spawn error"


class TerminationReason(NamedTuple):
    """How the registry server ended."""
    kind: ExitKind
    code: Optional[int] = None
    signal_name: Optional[str] = None

    def __str__(self) -> str:
        if self.kind is ExitKind.SIGNAL:
            return f"{self.kind.value} {self.signal_name} (code {self.code})"
        if self.code is not None:
            return f"{self.kind.value} (code {self.code})"
        return self.kind.value


class RegistryServer:
    """
    Supervises exactly one registry server child process.

    `start` launches it without blocking, `wait` turns its exit into a
    TerminationReason (raising AbnormalExit for anything but a clean exit),
    and `terminate` signals it if it is still alive.
    """

    def __init__(self, options: "StartupOptions", command: Optional[List[str]] = None,
                 base_env: Optional[Mapping[str, str]] = None) -> None:
        self.options = options
        self.command = command
        self.base_env = base_env
        self.name = config.REGISTRY_SERVER_NAME
        self.state = ProcessState.NOT_STARTED
        self.process: Optional[subprocess.Popen] = None
        self._terminated_with: Optional[int] = None

    @property
    def pid(self) -> Optional[int]:
        return self.process.pid if self.process else None

    def is_running(self) -> bool:
        return self.process is not None and self.process.poll() is None

    def start(self) -> None:
        if self.state is not ProcessState.NOT_STARTED:
            raise RuntimeError(f"Registry server cannot be started from state '{self.state.value}'.")

        self.state = ProcessState.STARTING
        try:
            command = self.command or process_utils.resolve_server_command()
            args = [*command, *process_utils.build_server_args(self.options)]
            env = process_utils.build_server_env(self.options, self.base_env)
            self.process = process_utils.launch_process(self.name, args, env)
        except SpawnError:
            self.state = ProcessState.SPAWN_FAILED
            raise
        self.state = ProcessState.RUNNING

    def wait(self) -> TerminationReason:
        """
        Blocks until the server exits.

        :return: The reason for a clean exit with code 0.
        :raises AbnormalExit: For non-zero exits and signal deaths.
        """
        if self.state is ProcessState.SPAWN_FAILED:
            raise AbnormalExit(TerminationReason(ExitKind.SPAWN_ERROR))
        if self.process is None:
            raise RuntimeError("Registry server has not been started.")

        code = self.process.wait()
        reason = self._classify_exit(code)
        log.info(f"{self.name.capitalize()} (PID {self.process.pid}) ended: {reason}")
        if reason.kind is not ExitKind.NORMAL_EXIT:
            raise AbnormalExit(reason)
        return reason

    def _classify_exit(self, code: int) -> TerminationReason:
        if self._terminated_with is not None:
            self.state = ProcessState.KILLED
            return TerminationReason(ExitKind.SIGNAL, code, shutdown.signal_name(self._terminated_with))
        if code < 0:
            self.state = ProcessState.KILLED
            return TerminationReason(ExitKind.SIGNAL, code, shutdown.signal_name(-code))
        self.state = ProcessState.EXITED
        if code == 0:
            return TerminationReason(ExitKind.NORMAL_EXIT, code)
        return TerminationReason(ExitKind.ABNORMAL_EXIT, code)

    def terminate(self, sig: int = signal.SIGTERM) -> bool:
        """
        Signals the server and its descendants. Does not wait for them.

        :return: False if there was nothing left to signal.
        """
        if not self.is_running():
            log.debug(f"{self.name.capitalize()} is not running. Nothing to terminate.")
            return False

        log.info(f"Stopping {self.name} (PID {self.process.pid}) with {shutdown.signal_name(sig)}...")
        self._terminated_with = sig
        return shutdown.signal_process_tree(self.process.pid, sig) > 0
