import signal
import logging
from typing import Dict, Optional

from localreg.local.errors import AbnormalExit, RegistrySwapError
from localreg.local.options import StartupOptions
from localreg.local.registry_config import Backend, RegistryConfigAccessor, RegistrySnapshot, build_config_command
from localreg.local.supervisor import RegistryServer, TerminationTrigger

log = logging.getLogger(__name__)


class RegistrySwap:
    """
    Points a package manager at a local registry server for as long as the
    server runs, then puts the previous registry back.

    One instance handles one invocation. It owns the snapshot of the prior
    registry value and the server process. Termination hooks are installed
    for the whole of `run`; cleanup runs exactly once on whichever comes
    first: the server finishing, a termination signal or interpreter exit.
    """

    def __init__(self, options: StartupOptions, backend: Backend,
                 accessor: Optional[RegistryConfigAccessor] = None,
                 server: Optional[RegistryServer] = None,
                 trigger: Optional[TerminationTrigger] = None) -> None:
        if options.port is None:
            raise ValueError("A port is required to point the registry at the local server.")
        self.options = options
        self.backend = backend
        self.accessor = accessor or RegistryConfigAccessor()
        self.server = server or RegistryServer(options)
        self.trigger = trigger or TerminationTrigger()

        self.snapshot: Optional[RegistrySnapshot] = None
        self.triggered_by: Optional[str] = None
        self.triggered_signal: Optional[int] = None
        self._mutated = False
        self._cleaned_up = False

    def run(self) -> Dict[str, bool]:
        """
        Runs the full swap: snapshot, rewrite, serve, restore.

        :return: {"success": True} only if the server exited cleanly.
        """
        self.trigger.subscribe(self.cleanup)
        try:
            return {"success": self._swap_and_serve()}
        except Exception as e:
            log.critical(f"Unexpected error while running the local registry: {e}", exc_info=True)
            return {"success": False}
        finally:
            try:
                self.trigger.fire("completion")
            finally:
                self.trigger.unsubscribe()

    def _swap_and_serve(self) -> bool:
        location = self.options.location
        try:
            self.snapshot = self.accessor.snapshot(self.backend, location)
            if self._cleaned_up:
                return False
            self._mutated = True
            self.accessor.write(self.backend, location, self.options.registry_url)
        except RegistrySwapError as e:
            # A failed write is treated as atomic: nothing to restore.
            self._mutated = False
            log.error(f"Could not point {self.backend.value} at the local registry: {e}")
            return False

        if self._cleaned_up:
            # Cleanup ran while the write was in flight; the write may have landed after its restore.
            self._restore()
            return False

        try:
            self.server.start()
            if self._cleaned_up:
                log.warning("Termination requested while the registry server was starting.")
                self.server.terminate(self._stop_signal)
            self.server.wait()
            return not self._cleaned_up
        except AbnormalExit as e:
            log.error(str(e))
        except RegistrySwapError as e:
            log.error(f"Registry server failed: {e}")
        return False

    @property
    def _stop_signal(self) -> int:
        return self.triggered_signal or signal.SIGTERM

    def cleanup(self, source: str = "exit", signum: Optional[int] = None) -> None:
        """Stops the server and restores the registry. Only the first call does anything."""
        if self._cleaned_up:
            return
        self._cleaned_up = True
        self.triggered_by = source
        self.triggered_signal = signum
        log.info(f"Cleaning up after {source}.")

        # A received signal is passed on to the server; anything else stops it with SIGTERM.
        try:
            self.server.terminate(self._stop_signal)
        except Exception as e:
            log.error(f"Failed to stop the registry server: {e}", exc_info=True)

        if self._mutated:
            self._restore()

    def _restore(self) -> None:
        try:
            self.accessor.restore(self.snapshot, self.options.location)
            log.info(f"Restored {self.backend.value} registry to {self.snapshot.prior_value or '<unset>'}")
        except RegistrySwapError as e:
            action = "delete" if self.snapshot.prior_value is None else "set"
            manual_fix = " ".join(build_config_command(
                self.backend, action, self.options.location, self.snapshot.prior_value
            ))
            log.critical(
                f"Failed to restore the {self.backend.value} registry: {e}. "
                f"It still points at {self.options.registry_url}. Run '{manual_fix}' to fix it."
            )

    @property
    def interrupted_by_signal(self) -> Optional[int]:
        """The signal number that triggered cleanup, if it was a signal."""
        return self.triggered_signal
