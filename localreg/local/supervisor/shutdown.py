import sys
import atexit
import signal
import psutil
import logging
from typing import Callable, Dict, Iterable, List, Optional

from localreg.local.config import effective_settings as config

log = logging.getLogger(__name__)

EXIT_SOURCE = "exit"


#* --- Child Termination ---
def _collect_process_tree(pid: int) -> List[psutil.Process]:
    """Returns the process for `pid` followed by all of its descendants."""
    try:
        parent = psutil.Process(pid)
    except psutil.NoSuchProcess:
        return []
    try:
        children = parent.children(recursive=True)
    except psutil.NoSuchProcess:
        log.warning(f"Process {pid} no longer exists, skipping children retrieval.")
        children = []
    return [parent, *children]


def signal_process_tree(pid: int, sig: int = signal.SIGTERM) -> int:
    """
    Sends `sig` to a process and its descendants without waiting for them.

    :param pid: The PID of the root process.
    :param sig: The signal to send. Windows only supports termination.
    :return: The number of processes signalled.
    """
    signalled = 0
    for proc in _collect_process_tree(pid):
        try:
            log.debug(f"Sending signal {sig} to {proc.name()} (PID {proc.pid})")
            if sys.platform == "win32":
                proc.terminate()
            else:
                proc.send_signal(sig)
            signalled += 1
        except psutil.NoSuchProcess:
            log.debug(f"Process {proc.pid} no longer exists, skipping termination.")
        except psutil.AccessDenied:
            log.warning(f"Access denied while signalling process {proc.pid}.")
    return signalled


def signal_name(signum: int) -> str:
    try:
        return signal.Signals(signum).name
    except ValueError:
        return str(signum)


#* --- Termination Trigger ---
class TerminationTrigger:
    """
    A single-subscriber event source for "this process is ending".

    It fires on interpreter exit and on each of the configured termination
    signals. The subscriber is called at most once, with the name of the
    source ("exit", "completion" or a signal name) and the signal number when
    there is one. The signal handlers stay installed until `unsubscribe`, so
    signals that arrive while the subscriber runs, or after it has run, are
    swallowed instead of hitting the previous handlers.
    """

    def __init__(self, signals: Optional[Iterable[int]] = None) -> None:
        self.signals = list(config.TERMINATION_SIGNALS if signals is None else signals)
        self._callback: Optional[Callable[[str, Optional[int]], None]] = None
        self._installed = False
        self._previous_handlers: Dict[int, object] = {}

    @property
    def subscribed(self) -> bool:
        return self._installed

    @property
    def armed(self) -> bool:
        """True while the subscriber has not been called yet."""
        return self._callback is not None

    def subscribe(self, callback: Callable[[str, Optional[int]], None]) -> None:
        if self._installed:
            raise RuntimeError("TerminationTrigger already has a subscriber.")
        self._installed = True
        self._callback = callback
        atexit.register(self._on_exit)
        for sig in self.signals:
            try:
                self._previous_handlers[sig] = signal.signal(sig, self._on_signal)
            except (ValueError, OSError) as e:
                # Only the main thread may install signal handlers.
                log.warning(f"Could not install handler for {signal_name(sig)}: {e}")
        log.debug(f"Termination handlers installed for: exit, {', '.join(signal_name(s) for s in self._previous_handlers)}")

    def unsubscribe(self) -> None:
        """Drops the subscriber and puts the previous signal handlers back."""
        self._callback = None
        self._installed = False
        atexit.unregister(self._on_exit)
        for sig, previous in self._previous_handlers.items():
            try:
                signal.signal(sig, previous if previous is not None else signal.SIG_DFL)
            except (ValueError, OSError) as e:
                log.warning(f"Could not restore handler for {signal_name(sig)}: {e}")
        self._previous_handlers.clear()

    def fire(self, source: str = EXIT_SOURCE, signum: Optional[int] = None) -> bool:
        """
        Runs the subscriber if it has not run yet.

        :return: True if the subscriber was called by this invocation.
        """
        callback = self._callback
        if callback is None:
            return False
        # Disarm first: a signal during the callback re-enters fire() and must find nothing to run.
        self._callback = None
        atexit.unregister(self._on_exit)
        callback(source, signum)
        return True

    def _on_signal(self, signum, frame) -> None:
        if not self.armed:
            log.warning(f"Received {signal_name(signum)} during shutdown. Ignoring.")
            return
        log.warning(f"Received {signal_name(signum)}.")
        self.fire(signal_name(signum), signum)

    def _on_exit(self) -> None:
        self.fire(EXIT_SOURCE)
