import os
import sys
import shutil
import logging
import threading
import subprocess
from typing import IO, TYPE_CHECKING, Any, Dict, List, Mapping, Optional

from localreg.local.config import effective_settings as config
from localreg.local.errors import SpawnError

if TYPE_CHECKING:
    from localreg.local.options import StartupOptions

log = logging.getLogger(__name__)


#* --- Process Creation ---
def resolve_server_command(executable: Optional[str] = None) -> List[str]:
    """
    Locates the registry server executable on PATH.

    :param executable: Name or path of the executable; defaults to REGISTRY_SERVER_EXECUTABLE.
    :return: The command prefix used to launch the server.
    """
    executable = executable or config.REGISTRY_SERVER_EXECUTABLE
    resolved = shutil.which(executable)
    if resolved is None:
        raise SpawnError(f"Registry server executable '{executable}' was not found on PATH.")
    return [resolved]


def build_server_args(options: "StartupOptions") -> List[str]:
    """Returns the registry server's command-line arguments for the given options."""
    args: List[str] = []
    if options.port:
        args.extend(["--listen", str(options.port)])
    if options.config:
        args.extend(["--config", str(options.config)])
    return args


def build_server_env(options: "StartupOptions", base_env: Optional[Mapping[str, str]] = None) -> Dict[str, str]:
    """Returns the environment for the registry server process."""
    env = dict(os.environ if base_env is None else base_env)
    env[config.HANDLE_KILL_SIGNALS_ENV] = "true"
    if options.storage:
        env[config.STORAGE_PATH_ENV] = str(options.storage)
    return env


def _get_popen_creation_flags() -> Dict[str, Any]:
    """Returns platform-specific creation flags for subprocess.Popen."""
    if sys.platform == "win32":
        return {"creationflags": subprocess.CREATE_NEW_PROCESS_GROUP | subprocess.CREATE_NO_WINDOW}
    # A separate session keeps terminal Ctrl+C away from the server; it is signalled explicitly.
    return {"start_new_session": True}


def _forward_stream(stream: IO[bytes], logger: logging.Logger, level: int) -> None:
    """Re-logs each non-blank line of a child stream until it closes."""
    with stream:
        try:
            for raw in stream:
                text = raw.decode("utf-8", errors="replace").rstrip()
                if text:
                    logger.log(level, text)
        except (OSError, ValueError) as e:
            logger.debug(f"Stopped reading child output: {e}")


def forward_server_output(process: subprocess.Popen, name: str) -> List[threading.Thread]:
    """
    Relays a child's stdout at INFO and stderr at ERROR through the `proc.<name>` logger.

    :return: The daemon reader threads, already started.
    """
    logger = logging.getLogger(f"proc.{name}")
    readers = []
    for stream, level, label in ((process.stdout, logging.INFO, "stdout"), (process.stderr, logging.ERROR, "stderr")):
        if stream is None:
            continue
        reader = threading.Thread(target=_forward_stream, args=(stream, logger, level), name=f"{name}-{label}", daemon=True)
        reader.start()
        readers.append(reader)
    return readers


def launch_process(name: str, args: List[str], env: Dict[str, str]) -> subprocess.Popen:
    """Launches a process without waiting for it and logs its output."""
    log.info(f"Starting process: {name}...")
    log.debug(f"Command line: {' '.join(args)}")
    try:
        p = subprocess.Popen(
            args, stdout=subprocess.PIPE, stderr=subprocess.PIPE, stdin=subprocess.DEVNULL,
            env=env, **_get_popen_creation_flags()
        )
    except OSError as e:
        log.critical(f"Failed to start process '{name}': {e}", exc_info=True)
        raise SpawnError(f"Failed to start '{name}': {e}") from e

    forward_server_output(p, name)
    log.info(f"{name.capitalize()} started with PID: {p.pid}")
    return p
