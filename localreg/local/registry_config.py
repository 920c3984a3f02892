import enum
import shutil
import logging
import subprocess
from pathlib import Path
from typing import Callable, Dict, List, NamedTuple, Optional

from localreg.local.config import effective_settings as config
from localreg.local.errors import ConfigReadError, ConfigWriteError

log = logging.getLogger(__name__)

CommandRunner = Callable[[List[str]], subprocess.CompletedProcess]

# Values a package manager prints when no registry is set
UNSET_VALUES = {"", "undefined", "null"}


class Backend(enum.Enum):
    """Registry configuration dialects."""
    NPM = "npm"
    YARN = "yarn"

    @property
    def scoped(self) -> bool:
        """True if the dialect honours a --location scope."""
        return self is Backend.NPM

    @property
    def executable(self) -> str:
        return config.NPM_EXECUTABLE if self is Backend.NPM else config.YARN_EXECUTABLE


class RegistrySnapshot(NamedTuple):
    """The registry value found before the swap. `prior_value` None means unset."""
    backend: Backend
    prior_value: Optional[str]


#* --- Backend Detection ---
PACKAGE_MANAGER_BACKENDS: Dict[str, Backend] = {
    "npm": Backend.NPM,
    "pnpm": Backend.NPM,
    "yarn": Backend.YARN,
}


def detect_backend(root: Path, package_manager: Optional[str] = None) -> Backend:
    """
    Determines which configuration dialect applies to a workspace.

    :param root: The workspace root to inspect for lock files.
    :param package_manager: An explicit package manager name that skips detection.
    :return: The Backend to use.
    """
    if package_manager:
        try:
            return PACKAGE_MANAGER_BACKENDS[package_manager.lower()]
        except KeyError:
            raise ValueError(f"Unsupported package manager '{package_manager}'.") from None

    if (root / "yarn.lock").exists():
        log.debug(f"Found yarn.lock in '{root}'. Using yarn configuration.")
        return Backend.YARN
    log.debug(f"No yarn.lock in '{root}'. Using npm configuration.")
    return Backend.NPM


#* --- Command Construction ---
def build_config_command(backend: Backend, action: str, location: str, value: Optional[str] = None) -> List[str]:
    """Returns the argument list for a get, set or delete of the registry key."""
    args = [backend.executable, "config", action, "registry"]
    if value is not None:
        args.append(value)
    if backend.scoped:
        args.extend(["--location", location])
    return args


def run_command(args: List[str]) -> subprocess.CompletedProcess:
    """Runs a package manager command and captures its output."""
    executable = shutil.which(args[0]) or args[0]
    return subprocess.run([executable, *args[1:]], capture_output=True, text=True, stdin=subprocess.DEVNULL, check=False)


class RegistryConfigAccessor:
    """Reads and writes the registry setting of a package manager."""

    def __init__(self, runner: CommandRunner = run_command) -> None:
        self.runner = runner

    def _run(self, args: List[str], error_cls: type) -> str:
        log.debug(f"Running: {' '.join(args)}")
        try:
            result = self.runner(args)
        except OSError as e:
            raise error_cls(f"Could not run '{args[0]}': {e}") from e
        if result.returncode != 0:
            detail = (result.stderr or "").strip()
            raise error_cls(f"'{' '.join(args)}' exited with code {result.returncode}: {detail}")
        return result.stdout or ""

    def read(self, backend: Backend, location: str) -> Optional[str]:
        """Returns the current registry value, or None if none is set."""
        output = self._run(build_config_command(backend, "get", location), ConfigReadError).strip()
        return None if output in UNSET_VALUES else output

    def write(self, backend: Backend, location: str, url: str) -> None:
        self._run(build_config_command(backend, "set", location, url), ConfigWriteError)
        log.info(f"Set {backend.value} registry to {url}")

    def delete(self, backend: Backend, location: str) -> None:
        self._run(build_config_command(backend, "delete", location), ConfigWriteError)
        log.info(f"Deleted {backend.value} registry setting.")

    def snapshot(self, backend: Backend, location: str) -> RegistrySnapshot:
        prior_value = self.read(backend, location)
        log.debug(f"Captured {backend.value} registry: {prior_value or '<unset>'}")
        return RegistrySnapshot(backend, prior_value)

    def restore(self, snapshot: RegistrySnapshot, location: str) -> None:
        """
        Puts the registry setting back the way `snapshot` found it.

        An unset prior value deletes the key rather than writing an empty
        string. Restoring the same snapshot twice leaves the same state.
        """
        if snapshot.prior_value is not None:
            self.write(snapshot.backend, location, snapshot.prior_value)
        else:
            self.delete(snapshot.backend, location)
