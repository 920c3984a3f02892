"""Shared pytest fixtures for the localreg test suite."""

import signal
import subprocess
from typing import Callable, Dict, List, Optional, Tuple

import pytest

from localreg.local.errors import AbnormalExit, SpawnError
from localreg.local.registry_config import Backend, RegistryConfigAccessor
from localreg.local.supervisor import ExitKind, TerminationReason, TerminationTrigger


class FakeRegistryConfig:
    """
    An in-memory stand-in for `npm config` and `yarn config`.

    Called with the same argument lists the accessor would run. Values are
    kept per (executable, location); yarn commands carry no location.
    """

    def __init__(self, values: Optional[Dict[Tuple[str, Optional[str]], str]] = None, fail_on=()):
        self.values = dict(values or {})
        self.fail_on = set(fail_on)
        self.calls: List[List[str]] = []

    def __call__(self, args: List[str]) -> subprocess.CompletedProcess:
        self.calls.append(list(args))
        executable, _, action, _, *rest = args
        location = None
        if "--location" in rest:
            index = rest.index("--location")
            location = rest[index + 1]
            rest = rest[:index]

        if action in self.fail_on:
            return subprocess.CompletedProcess(args, 1, "", f"{action} failed")

        stdout = ""
        slot = (executable, location)
        if action == "get":
            value = self.values.get(slot)
            stdout = f"{value if value is not None else 'undefined'}\n"
        elif action == "set":
            self.values[slot] = rest[0]
        elif action == "delete":
            self.values.pop(slot, None)
        return subprocess.CompletedProcess(args, 0, stdout, "")

    def slot(self, backend: Backend, location: Optional[str] = None) -> Tuple[str, Optional[str]]:
        return backend.executable, location if backend.scoped else None

    def registry(self, backend: Backend, location: Optional[str] = None) -> Optional[str]:
        return self.values.get(self.slot(backend, location))

    def has_key(self, backend: Backend, location: Optional[str] = None) -> bool:
        return self.slot(backend, location) in self.values

    def set_registry(self, backend: Backend, value: str, location: Optional[str] = None) -> None:
        self.values[self.slot(backend, location)] = value


class CountingAccessor(RegistryConfigAccessor):
    """Accessor that counts restore calls."""

    def __init__(self, runner):
        super().__init__(runner)
        self.restore_calls = 0

    def restore(self, snapshot, location):
        self.restore_calls += 1
        super().restore(snapshot, location)


class FakeServer:
    """A registry server that ends with a preset exit code when waited on."""

    def __init__(self, exit_code: int = 0, on_wait: Optional[Callable[[], None]] = None, spawn_error: bool = False,
                 on_start: Optional[Callable[[], None]] = None):
        self.exit_code = exit_code
        self.on_wait = on_wait
        self.on_start = on_start
        self.spawn_error = spawn_error
        self.started = False
        self.running = False
        self.terminate_calls: List[int] = []

    def start(self) -> None:
        if self.on_start:
            self.on_start()
        if self.spawn_error:
            raise SpawnError("verdaccio not found")
        self.started = True
        self.running = True

    def wait(self) -> TerminationReason:
        if self.on_wait:
            self.on_wait()
        self.running = False
        if self.exit_code == 0:
            return TerminationReason(ExitKind.NORMAL_EXIT, 0)
        raise AbnormalExit(TerminationReason(ExitKind.ABNORMAL_EXIT, self.exit_code))

    def terminate(self, sig: int = signal.SIGTERM) -> bool:
        self.terminate_calls.append(sig)
        was_running, self.running = self.running, False
        return was_running


@pytest.fixture
def registry_config() -> FakeRegistryConfig:
    return FakeRegistryConfig()


@pytest.fixture
def accessor(registry_config) -> CountingAccessor:
    return CountingAccessor(registry_config)


@pytest.fixture
def trigger():
    """A trigger that only hooks interpreter exit, leaving signal handlers alone."""
    trigger = TerminationTrigger(signals=[])
    yield trigger
    trigger.unsubscribe()
