import os
import sys
import signal

import pytest

from localreg.local import RegistrySwap
from localreg.local.options import StartupOptions
from localreg.local.registry_config import Backend
from localreg.local.supervisor import RegistryServer, TerminationTrigger

from .conftest import CountingAccessor, FakeServer

NPMJS = "https://registry.npmjs.org/"
EXAMPLE = "https://registry.example.org/"
LOCAL = "http://localhost:4873/"


def make_swap(accessor, trigger, server, backend=Backend.NPM, location="project"):
    options = StartupOptions(port=4873, location=location)
    return RegistrySwap(options, backend, accessor=accessor, server=server, trigger=trigger)


def test_successful_run_points_at_local_registry_then_restores(accessor, registry_config, trigger):
    registry_config.set_registry(Backend.NPM, NPMJS, "project")
    seen_during_run = []
    server = FakeServer(exit_code=0, on_wait=lambda: seen_during_run.append(registry_config.registry(Backend.NPM, "project")))

    result = make_swap(accessor, trigger, server).run()

    assert result == {"success": True}
    assert seen_during_run == [LOCAL]
    assert registry_config.registry(Backend.NPM, "project") == NPMJS


def test_unset_registry_is_deleted_again_for_yarn(accessor, registry_config, trigger):
    server = FakeServer(exit_code=0)

    result = make_swap(accessor, trigger, server, backend=Backend.YARN).run()

    assert result == {"success": True}
    assert not registry_config.has_key(Backend.YARN)


def test_child_failure_reports_failure_and_restores(accessor, registry_config, trigger):
    registry_config.set_registry(Backend.NPM, EXAMPLE, "project")

    result = make_swap(accessor, trigger, FakeServer(exit_code=1)).run()

    assert result == {"success": False}
    assert registry_config.registry(Backend.NPM, "project") == EXAMPLE
    assert accessor.restore_calls == 1


def test_spawn_failure_restores_registry(accessor, registry_config, trigger):
    registry_config.set_registry(Backend.NPM, EXAMPLE, "project")

    result = make_swap(accessor, trigger, FakeServer(spawn_error=True)).run()

    assert result == {"success": False}
    assert registry_config.registry(Backend.NPM, "project") == EXAMPLE


def test_write_failure_aborts_without_starting_server(accessor, registry_config, trigger):
    registry_config.set_registry(Backend.NPM, EXAMPLE, "project")
    registry_config.fail_on.add("set")
    server = FakeServer()

    result = make_swap(accessor, trigger, server).run()

    assert result == {"success": False}
    assert not server.started
    assert not trigger.subscribed
    assert accessor.restore_calls == 0
    assert registry_config.registry(Backend.NPM, "project") == EXAMPLE


def test_read_failure_aborts_before_any_write(accessor, registry_config, trigger):
    registry_config.fail_on.add("get")

    result = make_swap(accessor, trigger, FakeServer()).run()

    assert result == {"success": False}
    assert [call[2] for call in registry_config.calls] == ["get"]


def test_signal_and_child_exit_race_cleans_up_once(accessor, registry_config, trigger):
    registry_config.set_registry(Backend.NPM, NPMJS, "project")
    server = FakeServer(exit_code=130, on_wait=lambda: trigger._on_signal(signal.SIGINT, None))
    swap = make_swap(accessor, trigger, server)

    result = swap.run()
    trigger._on_exit()
    swap.cleanup("SIGTERM")

    assert result == {"success": False}
    assert accessor.restore_calls == 1
    assert server.terminate_calls == [signal.SIGINT]
    assert swap.triggered_by == "SIGINT"
    assert swap.interrupted_by_signal == signal.SIGINT
    assert registry_config.registry(Backend.NPM, "project") == NPMJS


def test_normal_completion_is_not_reported_as_signal(accessor, trigger):
    swap = make_swap(accessor, trigger, FakeServer(exit_code=0))
    swap.run()

    assert swap.triggered_by == "completion"
    assert swap.interrupted_by_signal is None


def test_restore_failure_does_not_escape(accessor, registry_config, trigger):
    registry_config.set_registry(Backend.NPM, EXAMPLE, "project")

    def fail_restore_during_run():
        registry_config.fail_on.add("set")

    result = make_swap(accessor, trigger, FakeServer(exit_code=0, on_wait=fail_restore_during_run)).run()

    assert result == {"success": True}
    assert registry_config.registry(Backend.NPM, "project") == LOCAL


def test_real_child_with_non_zero_exit_is_restored(accessor, registry_config, trigger):
    registry_config.set_registry(Backend.NPM, EXAMPLE, "user")
    options = StartupOptions(port=4873, location="user")
    server = RegistryServer(options, command=[sys.executable, "-c", "import sys; sys.exit(2)"])

    result = RegistrySwap(options, Backend.NPM, accessor=accessor, server=server, trigger=trigger).run()

    assert result == {"success": False}
    assert registry_config.registry(Backend.NPM, "user") == EXAMPLE


def test_missing_port_is_rejected(accessor, trigger):
    with pytest.raises(ValueError):
        RegistrySwap(StartupOptions(), Backend.NPM, accessor=accessor, server=FakeServer(), trigger=trigger)


def test_completion_before_start_skips_the_server(accessor, registry_config, trigger):
    registry_config.set_registry(Backend.NPM, NPMJS, "project")
    server = FakeServer()
    swap = make_swap(accessor, trigger, server)

    def interrupt_during_snapshot(args):
        if args[2] == "get":
            trigger.fire("SIGTERM", signal.SIGTERM)
        return registry_config(args)

    accessor.runner = interrupt_during_snapshot
    result = swap.run()

    assert result == {"success": False}
    assert not server.started
    assert [call[2] for call in registry_config.calls] == ["get"]
    assert registry_config.registry(Backend.NPM, "project") == NPMJS


def test_interrupt_overtaken_by_write_is_restored_again(accessor, registry_config, trigger):
    registry_config.set_registry(Backend.NPM, NPMJS, "project")
    server = FakeServer()

    def interrupt_before_write_lands(args):
        if args[2] == "set" and args[4] == LOCAL:
            trigger.fire("SIGINT", signal.SIGINT)
        return registry_config(args)

    accessor.runner = interrupt_before_write_lands
    result = make_swap(accessor, trigger, server).run()

    assert result == {"success": False}
    assert not server.started
    assert registry_config.registry(Backend.NPM, "project") == NPMJS


def test_interrupt_while_server_starts_stops_the_new_server(accessor, registry_config, trigger):
    registry_config.set_registry(Backend.NPM, NPMJS, "project")
    server = FakeServer(exit_code=143, on_start=lambda: trigger.fire("SIGTERM", signal.SIGTERM))

    result = make_swap(accessor, trigger, server).run()

    assert result == {"success": False}
    assert server.terminate_calls == [signal.SIGTERM, signal.SIGTERM]
    assert not server.running
    assert accessor.restore_calls == 1
    assert registry_config.registry(Backend.NPM, "project") == NPMJS


#* --- Real signals ---
posix_only = pytest.mark.skipif(sys.platform == "win32", reason="POSIX signal delivery")


@posix_only
def test_second_interrupt_during_restore_is_ignored(registry_config):
    registry_config.set_registry(Backend.NPM, NPMJS, "project")
    previous = signal.getsignal(signal.SIGINT)

    def interrupt_again_while_restoring(args):
        if args[2] == "set" and args[4] == NPMJS:
            os.kill(os.getpid(), signal.SIGINT)
        return registry_config(args)

    accessor = CountingAccessor(interrupt_again_while_restoring)
    trigger = TerminationTrigger(signals=[signal.SIGINT, signal.SIGTERM])
    server = FakeServer(exit_code=130, on_wait=lambda: os.kill(os.getpid(), signal.SIGINT))
    swap = make_swap(accessor, trigger, server)

    result = swap.run()

    assert result == {"success": False}
    assert accessor.restore_calls == 1
    assert server.terminate_calls == [signal.SIGINT]
    assert swap.interrupted_by_signal == signal.SIGINT
    assert registry_config.registry(Backend.NPM, "project") == NPMJS
    assert signal.getsignal(signal.SIGINT) == previous


class InterruptedAtStartServer(RegistryServer):
    """Receives SIGTERM just before the child process is launched."""

    def start(self) -> None:
        os.kill(os.getpid(), signal.SIGTERM)
        super().start()


@posix_only
def test_signal_before_launch_does_not_leave_server_running(accessor, registry_config):
    registry_config.set_registry(Backend.NPM, EXAMPLE, "user")
    options = StartupOptions(port=4873, location="user")
    server = InterruptedAtStartServer(options, command=[sys.executable, "-c", "import time; time.sleep(60)"])
    trigger = TerminationTrigger(signals=[signal.SIGTERM])

    swap = RegistrySwap(options, Backend.NPM, accessor=accessor, server=server, trigger=trigger)
    result = swap.run()

    assert result == {"success": False}
    assert not server.is_running()
    assert swap.interrupted_by_signal == signal.SIGTERM
    assert registry_config.registry(Backend.NPM, "user") == EXAMPLE
