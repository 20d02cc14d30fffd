"""Tests for hook discovery and dispatch."""

import io
from pathlib import Path
from unittest.mock import Mock

import pytest
from rich.console import Console

from conftest import FakeRunner, make_module, result
from genoring_cli.context import Context
from genoring_cli.errors import HookFailure, ProcessError
from genoring_cli.modules.hooks import (
    ContainerHook,
    HookDispatcher,
    HookRegistry,
    LocalHook,
    classify_hook,
)
from genoring_cli.modules.registry import ModuleRegistry
from genoring_cli.process import run_process
from genoring_cli.state import ContainerState


def quiet_console() -> Console:
    return Console(file=io.StringIO())


@pytest.fixture
def dispatcher_for(ctx: Context, fake_runner: FakeRunner, mock_docker: Mock):
    def build(runner=None) -> HookDispatcher:
        registry = ModuleRegistry(ctx.module_dirs)
        return HookDispatcher(
            ctx, registry, mock_docker, runner=runner or fake_runner, console=quiet_console()
        )

    return build


@pytest.mark.unit
class TestClassifyHook:
    """Test hook file name conventions."""

    def test_local_hook(self):
        hook = classify_hook("db", Path("hooks/enable.sh"))
        assert hook == LocalHook("db", "enable", Path("hooks/enable.sh"))

    def test_container_hook(self):
        hook = classify_hook("db", Path("hooks/backup_genoring-db.sh"))
        assert isinstance(hook, ContainerHook)
        assert hook.event == "backup"
        assert hook.service == "genoring-db"

    @pytest.mark.parametrize("name", ["README.md", "helper.sh", ".enable.sh", "enable_.sh"])
    def test_unrecognized(self, name):
        assert classify_hook("db", Path(name)) is None


@pytest.mark.unit
class TestHookRegistry:
    """Test hook scanning."""

    def test_scan(self, db_and_web: Path):
        registry = ModuleRegistry([db_and_web])
        hooks = HookRegistry(registry.modules())

        assert hooks.local("db", "init").name == "init.sh"
        assert hooks.local("db", "uninstall") is None
        assert [h.service for h in hooks.container("db", "enable")] == ["genoring-db"]
        assert hooks.container("web") == []

    def test_first_extension_wins(self, modules_dir: Path):
        make_module(modules_dir, "app", hooks={"init.sh": "", "init.pl": ""})
        hooks = HookRegistry(ModuleRegistry([modules_dir]).modules())
        assert hooks.local("app", "init").name == "init.pl"


@pytest.mark.unit
class TestLocalDispatch:
    """Test local hook dispatch."""

    def test_runs_in_given_order(self, db_and_web: Path, dispatcher_for, fake_runner: FakeRunner):
        report = dispatcher_for().run_local("init", ["db", "web"])

        assert report.ok
        assert fake_runner.hooks_run == ["db/init.sh", "web/init.sh"]
        assert fake_runner.calls[0]["args"][0] == "sh"

    def test_failure_does_not_stop_dispatch(
        self, modules_dir: Path, dispatcher_for, fake_runner: FakeRunner
    ):
        make_module(modules_dir, "aaa", hooks={"enable.sh": "exit 1"})
        make_module(modules_dir, "bbb", hooks={"enable.sh": "exit 0"})
        fake_runner.respond(
            lambda args: "/aaa/hooks/" in args[-1], result(stderr="permission denied", code=3)
        )

        report = dispatcher_for().run_local("enable", ["aaa", "bbb"])

        assert not report.ok
        assert fake_runner.hooks_run == ["aaa/enable.sh", "bbb/enable.sh"]
        assert report.failed_modules() == ["aaa"]
        failure = report.failures[0]
        assert isinstance(failure, HookFailure)
        assert failure.output == "permission denied"
        assert "exit code 3" in str(failure)

    def test_arguments_and_mode(self, modules_dir: Path, dispatcher_for, fake_runner: FakeRunner):
        make_module(modules_dir, "app", hooks={"upgrade.sh": ""})

        dispatcher_for().run_local("upgrade", ["app"], args=["1.0", "1.1"], mode="backend")

        call = fake_runner.calls[0]
        assert call["args"][-2:] == ["1.0", "1.1"]
        assert call["env"]["COMPOSE_PROFILES"] == "backend"
        assert call["env"]["GENORING_MODULE_DIR"] == str(modules_dir / "app")

    def test_real_hook_environment(self, ctx: Context, modules_dir: Path, dispatcher_for):
        """Local hooks see the module env files and GenoRing variables."""
        make_module(
            modules_dir,
            "app",
            hooks={
                "state.sh": 'echo "$GREETING $(basename "$GENORING_MODULE_DIR") $COMPOSE_PROJECT_NAME"\n'
            },
        )
        ctx.env_dir.mkdir()
        (ctx.env_dir / "app_main.env").write_text("GREETING=hello\n")

        dispatcher = dispatcher_for(runner=run_process)
        output = dispatcher.run_local_hook(dispatcher.hooks.local("app", "state"))

        assert output.ok
        assert output.stdout.strip() == "hello app genoring"


@pytest.mark.unit
class TestContainerDispatch:
    """Test container hook dispatch."""

    @pytest.fixture
    def modules(self, modules_dir: Path) -> Path:
        make_module(
            modules_dir,
            "db",
            services={"genoring-db": {"image": "postgres"}},
            hooks={"backup_genoring-db.sh": ""},
        )
        make_module(
            modules_dir,
            "web",
            services={"genoring-web": {"image": "nginx"}},
            hooks={"backup_genoring-web.sh": "", "backup_genoring-db.sh": ""},
        )
        return modules_dir

    SERVICES = {"genoring-db": "db", "genoring-web": "web"}

    def test_runs_every_hook(self, modules, dispatcher_for, mock_docker: Mock, ctx: Context):
        report = dispatcher_for().run_container("backup", self.SERVICES, ["db", "web"], args=["b1"])

        assert report.ok
        assert [(h.module, h.service) for h in report.ran] == [
            ("db", "genoring-db"),
            ("web", "genoring-db"),
            ("web", "genoring-web"),
        ]
        container, module, hook_file, args, env_files = mock_docker.exec_hook.call_args_list[0][0]
        assert (container, module, hook_file, list(args)) == (
            "genoring-db", "db", "backup_genoring-db.sh", ["b1"]
        )

    def test_changing_module_filter(self, modules, dispatcher_for):
        """Only the changing module's hooks and hooks targeting its services run."""
        report = dispatcher_for().run_container("backup", self.SERVICES, ["db", "web"], changing="db")
        assert [(h.module, h.service) for h in report.ran] == [
            ("db", "genoring-db"),
            ("web", "genoring-db"),
        ]

        report = dispatcher_for().run_container(
            "backup", self.SERVICES, ["db", "web"], changing="db", related=False
        )
        assert [(h.module, h.service) for h in report.ran] == [("db", "genoring-db")]

    def test_disabled_service_skipped(self, modules, dispatcher_for):
        report = dispatcher_for().run_container("backup", {"genoring-db": "db"}, ["db", "web"])
        assert [h.service for h in report.ran] == ["genoring-db", "genoring-db"]

    def test_not_running_container_skipped(self, modules, dispatcher_for, mock_docker: Mock):
        mock_docker.container_state.return_value = ContainerState.EXITED

        report = dispatcher_for().run_container("backup", self.SERVICES, ["db", "web"])

        assert report.ran == []
        assert len(report.skipped) == 3
        assert report.ok
        mock_docker.exec_hook.assert_not_called()

    def test_env_files_of_owner_and_hook_module(
        self, modules, dispatcher_for, mock_docker: Mock, ctx: Context
    ):
        ctx.env_dir.mkdir()
        (ctx.env_dir / "db_db.env").write_text("A=1\n")
        (ctx.env_dir / "web_web.env").write_text("B=2\n")

        dispatcher_for().run_container("backup", {"genoring-db": "db"}, ["web"])

        env_files = mock_docker.exec_hook.call_args[0][4]
        assert [p.name for p in env_files] == ["db_db.env", "web_web.env"]

    def test_failed_hook_collected(self, modules, dispatcher_for, mock_docker: Mock):
        mock_docker.exec_hook.return_value = result(stdout="oops", code=2)

        report = dispatcher_for().run_container("backup", self.SERVICES, ["db"])

        assert report.failed_modules() == ["db"]
        assert report.failures[0].service == "genoring-db"

    def test_copy_failure_collected(self, modules, dispatcher_for, mock_docker: Mock):
        mock_docker.copy_modules.side_effect = ProcessError("copy failed")

        report = dispatcher_for().run_container("backup", self.SERVICES, ["db"])

        assert report.failed_modules() == ["db"]
        mock_docker.exec_hook.assert_not_called()


@pytest.mark.unit
class TestModuleState:
    """Test runtime state detection."""

    def test_state_hook(self, modules_dir: Path, dispatcher_for, fake_runner: FakeRunner):
        make_module(modules_dir, "app", hooks={"state.sh": ""})
        fake_runner.respond(lambda args: True, result(stdout="running\n"))

        assert dispatcher_for().module_state("app") == ContainerState.RUNNING

    def test_failing_state_hook_is_unknown(
        self, modules_dir: Path, dispatcher_for, fake_runner: FakeRunner
    ):
        make_module(modules_dir, "app", hooks={"state.sh": ""})
        fake_runner.respond(lambda args: True, result(stdout="running", code=1))

        assert dispatcher_for().module_state("app") == ContainerState.UNKNOWN

    def test_empty_state_is_unknown(self, modules_dir: Path, dispatcher_for):
        make_module(modules_dir, "app", hooks={"state.sh": ""})
        assert dispatcher_for().module_state("app") == ContainerState.UNKNOWN

    def test_containers(self, modules_dir: Path, dispatcher_for, mock_docker: Mock):
        make_module(modules_dir, "app", services={"genoring-a": {}, "genoring-b": {}})
        states = {"genoring-a": ContainerState.RUNNING, "genoring-b": ContainerState.RESTARTING}
        mock_docker.container_state.side_effect = lambda name: states[name]

        dispatcher = dispatcher_for()
        assert dispatcher.module_state("app", ["genoring-a", "genoring-b"]) == ContainerState.RESTARTING
        assert dispatcher.module_state("app", ["genoring-a"]) == ContainerState.RUNNING
        assert dispatcher.module_state("app", []) == ContainerState.UNKNOWN
