import pytest

from upm.adapters import conda as conda_module
from upm.adapters.base import PackageManagerAdapter
from upm.core import command
from upm.core.registry import PackageManager, get_adapter, get_adapter_registry
from upm.core.task import Operation
from upm.core.types import CommandProbe, ProcessResult


def _result(code=0, timed_out=False, stdout="", stderr=""):
    return ProcessResult(
        exit_code=code,
        duration=0.5,
        timed_out=timed_out,
        success=code == 0 and not timed_out,
        stdout=stdout,
        stderr=stderr,
    )


class _Launches(list):
    """Every process launch; ``answers`` maps the first two arguments to queued outcomes."""

    def __init__(self):
        super().__init__()
        self.answers = {}


@pytest.fixture
def calls(monkeypatch):
    recorded = _Launches()

    def fake_run(file_path, arguments=(), working_directory=None, timeout_seconds=300):
        recorded.append([file_path, *arguments])
        queue = recorded.answers.get(tuple(arguments[:2]))
        if queue:
            outcome = queue.pop(0)
            if isinstance(outcome, Exception):
                raise outcome
            return outcome
        return _result(0)

    monkeypatch.setattr(command, "run_process", fake_run)
    monkeypatch.setattr(command.time, "sleep", lambda s: None)
    monkeypatch.setattr(command, "find_command", lambda name: f"C:/bin/{name}.exe")
    return recorded


def test_registry_has_every_manager_in_order():
    registry = get_adapter_registry()
    assert list(registry) == list(PackageManager)
    for manager, cls in registry.items():
        assert issubclass(cls, PackageManagerAdapter)
        assert cls.MANAGER is manager


def test_choco_alias_resolves():
    assert get_adapter("choco").name == "chocolatey"


@pytest.mark.parametrize("manager", list(PackageManager))
def test_test_never_raises_when_command_missing(manager, monkeypatch):
    monkeypatch.setattr(command.shutil, "which", lambda name: None)
    monkeypatch.setattr(conda_module, "discover_conda", lambda: None)
    probe = get_adapter(manager).test()
    assert isinstance(probe, CommandProbe)
    assert probe.available is False
    assert probe.name == manager.value
    assert probe.error


@pytest.mark.parametrize("manager", list(PackageManager))
def test_test_never_raises_on_unexpected_error(manager, monkeypatch):
    def _boom(name):
        raise RuntimeError("resolver crashed")

    monkeypatch.setattr(command, "find_command", _boom)
    monkeypatch.setattr(conda_module, "discover_conda", lambda: None)
    probe = get_adapter(manager).test()
    assert probe.available is False
    assert "resolver crashed" in probe.error


def test_info_combines_probe_and_description(monkeypatch):
    monkeypatch.setattr(command.shutil, "which", lambda name: None)
    data = get_adapter("winget").info()
    assert data["name"] == "winget"
    assert data["description"]
    assert data["available"] is False


@pytest.mark.parametrize("manager", list(PackageManager))
def test_dry_run_uses_listing_arguments(manager, calls, make_ctx):
    ctx = make_ctx(dry_run=True)
    adapter = get_adapter(manager)
    result = adapter.update(ctx)

    assert result.operation is Operation.DRY_RUN_CHECK
    assert result.success is True
    dry_args = ctx["config"]["PackageManagers"][manager.value]["dryRunArgs"].split()
    # Exactly one launch: the listing command, no preparation steps
    assert len(calls) == 1
    assert calls[0][1:] == dry_args


@pytest.mark.parametrize(
    "manager,mutating",
    [
        (PackageManager.WINGET, ["upgrade", "--all"]),
        (PackageManager.CHOCOLATEY, ["upgrade", "all"]),
        (PackageManager.SCOOP, ["update", "*"]),
        (PackageManager.NPM, ["update", "-g"]),
        (PackageManager.CONDA, ["update", "--all", "-y"]),
    ],
)
def test_update_runs_mutating_command(manager, mutating, calls, make_ctx):
    result = get_adapter(manager).update(make_ctx())
    assert result.operation is Operation.UPDATE
    assert result.success is True
    assert calls[-1][1 : 1 + len(mutating)] == mutating


def test_winget_partial_success_code_is_accepted(calls, make_ctx):
    calls.answers[("upgrade", "--all")] = [_result(-1978335189)]
    result = get_adapter("winget").update(make_ctx())
    assert result.success is True
    assert result.exit_code == -1978335189
    # No retries for an accepted code
    assert len(calls) == 1


def test_winget_unsigned_partial_success_code_is_accepted(calls, make_ctx):
    calls.answers[("upgrade", "--all")] = [_result(0x8A15002B)]
    assert get_adapter("winget").update(make_ctx()).success is True


def test_winget_other_nonzero_codes_fail_after_retries(calls, make_ctx):
    calls.answers[("upgrade", "--all")] = [_result(5, stderr="boom")] * 3
    result = get_adapter("winget").update(make_ctx())
    assert result.success is False
    assert result.exit_code == 5
    assert "boom" in result.error
    assert len(calls) == 3


def test_npm_outdated_exit_one_is_fine_in_dry_run(calls, make_ctx):
    calls.answers[("outdated", "-g")] = [_result(1, stdout="typescript 5.0 5.4")]
    result = get_adapter("npm").update(make_ctx(dry_run=True))
    assert result.success is True
    assert result.exit_code == 1
    assert "typescript" in result.output


def test_npm_exit_one_fails_real_update(calls, make_ctx):
    calls.answers[("update", "-g")] = [_result(1)] * 3
    assert get_adapter("npm").update(make_ctx()).success is False


def test_timeout_is_reported_distinctly(calls, make_ctx):
    calls.answers[("upgrade", "all")] = [_result(-1, timed_out=True)] * 3
    result = get_adapter("chocolatey").update(make_ctx())
    assert result.success is False
    assert result.timed_out is True
    assert result.exit_code == -1
    assert "Timed out" in result.error


def test_update_exception_becomes_failed_result(calls, make_ctx):
    calls.answers[("update", "-g")] = [RuntimeError("launch exploded")] * 3
    result = get_adapter("npm").update(make_ctx())
    assert result.success is False
    assert "launch exploded" in result.error


def test_configured_timeout_and_retries_are_used(monkeypatch, make_ctx):
    seen = {}

    def fake_retry(executable, arguments, **kwargs):
        seen.update(kwargs)
        return _result(0)

    monkeypatch.setattr(command, "run_with_retry", fake_retry)
    monkeypatch.setattr(command, "find_command", lambda name: name)
    ctx = make_ctx()
    ctx["config"]["PackageManagers"]["pip"]["timeout"] = 42
    ctx["config"]["Advanced"]["maxRetries"] = 7
    get_adapter("pip").update(ctx)
    assert seen["timeout_seconds"] == 42
    assert seen["max_retries"] == 7


def test_pip_update_only_lists(calls, make_ctx):
    result = get_adapter("pip").update(make_ctx())
    assert result.operation is Operation.UPDATE
    assert calls == [["C:/bin/pip.exe", "list", "--outdated", "--disable-pip-version-check"]]


def test_scoop_refreshes_buckets_first(calls, make_ctx):
    get_adapter("scoop").update(make_ctx())
    assert [c[1:] for c in calls] == [["update"], ["update", "*"]]


def test_conda_prepares_non_interactive_update(calls, make_ctx):
    calls.answers[("tos", "accept")] = [_result(1), RuntimeError("no tos plugin"), _result(0)]
    result = get_adapter("conda").update(make_ctx())

    assert result.success is True
    args = [c[1:] for c in calls]
    assert [a[:2] for a in args[:3]] == [["tos", "accept"]] * 3
    assert args[0][-1].endswith("pkgs/main")
    assert args[3] == ["config", "--set", "always_yes", "true"]
    assert args[4] == ["update", "--all", "-y"]


def test_conda_found_outside_path(monkeypatch, tmp_path):
    exe = tmp_path / "miniconda3" / "Scripts" / "conda.exe"
    exe.parent.mkdir(parents=True)
    exe.write_text("")
    monkeypatch.setattr(command, "find_command", lambda name: None)
    monkeypatch.setattr(conda_module, "candidate_roots", lambda: [tmp_path / "anaconda3", tmp_path / "miniconda3"])
    assert get_adapter("conda").resolve_executable() == str(exe)


def test_duration_spans_all_attempts(monkeypatch, make_ctx):
    monkeypatch.setattr(command, "run_with_retry", lambda executable, arguments, **kwargs: _result(0))
    monkeypatch.setattr(command, "find_command", lambda name: name)
    ctx = make_ctx()
    # Two failed attempts plus retry sleeps happened before the last 0.5s one
    monkeypatch.setattr(ctx["session"], "stop_timer", lambda name: 12.0)

    result = get_adapter("chocolatey").update(ctx)
    assert result.duration == 12.0
