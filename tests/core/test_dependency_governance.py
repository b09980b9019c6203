import ast
from pathlib import Path

PACKAGE_ROOT = Path(__file__).resolve().parents[2] / "upm"


def _calls(tree):
    for node in ast.walk(tree):
        if isinstance(node, ast.Call):
            yield node


def test_no_shell_true_anywhere():
    offenders = []
    for py in PACKAGE_ROOT.rglob("*.py"):
        tree = ast.parse(py.read_text(encoding="utf-8"))
        for call in _calls(tree):
            for kw in call.keywords:
                if kw.arg == "shell" and isinstance(kw.value, ast.Constant) and kw.value.value is True:
                    offenders.append(f"{py.relative_to(PACKAGE_ROOT)}:{call.lineno}")
    assert offenders == []


def test_processes_are_only_spawned_by_the_command_module():
    spawners = {"Popen", "run", "call", "check_call", "check_output", "system"}
    offenders = []
    for py in PACKAGE_ROOT.rglob("*.py"):
        if py.name == "command.py":
            continue
        tree = ast.parse(py.read_text(encoding="utf-8"))
        for call in _calls(tree):
            func = call.func
            if (
                isinstance(func, ast.Attribute)
                and func.attr in spawners
                and isinstance(func.value, ast.Name)
                and func.value.id in {"subprocess", "os"}
            ):
                offenders.append(f"{py.relative_to(PACKAGE_ROOT)}:{call.lineno}")
    assert offenders == []
