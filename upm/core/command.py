# upm/core/command.py

import contextlib
import os
import shlex
import shutil
import signal
import subprocess
import sys
import time
from collections.abc import Callable, Sequence
from pathlib import Path

from upm.core.errors import ExecutableNotFoundError, ProcessLaunchError
from upm.core.logger import LoggerProxy
from upm.core.types import CommandProbe, ProcessResult

log = LoggerProxy(__name__)

# Tried in this order when the literal path is not a file. Also the probe's
# preference order: native executables win over script shims.
EXECUTABLE_EXTENSIONS = (".exe", ".cmd", ".bat", ".ps1")

DEFAULT_TIMEOUT_SECONDS = 300
PROBE_TIMEOUT_SECONDS = 30
TIMEOUT_EXIT_CODE = -1

# No console window flashes up when running from a scheduled task
_CREATION_FLAGS = getattr(subprocess, "CREATE_NO_WINDOW", 0)
# Pipes left open by a surviving grandchild must not block past the timeout
KILL_GRACE_SECONDS = 5


def resolve_executable(file_path: str) -> str:
    """
    Resolve ``file_path`` to something launchable.

    Order: the literal file, then ``file_path`` + each of .exe/.cmd/.bat/.ps1
    (on disk, then on PATH), then a plain PATH lookup.

    Raises:
        ExecutableNotFoundError: nothing matched.
    """
    if Path(file_path).is_file():
        return file_path

    for ext in EXECUTABLE_EXTENSIONS:
        candidate = f"{file_path}{ext}"
        if Path(candidate).is_file():
            return candidate
        found = shutil.which(candidate)
        if found:
            return found

    found = shutil.which(file_path)
    if found:
        return found

    raise ExecutableNotFoundError(file_path)


def _build_command(executable: str, arguments: Sequence[str]) -> list[str]:
    if executable.lower().endswith(".ps1"):
        return [
            "powershell.exe",
            "-NoProfile",
            "-NonInteractive",
            "-ExecutionPolicy",
            "Bypass",
            "-File",
            executable,
            *arguments,
        ]
    return [executable, *arguments]


def _kill_process_tree(process: subprocess.Popen) -> None:
    """
    Kill ``process`` and everything it started. Wrapper scripts such as
    npm.cmd or conda.bat leave the real work to a grandchild.
    """
    if sys.platform == "win32":
        try:
            subprocess.run(
                ["taskkill", "/T", "/F", "/PID", str(process.pid)],
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                creationflags=_CREATION_FLAGS,
                timeout=KILL_GRACE_SECONDS,
            )
        except (OSError, subprocess.SubprocessError) as e:
            log.warning(f"taskkill failed for PID {process.pid}: {e}")
    else:
        try:
            os.killpg(process.pid, signal.SIGKILL)
        except OSError as e:
            log.debug(f"killpg failed for PID {process.pid}: {e}")
    # The direct child at least must go, whatever happened above
    with contextlib.suppress(OSError):
        process.kill()


def run_process(
    file_path: str,
    arguments: Sequence[str] = (),
    working_directory: str | None = None,
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
) -> ProcessResult:
    """
    Launch an external program and wait for it, at most ``timeout_seconds``.

    The exit code is reported as-is; deciding whether a nonzero code is
    acceptable is the caller's business.

    Raises:
        ExecutableNotFoundError: ``file_path`` could not be resolved.
        ProcessLaunchError: the OS failed to start the resolved executable.
    """
    executable = resolve_executable(file_path)
    cmd_list = _build_command(executable, list(arguments))
    arg_str = shlex.join(list(arguments))
    log.debug(f"Running: {shlex.join(cmd_list)}" + (f" in {working_directory}" if working_directory else ""))

    started = time.monotonic()
    try:
        process = subprocess.Popen(
            cmd_list,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            encoding="utf-8",
            errors="replace",
            cwd=working_directory,
            creationflags=_CREATION_FLAGS,
            # Own process group on POSIX so a timeout can kill the whole tree
            start_new_session=sys.platform != "win32",
        )
    except OSError as e:
        raise ProcessLaunchError(f"Failed to start {executable}: {e}") from e

    try:
        stdout, stderr = process.communicate(timeout=timeout_seconds)
    except subprocess.TimeoutExpired:
        _kill_process_tree(process)
        try:
            process.communicate(timeout=KILL_GRACE_SECONDS)
        except subprocess.TimeoutExpired:
            log.warning(f"Output pipes of {executable} still open after kill; abandoning them.")
        log.warning(f"Process timed out after {timeout_seconds}s: {executable} {arg_str}")
        return ProcessResult(
            exit_code=TIMEOUT_EXIT_CODE,
            duration=float(timeout_seconds),
            timed_out=True,
            success=False,
            file_path=executable,
            arguments=arg_str,
        )

    duration = time.monotonic() - started
    stdout = (stdout or "").strip()
    stderr = (stderr or "").strip()

    if stdout:
        log.debug(f"STDOUT: {stdout}")
    if stderr:
        log.debug(f"STDERR (RC={process.returncode}): {stderr}")
    log.debug(f"Process finished with exit code {process.returncode} in {duration:.2f}s.")

    return ProcessResult(
        exit_code=process.returncode,
        duration=duration,
        timed_out=False,
        success=process.returncode == 0,
        stdout=stdout,
        stderr=stderr,
        file_path=executable,
        arguments=arg_str,
    )


def run_with_retry(
    file_path: str,
    arguments: Sequence[str] = (),
    max_retries: int = 2,
    retry_delay_seconds: float = 5,
    working_directory: str | None = None,
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
    accept: Callable[[ProcessResult], bool] | None = None,
) -> ProcessResult:
    """
    Run ``file_path`` up to ``max_retries + 1`` times, stopping at the first
    success. After exhausting every attempt the last failed result is
    returned, not raised. An exception on the final attempt propagates.

    ``accept`` widens what counts as success for tools with benign nonzero
    exit codes; by default only exit code 0 stops the loop.
    """
    attempts = max(0, max_retries) + 1
    last_result: ProcessResult | None = None

    for attempt in range(1, attempts + 1):
        try:
            last_result = run_process(
                file_path,
                arguments,
                working_directory=working_directory,
                timeout_seconds=timeout_seconds,
            )
        except Exception as e:
            if attempt == attempts:
                log.error(f"Attempt {attempt}/{attempts} for {file_path} raised: {e}")
                raise
            log.warning(f"Attempt {attempt}/{attempts} for {file_path} raised: {e}")
        else:
            if last_result.success or (accept is not None and accept(last_result)):
                if attempt > 1:
                    log.info(f"{file_path} succeeded on attempt {attempt}/{attempts}.")
                return last_result
            reason = "timed out" if last_result.timed_out else f"exit code {last_result.exit_code}"
            log.warning(f"Attempt {attempt}/{attempts} for {file_path} failed ({reason}).")

        if attempt < attempts:
            log.debug(f"Retrying in {retry_delay_seconds}s...")
            time.sleep(retry_delay_seconds)

    assert last_result is not None
    return last_result


def find_command(name: str) -> str | None:
    """PATH lookup preferring .exe over .cmd over .bat over .ps1."""
    if Path(name).suffix.lower() in EXECUTABLE_EXTENSIONS:
        return shutil.which(name)
    for ext in EXECUTABLE_EXTENSIONS:
        found = shutil.which(f"{name}{ext}")
        if found:
            return found
    return shutil.which(name)


def probe_command(
    name: str,
    test_args: Sequence[str] = ("--version",),
    timeout_seconds: float = PROBE_TIMEOUT_SECONDS,
    path: str | None = None,
) -> CommandProbe:
    """
    Check that ``name`` resolves and answers a cheap invocation.

    Never raises: any failure becomes ``available=False`` with an error.
    ``path`` skips the lookup when the caller already located the executable.
    """
    try:
        resolved = path or find_command(name)
        if not resolved:
            return CommandProbe(name=name, available=False, error=f"Command not found: {name}")

        result = run_process(resolved, test_args, timeout_seconds=timeout_seconds)
        output = result.stdout or result.stderr
        version = next((line.strip() for line in output.splitlines() if line.strip()), None)

        if result.timed_out:
            error = f"Probe timed out after {timeout_seconds}s"
        elif not result.success:
            error = f"Probe exited with code {result.exit_code}"
        else:
            error = None

        return CommandProbe(
            name=name,
            available=result.success,
            path=resolved,
            version=version,
            exit_code=result.exit_code,
            error=error,
        )
    except Exception as e:
        log.debug(f"Probe for {name} failed: {e}")
        return CommandProbe(name=name, available=False, error=str(e))

