# upm/adapters/winget.py

from upm.adapters.base import PackageManagerAdapter
from upm.core.registry import PackageManager, adapter
from upm.core.types import ProcessResult

# 0x8A15002B. winget returns it from `upgrade --all` when some packages had no
# applicable upgrade while the rest went through. Only this code is treated
# as partial success; other nonzero codes are failures.
WINGET_PARTIAL_SUCCESS_EXIT_CODE = -1978335189


def is_partial_success(exit_code: int) -> bool:
    # Windows may surface the HRESULT unsigned (2316632107)
    return exit_code & 0xFFFFFFFF == WINGET_PARTIAL_SUCCESS_EXIT_CODE & 0xFFFFFFFF


@adapter(PackageManager.WINGET)
class WingetAdapter(PackageManagerAdapter):
    COMMAND = "winget"
    DISPLAY_NAME = "Windows Package Manager"
    DESCRIPTION = "Microsoft's package manager for Windows applications (winget)."
    UPDATE_ARGS = "upgrade --all --accept-source-agreements --accept-package-agreements --silent --disable-interactivity"
    DRY_RUN_ARGS = "upgrade --accept-source-agreements --disable-interactivity"

    def is_acceptable(self, result: ProcessResult, dry_run: bool) -> bool:
        if result.success:
            return True
        return not result.timed_out and is_partial_success(result.exit_code)
