# upm/adapters/npm.py

from upm.adapters.base import PackageManagerAdapter
from upm.core.registry import PackageManager, adapter
from upm.core.types import ProcessResult

# `npm outdated` exits 1 whenever it has something to report
NPM_OUTDATED_EXIT_CODE = 1


@adapter(PackageManager.NPM)
class NpmAdapter(PackageManagerAdapter):
    COMMAND = "npm"
    DISPLAY_NAME = "npm"
    DESCRIPTION = "Node.js package manager; updates globally installed packages."
    UPDATE_ARGS = "update -g"
    DRY_RUN_ARGS = "outdated -g"

    def is_acceptable(self, result: ProcessResult, dry_run: bool) -> bool:
        if result.success:
            return True
        return dry_run and not result.timed_out and result.exit_code == NPM_OUTDATED_EXIT_CODE
