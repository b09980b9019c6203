# upm/adapters/scoop.py

from upm.adapters.base import PackageManagerAdapter
from upm.core import command
from upm.core.logger import LoggerProxy
from upm.core.registry import PackageManager, adapter
from upm.core.task import TaskContext

log = LoggerProxy(__name__)

BUCKET_REFRESH_TIMEOUT_SECONDS = 300


@adapter(PackageManager.SCOOP)
class ScoopAdapter(PackageManagerAdapter):
    COMMAND = "scoop"
    DISPLAY_NAME = "Scoop"
    DESCRIPTION = "Command-line installer for Windows; updates every installed app."
    UPDATE_ARGS = "update *"
    DRY_RUN_ARGS = "status"

    def before_update(self, ctx: TaskContext, executable: str, dry_run: bool) -> None:
        if dry_run:
            return
        # Refresh scoop itself and its buckets so `update *` sees new manifests
        result = command.run_process(executable, ["update"], timeout_seconds=BUCKET_REFRESH_TIMEOUT_SECONDS)
        if not result.success:
            log.warning(f"Scoop bucket refresh exited with code {result.exit_code}; updating apps anyway.")
