# upm/adapters/pip.py

from upm.adapters.base import PackageManagerAdapter
from upm.core.logger import LoggerProxy
from upm.core.registry import PackageManager, adapter
from upm.core.task import TaskContext

log = LoggerProxy(__name__)


@adapter(PackageManager.PIP)
class PipAdapter(PackageManagerAdapter):
    """
    pip has no "upgrade everything" command, so both the update and the
    dry run only list outdated packages. Upgrading them is left to the user.
    """

    COMMAND = "pip"
    DISPLAY_NAME = "pip"
    DESCRIPTION = "Python package installer; reports outdated packages (no bulk upgrade)."
    UPDATE_ARGS = "list --outdated --disable-pip-version-check"
    DRY_RUN_ARGS = "list --outdated --disable-pip-version-check"

    def before_update(self, ctx: TaskContext, executable: str, dry_run: bool) -> None:
        if not dry_run:
            log.warning("pip cannot upgrade all packages at once; listing outdated packages only.")
