# upm/adapters/chocolatey.py

from upm.adapters.base import PackageManagerAdapter
from upm.core.registry import PackageManager, adapter


@adapter(PackageManager.CHOCOLATEY)
class ChocolateyAdapter(PackageManagerAdapter):
    COMMAND = "choco"
    DISPLAY_NAME = "Chocolatey"
    DESCRIPTION = "Community package manager for Windows software (choco)."
    UPDATE_ARGS = "upgrade all -y --no-progress"
    DRY_RUN_ARGS = "outdated --limit-output"
