# upm/core/errors.py


class UpmError(Exception):
    """Base class for every error raised by upm."""


class ExecutableNotFoundError(UpmError, FileNotFoundError):
    """The requested executable could not be resolved on disk or on PATH."""

    def __init__(self, name: str):
        super().__init__(f"Executable not found: {name}")
        self.name = name


class ProcessLaunchError(UpmError):
    """The OS refused to start a resolved executable."""


class ConfigError(UpmError):
    """A merged configuration does not satisfy the schema."""


class PathSafetyError(UpmError):
    """Base for failures in the PATH backup / validate / apply cycle."""


class PathBackupError(PathSafetyError):
    pass


class PathChangeError(PathSafetyError):
    pass


class UnsupportedPlatformError(UpmError):
    pass
