# upm/core/types.py
from dataclasses import asdict, dataclass, field
from typing import Any, Literal

PathScope = Literal["user", "machine"]


@dataclass(frozen=True)
class ProcessResult:
    """Outcome of one external process launch. Never mutated once returned."""

    exit_code: int
    duration: float
    timed_out: bool
    success: bool
    stdout: str = ""
    stderr: str = ""
    file_path: str = ""
    arguments: str = ""

    def __bool__(self) -> bool:
        return self.success


@dataclass
class CommandProbe:
    name: str
    available: bool
    path: str | None = None
    version: str | None = None
    exit_code: int | None = None
    error: str | None = None

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class PathBackup:
    backup_id: str
    user_path: str
    machine_path: str
    session_path: str
    timestamp: str
    file_path: str | None = None

    def as_dict(self) -> dict[str, Any]:
        return {
            "backupId": self.backup_id,
            "userPath": self.user_path,
            "machinePath": self.machine_path,
            "sessionPath": self.session_path,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any], file_path: str | None = None) -> "PathBackup":
        return cls(
            backup_id=data["backupId"],
            user_path=data.get("userPath") or "",
            machine_path=data.get("machinePath") or "",
            session_path=data.get("sessionPath") or "",
            timestamp=data.get("timestamp") or "",
            file_path=file_path,
        )


@dataclass
class PathValidation:
    passed: bool
    failure_reason: str | None = None
    warnings: list[str] = field(default_factory=list)

    def __bool__(self) -> bool:
        return self.passed
