# upm/core/io.py
import contextlib
import json
import os
import tempfile
from pathlib import Path
from typing import Any


def atomic_write_text(path: Path | str, content: str, exclusive: bool = False) -> None:
    """
    Write text through a temp file in the destination directory, fsync it,
    then move it into place.

    With ``exclusive=True`` an existing destination is never replaced and
    FileExistsError is raised instead. PATH backups rely on this.
    """
    final_path = Path(path)
    final_path.parent.mkdir(parents=True, exist_ok=True)

    if exclusive and final_path.exists():
        raise FileExistsError(f"Refusing to overwrite {final_path}")

    fd, temp_name = tempfile.mkstemp(
        dir=str(final_path.parent),
        prefix=f".{final_path.name}.",
        suffix=".tmp",
        text=True,
    )
    temp_path = Path(temp_name)

    try:
        try:
            # newline="" keeps the bytes on disk identical to `content`
            temp_file = os.fdopen(fd, "w", encoding="utf-8", newline="")
        except Exception:
            os.close(fd)
            raise

        with temp_file:
            temp_file.write(content)
            temp_file.flush()
            os.fsync(temp_file.fileno())

        if exclusive:
            # os.link fails if the destination appeared in the meantime
            os.link(temp_path, final_path)
            temp_path.unlink()
        else:
            os.replace(temp_path, final_path)  # noqa: PTH105
    except Exception:
        with contextlib.suppress(OSError):
            temp_path.unlink()
        raise


def atomic_write_json(path: Path | str, data: Any, exclusive: bool = False) -> None:
    atomic_write_text(path, json.dumps(data, indent=2, ensure_ascii=False) + "\n", exclusive)


def read_json(path: Path | str) -> Any:
    with Path(path).open("r", encoding="utf-8") as f:
        return json.load(f)
