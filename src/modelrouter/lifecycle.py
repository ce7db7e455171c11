"""PID-file bookkeeping for the single background service instance."""

import os
from pathlib import Path

import structlog

_log = structlog.get_logger(__name__)


def read_pid(pid_file: Path) -> int | None:
    path = pid_file.expanduser()
    try:
        return int(path.read_text(encoding="utf-8").strip())
    except FileNotFoundError:
        return None
    except ValueError:
        _log.warning("pid_file_corrupt", path=str(path))
        return None


def is_running(pid_file: Path) -> bool:
    """Return ``True`` if the PID file names a live process.

    A stale PID file (process gone) is removed as a side effect.
    """
    pid = read_pid(pid_file)
    if pid is None:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        cleanup(pid_file)
        return False
    except PermissionError:
        # Exists but owned by someone else.
        return True
    return True


def save_pid(pid_file: Path, pid: int | None = None) -> None:
    path = pid_file.expanduser()
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(str(pid if pid is not None else os.getpid()), encoding="utf-8")
    _log.info("pid_saved", path=str(path), pid=pid or os.getpid())


def cleanup(pid_file: Path) -> None:
    path = pid_file.expanduser()
    if path.exists():
        path.unlink(missing_ok=True)
        _log.info("pid_file_removed", path=str(path))
