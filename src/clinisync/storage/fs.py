"""Filesystem primitives for the ``.clinisync/`` data directory.

Record envelopes, the change ledger's sequence file, and ``config.json`` are
replaced atomically.  The pending ledger itself is append-only JSONL.
"""

from __future__ import annotations

import os
import tempfile
from collections.abc import Iterator
from pathlib import Path

CLINISYNC_DIR = ".clinisync"
CLINISYNC_ROOT_ENV = "CLINISYNC_ROOT"

DATA_SUBDIRS = ("records", "changes", "locks")


class ClinisyncRootError(Exception):
    """CLINISYNC_ROOT is set but does not name an initialized project."""


def _sync_dir(directory: Path) -> None:
    # Directory fsync is unsupported on some filesystems (macOS HFS+).
    try:
        fd = os.open(str(directory), os.O_RDONLY)
    except OSError:
        return
    try:
        os.fsync(fd)
    except OSError:
        pass
    finally:
        os.close(fd)


def _write_all(fd: int, data: bytes) -> None:
    view = memoryview(data)
    while view:
        view = view[os.write(fd, view):]


def atomic_write(path: Path, content: str | bytes) -> None:
    """Replace *path* with *content* so readers see the old or new file, never a mix.

    Data goes to a sibling temp file which is fsynced and renamed over the
    target; on any failure the temp file is removed and the target is left
    untouched.

    Raises:
        FileNotFoundError: If the parent directory does not exist.
    """
    directory = path.parent
    if not directory.is_dir():
        raise FileNotFoundError(f"Parent directory does not exist: {directory}")
    payload = content.encode("utf-8") if isinstance(content, str) else content

    fd, tmp_name = tempfile.mkstemp(dir=directory, prefix=".tmp.")
    fd_open = True
    try:
        _write_all(fd, payload)
        os.fsync(fd)
        os.close(fd)
        fd_open = False
        os.replace(tmp_name, path)
    except BaseException:
        if fd_open:
            os.close(fd)
        _unlink_quietly(tmp_name)
        raise
    _sync_dir(directory)


def _unlink_quietly(name: str) -> None:
    try:
        os.unlink(name)
    except OSError:
        pass


def jsonl_append(path: Path, line: str) -> None:
    """Append one newline-terminated line to *path* and fsync it.

    No locking here; ledger writers hold the ``ledger`` lock.
    """
    with open(path, "a", encoding="utf-8") as fh:
        fh.write(line)
        fh.flush()
        os.fsync(fh.fileno())
    _sync_dir(path.parent)


def iter_jsonl(path: Path) -> Iterator[tuple[int, str]]:
    """Yield ``(line_number, line)`` for each non-blank line of *path*.

    A missing file yields nothing.
    """
    if not path.exists():
        return
    with open(path, encoding="utf-8") as fh:
        for lineno, line in enumerate(fh, start=1):
            if line.strip():
                yield lineno, line


def ensure_clinisync_dirs(root: Path) -> Path:
    """Create ``.clinisync/`` with its records, changes and locks folders.

    Safe to call on an existing layout.  Returns the data directory.
    """
    data_dir = root / CLINISYNC_DIR
    for name in DATA_SUBDIRS:
        (data_dir / name).mkdir(parents=True, exist_ok=True)
    (data_dir / "changes" / "pending.jsonl").touch(exist_ok=True)
    return data_dir


def _check_env_root(value: str) -> Path:
    if not value:
        raise ClinisyncRootError(f"{CLINISYNC_ROOT_ENV} is set but empty")
    root = Path(value)
    if not root.is_dir():
        raise ClinisyncRootError(
            f"{CLINISYNC_ROOT_ENV} points to a path that does not exist: {value}"
        )
    if not (root / CLINISYNC_DIR).is_dir():
        raise ClinisyncRootError(
            f"{CLINISYNC_ROOT_ENV} points to a directory with no {CLINISYNC_DIR}/ inside: {value}"
        )
    return root


def find_root(start: Path | None = None) -> Path | None:
    """Locate the project directory that holds ``.clinisync/``.

    ``CLINISYNC_ROOT`` takes precedence and is never second-guessed by a
    directory walk.  Otherwise walk up from *start* (default: cwd) and
    return the first match, or None.

    Raises:
        ClinisyncRootError: If CLINISYNC_ROOT is set but invalid.
    """
    env_value = os.environ.get(CLINISYNC_ROOT_ENV)
    if env_value is not None:
        return _check_env_root(env_value)

    here = (start or Path.cwd()).resolve()
    for candidate in (here, *here.parents):
        if (candidate / CLINISYNC_DIR).is_dir():
            return candidate
    return None
