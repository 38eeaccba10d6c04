"""Per-record and ledger file locks under ``.clinisync/locks/``."""

from __future__ import annotations

import contextlib
import re
from collections.abc import Generator, Iterable
from pathlib import Path

from filelock import FileLock, Timeout

_UNSAFE_KEY_CHARS = re.compile(r"[^A-Za-z0-9_.-]")


class LockTimeout(Exception):
    """Raised when a lock cannot be acquired within the timeout period."""


def lock_key(*parts: str) -> str:
    """Join *parts* into a filesystem-safe lock key.

    Resource ids may contain characters that are awkward in file names, so
    anything outside ``[A-Za-z0-9_.-]`` is replaced with ``_``.
    """
    return "_".join(_UNSAFE_KEY_CHARS.sub("_", part) for part in parts)


def _acquire(locks_dir: Path, key: str, timeout: float) -> FileLock:
    lock = FileLock(locks_dir / f"{key}.lock", timeout=timeout)
    try:
        lock.acquire()
    except Timeout:
        raise LockTimeout(f"Could not acquire lock '{key}' within {timeout}s") from None
    return lock


@contextlib.contextmanager
def store_lock(locks_dir: Path, key: str, timeout: float = 10) -> Generator[None, None, None]:
    """Hold ``locks_dir/<key>.lock`` for the duration of the block.

    Raises:
        LockTimeout: If the lock cannot be acquired within *timeout* seconds.
    """
    lock = _acquire(locks_dir, key, timeout)
    try:
        yield
    finally:
        lock.release()


@contextlib.contextmanager
def multi_lock(
    locks_dir: Path,
    keys: Iterable[str],
    timeout: float = 10,
) -> Generator[None, None, None]:
    """Hold several locks at once, taken in sorted order.

    Duplicate keys are acquired once.  Whatever was acquired is released in
    reverse order, including when a later acquisition times out.

    Raises:
        LockTimeout: If any lock cannot be acquired within *timeout* seconds.
    """
    held: list[FileLock] = []
    try:
        for key in sorted(set(keys)):
            held.append(_acquire(locks_dir, key, timeout))
        yield
    finally:
        while held:
            held.pop().release()
