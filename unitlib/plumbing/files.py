"""
Idempotent unit file writes, with enough bookkeeping to undo a batch of them.
"""

from collections import OrderedDict
import logging
import os
import os.path
import stat
from typing import Dict, NamedTuple, Optional

from .common import InternalError, Result, State


LOG = logging.getLogger(__name__)

DEFAULT_MODE = 0o644


class FileState(NamedTuple):
    """
    Snapshot of a file's content and permission bits.
    """

    content: bytes
    mode: int


def get_file_state(path: str) -> Optional[FileState]:
    """
    Read the current state of a file, or `None` if it doesn't exist.
    """
    try:
        stats = os.stat(path)
    except FileNotFoundError:
        return None
    with open(path, "rb") as handle:
        content = handle.read()
    return FileState(content, stat.S_IMODE(stats.st_mode))


def _write(path: str, state: FileState) -> None:
    # Write next to the target and rename over it, so readers never see a partial file.
    tmp = "{}.~{}~".format(path, os.getpid())
    try:
        with open(tmp, "wb") as handle:
            handle.write(state.content)
        os.chmod(tmp, state.mode)
        os.replace(tmp, path)
    except OSError:
        try:
            os.unlink(tmp)
        except FileNotFoundError:
            pass
        raise


def ensure_file(path: str, content: bytes, mode: Optional[int] = None) -> Result[Optional[FileState]]:
    """
    Make a file hold the given content, creating parent directories as needed.

    An existing file keeps its mode unless one is given.  The value of the result is the state of
    the file before any change (`None` if it didn't exist), for use in rollback.
    """
    old = get_file_state(path)
    if mode is None:
        mode = old.mode if old else DEFAULT_MODE
    new = FileState(content, mode)
    if old == new:
        return Result(State.unchanged, old)
    os.makedirs(os.path.dirname(path), 0o755, exist_ok=True)
    _write(path, new)
    LOG.debug("Wrote %r (%d bytes, mode %o)", path, len(content), mode)
    return Result(State.success if old else State.created, old)


def restore_file(path: str, state: Optional[FileState]) -> Result[None]:
    """
    Put a file back to a previous state, deleting it if it previously didn't exist.
    """
    if state is None:
        try:
            os.unlink(path)
        except FileNotFoundError:
            return Result(State.unchanged)
        LOG.debug("Removed %r", path)
        return Result(State.success)
    if get_file_state(path) == state:
        return Result(State.unchanged)
    os.makedirs(os.path.dirname(path), 0o755, exist_ok=True)
    _write(path, state)
    LOG.debug("Restored %r", path)
    return Result(State.success)


def remove_file(path: str) -> Result[None]:
    """
    Delete a file if it exists.
    """
    try:
        os.unlink(path)
    except FileNotFoundError:
        return Result(State.unchanged)
    LOG.debug("Removed %r", path)
    return Result(State.success)


class UnitTransaction:
    """
    Record of files changed during a batch of writes, which must end in exactly one of `commit`
    or `rollback`:

        txn = UnitTransaction()
        try:
            res = ensure_file(path, content)
            if res:
                txn.record(path, res.value)
        except Exception:
            txn.rollback(notifier)
            raise
        else:
            txn.commit()
    """

    def __init__(self):
        self.modified: Dict[str, Optional[FileState]] = OrderedDict()
        self._done = False

    def record(self, path: str, prior: Optional[FileState]) -> None:
        """
        Remember the state of a file before it was modified; only the first state seen for each
        path is kept.
        """
        self._check()
        if path not in self.modified:
            self.modified[path] = prior

    def _check(self) -> None:
        if self._done:
            raise InternalError("Transaction already finished")

    def commit(self) -> None:
        """
        Accept all changes, discarding the recorded prior states.
        """
        self._check()
        self._done = True
        self.modified.clear()

    def rollback(self, notifier) -> None:
        """
        Restore every modified file to its recorded state, reporting (not raising) failures.
        """
        self._check()
        self._done = True
        for path, prior in reversed(self.modified.items()):
            try:
                restore_file(path, prior)
            except OSError as ex:
                if prior is None:
                    msg = "while trying to remove {} due to previous failure: {}"
                else:
                    msg = "while trying to rollback {} due to previous failure: {}"
                notifier.notify(msg.format(path, ex))
        self.modified.clear()

    def __bool__(self) -> bool:
        return bool(self.modified)

    def __len__(self) -> int:
        return len(self.modified)
