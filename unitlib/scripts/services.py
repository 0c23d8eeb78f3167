"""
Scripts to inspect and reload service managers.
"""

from typing import Sequence

from .utils import entrypoint, error
from ..plumbing.common import SystemctlError
from ..plumbing.systemd import UnitStatus
from ..tasks.backend import Backend


def _describe(status: UnitStatus) -> str:
    if not status.installed:
        return "{}: not installed".format(status.name)
    return "{}: {}, {}".format(status.name, "active" if status.active else "inactive",
                               "enabled" if status.enabled else "disabled")


@entrypoint
def reload(backend: Backend, user: bool):
    """
    Make the system service manager, or every running user manager, re-read unit files.

    Usage: {script} [--user]
    """
    if not user:
        try:
            backend.system.daemon_reload()
        except SystemctlError as ex:
            error(str(ex), exit=1)
        return
    failures = backend.sessions().services_daemon_reload()
    for failure in failures:
        error("uid {}: {}".format(failure.uid, failure.error))
    if failures:
        error(exit=1)


@entrypoint
def status(backend: Backend, user: bool, unit: Sequence[str]):
    """
    Show whether units are running and enabled.

    Usage: {script} [--user] UNIT...
    """
    if not user:
        for st in backend.system.status(unit):
            print(_describe(st))
        return
    for uid, statuses in sorted(backend.sessions().service_status(unit).items()):
        for st in statuses:
            print("[uid {}] {}".format(uid, _describe(st)))
