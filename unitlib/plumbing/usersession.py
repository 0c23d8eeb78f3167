"""
Relay of service lifecycle requests to the running managers of logged-in users.

Every request is sent to each targeted user's manager in turn, and failures are collected per unit
rather than raised, so that one user's broken session does not block the others.
"""

import logging
import os
import os.path
import pwd
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from .common import ServiceFailure, SystemctlError
from .config import DEFAULT_SESSION_TIMEOUT
from .systemd import Mode, Systemd, UnitStatus


LOG = logging.getLogger(__name__)

SystemdFactory = Callable[[int], Systemd]


def get_session_uids(run_user_dir: str = "/run/user") -> List[int]:
    """
    List users with a running service manager, identified by their session bus socket.
    """
    try:
        entries = os.listdir(run_user_dir)
    except FileNotFoundError:
        return []
    uids = []
    for entry in entries:
        if entry.isdigit() and os.path.exists(os.path.join(run_user_dir, entry, "bus")):
            uids.append(int(entry))
    return sorted(uids)


def usernames_to_uids(users: Iterable[str]) -> List[int]:
    """
    Resolve user names to uids, raising `KeyError` for unknown users.
    """
    uids = []
    for user in users:
        try:
            uids.append(pwd.getpwnam(user).pw_uid)
        except KeyError:
            raise KeyError("Unknown user {!r}".format(user)) from None
    return sorted(set(uids))


class UserSessionClient:
    """
    Client for the service managers of a set of users.

    If `uids` is not given, every user with a running manager is targeted at the time of each call.
    """

    def __init__(self, uids: Optional[Sequence[int]] = None, run_user_dir: str = "/run/user",
                 timeout: float = DEFAULT_SESSION_TIMEOUT,
                 factory: Optional[SystemdFactory] = None):
        self._uids = list(uids) if uids is not None else None
        self.run_user_dir = run_user_dir
        self.timeout = timeout
        self._factory = factory or self._default_factory

    def _default_factory(self, uid: int) -> Systemd:
        return Systemd(Mode.user, pwd.getpwuid(uid).pw_name, self.timeout)

    @property
    def uids(self) -> List[int]:
        if self._uids is not None:
            return self._uids
        return get_session_uids(self.run_user_dir)

    def _sessions(self) -> Iterable[Tuple[int, Systemd]]:
        for uid in self.uids:
            yield uid, self._factory(uid)

    def services_daemon_reload(self) -> List[ServiceFailure]:
        """
        Make each user's manager re-read unit files.
        """
        failures = []
        for uid, sysd in self._sessions():
            try:
                sysd.daemon_reload()
            except SystemctlError as ex:
                failures.append(ServiceFailure(uid, "", str(ex)))
        return failures

    def services_start(self, units: Sequence[str], enable: bool = False,
                       disabled: Optional[Mapping[int, Sequence[str]]] = None,
                       ) -> Tuple[List[ServiceFailure], List[ServiceFailure]]:
        """
        Start (and optionally enable) units one at a time for each user, skipping units the user
        has disabled.

        If any unit fails to start, the units started so far for that user are stopped again, and
        disabled if they were enabled.  Returns start failures, and failures of that cleanup.
        """
        start_failures: List[ServiceFailure] = []
        stop_failures: List[ServiceFailure] = []
        for uid, sysd in self._sessions():
            skip = set((disabled or {}).get(uid, ()))
            wanted = [unit for unit in units if unit not in skip]
            if not wanted:
                continue
            enabled = False
            started: List[str] = []
            current = ""
            try:
                if enable:
                    sysd.enable_no_reload(wanted)
                    enabled = True
                    sysd.daemon_reload()
                for unit in wanted:
                    current = unit
                    sysd.start([unit])
                    started.append(unit)
            except SystemctlError as ex:
                start_failures.append(ServiceFailure(uid, current, str(ex)))
                for unit in reversed(started):
                    try:
                        sysd.stop([unit])
                    except SystemctlError as stop_ex:
                        stop_failures.append(ServiceFailure(uid, unit, str(stop_ex)))
                if enabled:
                    try:
                        sysd.disable_no_reload(wanted)
                        sysd.daemon_reload()
                    except SystemctlError as stop_ex:
                        stop_failures.append(ServiceFailure(uid, "", str(stop_ex)))
        return start_failures, stop_failures

    def services_stop(self, units: Sequence[str], disable: bool = False) -> List[ServiceFailure]:
        """
        Stop (and optionally disable) units for each user, continuing past failures.
        """
        failures = []
        for uid, sysd in self._sessions():
            for unit in units:
                try:
                    sysd.stop([unit])
                except SystemctlError as ex:
                    failures.append(ServiceFailure(uid, unit, str(ex)))
            if disable and units:
                try:
                    sysd.disable_no_reload(units)
                    sysd.daemon_reload()
                except SystemctlError as ex:
                    failures.append(ServiceFailure(uid, "", str(ex)))
        return failures

    def services_restart(self, units: Sequence[str], reload: bool = False) -> List[ServiceFailure]:
        """
        Restart units for each user, or reload those supporting it if `reload` is set.
        """
        failures = []
        for uid, sysd in self._sessions():
            for unit in units:
                try:
                    if reload:
                        sysd.reload_or_restart([unit])
                    else:
                        sysd.restart([unit])
                except SystemctlError as ex:
                    failures.append(ServiceFailure(uid, unit, str(ex)))
        return failures

    def service_status(self, units: Sequence[str]) -> Dict[int, List[UnitStatus]]:
        """
        Query unit states for each user, leaving out users whose manager can't be reached.
        """
        statuses = {}
        for uid, sysd in self._sessions():
            try:
                statuses[uid] = sysd.status(units)
            except SystemctlError as ex:
                LOG.info("Can't query services of uid %d: %s", uid, ex)
        return statuses

    def __repr__(self) -> str:
        return "<{}: {!r}>".format(self.__class__.__name__, self._uids)
