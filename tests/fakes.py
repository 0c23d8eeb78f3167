from typing import Dict, List, Optional, Sequence, Tuple

from unitlib.notify import RecordingNotifier
from unitlib.plumbing.common import SystemctlError
from unitlib.plumbing.config import Config, Paths
from unitlib.plumbing.package import DaemonScope, PackageInfo
from unitlib.plumbing.systemd import UnitStatus
from unitlib.plumbing.usersession import UserSessionClient
from unitlib.tasks.backend import Backend


class FakeSystemd:
    """
    Stand-in for a service manager, recording each request as `(verb, units)`.

    Requests with no units are not recorded, as the real wrapper doesn't make them.  Set
    `fail[verb]` to `True` to fail every request of that verb, or to a set of units to fail only
    requests naming one of them.
    """

    def __init__(self, statuses: Optional[Dict[str, UnitStatus]] = None):
        self.calls: List[Tuple[str, List[str]]] = []
        self.queries: List[List[str]] = []
        self.fail: Dict[str, object] = {}
        self.statuses = dict(statuses or {})

    def _act(self, verb: str, units: Sequence[str]) -> None:
        units = list(units)
        self.calls.append((verb, units))
        fail = self.fail.get(verb)
        if fail is True or (fail and any(unit in fail for unit in units)):
            raise SystemctlError(["systemctl", verb] + units, "{} failed".format(verb))

    def daemon_reload(self):
        self._act("daemon-reload", [])

    def start(self, units):
        if units:
            self._act("start", units)

    def stop(self, units):
        if units:
            self._act("stop", units)

    def restart(self, units):
        if units:
            self._act("restart", units)

    def reload_or_restart(self, units):
        if units:
            self._act("reload-or-restart", units)

    def enable_no_reload(self, units):
        if units:
            self._act("enable", units)

    def disable_no_reload(self, units):
        if units:
            self._act("disable", units)

    def status(self, units):
        self.queries.append(list(units))
        if self.fail.get("status"):
            raise SystemctlError(["systemctl", "show"] + list(units), "show failed")
        return [self.statuses.get(unit, UnitStatus(unit, False, False)) for unit in units]

    def set_status(self, unit: str, active: bool = False, enabled: bool = False):
        self.statuses[unit] = UnitStatus(unit, active, enabled)

    def verbs(self) -> List[str]:
        return [verb for verb, _ in self.calls]


class FakeSessions:
    """
    Session factory for a `Backend`, driving a real `UserSessionClient` over fake user managers.
    """

    def __init__(self, managers: Optional[Dict[int, FakeSystemd]] = None):
        self.managers = managers if managers is not None else {1000: FakeSystemd()}
        self.requested: List[Optional[List[int]]] = []

    def __call__(self, uids: Optional[Sequence[int]] = None) -> UserSessionClient:
        self.requested.append(list(uids) if uids is not None else None)
        if uids is None:
            uids = sorted(self.managers)
        return UserSessionClient(uids, factory=lambda uid: self.managers[uid])


def make_backend(root: str, sessions: Optional[FakeSessions] = None) -> Backend:
    return Backend(Config(Paths(root, root + "/run/user")), RecordingNotifier(), FakeSystemd(),
                   FakeSystemd(), sessions or FakeSessions())


def service_package(name: str = "foo", scope: DaemonScope = DaemonScope.system,
                    apps: Sequence[str] = ("svc",)) -> PackageInfo:
    """
    Package with one plain service per app name.
    """
    package = PackageInfo(name)
    for app in apps:
        package.add_app(app, command="/usr/bin/{}".format(app), daemon="simple", scope=scope)
    return package


def socket_package(name: str = "foo", scope: DaemonScope = DaemonScope.system) -> PackageInfo:
    """
    Package with a service `svc` activated by socket `sock` and a timer.
    """
    package = service_package(name, scope)
    app = package.apps["svc"]
    app.add_socket("sock", "$RUNTIME/sock")
    app.set_timer("daily")
    return package
