"""
In-memory descriptors of installed packages and the services they declare.

Descriptors are built by the package installer from its manifests, and are treated as immutable
for a given revision.  Unit names are derived deterministically from the package instance name and
the app, socket or timer identity.
"""

from enum import Enum
import os.path
from typing import Dict, List, Optional, Sequence, Tuple

from .config import Paths, UNIT_PREFIX


class DaemonScope(Enum):
    """
    Service manager instance a service runs under.
    """

    system = "system"
    user = "user"


class PackageType(Enum):
    """
    Kind of package, where `tooling` is reserved for the package providing this library itself.
    """

    app = "app"
    base = "base"
    tooling = "tooling"


class StopReason(Enum):
    """
    Why services are being stopped, which affects services that should persist.
    """

    other = ""
    refresh = "refresh"
    remove = "remove"


class RefreshMode(Enum):
    """
    Whether a service is stopped while its package is refreshed.
    """

    restart = ""
    endure = "endure"


class PackageInfo:
    """
    An installed package, identified by its instance name.
    """

    def __init__(self, name: str, instance_key: str = "", type_: PackageType = PackageType.app,
                 revision: str = "1"):
        self.name = name
        self.instance_key = instance_key
        self.type = type_
        self.revision = revision
        self.apps: Dict[str, AppInfo] = {}

    @property
    def instance_name(self) -> str:
        if self.instance_key:
            return "{}_{}".format(self.name, self.instance_key)
        return self.name

    def add_app(self, name: str, **kwargs) -> "AppInfo":
        """
        Declare an app of this package, see `AppInfo` for the accepted arguments.
        """
        app = AppInfo(self, name, **kwargs)
        self.apps[name] = app
        return app

    def services(self) -> List["AppInfo"]:
        """
        Apps that are services, sorted by name.
        """
        return sorted((app for app in self.apps.values() if app.is_service()),
                      key=lambda app: app.name)

    def __repr__(self) -> str:
        return "<{}: {}>".format(self.__class__.__name__, self.instance_name)


class SocketInfo:
    """
    A socket activating its owning service.
    """

    def __init__(self, app: "AppInfo", name: str, listen_stream: str,
                 socket_mode: Optional[int] = None):
        self.app = app
        self.name = name
        self.listen_stream = listen_stream
        self.socket_mode = socket_mode

    @property
    def unit_name(self) -> str:
        return "{}.{}.socket".format(self.app.security_tag, self.name)

    def file(self, paths: Paths) -> str:
        return os.path.join(self.app.units_dir(paths), self.unit_name)

    def __repr__(self) -> str:
        return "<{}: {}>".format(self.__class__.__name__, self.unit_name)


class TimerInfo:
    """
    A timer activating its owning service on a calendar schedule.
    """

    def __init__(self, app: "AppInfo", schedule: Sequence[str]):
        self.app = app
        self.schedule = list(schedule)

    @property
    def unit_name(self) -> str:
        return "{}.timer".format(self.app.security_tag)

    def file(self, paths: Paths) -> str:
        return os.path.join(self.app.units_dir(paths), self.unit_name)

    def __repr__(self) -> str:
        return "<{}: {}>".format(self.__class__.__name__, self.unit_name)


class AppInfo:
    """
    An app of a package; it is a service if `daemon` is set.

    Sockets and timers are declared after construction with `add_socket` and `set_timer`.
    `activates_on` names activation sources declared outside the package (such as a D-Bus slot),
    which make the service activated without contributing units of their own.
    """

    def __init__(self, package: PackageInfo, name: str, command: str = "",
                 daemon: Optional[str] = None, scope: DaemonScope = DaemonScope.system,
                 activates_on: Sequence[str] = (), refresh_mode: RefreshMode = RefreshMode.restart,
                 stop_timeout: Optional[int] = None, restart_condition: str = "on-failure",
                 before: Sequence[str] = (), after: Sequence[str] = ()):
        self.package = package
        self.name = name
        self.command = command or name
        self.daemon = daemon
        self.scope = scope
        self.sockets: Dict[str, SocketInfo] = {}
        self.timer: Optional[TimerInfo] = None
        self.activates_on = list(activates_on)
        self.refresh_mode = refresh_mode
        self.stop_timeout = stop_timeout
        self.restart_condition = restart_condition
        self.before = list(before)
        self.after = list(after)

    def is_service(self) -> bool:
        return bool(self.daemon)

    @property
    def full_name(self) -> str:
        """
        Name of the app qualified by its package, e.g. `pkg.svc`.
        """
        return "{}.{}".format(self.package.instance_name, self.name)

    @property
    def security_tag(self) -> str:
        return "{}.{}".format(UNIT_PREFIX, self.full_name)

    @property
    def service_name(self) -> str:
        return "{}.service".format(self.security_tag)

    def units_dir(self, paths: Paths) -> str:
        if self.scope == DaemonScope.user:
            return paths.user_services_dir
        return paths.services_dir

    def service_file(self, paths: Paths) -> str:
        return os.path.join(self.units_dir(paths), self.service_name)

    def add_socket(self, name: str, listen_stream: str,
                   socket_mode: Optional[int] = None) -> SocketInfo:
        socket = SocketInfo(self, name, listen_stream, socket_mode)
        self.sockets[name] = socket
        return socket

    def set_timer(self, *schedule: str) -> TimerInfo:
        self.timer = TimerInfo(self, schedule)
        return self.timer

    def is_activated(self) -> bool:
        """
        Test if the service is started on demand by sockets, a timer or external sources.
        """
        return bool(self.sockets or self.timer or self.activates_on)

    def is_slot_activated(self) -> bool:
        return bool(self.activates_on)

    def __repr__(self) -> str:
        return "<{}: {}>".format(self.__class__.__name__, self.full_name)


def service_units(app: AppInfo) -> Tuple[str, List[str]]:
    """
    Return the service unit of an app, and its activator units (sockets by name, then timer).
    """
    activators = [app.sockets[name].unit_name for name in sorted(app.sockets)]
    if app.timer:
        activators.append(app.timer.unit_name)
    return app.service_name, activators


def service_units_from_apps(apps: Sequence[AppInfo], include_activated: bool) -> List[str]:
    """
    Collect the units of the given apps in caller order: all activators first, then the services.

    Activated services are only included if `include_activated` is set; when starting or enabling,
    the activators stand in for the services they activate.
    """
    units = []
    for app in apps:
        units.extend(service_units(app)[1])
    for app in apps:
        if app.is_activated() and not include_activated:
            continue
        units.append(app.service_name)
    return units
