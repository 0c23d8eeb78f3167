"""
Live status of package services, and the decision of which units a restart should touch.
"""

import logging
from typing import Dict, List, Optional, Sequence, Tuple

from .common import StatusMismatchError
from .package import AppInfo, DaemonScope, service_units
from .systemd import Systemd, UnitStatus
from .usersession import UserSessionClient


LOG = logging.getLogger(__name__)


class ServiceStatus:
    """
    State of a service unit together with the activator units (sockets, timer) gating it.
    """

    def __init__(self, app: AppInfo, service: UnitStatus, activators: Sequence[UnitStatus] = (),
                 uid: Optional[int] = None):
        self.app = app
        self.service = service
        self.activators = list(activators)
        self.uid = uid

    @property
    def name(self) -> str:
        return self.app.name

    def is_user_service(self) -> bool:
        return self.app.scope == DaemonScope.user

    def is_enabled(self) -> bool:
        """
        Activated services are enabled through their activators, the service unit itself being
        static.
        """
        if self.activators:
            return any(act.enabled for act in self.activators)
        return self.service.enabled

    def is_active(self) -> bool:
        return self.service.active or any(act.active for act in self.activators)

    def __repr__(self) -> str:
        return "<{}: {} active={} enabled={}>".format(self.__class__.__name__, self.service.name,
                                                     self.is_active(), self.is_enabled())


def _split(apps: Sequence[AppInfo], sts: Sequence[UnitStatus],
           uid: Optional[int] = None) -> List[ServiceStatus]:
    out = []
    pos = 0
    for app in apps:
        _, activators = service_units(app)
        count = 1 + len(activators)
        chunk = sts[pos:pos + count]
        pos += count
        out.append(ServiceStatus(app, chunk[0], chunk[1:], uid))
    return out


def _units_of(apps: Sequence[AppInfo]) -> List[str]:
    units = []
    for app in apps:
        svc, activators = service_units(app)
        units.append(svc)
        units.extend(activators)
    return units


def query_service_status_many(apps: Sequence[AppInfo], system: Optional[Systemd],
                              client: Optional[UserSessionClient] = None,
                              ) -> Tuple[List[ServiceStatus], Dict[int, List[ServiceStatus]]]:
    """
    Query the status of many services in one batch per manager.

    Returns statuses of system services, and of user services keyed by the uid of each running user
    manager.  A manager passed as `None` is not queried, and its services are left out.
    """
    services = [app for app in apps if app.is_service()]
    sys_apps = [app for app in services if app.scope == DaemonScope.system]
    usr_apps = [app for app in services if app.scope == DaemonScope.user]
    sys_statuses: List[ServiceStatus] = []
    if sys_apps and system:
        units = _units_of(sys_apps)
        sts = system.status(units)
        if len(sts) != len(units):
            raise StatusMismatchError("Expected {} results for {}, got {}"
                                      .format(len(units), units, len(sts)))
        sys_statuses = _split(sys_apps, sts)
    usr_statuses: Dict[int, List[ServiceStatus]] = {}
    if usr_apps and client:
        units = _units_of(usr_apps)
        for uid, sts in sorted(client.service_status(units).items()):
            if len(sts) != len(units):
                raise StatusMismatchError("Expected {} results for {} of uid {}, got {}"
                                          .format(len(units), units, uid, len(sts)))
            usr_statuses[uid] = _split(usr_apps, sts, uid)
    return sys_statuses, usr_statuses


def should_restart(active: bool, enabled: bool, name: str, explicit: Sequence[str],
                   also_enabled_non_active: bool = False) -> bool:
    """
    Units named explicitly are always restarted; otherwise only running units are, or with
    `also_enabled_non_active` enabled ones too.
    """
    if active or name in explicit:
        return True
    if not also_enabled_non_active:
        LOG.info("Not restarting inactive unit %s", name)
        return False
    if not enabled:
        LOG.info("Not restarting disabled and inactive unit %s", name)
        return False
    return True


def units_to_restart(status: ServiceStatus, explicit: Sequence[str], reload: bool = False,
                     also_enabled_non_active: bool = False) -> List[str]:
    """
    Decide which units of a service a restart (or reload) must act on.

    Activators are judged against the name of the service they gate, as callers only ever refer to
    services.  Activated units can't be reloaded, so a reload treats them as plain services.
    """
    name = status.app.service_name
    if status.activators and not reload:
        units = [act.name for act in status.activators
                 if should_restart(act.active, act.enabled, name, explicit,
                                   also_enabled_non_active)]
        # Enablement of the service itself is static when activated, so only its state counts.
        if status.service.active:
            units.append(name)
        return units
    if should_restart(status.service.active, status.service.enabled, name, explicit,
                      also_enabled_non_active):
        return [name]
    return []
