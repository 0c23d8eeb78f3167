"""
Selection of the services affected by a lifecycle operation.
"""

from enum import Enum
import logging
import os.path
from typing import Dict, List, Optional, Sequence, Tuple

from .config import Paths
from .package import AppInfo, DaemonScope, RefreshMode, StopReason


LOG = logging.getLogger(__name__)


class ServiceScope(Enum):
    """
    Kinds of service an operation applies to.
    """

    all = ""
    system = "system"
    user = "user"

    def matches(self, scope: DaemonScope) -> bool:
        if self == ServiceScope.all:
            return True
        elif self == ServiceScope.system:
            return scope == DaemonScope.system
        else:
            return scope == DaemonScope.user


class ScopeOptions:
    """
    Limits on the services an operation affects: their scope, and for user services, which users.

    An empty `users` list means every user.
    """

    def __init__(self, scope: ServiceScope = ServiceScope.all, users: Sequence[str] = ()):
        self.scope = scope
        self.users = list(users)

    @property
    def includes_system(self) -> bool:
        return self.scope != ServiceScope.user

    @property
    def includes_user(self) -> bool:
        return self.scope != ServiceScope.system

    def __repr__(self) -> str:
        return "<{}: {} {!r}>".format(self.__class__.__name__, self.scope.name, self.users)


class DisabledServices:
    """
    Services a user has explicitly disabled: system services by name, user services by uid.
    """

    def __init__(self, system: Sequence[str] = (),
                 user: Optional[Dict[int, Sequence[str]]] = None):
        self.system = list(system)
        self.user = {uid: list(names) for uid, names in (user or {}).items()}

    def __repr__(self) -> str:
        return "<{}: {!r} {!r}>".format(self.__class__.__name__, self.system, self.user)


def split_by_scope(apps: Sequence[AppInfo]) -> Tuple[List[AppInfo], List[AppInfo]]:
    sys_apps = [app for app in apps if app.scope == DaemonScope.system]
    usr_apps = [app for app in apps if app.scope == DaemonScope.user]
    return sys_apps, usr_apps


def filter_for_start(apps: Sequence[AppInfo], disabled: Optional[DisabledServices],
                     scope: ServiceScope) -> Tuple[List[AppInfo], List[AppInfo]]:
    """
    Pick the system and user services to start, leaving out disabled system services.
    """
    skip = set(disabled.system) if disabled else set()
    selected = [app for app in apps if app.is_service() and scope.matches(app.scope)]
    sys_apps, usr_apps = split_by_scope(selected)
    return [app for app in sys_apps if app.name not in skip], usr_apps


def filter_user_not_disabled(apps: Sequence[AppInfo],
                             disabled: Optional[DisabledServices]) -> List[AppInfo]:
    """
    Drop user services disabled by any user, so that a global enable never overrides a choice.
    """
    if not disabled:
        return list(apps)
    skip = {name for names in disabled.user.values() for name in names}
    return [app for app in apps if app.name not in skip]


def filter_for_stop(apps: Sequence[AppInfo], paths: Paths, reason: StopReason,
                    scope: ServiceScope,
                    disable: bool = False) -> Tuple[List[AppInfo], List[AppInfo]]:
    """
    Pick the system and user services to stop.

    Services without a unit file are skipped as there is nothing to stop, as are services enduring
    a refresh when that is the reason for stopping.
    """
    selected = []
    for app in apps:
        if not app.is_service() or not os.path.exists(app.service_file(paths)):
            continue
        if reason == StopReason.refresh:
            LOG.debug("%s refresh-mode: %s", app.name, app.refresh_mode.name)
            if app.refresh_mode == RefreshMode.endure:
                continue
        if not scope.matches(app.scope):
            continue
        if disable and app.is_slot_activated():
            LOG.info("Disabling %s may not have the intended effect as the service is currently "
                     "always activated by a slot", app.name)
        selected.append(app)
    return split_by_scope(selected)
