"""
Starting, stopping, restarting and removing the services of installed packages.

System services are driven directly through the system manager, one unit at a time and in the
order given, as a batch request would be scheduled by systemd as concurrent jobs.  User services
are relayed to each user's manager, which also owns their recovery from failed starts.
"""

import logging
import os.path
from typing import Dict, List, Optional, Sequence

from ..plumbing.common import (InternalError, Result, ServiceFailure, State, SystemctlError,
                               UserSessionError)
from ..plumbing.files import remove_file
from ..plumbing.package import (AppInfo, DaemonScope, PackageInfo, PackageType, service_units,
                                service_units_from_apps, StopReason)
from ..plumbing.quota import QuotaGroup
from ..plumbing.scope import (DisabledServices, filter_for_start, filter_for_stop,
                              filter_user_not_disabled, ScopeOptions, ServiceScope)
from ..plumbing.status import query_service_status_many, ServiceStatus, units_to_restart
from ..plumbing.usersession import usernames_to_uids
from .backend import Backend


LOG = logging.getLogger(__name__)


class StartOptions(ScopeOptions):
    """
    Options for `start_services`: whether to also enable the services.
    """

    def __init__(self, enable: bool = False, scope: ServiceScope = ServiceScope.all,
                 users: Sequence[str] = ()):
        super().__init__(scope, users)
        self.enable = enable


class StopOptions(ScopeOptions):
    """
    Options for `stop_services`: whether to also disable the services.
    """

    def __init__(self, disable: bool = False, scope: ServiceScope = ServiceScope.all,
                 users: Sequence[str] = ()):
        super().__init__(scope, users)
        self.disable = disable


class RestartOptions(ScopeOptions):
    """
    Options for `restart_services`:

    - `reload`: reload services supporting it rather than restarting them
    - `also_enabled_non_active`: restart services that are enabled but not running
    """

    def __init__(self, reload: bool = False, also_enabled_non_active: bool = False,
                 scope: ServiceScope = ServiceScope.all, users: Sequence[str] = ()):
        super().__init__(scope, users)
        self.reload = reload
        self.also_enabled_non_active = also_enabled_non_active


def _failure_summary(verb: str, failures: Sequence[ServiceFailure]) -> str:
    first = failures[0]
    return "could not {} service {!r} for uid {}: {}".format(verb, first.service, first.uid,
                                                             first.error)


def _disabled_user_units(apps: Sequence[AppInfo],
                         disabled: Optional[DisabledServices]) -> Dict[int, List[str]]:
    if not disabled:
        return {}
    out = {}
    for uid, names in disabled.user.items():
        out[uid] = service_units_from_apps([app for app in apps if app.name in names], True)
    return out


def _undo_start(backend: Backend, sys_apps: Sequence[AppInfo], stop: bool, enable: bool,
                system_services: Sequence[str], user_services: Sequence[str]) -> None:
    notifier = backend.notifier
    if stop:
        for app in reversed(sys_apps):
            # Activated services may have been started in the meantime, so stop them too.
            svc, activators = service_units(app)
            try:
                backend.system.stop(activators + [svc])
            except SystemctlError as ex:
                notifier.notify("While trying to stop previously started service {!r}: {}"
                                .format(svc, ex))
    if not enable:
        return
    if system_services:
        try:
            backend.system.disable_no_reload(system_services)
        except SystemctlError as ex:
            notifier.notify("While trying to disable previously enabled services {!r}: {}"
                            .format(list(system_services), ex))
        try:
            backend.system.daemon_reload()
        except SystemctlError as ex:
            notifier.notify("While trying to do daemon-reload: {}".format(ex))
    if user_services:
        try:
            backend.user_global.disable_no_reload(user_services)
        except SystemctlError as ex:
            notifier.notify("While trying to disable previously enabled user services {!r}: {}"
                            .format(list(user_services), ex))


def start_services(backend: Backend, apps: Sequence[AppInfo],
                   disabled: Optional[DisabledServices] = None,
                   options: Optional[StartOptions] = None) -> Result[None]:
    """
    Start the services among `apps`, in the order given, activators ahead of their services.

    System services in `disabled` are left alone, and user services disabled by any user are left
    out of a global enable.  With `enable`, services are enabled before being started.  If anything
    fails, the system services of this call are stopped (and disabled again if enabling), and the
    first error is raised.
    """
    options = options or StartOptions()
    sys_apps, usr_apps = filter_for_start(apps, disabled, options.scope)
    system_services = [app.service_name for app in sys_apps]
    user_services_global: List[str] = []
    if not options.users:
        # Per-user enablement belongs to each user's session.
        user_services_global = [app.service_name
                                for app in filter_user_not_disabled(usr_apps, disabled)]
    undo = False
    try:
        if options.enable:
            if system_services:
                backend.system.enable_no_reload(system_services)
                backend.system.daemon_reload()
                undo = True
            if user_services_global:
                backend.user_global.enable_no_reload(user_services_global)
        for unit in service_units_from_apps(sys_apps, True):
            undo = True
            backend.system.start([unit])
        if usr_apps:
            client = backend.sessions_for(options.users)
            units = service_units_from_apps(usr_apps, True)
            start_failures, stop_failures = client.services_start(
                units, options.enable, _disabled_user_units(usr_apps, disabled))
            for failure in start_failures:
                backend.notifier.notify("could not start service {!r} for uid {}: {}"
                                        .format(failure.service, failure.uid, failure.error))
            for failure in stop_failures:
                backend.notifier.notify("while trying to stop previously started service {!r} "
                                        "for uid {}: {}".format(failure.service, failure.uid,
                                                                failure.error))
            if start_failures:
                raise UserSessionError(_failure_summary("start", start_failures), start_failures)
    except Exception:
        _undo_start(backend, sys_apps, undo, options.enable, system_services,
                    user_services_global)
        raise
    return Result(State.success if sys_apps or usr_apps else State.unchanged)


def stop_services(backend: Backend, apps: Sequence[AppInfo],
                  reason: StopReason = StopReason.other,
                  options: Optional[StopOptions] = None) -> Result[None]:
    """
    Stop the services among `apps` (and their activators), user services first.

    A system unit failing to stop is only an error if it is still running afterwards.  With
    `disable`, the stopped services are also disabled.
    """
    options = options or StopOptions()
    if reason != StopReason.other:
        LOG.debug("Stopping %r, reason: %s", apps, reason.name)
    else:
        LOG.debug("Stopping %r", apps)
    sys_apps, usr_apps = filter_for_stop(apps, backend.paths, reason, options.scope,
                                         options.disable)
    system_services = service_units_from_apps(sys_apps, True)
    user_services = service_units_from_apps(usr_apps, True)
    if user_services:
        failures = backend.sessions_for(options.users).services_stop(user_services,
                                                                     options.disable)
        for failure in failures:
            backend.notifier.notify("Could not stop service {!r} for uid {}: {}"
                                    .format(failure.service, failure.uid, failure.error))
        if failures:
            raise UserSessionError(_failure_summary("stop", failures), failures)
    for unit in system_services:
        try:
            backend.system.stop([unit])
        except SystemctlError as ex:
            # Some hosts fail stop requests for units that never ran; only give up if it's running.
            try:
                sts = backend.system.status([unit])
            except SystemctlError:
                raise ex
            if len(sts) != 1 or sts[0].active:
                raise
            LOG.info("Cannot stop service %s: %s", unit, ex)
    if options.disable:
        if system_services:
            backend.system.disable_no_reload(system_services)
            backend.system.daemon_reload()
        if user_services and not options.users:
            try:
                backend.user_global.disable_no_reload(user_services)
            except SystemctlError as ex:
                backend.notifier.notify("While trying to disable previously enabled user "
                                        "services {!r}: {}".format(user_services, ex))
    return Result(State.success if system_services or user_services else State.unchanged)


def _restart_system(backend: Backend, units: List[str], reload: bool) -> None:
    if reload:
        backend.system.reload_or_restart(units)
    else:
        backend.system.restart(units)


def _restart_by_status(statuses: Sequence[ServiceStatus], explicit: Sequence[str],
                       options: RestartOptions, restart) -> bool:
    restarted = False
    for status in statuses:
        units = units_to_restart(status, explicit, options.reload,
                                 options.also_enabled_non_active)
        if not units:
            continue
        LOG.debug("Restarting %r (reload: %s)", units, options.reload)
        restart(units)
        restarted = True
    return restarted


def restart_services(backend: Backend, apps: Sequence[AppInfo], explicit: Sequence[str] = (),
                     options: Optional[RestartOptions] = None) -> Result[None]:
    """
    Restart (or reload) the running services among `apps`.

    Services named in `explicit` (by unit name) are restarted whatever their state.  There is no
    rollback: the first failure is raised as is.
    """
    options = options or RestartOptions()
    system = backend.system if options.includes_system else None
    client = backend.sessions() if options.includes_user else None
    sys_sts, usr_sts = query_service_status_many(apps, system, client)
    restarted = False
    if system:
        restarted = _restart_by_status(
            sys_sts, explicit, options,
            lambda units: _restart_system(backend, units, options.reload))
    if client:
        uids = usernames_to_uids(options.users) if options.users else []
        for uid, statuses in usr_sts.items():
            if uids and uid not in uids:
                continue
            cli = backend.sessions([uid])

            def restart_user(units: List[str]) -> None:
                failures = cli.services_restart(units, options.reload)
                for failure in failures:
                    backend.notifier.notify("Could not restart service {!r} for uid {}: {}"
                                            .format(failure.service, failure.uid, failure.error))
                if failures:
                    raise UserSessionError(_failure_summary("restart", failures), failures)

            if _restart_by_status(statuses, explicit, options, restart_user):
                restarted = True
    return Result(State.success if restarted else State.unchanged)


def query_disabled_services(backend: Backend, package: PackageInfo) -> DisabledServices:
    """
    Look up which services of a package are currently disabled, system-wide and for each user with
    a running manager.
    """
    sys_sts, usr_sts = query_service_status_many(package.services(), backend.system,
                                                 backend.sessions())

    def names(statuses: Sequence[ServiceStatus]) -> List[str]:
        return sorted(st.name for st in statuses if not st.is_enabled())

    return DisabledServices(names(sys_sts), {uid: names(sts) for uid, sts in usr_sts.items()})


def remove_services(backend: Backend, package: PackageInfo) -> Result[None]:
    """
    Disable the services of a package and delete their unit files.
    """
    if package.type == PackageType.tooling:
        raise InternalError("Removing explicit services for tooling package {!r} is unexpected"
                            .format(package.instance_name))
    paths = backend.paths
    system_units: List[str] = []
    user_units: List[str] = []
    files: List[str] = []
    for app in package.services():
        service_file = app.service_file(paths)
        if not os.path.exists(service_file):
            continue
        units = system_units if app.scope == DaemonScope.system else user_units
        for name in sorted(app.sockets):
            socket = app.sockets[name]
            LOG.info("Removing socket %s", socket.unit_name)
            units.append(socket.unit_name)
            files.append(socket.file(paths))
        if app.timer:
            LOG.info("Removing timer %s", app.timer.unit_name)
            units.append(app.timer.unit_name)
            files.append(app.timer.file(paths))
        LOG.info("Disabling %s", app.service_name)
        units.append(app.service_name)
        files.append(service_file)
    backend.system.disable_no_reload(system_units)
    backend.user_global.disable_no_reload(user_units)
    for path in files:
        try:
            remove_file(path)
        except OSError as ex:
            LOG.info("Failed to remove unit file %r: %s", path, ex)
    if system_units:
        backend.system.daemon_reload()
    if user_units:
        failures = backend.sessions().services_daemon_reload()
        if failures:
            raise UserSessionError(_failure_summary("reload", failures), failures)
    return Result(State.success if files else State.unchanged)


def remove_quota_group(backend: Backend, group: QuotaGroup) -> Result[None]:
    """
    Delete the slice unit of a quota group that no longer holds any services or sub-groups.
    """
    if group.sub_groups:
        raise InternalError("Cannot remove quota group {!r} with sub-groups".format(group.name))
    res = remove_file(group.slice_file(backend.paths))
    if res:
        backend.system.daemon_reload()
    return res
