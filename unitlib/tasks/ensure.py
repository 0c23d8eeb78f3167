"""
Reconciliation of generated unit files with the services of installed packages.
"""

import logging
from typing import Callable, Dict, List, Mapping, Optional, Sequence

from ..plumbing.common import Collect, InternalError, Result, State, UserSessionError
from ..plumbing.files import ensure_file, get_file_state, UnitTransaction
from ..plumbing.package import AppInfo, DaemonScope, PackageInfo, PackageType
from ..plumbing.quota import QuotaGroup, QuotaGroupSet
from ..plumbing import units
from .backend import Backend


LOG = logging.getLogger(__name__)

ObserveChange = Callable[[Optional[AppInfo], Optional[QuotaGroup], str, str, str, str], None]
"""
Callback receiving `(app, group, unit_type, name, old, new)` for each unit file changed, where
`unit_type` is one of `service`, `socket`, `timer`, `slice` or `journald`, and `name` is empty for
a timer.  It runs before the pass is known to succeed, so must not cause side effects of its own.
"""


class ServiceOptions:
    """
    Per-package options: the OOM killer rank of its services, and the quota group it belongs to.
    """

    def __init__(self, vitality_rank: int = 0, quota_group: Optional[QuotaGroup] = None):
        self.vitality_rank = vitality_rank
        self.quota_group = quota_group


class EnsureOptions:
    """
    Options applying to a whole reconciliation pass.

    - `preseeding`: no service manager is running yet, so files are written without reloading
    - `require_mounted_tooling`: services depend on the base tooling mount unit
    - `include_services`: if set, only services named here (as `package.service`) are processed
    """

    def __init__(self, preseeding: bool = False, require_mounted_tooling: bool = False,
                 include_services: Sequence[str] = ()):
        self.preseeding = preseeding
        self.require_mounted_tooling = require_mounted_tooling
        self.include_services = list(include_services)


class _EnsureContext:
    """
    State of one reconciliation pass: files modified so far and which managers need a reload.
    """

    def __init__(self, backend: Backend, packages: Mapping[PackageInfo, Optional[ServiceOptions]],
                 options: EnsureOptions, observe: Optional[ObserveChange]):
        self.backend = backend
        self.packages = packages
        self.options = options
        self.observe = observe
        self.txn = UnitTransaction()
        self.system_reload_needed = False
        self.user_reload_needed = False

    def _changed(self, path: str, res: Result, app: Optional[AppInfo],
                 group: Optional[QuotaGroup], unit_type: str, name: str, content: bytes) -> None:
        old = res.value
        if self.observe:
            old_content = old.content if old else b""
            self.observe(app, group, unit_type, name, old_content.decode("utf-8", "replace"),
                         content.decode("utf-8", "replace"))
        self.txn.record(path, old)

    def _update_app_unit(self, app: AppInfo, unit_type: str, name: str, path: str,
                         content: bytes) -> Result:
        res = ensure_file(path, content)
        if res:
            self._changed(path, res, app, None, unit_type, name, content)
            if app.scope == DaemonScope.system:
                self.system_reload_needed = True
            else:
                self.user_reload_needed = True
        return res

    def _update_group_unit(self, group: QuotaGroup, unit_type: str, path: str,
                           content: bytes) -> Result:
        res = ensure_file(path, content)
        if res:
            self._changed(path, res, None, group, unit_type, group.name, content)
        return res

    def _included(self, app: AppInfo) -> bool:
        include = self.options.include_services
        return not include or app.full_name in include

    def _sorted_packages(self) -> List[PackageInfo]:
        return sorted(self.packages, key=lambda package: package.instance_name)

    def resolve_quota_groups(self) -> QuotaGroupSet:
        """
        Collect the trees of every package's quota group, checking each for cycles.
        """
        groups = QuotaGroupSet()
        for package in self._sorted_packages():
            if package.type == PackageType.tooling:
                raise InternalError("Adding explicit services for tooling package {!r} is "
                                    "unexpected".format(package.instance_name))
            opts = self.packages[package]
            if opts and opts.quota_group:
                groups.add_all_necessary_groups(opts.quota_group)
        return groups

    @Result.collect
    def ensure_service_units(self) -> Collect[None]:
        """
        Write the service, socket and timer units of every package's services.
        """
        paths = self.backend.paths
        mount_unit = None
        if self.options.require_mounted_tooling:
            mount_unit = self.backend.config.tooling_mount_unit
        for package in self._sorted_packages():
            opts = self.packages[package] or ServiceOptions()
            svc_groups: Dict[str, QuotaGroup] = {}
            if opts.quota_group:
                svc_groups = opts.quota_group.service_map()
            for app in package.services():
                if not self._included(app):
                    continue
                group = svc_groups.get(app.full_name, opts.quota_group)
                content = units.generate_service_unit(app, group, opts.vitality_rank, mount_unit)
                yield self._update_app_unit(app, "service", app.name, app.service_file(paths),
                                            content)
                sockets = units.generate_socket_units(app, mount_unit)
                for name, content in sockets.items():
                    yield self._update_app_unit(app, "socket", name,
                                                app.sockets[name].file(paths), content)
                if app.timer:
                    content = units.generate_timer_unit(app, mount_unit)
                    yield self._update_app_unit(app, "timer", "", app.timer.file(paths), content)

    @Result.collect
    def ensure_slices(self, groups: QuotaGroupSet) -> Collect[None]:
        for group in groups.all_quota_groups():
            res = yield from self._update_group_unit(group, "slice",
                                                     group.slice_file(self.backend.paths),
                                                     units.generate_slice_unit(group))
            if res:
                self.system_reload_needed = True

    @Result.collect
    def ensure_journald_units(self, groups: QuotaGroupSet) -> Collect[None]:
        for group in groups.all_quota_groups():
            if group.services:
                # Service sub-groups log to their parent's namespace.
                continue
            path = group.journal_conf_file(self.backend.paths)
            content = units.generate_journald_conf(group)
            if not content:
                old = get_file_state(path)
                if old is None or not old.content:
                    yield Result(State.unchanged, old)
                    continue
            yield self._update_group_unit(group, "journald", path, content)

    @Result.collect
    def ensure_journal_dropins(self, groups: QuotaGroupSet) -> Collect[None]:
        for group in groups.all_quota_groups():
            if group.journal_limit is None:
                continue
            yield self._update_group_unit(group, "service",
                                          group.journal_dropin_file(self.backend.paths),
                                          units.generate_journal_service_dropin(group))

    def _reload_user(self) -> None:
        failures = self.backend.sessions().services_daemon_reload()
        if failures:
            raise UserSessionError("Cannot reload user service managers: {}".format(
                "; ".join("uid {}: {}".format(f.uid, f.error) for f in failures)), failures)

    def reload_modified(self) -> Result[None]:
        """
        Reload the managers whose unit files changed, unless preseeding.
        """
        if self.options.preseeding:
            return Result(State.unchanged)
        state = State.unchanged
        if self.system_reload_needed:
            self.backend.system.daemon_reload()
            state = State.success
        if self.user_reload_needed:
            self._reload_user()
            state = State.success
        return Result(state)

    def restore(self) -> None:
        """
        Undo every file change of this pass, then reload so managers see the old files again.
        """
        notifier = self.backend.notifier
        self.txn.rollback(notifier)
        if self.options.preseeding:
            return
        if self.system_reload_needed:
            try:
                self.backend.system.daemon_reload()
            except Exception as ex:
                notifier.notify("while trying to perform systemd daemon-reload due to previous "
                                "failure: {}".format(ex))
        if self.user_reload_needed:
            try:
                self._reload_user()
            except Exception as ex:
                notifier.notify("while trying to perform user systemd daemon-reload due to "
                                "previous failure: {}".format(ex))

    @Result.collect
    def run(self) -> Collect[None]:
        groups = self.resolve_quota_groups()
        yield self.ensure_service_units()
        yield self.ensure_slices(groups)
        yield self.ensure_journald_units(groups)
        yield self.ensure_journal_dropins(groups)
        yield self.reload_modified()


def ensure_services(backend: Backend, packages: Mapping[PackageInfo, Optional[ServiceOptions]],
                    options: Optional[EnsureOptions] = None,
                    observe: Optional[ObserveChange] = None) -> Result[None]:
    """
    Bring the unit files of the given packages' services (and their quota groups) up to date,
    reloading the service managers if anything changed.

    New units are added, but units no longer described by a package are left alone.  If anything
    fails, every file changed so far is restored (or removed if it was new) before the error is
    raised; rollback failures are only reported to the notifier.

    Running this again with the same arguments changes nothing.
    """
    ctx = _EnsureContext(backend, packages, options or EnsureOptions(), observe)
    try:
        result = ctx.run()
    except Exception:
        ctx.restore()
        raise
    ctx.txn.commit()
    LOG.debug("Ensured services: %r", result)
    return result
