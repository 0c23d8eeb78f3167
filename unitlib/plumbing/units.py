"""
Generation of unit file content from package and quota group descriptors.

Each generator is a pure function returning the bytes of one file.  Templates are placed inside the
`templates` directory of this module, and are rendered with the following Jinja2 filters:

- `unit_list` to join unit names into a dependency line
- `bytes_size` to format a size in bytes for systemd
"""

import os.path
from typing import Any, Dict, Optional

from jinja2 import Environment, FileSystemLoader, StrictUndefined

from .package import AppInfo, DaemonScope, service_units
from .quota import QuotaGroup


ENV = Environment(loader=FileSystemLoader(os.path.join(os.path.dirname(__file__), "templates")),
                  trim_blocks=True, lstrip_blocks=True, keep_trailing_newline=True,
                  undefined=StrictUndefined)

ENV.filters.update({"unit_list": lambda units: " ".join(units),
                    "bytes_size": lambda size: "{}".format(int(size))})

OOM_SCORE_BASE = -900


def _render(template: str, **context: Any) -> bytes:
    return ENV.get_template(template).render(context).encode("utf-8")


def generate_service_unit(app: AppInfo, quota_group: Optional[QuotaGroup] = None,
                          vitality_rank: int = 0, mount_unit: Optional[str] = None) -> bytes:
    """
    Render the `.service` unit of an app, confined to its quota group's slice if it has one.
    """
    after = list(app.after)
    if mount_unit:
        after.insert(0, mount_unit)
    if app.scope == DaemonScope.system:
        wanted_by = "multi-user.target"
    else:
        wanted_by = "default.target"
    context: Dict[str, Any] = {
        "app": app,
        "mount_unit": mount_unit,
        "after": after,
        "before": app.before,
        "slice": quota_group.slice_name if quota_group else None,
        "log_namespace": quota_group.journal_namespace if quota_group else None,
        "oom_score_adjust": OOM_SCORE_BASE + vitality_rank if vitality_rank > 0 else None,
        "wanted_by": None if app.is_activated() else wanted_by,
    }
    return _render("service.j2", **context)


def generate_socket_units(app: AppInfo, mount_unit: Optional[str] = None) -> Dict[str, bytes]:
    """
    Render every `.socket` unit of an app, keyed by socket name.
    """
    service, _ = service_units(app)
    return {name: _render("socket.j2", app=app, socket=socket, service=service,
                          mount_unit=mount_unit)
            for name, socket in sorted(app.sockets.items())}


def generate_timer_unit(app: AppInfo, mount_unit: Optional[str] = None) -> bytes:
    """
    Render the `.timer` unit of an app, which must have a timer.
    """
    if not app.timer:
        raise ValueError("{!r} has no timer".format(app))
    return _render("timer.j2", app=app, timer=app.timer, mount_unit=mount_unit)


def generate_slice_unit(group: QuotaGroup) -> bytes:
    """
    Render the `.slice` unit carrying a quota group's resource limits.
    """
    return _render("slice.j2", group=group, cpu_quota=_cpu_quota(group))


def _cpu_quota(group: QuotaGroup) -> Optional[int]:
    # CPUQuota= is a percentage of a single CPU, so scale by the number of CPUs allowed.
    if group.cpu_percentage is None:
        return None
    return max(group.cpu_count or 1, 1) * group.cpu_percentage


def generate_journald_conf(group: QuotaGroup) -> bytes:
    """
    Render the journald configuration of a group's namespace, empty if it has no journal limit.
    """
    if group.journal_limit is None:
        return b""
    return _render("journald.j2", group=group, limit=group.journal_limit)


def generate_journal_service_dropin(group: QuotaGroup) -> bytes:
    """
    Render the drop-in for the journald instance serving a group's namespace.
    """
    return _render("journal-dropin.j2", group=group)
