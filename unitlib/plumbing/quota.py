"""
Resource quota groups, mapped onto systemd slices and journal namespaces.

Groups form a tree: a group may have a parent and any number of sub-groups.  A group either holds
packages, or (as a sub-group of such a group) individual services of those packages.
"""

import os.path
from typing import Dict, Iterable, List, Optional, Set

from .common import CycleError
from .config import Paths, UNIT_PREFIX


JOURNAL_DROPIN_NAME = "00-unitlib.conf"


class JournalLimit:
    """
    Journal size and rate limits applied to a group's own journal namespace.
    """

    def __init__(self, size: Optional[int] = None, rate_count: Optional[int] = None,
                 rate_period: Optional[int] = None):
        self.size = size
        self.rate_count = rate_count
        self.rate_period = rate_period

    @property
    def rate_enabled(self) -> bool:
        return self.rate_count is not None and self.rate_period is not None


class QuotaGroup:
    """
    Named resource limit group, realised as a slice unit.
    """

    def __init__(self, name: str, memory_limit: Optional[int] = None,
                 cpu_count: Optional[int] = None, cpu_percentage: Optional[int] = None,
                 cpu_set: Iterable[int] = (), thread_limit: Optional[int] = None,
                 journal_limit: Optional[JournalLimit] = None, packages: Iterable[str] = (),
                 services: Iterable[str] = ()):
        self.name = name
        self.memory_limit = memory_limit
        self.cpu_count = cpu_count
        self.cpu_percentage = cpu_percentage
        self.cpu_set = list(cpu_set)
        self.thread_limit = thread_limit
        self.journal_limit = journal_limit
        self.packages = list(packages)
        self.services = list(services)
        self.parent: Optional[QuotaGroup] = None
        self.sub_groups: List[QuotaGroup] = []

    def add_sub_group(self, group: "QuotaGroup") -> "QuotaGroup":
        """
        Attach an existing group beneath this one.
        """
        group.parent = self
        self.sub_groups.append(group)
        return group

    def service_map(self) -> Dict[str, "QuotaGroup"]:
        """
        Map full service names (`pkg.svc`) to the service sub-group overriding this group.
        """
        return {service: group for group in self.sub_groups for service in group.services}

    def _escaped_path(self) -> str:
        names = []
        group: Optional[QuotaGroup] = self
        seen: Set[int] = set()
        while group:
            if id(group) in seen:
                raise CycleError("Circular parent reference at quota group {!r}"
                                 .format(group.name))
            seen.add(id(group))
            names.append(group.name.replace("-", "\\x2d"))
            group = group.parent
        return "-".join(reversed(names))

    @property
    def slice_name(self) -> str:
        return "{}-{}.slice".format(UNIT_PREFIX, self._escaped_path())

    def slice_file(self, paths: Paths) -> str:
        return os.path.join(paths.services_dir, self.slice_name)

    @property
    def journal_namespace(self) -> Optional[str]:
        """
        Journal namespace used by this group's services, shared by service sub-groups with their
        parent.
        """
        if self.services and self.parent:
            return self.parent.journal_namespace
        if self.journal_limit is None:
            return None
        return "{}-{}".format(UNIT_PREFIX, self.name)

    def journal_conf_file(self, paths: Paths) -> str:
        return os.path.join(paths.systemd_dir,
                            "journald@{}-{}.conf".format(UNIT_PREFIX, self.name))

    def journal_dropin_dir(self, paths: Paths) -> str:
        return os.path.join(paths.services_dir, "systemd-journald@{}-{}.service.d"
                            .format(UNIT_PREFIX, self.name))

    def journal_dropin_file(self, paths: Paths) -> str:
        return os.path.join(self.journal_dropin_dir(paths), JOURNAL_DROPIN_NAME)

    def __repr__(self) -> str:
        return "<{}: {}>".format(self.__class__.__name__, self.name)


class QuotaGroupSet:
    """
    Working set of every group needed for a batch of packages' quotas to take effect.
    """

    def __init__(self):
        self._groups: Dict[int, QuotaGroup] = {}

    def add_all_necessary_groups(self, group: QuotaGroup) -> None:
        """
        Add the whole tree containing `group` to the set, that is its root ancestor and every
        group beneath that root.

        Peer groups are needed as well as ancestors and descendants, as packages held directly by a
        parent are only confined correctly when every sibling slice exists.
        """
        root = group
        seen: Set[int] = {id(root)}
        while root.parent:
            root = root.parent
            if id(root) in seen:
                raise CycleError("Circular parent reference at quota group {!r}".format(root.name))
            seen.add(id(root))
        self._visit(root, [])

    def _visit(self, group: QuotaGroup, path: List[int]) -> None:
        if id(group) in path:
            raise CycleError("Circular reference found at quota group {!r}".format(group.name))
        self._groups[id(group)] = group
        path.append(id(group))
        for sub in group.sub_groups:
            self._visit(sub, path)
        path.pop()

    def all_quota_groups(self) -> List[QuotaGroup]:
        """
        Every group in the set, sorted by name.
        """
        return sorted(self._groups.values(), key=lambda group: group.name)

    def __len__(self) -> int:
        return len(self._groups)

    def __contains__(self, group: QuotaGroup) -> bool:
        return id(group) in self._groups
