"""
Locations and defaults shared by plumbing and tasks.

Canonical paths are relative to a configurable root, so that tests and image builders can point a
`Config` at a scratch directory rather than the live system.
"""

import os
import os.path
from typing import Optional


DEFAULT_ROOT = "/"
"""
Filesystem root holding the unit directories.
"""

DEFAULT_SESSION_TIMEOUT = 30.0
"""
Seconds to wait for a user session to answer a single request.
"""

TOOLING_MOUNT_UNIT = "usr-lib-unitlib.mount"
"""
Mount unit providing the base tooling, depended upon when `require_mounted_tooling` is set.
"""

UNIT_PREFIX = "pkg"
"""
Prefix of every generated unit name.
"""


class Paths:
    """
    Directory layout of the init system, rooted at `root`.
    """

    def __init__(self, root: str = DEFAULT_ROOT, run_user_dir: str = "/run/user"):
        self.root = root
        self.run_user_dir = run_user_dir

    def _join(self, *parts: str) -> str:
        return os.path.join(self.root, *parts)

    @property
    def services_dir(self) -> str:
        """
        System unit search directory.
        """
        return self._join("etc", "systemd", "system")

    @property
    def user_services_dir(self) -> str:
        """
        Unit directory for the global per-user manager.
        """
        return self._join("etc", "systemd", "user")

    @property
    def systemd_dir(self) -> str:
        """
        Init system configuration directory, holding journald namespace configuration.
        """
        return self._join("etc", "systemd")

    def __repr__(self) -> str:
        return "<{}: {!r}>".format(self.__class__.__name__, self.root)


class Config:
    """
    Process-wide defaults, passed explicitly to anything that needs them.
    """

    def __init__(self, paths: Optional[Paths] = None,
                 session_timeout: float = DEFAULT_SESSION_TIMEOUT,
                 tooling_mount_unit: str = TOOLING_MOUNT_UNIT):
        self.paths = paths or Paths()
        self.session_timeout = session_timeout
        self.tooling_mount_unit = tooling_mount_unit

    @classmethod
    def from_env(cls) -> "Config":
        """
        Build a config using `UNITLIB_ROOT` and `UNITLIB_SESSION_TIMEOUT` where set.
        """
        paths = Paths(os.getenv("UNITLIB_ROOT") or DEFAULT_ROOT)
        timeout = os.getenv("UNITLIB_SESSION_TIMEOUT")
        return cls(paths, float(timeout) if timeout else DEFAULT_SESSION_TIMEOUT)
