"""
Context bundling everything tasks need to talk to the init system.
"""

from typing import Callable, Optional, Sequence

from ..notify import Notifier
from ..plumbing.config import Config
from ..plumbing.systemd import Mode, Systemd
from ..plumbing.usersession import UserSessionClient, usernames_to_uids


SessionFactory = Callable[[Optional[Sequence[int]]], UserSessionClient]


class Backend:
    """
    Managers, notification sink and configuration used by a task.

    Defaults talk to the live system; tests pass fakes for `system`, `user_global` and `sessions`
    (a callable taking an optional list of uids, and returning a `UserSessionClient`).
    """

    def __init__(self, config: Optional[Config] = None, notifier: Optional[Notifier] = None,
                 system: Optional[Systemd] = None, user_global: Optional[Systemd] = None,
                 sessions: Optional[SessionFactory] = None):
        self.config = config or Config()
        self.notifier = notifier or Notifier()
        self.system = system or Systemd(Mode.system)
        self.user_global = user_global or Systemd(Mode.global_user)
        self._sessions = sessions or self._default_sessions

    def _default_sessions(self, uids: Optional[Sequence[int]] = None) -> UserSessionClient:
        return UserSessionClient(uids, self.config.paths.run_user_dir, self.config.session_timeout)

    @property
    def paths(self):
        return self.config.paths

    def sessions(self, uids: Optional[Sequence[int]] = None) -> UserSessionClient:
        """
        Client for the given users' managers, or every running user manager.
        """
        return self._sessions(uids)

    def sessions_for(self, users: Sequence[str]) -> UserSessionClient:
        """
        Client for the named users' managers, or every running user manager if none are named.
        """
        if users:
            return self.sessions(usernames_to_uids(users))
        return self.sessions(None)
