"""
Control of systemd service managers through `systemctl`.

A `Systemd` object targets one manager: the system instance, the global template configuration of
per-user instances, or the running manager of a single user.
"""

from enum import Enum
import subprocess
from typing import Dict, List, NamedTuple, Optional, Sequence

from .common import command, InternalError, Result, State, SystemctlError


SYSTEMCTL = "/usr/bin/systemctl"

_ACTIVE_STATES = ("active", "reloading")


class Mode(Enum):
    """
    Service manager targeted by a `Systemd` instance.
    """

    system = 1
    """
    The system-wide service manager.
    """
    global_user = 2
    """
    Enablement shared by every user's manager; only supports enabling and disabling.
    """
    user = 3
    """
    The running service manager of a single user.
    """


class UnitStatus(NamedTuple):
    """
    Live state of a single unit.
    """

    name: str
    active: bool
    enabled: bool
    installed: bool = True


def parse_show(output: str) -> List[Dict[str, str]]:
    """
    Split the output of `systemctl show` into one property mapping per unit.
    """
    blocks: List[Dict[str, str]] = []
    current: Dict[str, str] = {}
    for line in output.splitlines():
        if not line.strip():
            if current:
                blocks.append(current)
                current = {}
            continue
        key, _, value = line.partition("=")
        current[key] = value
    if current:
        blocks.append(current)
    return blocks


class Systemd:
    """
    Wrapper around `systemctl` for one service manager.

    Calls against a single user's manager are bounded by `timeout`; system calls wait for the
    manager to answer.
    """

    def __init__(self, mode: Mode = Mode.system, user: Optional[str] = None,
                 timeout: Optional[float] = None):
        if mode == Mode.user and not user:
            raise InternalError("User mode requires a user")
        self.mode = mode
        self.user = user
        self.timeout = timeout

    def _base(self) -> List[str]:
        if self.mode == Mode.system:
            return [SYSTEMCTL]
        elif self.mode == Mode.global_user:
            return [SYSTEMCTL, "--user", "--global"]
        else:
            return [SYSTEMCTL, "--user", "--machine={}@".format(self.user)]

    def _require(self, *modes: Mode) -> None:
        if self.mode not in modes:
            raise InternalError("Operation not supported in {} mode".format(self.mode.name))

    def _run(self, args: Sequence[str], output: bool = False) -> str:
        full = self._base() + list(args)
        try:
            proc = command(full, output=output, timeout=self.timeout)
        except subprocess.CalledProcessError as ex:
            raise SystemctlError(full, (ex.stderr or b"").decode("utf-8", "replace")) from ex
        except subprocess.TimeoutExpired as ex:
            raise SystemctlError(full, reason="timed out after {}s".format(ex.timeout)) from ex
        if output:
            return proc.stdout.decode("utf-8", "replace")
        return ""

    def _act(self, verb: str, units: Sequence[str], *flags: str) -> Result[None]:
        if not units:
            return Result(State.unchanged)
        self._run(list(flags) + [verb] + list(units))
        return Result(State.success)

    def daemon_reload(self) -> Result[None]:
        """
        Make the manager re-read unit files.
        """
        self._require(Mode.system, Mode.user)
        self._run(["daemon-reload"])
        return Result(State.success)

    def start(self, units: Sequence[str]) -> Result[None]:
        self._require(Mode.system, Mode.user)
        return self._act("start", units)

    def stop(self, units: Sequence[str]) -> Result[None]:
        self._require(Mode.system, Mode.user)
        return self._act("stop", units)

    def restart(self, units: Sequence[str]) -> Result[None]:
        self._require(Mode.system, Mode.user)
        return self._act("restart", units)

    def reload_or_restart(self, units: Sequence[str]) -> Result[None]:
        self._require(Mode.system, Mode.user)
        return self._act("reload-or-restart", units)

    def enable_no_reload(self, units: Sequence[str]) -> Result[None]:
        """
        Mark units to start at boot (or login), without reloading the manager.
        """
        return self._act("enable", units, "--no-reload")

    def disable_no_reload(self, units: Sequence[str]) -> Result[None]:
        """
        Stop units from starting at boot (or login), without reloading the manager.
        """
        return self._act("disable", units, "--no-reload")

    def status(self, units: Sequence[str]) -> List[UnitStatus]:
        """
        Query the live state of each unit, in the order given.
        """
        self._require(Mode.system, Mode.user)
        if not units:
            return []
        output = self._run(["show", "--property=Id,ActiveState,UnitFileState,LoadState"]
                           + list(units), output=True)
        statuses = []
        for props in parse_show(output):
            statuses.append(UnitStatus(name=props.get("Id", ""),
                                       active=props.get("ActiveState") in _ACTIVE_STATES,
                                       enabled=props.get("UnitFileState") == "enabled",
                                       installed=props.get("LoadState") != "not-found"))
        return statuses

    def __repr__(self) -> str:
        if self.user:
            return "<{}: {} {}>".format(self.__class__.__name__, self.mode.name, self.user)
        return "<{}: {}>".format(self.__class__.__name__, self.mode.name)
