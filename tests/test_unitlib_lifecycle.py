import os.path
from tempfile import TemporaryDirectory
import unittest

from unitlib.plumbing.common import InternalError, State, SystemctlError, UserSessionError
from unitlib.plumbing.package import (DaemonScope, PackageInfo, PackageType, RefreshMode,
                                      StopReason)
from unitlib.plumbing.quota import QuotaGroup
from unitlib.plumbing.scope import DisabledServices, ServiceScope
from unitlib.tasks.ensure import EnsureOptions, ensure_services, ServiceOptions
from unitlib.tasks.lifecycle import (query_disabled_services, remove_quota_group,
                                     remove_services, restart_services, RestartOptions,
                                     start_services, StartOptions, stop_services, StopOptions)

from .fakes import make_backend, service_package, socket_package


SVC = "pkg.foo.svc.service"
SOCK = "pkg.foo.svc.sock.socket"
TIMER = "pkg.foo.svc.timer"
SYS = "pkg.foo.sys.service"
USR = "pkg.foo.usr.service"


def mixed_package() -> PackageInfo:
    package = PackageInfo("foo")
    package.add_app("sys", daemon="simple")
    package.add_app("usr", daemon="simple", scope=DaemonScope.user)
    return package


class LifecycleTestCase(unittest.TestCase):

    def setUp(self):
        self.tmp = TemporaryDirectory()
        self.addCleanup(self.tmp.cleanup)
        self.backend = make_backend(self.tmp.name)
        self.system = self.backend.system
        self.user_global = self.backend.user_global
        self.sessions = self.backend._sessions
        self.user = self.sessions.managers[1000]

    def install(self, package: PackageInfo, options: ServiceOptions = None):
        ensure_services(self.backend, {package: options}, EnsureOptions(preseeding=True))


class TestStart(LifecycleTestCase):

    def test_activators_first(self):
        package = socket_package()
        res = start_services(self.backend, package.services())
        self.assertEqual(res.state, State.success)
        self.assertEqual(self.system.calls, [("start", [SOCK]), ("start", [TIMER]),
                                             ("start", [SVC])])
        self.assertEqual(self.sessions.requested, [])

    def test_failure_unwinds(self):
        package = service_package()
        package.apps["svc"].add_socket("sock", "$RUNTIME/sock")
        self.system.fail["start"] = {SVC}
        with self.assertRaises(SystemctlError):
            start_services(self.backend, package.services(), options=StartOptions(enable=True))
        self.assertEqual(self.system.calls, [("enable", [SVC]),
                                             ("daemon-reload", []),
                                             ("start", [SOCK]),
                                             ("start", [SVC]),
                                             ("stop", [SOCK, SVC]),
                                             ("disable", [SVC]),
                                             ("daemon-reload", [])])
        self.assertEqual(self.user_global.calls, [])

    def test_unwind_failure_notifies(self):
        package = service_package()
        self.system.fail["start"] = True
        self.system.fail["stop"] = True
        with self.assertRaises(SystemctlError) as ctx:
            start_services(self.backend, package.services())
        self.assertEqual(ctx.exception.command[1], "start")
        self.assertEqual(len(self.backend.notifier.messages), 1)
        self.assertIn("stop previously started service", self.backend.notifier.messages[0])

    def test_disabled_not_enabled(self):
        package = service_package(apps=("a", "b"))
        start_services(self.backend, package.services(), DisabledServices(["a"]),
                       StartOptions(enable=True))
        self.assertEqual(self.system.calls, [("enable", ["pkg.foo.b.service"]),
                                             ("daemon-reload", []),
                                             ("start", ["pkg.foo.b.service"])])

    def test_system_scope(self):
        package = mixed_package()
        start_services(self.backend, package.services(),
                       options=StartOptions(enable=True, scope=ServiceScope.system))
        self.assertEqual(self.sessions.requested, [])
        self.assertEqual(self.user_global.calls, [])
        self.assertEqual(self.system.calls[-1], ("start", [SYS]))

    def test_user_scope(self):
        package = mixed_package()
        start_services(self.backend, package.services(),
                       options=StartOptions(scope=ServiceScope.user))
        self.assertEqual(self.system.calls, [])
        self.assertEqual(self.user.calls, [("start", [USR])])

    def test_user_enable(self):
        package = service_package(scope=DaemonScope.user)
        start_services(self.backend, package.services(), options=StartOptions(enable=True))
        self.assertEqual(self.user_global.calls, [("enable", [SVC])])
        self.assertEqual(self.user.calls, [("enable", [SVC]), ("daemon-reload", []),
                                           ("start", [SVC])])

    def test_user_disabled(self):
        package = service_package(scope=DaemonScope.user)
        disabled = DisabledServices(user={1000: ["svc"]})
        start_services(self.backend, package.services(), disabled, StartOptions(enable=True))
        self.assertEqual(self.user_global.calls, [])
        self.assertEqual(self.user.calls, [])

    def test_user_failure(self):
        package = mixed_package()
        self.user.fail["start"] = True
        with self.assertRaises(UserSessionError) as ctx:
            start_services(self.backend, package.services())
        self.assertEqual([f.service for f in ctx.exception.failures], [USR])
        self.assertEqual(self.system.calls, [("start", [SYS]), ("stop", [SYS])])
        self.assertEqual(len(self.backend.notifier.messages), 1)

    def test_nothing(self):
        self.assertEqual(start_services(self.backend, []).state, State.unchanged)


class TestStop(LifecycleTestCase):

    def test_stop(self):
        package = socket_package()
        self.install(package)
        res = stop_services(self.backend, package.services())
        self.assertEqual(res.state, State.success)
        self.assertEqual(self.system.calls, [("stop", [SOCK]), ("stop", [TIMER]),
                                             ("stop", [SVC])])

    def test_not_installed(self):
        res = stop_services(self.backend, service_package().services())
        self.assertEqual(res.state, State.unchanged)
        self.assertEqual(self.system.calls, [])

    def test_spurious_failure(self):
        package = service_package()
        self.install(package)
        self.system.fail["stop"] = True
        with self.assertLogs("unitlib.tasks.lifecycle", "INFO"):
            stop_services(self.backend, package.services())
        self.assertEqual(self.system.queries, [[SVC]])

    def test_failure_while_active(self):
        package = service_package()
        self.install(package)
        self.system.fail["stop"] = True
        self.system.set_status(SVC, active=True)
        with self.assertRaises(SystemctlError):
            stop_services(self.backend, package.services())

    def test_endure_refresh(self):
        package = service_package()
        package.apps["svc"].refresh_mode = RefreshMode.endure
        self.install(package)
        self.assertFalse(stop_services(self.backend, package.services(), StopReason.refresh))
        self.assertEqual(self.system.calls, [])
        stop_services(self.backend, package.services(), StopReason.remove)
        self.assertEqual(self.system.calls, [("stop", [SVC])])

    def test_disable(self):
        package = mixed_package()
        self.install(package)
        stop_services(self.backend, package.services(), options=StopOptions(disable=True))
        self.assertEqual(self.user.calls, [("stop", [USR]), ("disable", [USR]),
                                           ("daemon-reload", [])])
        self.assertEqual(self.system.calls, [("stop", [SYS]), ("disable", [SYS]),
                                             ("daemon-reload", [])])
        self.assertEqual(self.user_global.calls, [("disable", [USR])])

    def test_global_disable_failure_notifies(self):
        package = service_package(scope=DaemonScope.user)
        self.install(package)
        self.user_global.fail["disable"] = True
        self.assertTrue(stop_services(self.backend, package.services(),
                                      options=StopOptions(disable=True)))
        self.assertEqual(len(self.backend.notifier.messages), 1)

    def test_user_failure(self):
        package = mixed_package()
        self.install(package)
        self.user.fail["stop"] = True
        with self.assertRaises(UserSessionError):
            stop_services(self.backend, package.services())
        # User services are stopped first, so system services are left running.
        self.assertEqual(self.system.calls, [])

    def test_system_scope(self):
        package = mixed_package()
        self.install(package)
        stop_services(self.backend, package.services(),
                      options=StopOptions(scope=ServiceScope.system))
        self.assertEqual(self.sessions.requested, [])
        self.assertEqual(self.system.calls, [("stop", [SYS])])


class TestRestart(LifecycleTestCase):

    def test_active_only(self):
        package = service_package(apps=("a", "b"))
        self.system.set_status("pkg.foo.a.service", active=True)
        res = restart_services(self.backend, package.services())
        self.assertEqual(res.state, State.success)
        self.assertEqual(self.system.calls, [("restart", ["pkg.foo.a.service"])])

    def test_inactive(self):
        package = service_package()
        self.assertFalse(restart_services(self.backend, package.services()))
        self.assertEqual(self.system.calls, [])

    def test_explicit(self):
        package = service_package()
        restart_services(self.backend, package.services(), [SVC])
        self.assertEqual(self.system.calls, [("restart", [SVC])])

    def test_enabled_non_active(self):
        package = service_package()
        self.system.set_status(SVC, enabled=True)
        restart_services(self.backend, package.services(),
                         options=RestartOptions(also_enabled_non_active=True))
        self.assertEqual(self.system.calls, [("restart", [SVC])])

    def test_reload(self):
        package = service_package()
        self.system.set_status(SVC, active=True)
        restart_services(self.backend, package.services(), options=RestartOptions(reload=True))
        self.assertEqual(self.system.calls, [("reload-or-restart", [SVC])])

    def test_activated(self):
        package = socket_package()
        self.system.set_status(SVC, active=True)
        self.system.set_status(SOCK, active=True, enabled=True)
        restart_services(self.backend, package.services())
        self.assertEqual(self.system.calls, [("restart", [SOCK, SVC])])

    def test_user(self):
        package = service_package(scope=DaemonScope.user)
        self.user.set_status(SVC, active=True)
        restart_services(self.backend, package.services())
        self.assertEqual(self.user.calls, [("restart", [SVC])])
        self.assertEqual(self.sessions.requested, [None, [1000]])
        self.assertEqual(self.system.queries, [])

    def test_user_failure(self):
        package = service_package(scope=DaemonScope.user)
        self.user.set_status(SVC, active=True)
        self.user.fail["restart"] = True
        with self.assertRaises(UserSessionError):
            restart_services(self.backend, package.services())

    def test_system_scope(self):
        package = mixed_package()
        self.system.set_status(SYS, active=True)
        restart_services(self.backend, package.services(),
                         options=RestartOptions(scope=ServiceScope.system))
        self.assertEqual(self.sessions.requested, [])
        self.assertEqual(self.system.calls, [("restart", [SYS])])

    def test_user_scope(self):
        package = mixed_package()
        self.system.set_status(SYS, active=True)
        restart_services(self.backend, package.services(),
                         options=RestartOptions(scope=ServiceScope.user))
        self.assertEqual(self.system.queries, [])
        self.assertEqual(self.system.calls, [])


class TestQueryDisabled(LifecycleTestCase):

    def test_disabled(self):
        package = mixed_package()
        package.add_app("on", daemon="simple")
        self.system.set_status("pkg.foo.on.service", enabled=True)
        disabled = query_disabled_services(self.backend, package)
        self.assertEqual(disabled.system, ["sys"])
        self.assertEqual(disabled.user, {1000: ["usr"]})


class TestRemove(LifecycleTestCase):

    def test_remove_services(self):
        package = socket_package()
        self.install(package)
        paths = self.backend.paths
        res = remove_services(self.backend, package)
        self.assertEqual(res.state, State.success)
        self.assertEqual(self.system.calls, [("disable", [SOCK, TIMER, SVC]),
                                             ("daemon-reload", [])])
        for name in (SOCK, TIMER, SVC):
            self.assertFalse(os.path.exists(os.path.join(paths.services_dir, name)))

    def test_remove_user_services(self):
        package = service_package(scope=DaemonScope.user)
        self.install(package)
        remove_services(self.backend, package)
        self.assertEqual(self.user_global.calls, [("disable", [SVC])])
        self.assertEqual(self.user.calls, [("daemon-reload", [])])
        self.assertEqual(self.system.calls, [])

    def test_remove_missing(self):
        res = remove_services(self.backend, service_package())
        self.assertEqual(res.state, State.unchanged)
        self.assertEqual(self.system.calls, [])

    def test_remove_tooling(self):
        with self.assertRaises(InternalError):
            remove_services(self.backend, PackageInfo("core", type_=PackageType.tooling))

    def test_remove_quota_group(self):
        group = QuotaGroup("web", packages=["foo"])
        self.install(service_package(), ServiceOptions(quota_group=group))
        self.assertTrue(os.path.exists(group.slice_file(self.backend.paths)))
        self.assertTrue(remove_quota_group(self.backend, group))
        self.assertFalse(os.path.exists(group.slice_file(self.backend.paths)))
        self.assertEqual(self.system.calls, [("daemon-reload", [])])
        self.assertFalse(remove_quota_group(self.backend, group))
        self.assertEqual(self.system.calls, [("daemon-reload", [])])

    def test_remove_quota_group_with_sub_groups(self):
        group = QuotaGroup("web")
        group.add_sub_group(QuotaGroup("child"))
        with self.assertRaises(InternalError):
            remove_quota_group(self.backend, group)


if __name__ == "__main__":
    unittest.main()
