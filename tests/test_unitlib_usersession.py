import os
import os.path
from tempfile import TemporaryDirectory
import unittest
from unittest import mock

from unitlib.plumbing.common import ServiceFailure
from unitlib.plumbing.systemd import UnitStatus
from unitlib.plumbing.usersession import get_session_uids, usernames_to_uids, UserSessionClient

from .fakes import FakeSystemd


class TestSessionDiscovery(unittest.TestCase):

    def test_session_uids(self):
        with TemporaryDirectory() as tmp:
            for entry, bus in (("1000", True), ("1001", False), ("42", True), ("x", True)):
                os.mkdir(os.path.join(tmp, entry))
                if bus:
                    open(os.path.join(tmp, entry, "bus"), "w").close()
            self.assertEqual(get_session_uids(tmp), [42, 1000])

    def test_session_uids_missing(self):
        with TemporaryDirectory() as tmp:
            self.assertEqual(get_session_uids(os.path.join(tmp, "nope")), [])

    @mock.patch("pwd.getpwnam")
    def test_usernames(self, getpwnam: mock.Mock):
        getpwnam.side_effect = lambda name: mock.Mock(pw_uid={"bob": 1001, "amy": 1000}[name])
        self.assertEqual(usernames_to_uids(["bob", "amy", "bob"]), [1000, 1001])

    @mock.patch("pwd.getpwnam", side_effect=KeyError("nope"))
    def test_unknown_user(self, getpwnam: mock.Mock):
        with self.assertRaises(KeyError):
            usernames_to_uids(["nobody-here"])


class TestUserSessionClient(unittest.TestCase):

    def setUp(self):
        self.managers = {1000: FakeSystemd(), 1001: FakeSystemd()}
        self.client = UserSessionClient([1000, 1001], factory=lambda uid: self.managers[uid])

    def test_reload(self):
        self.managers[1001].fail["daemon-reload"] = True
        failures = self.client.services_daemon_reload()
        self.assertEqual([f.uid for f in failures], [1001])
        self.assertEqual(self.managers[1000].verbs(), ["daemon-reload"])

    def test_start_enable(self):
        start, stop = self.client.services_start(["a.socket", "a.service"], enable=True)
        self.assertEqual((start, stop), ([], []))
        self.assertEqual(self.managers[1000].calls, [("enable", ["a.socket", "a.service"]),
                                                     ("daemon-reload", []),
                                                     ("start", ["a.socket"]),
                                                     ("start", ["a.service"])])

    def test_start_disabled(self):
        self.client.services_start(["a.service", "b.service"], disabled={1001: ["a.service"]})
        self.assertEqual(self.managers[1000].calls, [("start", ["a.service"]),
                                                     ("start", ["b.service"])])
        self.assertEqual(self.managers[1001].calls, [("start", ["b.service"])])

    def test_start_failure_unwinds(self):
        self.managers[1000].fail["start"] = {"b.service"}
        start, stop = self.client.services_start(["a.service", "b.service"], enable=True)
        self.assertEqual(len(start), 1)
        self.assertEqual(start[0].uid, 1000)
        self.assertEqual(start[0].service, "b.service")
        self.assertEqual(stop, [])
        self.assertEqual(self.managers[1000].calls[2:], [("start", ["a.service"]),
                                                         ("start", ["b.service"]),
                                                         ("stop", ["a.service"]),
                                                         ("disable", ["a.service", "b.service"]),
                                                         ("daemon-reload", [])])
        # Other users are unaffected.
        self.assertNotIn("stop", self.managers[1001].verbs())

    def test_stop_continues(self):
        self.managers[1000].fail["stop"] = {"a.service"}
        failures = self.client.services_stop(["a.service", "b.service"], disable=True)
        self.assertEqual(failures, [ServiceFailure(1000, "a.service", failures[0].error)])
        self.assertEqual(self.managers[1000].verbs(), ["stop", "stop", "disable", "daemon-reload"])

    def test_restart_reload(self):
        self.client.services_restart(["a.service"], reload=True)
        self.assertEqual(self.managers[1000].calls, [("reload-or-restart", ["a.service"])])

    def test_status_skips_unreachable(self):
        self.managers[1000].set_status("a.service", active=True)
        self.managers[1001].fail["status"] = True
        self.assertEqual(self.client.service_status(["a.service"]),
                         {1000: [UnitStatus("a.service", True, False)]})

    def test_discover(self):
        with TemporaryDirectory() as tmp:
            os.mkdir(os.path.join(tmp, "1001"))
            open(os.path.join(tmp, "1001", "bus"), "w").close()
            client = UserSessionClient(run_user_dir=tmp, factory=lambda uid: self.managers[uid])
            self.assertEqual(client.uids, [1001])
            client.services_daemon_reload()
        self.assertEqual(self.managers[1000].calls, [])
        self.assertEqual(self.managers[1001].verbs(), ["daemon-reload"])


if __name__ == "__main__":
    unittest.main()
