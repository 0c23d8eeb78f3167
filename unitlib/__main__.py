import code
import logging

from unitlib.notify import PrintNotifier
from unitlib.plumbing.common import *
from unitlib.plumbing.config import Config
from unitlib.plumbing.package import DaemonScope, PackageInfo, PackageType, StopReason
from unitlib.plumbing.quota import JournalLimit, QuotaGroup
from unitlib.tasks import ensure, lifecycle
from unitlib.tasks.backend import Backend


backend = Backend(Config.from_env(), PrintNotifier())


if __name__ == "__main__":
    logging.basicConfig(level=logging.DEBUG)
    code.interact(local=globals())
