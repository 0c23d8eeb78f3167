"""
Notification sinks, used to tell operators about secondary failures that don't stop an operation,
such as a file that couldn't be rolled back.
"""

import logging
import sys
from typing import List


LOG = logging.getLogger(__name__)


def print_coloured(msg: str, colour: str = "3") -> None:
    """
    Print a message to standard error, in the given terminal colour code (1 red, 3 yellow).
    """
    print("\033[9{}m{}\033[0m".format(colour, msg), file=sys.stderr)


class Notifier:
    """
    Default sink, which logs each message as a warning.
    """

    def notify(self, message: str) -> None:
        LOG.warning("%s", message)


class RecordingNotifier(Notifier):
    """
    Sink keeping every message it receives, in order.
    """

    def __init__(self):
        self.messages: List[str] = []

    def notify(self, message: str) -> None:
        super().notify(message)
        self.messages.append(message)


class PrintNotifier(Notifier):
    """
    Sink writing messages to standard error, for interactive scripts.
    """

    def notify(self, message: str) -> None:
        LOG.debug("Notify: %s", message)
        print_coloured(message)
