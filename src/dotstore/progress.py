"""Progress events for network operations.

Library code never prints.  It reports through a :class:`ProgressSink`;
the CLI supplies one that writes to stderr, everything else gets
:class:`NullProgress`.
"""

from __future__ import annotations

import re

_COUNT_RE = re.compile(rb"(Receiving|Writing) objects:\s+\d+% \((\d+)/(\d+)\)")


class ProgressSink:
    """Receiver of progress events.  Every method is a no-op by default."""

    def on_message(self, text: str) -> None:
        pass

    def on_transfer(self, received: int, total: int) -> None:
        pass

    def on_push(self, current: int, total: int) -> None:
        pass

    def on_ref_update(self, ref: str, old: str | None, new: str | None) -> None:
        pass


class NullProgress(ProgressSink):
    pass


class RecordingProgress(ProgressSink):
    """Keeps every event in :attr:`events`; handy for tests and debugging."""

    def __init__(self):
        self.events: list[tuple] = []

    def on_message(self, text):
        self.events.append(("message", text))

    def on_transfer(self, received, total):
        self.events.append(("transfer", received, total))

    def on_push(self, current, total):
        self.events.append(("push", current, total))

    def on_ref_update(self, ref, old, new):
        self.events.append(("ref", ref, old, new))


def progress_callback(sink: ProgressSink | None):
    """Adapt *sink* to dulwich's ``progress(bytes)`` callback."""
    if sink is None:
        return None

    def _cb(msg: bytes) -> None:
        for line in re.split(rb"[\r\n]+", msg):
            line = line.strip()
            if not line:
                continue
            m = _COUNT_RE.search(line)
            if m is None:
                sink.on_message(line.decode("utf-8", "replace"))
            elif m.group(1) == b"Receiving":
                sink.on_transfer(int(m.group(2)), int(m.group(3)))
            else:
                sink.on_push(int(m.group(2)), int(m.group(3)))

    return _cb
