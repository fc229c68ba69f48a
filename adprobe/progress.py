"""
Progress reporting to a caller-supplied sink.

The sink is any callable that takes a string; a GUI uses it to feed a log
pane.  It is never required, and the engine keeps no state in it.
"""

from .typing import ProgressSink


class ProgressReporter:
    """
    Mixin that gives a class a :py:meth:`report` method writing to
    ``self.progress`` when one was supplied.
    """

    progress: ProgressSink | None = None

    def report(self, message: str) -> None:
        if self.progress is not None:
            self.progress(message)
