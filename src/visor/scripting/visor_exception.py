"""Optional scripting helpers to log exceptions and convert them to exit codes."""

from __future__ import annotations

import logging

log = logging.getLogger("scripting")
"""Logger that the scripting package should use."""


class Interceptor:
    """
    Context manager to intercept exceptions.

    Use as a context manager:

        interceptor = visor_exception.Interceptor()
        for dataset_id in dataset_ids:
            with interceptor:
                acquire(dataset_id)
        sys.exit(interceptor.exitcode())

    Exceptions are logged and suppressed, except KeyboardInterrupt.
    The failed field tells you whether there were any exceptions.
    """

    def __init__(self):
        self.failed = False

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        if exc_type is None:
            return False
        if issubclass(exc_type, KeyboardInterrupt):
            return False
        log.error("operation failed: %s", exc_value)
        self.failed = True
        return True

    def exitcode(self) -> int:
        """Return the exit code to pass to sys.exit: zero on success, 1 on failure."""
        return int(self.failed)
