"""System libraries built on the kernel ports."""

from deployflow.stdlib.lib.run_history import RunHistory

__all__ = ["RunHistory"]
