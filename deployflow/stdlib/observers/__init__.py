"""Event observers."""

from deployflow.stdlib.observers.logging_observer import LoggingObserver

__all__ = ["LoggingObserver"]
