"""Observer that writes every engine event to the log.

Usage::

    engine = ExecutionEngine(adapters, observers=[LoggingObserver()])
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from deployflow.kernel.logging import get_logger
from deployflow.kernel.orchestration.events import (
    RunFailed,
    StageFailed,
    StageRetrying,
    StageStarted,
)

if TYPE_CHECKING:
    from deployflow.kernel.orchestration.events import Event

logger = get_logger(__name__)


class LoggingObserver:
    """Log events at a level matching their severity."""

    async def handle(self, event: Event) -> None:
        """Handle an event (read-only, no return value)."""
        if isinstance(event, RunFailed | StageFailed):
            level = "ERROR"
        elif isinstance(event, StageRetrying):
            level = "WARNING"
        elif isinstance(event, StageStarted):
            level = "DEBUG"
        else:
            level = "INFO"
        logger.bind(cid=event.run_id).log(level, event.log_message())
